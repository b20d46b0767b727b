from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from dfs_sim.errors import ValidationError
from dfs_sim.optimizer.correlation import CorrelationMatrix
from dfs_sim.optimizer.models import GeneratedLineup, Player
from .contest import ContestType

PERCENTILES = (10, 25, 50, 75, 90, 95, 99)


@dataclass
class SimulationConfig:
    iterations: int = 10000
    contest_type: ContestType = ContestType.GPP
    correlation: Optional[CorrelationMatrix] = None
    seed: Optional[int] = None
    entry_fee: int = 2000  # minor units
    field_lineups: Sequence[GeneratedLineup] = ()
    field_size: int = 100  # generated opponents when field_lineups is empty
    field_pool: Sequence[Player] = ()
    salary_cap: Optional[int] = None
    workers: int = 4
    chunk_size: int = 1000
    timeout: Optional[float] = None
    max_iterations: int = 200000

    def validate(self, lineups: Sequence[GeneratedLineup]):
        if self.iterations <= 0:
            raise ValidationError("iterations must be positive")
        if self.iterations > self.max_iterations:
            raise ValidationError(f"iterations must not exceed {self.max_iterations}")
        if not lineups:
            raise ValidationError("at least one lineup is required")
        if any(not lineup.slots for lineup in list(lineups) + list(self.field_lineups)):
            raise ValidationError("lineups must contain players")
        try:
            self.contest_type = ContestType(self.contest_type)
        except ValueError:
            raise ValidationError("contest_type must be one of: cash, gpp")
        if self.entry_fee <= 0:
            raise ValidationError("entry_fee must be positive")
        if self.workers < 1:
            raise ValidationError("workers must be at least 1")
        if self.chunk_size < 1:
            raise ValidationError("chunk_size must be at least 1")
        if self.seed is not None and self.seed < 0:
            raise ValidationError("seed must be non-negative")
        if self.field_size < 0:
            raise ValidationError("field_size must be non-negative")
        if self.salary_cap is not None and self.salary_cap <= 0:
            raise ValidationError("salary_cap must be positive")


@dataclass
class LineupSimulation:
    index: int
    player_ids: List[int]
    expected_score: float
    variance: float
    std_dev: float
    min_score: float
    max_score: float
    percentiles: Dict[str, float]
    cash_rate: float
    roi: float
    expected_payout: float
    top_rates: Dict[str, float]
    win_rate: float

    def to_dict(self):
        return {
            "index": self.index,
            "player_ids": self.player_ids,
            "expected_score": self.expected_score,
            "variance": self.variance,
            "std_dev": self.std_dev,
            "min_score": self.min_score,
            "max_score": self.max_score,
            "percentiles": self.percentiles,
            "cash_rate": self.cash_rate,
            "roi": self.roi,
            "expected_payout": self.expected_payout,
            "top_rates": self.top_rates,
            "win_rate": self.win_rate,
        }


@dataclass
class PortfolioSummary:
    total_entries: int = 0
    total_cost: int = 0
    expected_payout: float = 0.0
    roi: float = 0.0
    any_cash_rate: float = 0.0
    average_cash_rate: float = 0.0
    best_roi: float = 0.0
    worst_roi: float = 0.0
    mean_best_score: float = 0.0
    sharpe: float = 0.0

    def to_dict(self):
        return dict(self.__dict__)


@dataclass
class SimulationResult:
    lineups: List[LineupSimulation]
    portfolio: PortfolioSummary
    seed: int
    contest_type: ContestType
    iterations_requested: int
    iterations_completed: int
    field_size: int
    partial: bool = False
    elapsed: float = 0.0
    cache_hit: bool = False
    degraded_players: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            "lineups": [l.to_dict() for l in self.lineups],
            "portfolio": self.portfolio.to_dict(),
            "seed": self.seed,
            "contest_type": self.contest_type.value,
            "iterations_requested": self.iterations_requested,
            "iterations_completed": self.iterations_completed,
            "field_size": self.field_size,
            "partial": self.partial,
            "elapsed": self.elapsed,
            "cache_hit": self.cache_hit,
            "degraded_players": self.degraded_players,
        }
