from pydantic import BaseModel, Field
from typing import List, Dict, Optional

from dfs_sim.models.optimizer import CorrelationRuleIn, PlayerIn
from dfs_sim.simulator.contest import ContestType


class SimulateRequest(BaseModel):
    players: List[PlayerIn] = Field(..., description="Players referenced by the lineups")
    lineups: List[List[int]] = Field(..., description="Lineups to simulate, as player ids")
    field_lineups: List[List[int]] = Field(default_factory=list, description="Opponent lineups in the contest")
    field_size: Optional[int] = Field(default=None, ge=0, description="Generated opponent lineups when field_lineups is empty")
    salary_cap: Optional[int] = Field(default=None, gt=0, description="Salary cap for generated opponent lineups")
    contest_type: ContestType = Field(default=ContestType.GPP, description="cash or gpp")
    iterations: int = Field(default=10000, description="Number of simulated contests")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible results")
    entry_fee: Optional[int] = Field(default=None, description="Entry fee in minor units")
    correlation: Optional[List[CorrelationRuleIn]] = None
    timeout: Optional[float] = Field(default=None, gt=0)


class LineupSimulationOut(BaseModel):
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


class SimulateResponse(BaseModel):
    status: str = Field(..., description="ok, partial or timeout")
    lineups: List[LineupSimulationOut] = Field(default_factory=list)
    portfolio: Dict[str, float] = Field(default_factory=dict)
    seed: Optional[int] = None
    contest_type: Optional[str] = None
    iterations_requested: int = 0
    iterations_completed: int = 0
    field_size: int = 0
    reason: Optional[str] = None
    execution_time: Optional[float] = None
    cache_hit: bool = False
