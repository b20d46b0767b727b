from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional

from dfs_sim.optimizer.correlation import GroupingRule
from dfs_sim.optimizer.dp_optimizer import PerformanceMode
from dfs_sim.optimizer.models import Constraints, Player, StackRule
from dfs_sim.optimizer.strategies import Strategy


class PlayerIn(BaseModel):
    player_id: int
    name: str = ""
    positions: List[str] = Field(..., description="Roster slots or base positions the player can fill")
    salary: int = Field(..., ge=0, description="Salary in minor units")
    projection: float
    floor: Optional[float] = None
    ceiling: Optional[float] = None
    ownership: float = Field(default=0.0, ge=0, le=100, description="Projected ownership percent")
    team: str = ""
    opponent: str = ""
    game: str = ""
    wave: str = ""
    volatility: Optional[float] = Field(default=None, ge=0)
    platform_salaries: Dict[str, int] = Field(default_factory=dict, description="Salary per platform")

    def to_player(self) -> Player:
        return Player(
            player_id=self.player_id,
            positions=tuple(self.positions),
            salary=self.salary,
            projection=self.projection,
            name=self.name,
            floor=self.floor,
            ceiling=self.ceiling,
            ownership=self.ownership,
            team=self.team,
            opponent=self.opponent,
            game=self.game,
            wave=self.wave,
            volatility=self.volatility,
            platform_salaries=dict(self.platform_salaries),
        )


class StackRuleIn(BaseModel):
    kind: str = Field(default="team", description="team or game")
    min_count: int = 0
    max_count: Optional[int] = None
    key: Optional[str] = Field(default=None, description="Apply to this team/game only")


class ConstraintsIn(BaseModel):
    salary_cap: int = Field(..., description="Salary cap in minor units")
    positions: Dict[str, int] = Field(..., description="Exact count per roster slot")
    min_salary: int = 0
    flex_slots: Dict[str, List[str]] = Field(default_factory=dict, description="Slot -> base positions it accepts")
    locked: List[int] = Field(default_factory=list)
    excluded: List[int] = Field(default_factory=list)
    min_exposure: Dict[int, float] = Field(default_factory=dict, description="Per-player minimum exposure (0-1)")
    max_exposure: Dict[int, float] = Field(default_factory=dict, description="Per-player maximum exposure (0-1)")
    default_max_exposure: float = 1.0
    max_team_exposure: Dict[str, float] = Field(default_factory=dict, description="Per-team maximum exposure (0-1)")
    default_max_team_exposure: float = 1.0
    stacking: List[StackRuleIn] = Field(default_factory=list)
    min_unique: int = Field(default=0, description="Players each lineup must not share with any other")
    platform: Optional[str] = None

    def to_constraints(self) -> Constraints:
        return Constraints(
            salary_cap=self.salary_cap,
            positions=dict(self.positions),
            min_salary=self.min_salary,
            flex_slots={slot: tuple(allowed) for slot, allowed in self.flex_slots.items()},
            locked=frozenset(self.locked),
            excluded=frozenset(self.excluded),
            min_exposure=dict(self.min_exposure),
            max_exposure=dict(self.max_exposure),
            default_max_exposure=self.default_max_exposure,
            max_team_exposure=dict(self.max_team_exposure),
            default_max_team_exposure=self.default_max_team_exposure,
            stacking=tuple(StackRule(r.kind, r.min_count, r.max_count, r.key) for r in self.stacking),
            min_unique=self.min_unique,
            platform=self.platform,
        )


class CorrelationRuleIn(BaseModel):
    kind: str = Field(..., description="team, game, wave or opponent")
    coefficient: float

    def to_rule(self) -> GroupingRule:
        return GroupingRule(self.kind, self.coefficient)


class OptimizeRequest(BaseModel):
    players: List[PlayerIn] = Field(..., description="Player pool")
    constraints: ConstraintsIn = Field(..., description="Roster constraints")
    strategy: Strategy = Field(default=Strategy.BALANCED, description="Scoring strategy")
    num_lineups: int = Field(default=1, ge=1, le=150, description="Number of lineups to generate")
    mode: PerformanceMode = Field(default=PerformanceMode.BALANCED, description="speed, balanced or quality")
    correlation: Optional[List[CorrelationRuleIn]] = Field(default=None, description="Grouping rules")
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds before returning partial results")
    history: Dict[int, List[float]] = Field(default_factory=dict, description="Recent scores per player")


class LineupPlayer(BaseModel):
    player_id: int
    name: str
    position: str
    team: str
    salary: int
    projection: float


class Lineup(BaseModel):
    players: List[LineupPlayer]
    total_salary: int
    total_projection: float
    score: float
    strategy: str


class OptimizeResponse(BaseModel):
    status: str = Field(..., description="ok, partial, infeasible or timeout")
    lineups: List[Lineup] = Field(default_factory=list)
    num_lineups: int = 0
    reason: Optional[str] = None
    exposure: Optional[Dict[str, Any]] = None
    execution_time: Optional[float] = None
    states_explored: int = 0
    memo_hits: int = 0
    cache_hit: bool = False
    degraded_players: List[int] = Field(default_factory=list)
