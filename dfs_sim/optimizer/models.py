from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from hopcroftkarp import HopcroftKarp

from dfs_sim.errors import ValidationError

STACK_KINDS = ("team", "game")


@dataclass(frozen=True)
class Player:
    """
    A player in the pool. Immutable for the duration of a request.

    `positions` lists the roster slots (or base positions) the player is
    eligible for; flex slots are resolved through Constraints.flex_slots.
    """
    player_id: int
    positions: Tuple[str, ...]
    salary: int
    projection: float
    name: str = ""
    floor: Optional[float] = None
    ceiling: Optional[float] = None
    ownership: float = 0.0
    team: str = ""
    opponent: str = ""
    game: str = ""
    wave: str = ""
    volatility: Optional[float] = None
    platform_salaries: Mapping[str, int] = field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self):
        if isinstance(self.positions, str):
            object.__setattr__(self, "positions", (self.positions,))
        else:
            object.__setattr__(self, "positions", tuple(self.positions))
        if not self.game and self.team and self.opponent:
            object.__setattr__(self, "game", "@".join(sorted((self.team, self.opponent))))

    def salary_for(self, platform: Optional[str] = None) -> int:
        if platform and platform in self.platform_salaries:
            return int(self.platform_salaries[platform])
        return int(self.salary)

    def group_key(self, kind: str) -> str:
        if kind == "team":
            return self.team
        if kind == "game":
            return self.game
        if kind == "opponent":
            return self.game
        if kind == "wave":
            return self.wave
        raise ValueError(f"unknown grouping kind: {kind}")

    @classmethod
    def from_dict(cls, data: Mapping) -> "Player":
        attributes = dict(data)
        attributes["player_id"] = int(attributes["player_id"])
        attributes["positions"] = tuple(attributes.get("positions") or ())
        attributes["platform_salaries"] = dict(attributes.get("platform_salaries") or {})
        return cls(**attributes)


@dataclass(frozen=True)
class StackRule:
    """
    Same-team / same-game count bounds.

    Without a key, max_count applies to every group and min_count requires at
    least one group to reach it. With a key, both bounds apply to that group.
    """
    kind: str = "team"
    min_count: int = 0
    max_count: Optional[int] = None
    key: Optional[str] = None

    def validate(self, roster_size: int):
        if self.kind not in STACK_KINDS:
            raise ValidationError(f"stack kind must be one of {', '.join(STACK_KINDS)}, got '{self.kind}'")
        if self.min_count < 0:
            raise ValidationError("stack min_count must be non-negative")
        if self.max_count is not None and self.max_count < self.min_count:
            raise ValidationError("stack max_count must be greater than or equal to min_count")
        if self.min_count > roster_size:
            raise ValidationError(f"stack min_count {self.min_count} exceeds roster size {roster_size}")


@dataclass(frozen=True)
class Constraints:
    salary_cap: int
    positions: Mapping[str, int]
    min_salary: int = 0
    flex_slots: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    locked: FrozenSet[int] = frozenset()
    excluded: FrozenSet[int] = frozenset()
    min_exposure: Mapping[int, float] = field(default_factory=dict)
    max_exposure: Mapping[int, float] = field(default_factory=dict)
    default_max_exposure: float = 1.0
    max_team_exposure: Mapping[str, float] = field(default_factory=dict)
    default_max_team_exposure: float = 1.0
    stacking: Tuple[StackRule, ...] = ()
    min_unique: int = 0
    platform: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "locked", frozenset(self.locked))
        object.__setattr__(self, "excluded", frozenset(self.excluded))
        object.__setattr__(self, "stacking", tuple(self.stacking))

    @property
    def roster_size(self) -> int:
        return sum(self.positions.values())

    def slot_list(self) -> List[str]:
        """Expand position counts into one entry per roster slot"""
        slots = []
        for slot, count in self.positions.items():
            slots.extend([slot] * count)
        return slots

    def can_fill(self, player: Player, slot: str) -> bool:
        if slot in player.positions:
            return True
        allowed = self.flex_slots.get(slot, ())
        return any(position in allowed for position in player.positions)

    def max_exposure_for(self, player_id: int) -> float:
        return self.max_exposure.get(player_id, self.default_max_exposure)

    def min_exposure_for(self, player_id: int) -> float:
        return self.min_exposure.get(player_id, 0.0)

    def max_team_exposure_for(self, team: str) -> float:
        """Share of lineups that may include at least one player from `team`"""
        return self.max_team_exposure.get(team, self.default_max_team_exposure)

    def validate(self, pool: Optional[Sequence[Player]] = None):
        """Raise ValidationError for requests that are malformed rather than merely infeasible"""
        if self.salary_cap <= 0:
            raise ValidationError("salary_cap must be positive")
        if not self.positions or self.roster_size <= 0:
            raise ValidationError("position requirements are missing")
        for slot, count in self.positions.items():
            if not isinstance(count, int) or count < 0:
                raise ValidationError(f"position count for {slot} must be a non-negative integer")
        if self.min_salary < 0 or self.min_salary > self.salary_cap:
            raise ValidationError("min_salary must be between 0 and salary_cap")
        if not 0 <= self.min_unique <= self.roster_size:
            raise ValidationError(f"min_unique must be between 0 and the roster size ({self.roster_size})")
        if not 0.0 <= self.default_max_exposure <= 1.0:
            raise ValidationError("default_max_exposure must be between 0 and 1")
        for player_id, value in list(self.min_exposure.items()) + list(self.max_exposure.items()):
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"exposure for player {player_id} must be between 0 and 1")
        if not 0.0 <= self.default_max_team_exposure <= 1.0:
            raise ValidationError("default_max_team_exposure must be between 0 and 1")
        for team, value in self.max_team_exposure.items():
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"exposure for team {team} must be between 0 and 1")
        for player_id, minimum in self.min_exposure.items():
            if minimum > self.max_exposure_for(player_id):
                raise ValidationError(f"min exposure exceeds max exposure for player {player_id}")
        both = self.locked & self.excluded
        if both:
            raise ValidationError(f"players both locked and excluded: {sorted(both)}")
        required = sorted(pid for pid, value in self.min_exposure.items() if value > 0 and pid in self.excluded)
        if required:
            raise ValidationError(f"excluded players have a minimum exposure: {required}")
        if len(self.locked) > self.roster_size:
            raise ValidationError("more locked players than roster slots")
        for rule in self.stacking:
            rule.validate(self.roster_size)

        if pool is None:
            return
        ids = [p.player_id for p in pool]
        if len(ids) != len(set(ids)):
            raise ValidationError("player pool contains duplicate player ids")
        known = set(ids)
        missing = sorted(self.locked - known)
        if missing:
            raise ValidationError(f"locked players not in pool: {missing}")


@dataclass(frozen=True)
class GeneratedLineup:
    slots: Tuple[Tuple[str, Player], ...]  # (roster slot, player)
    score: float
    strategy: str = ""

    @classmethod
    def from_players(cls, players: Sequence[Player], strategy: str = "") -> "GeneratedLineup":
        """Wrap an externally built roster; each player sits in its first listed position"""
        slots = tuple((player.positions[0] if player.positions else "", player) for player in players)
        return cls(slots=slots, score=sum(p.projection for p in players), strategy=strategy)

    @property
    def players(self) -> List[Player]:
        return [player for _, player in self.slots]

    @property
    def player_ids(self) -> FrozenSet[int]:
        return frozenset(player.player_id for _, player in self.slots)

    @property
    def key(self) -> Tuple[int, ...]:
        return tuple(sorted(self.player_ids))

    def total_salary(self, platform: Optional[str] = None) -> int:
        return sum(player.salary_for(platform) for _, player in self.slots)

    @property
    def total_projection(self) -> float:
        return sum(player.projection for _, player in self.slots)

    def to_dict(self, platform: Optional[str] = None) -> Dict:
        return {
            'players': [
                {
                    'player_id': player.player_id,
                    'name': player.name,
                    'position': slot,
                    'team': player.team,
                    'salary': player.salary_for(platform),
                    'projection': player.projection,
                }
                for slot, player in self.slots
            ],
            'total_salary': self.total_salary(platform),
            'total_projection': self.total_projection,
            'score': self.score,
            'strategy': self.strategy,
        }


def assign_slots(players: Iterable[Player], constraints: Constraints,
                 slots: Optional[Sequence[str]] = None) -> Optional[Dict[int, str]]:
    """
    Place every player in a distinct roster slot with a maximum bipartite matching.
    Returns {player_id: slot} or None when the players cannot all be placed.
    """
    players = list(players)
    if slots is None:
        slots = constraints.slot_list()
    if len(players) > len(slots):
        return None
    if not players:
        return {}

    graph = {}
    for slot_index, slot in enumerate(slots):
        graph[("slot", slot_index)] = {p.player_id for p in players if constraints.can_fill(p, slot)}
    matching = HopcroftKarp(graph).maximum_matching()

    assignment = {}
    for vertex, partner in matching.items():
        if isinstance(vertex, tuple) and vertex[0] == "slot":
            assignment[partner] = slots[vertex[1]]
    if len(assignment) != len(players):
        return None
    return assignment


def lineup_violations(lineup: GeneratedLineup, constraints: Constraints) -> List[str]:
    """
    Check a finished lineup against the hard rules.
    Returns a list of human readable problems, empty when the lineup is valid.
    """
    problems = []
    players = lineup.players
    ids = [p.player_id for p in players]

    if len(players) != constraints.roster_size:
        problems.append(f"lineup has {len(players)} players, roster needs {constraints.roster_size}")
    if len(ids) != len(set(ids)):
        problems.append("lineup contains duplicate players")

    salary = lineup.total_salary(constraints.platform)
    if salary > constraints.salary_cap:
        problems.append(f"salary {salary} exceeds cap {constraints.salary_cap}")
    if salary < constraints.min_salary:
        problems.append(f"salary {salary} below minimum {constraints.min_salary}")

    slot_counts = Counter(slot for slot, _ in lineup.slots)
    if slot_counts != Counter({k: v for k, v in constraints.positions.items() if v > 0}):
        problems.append("slot counts do not match position requirements")
    for slot, player in lineup.slots:
        if not constraints.can_fill(player, slot):
            problems.append(f"player {player.player_id} is not eligible for {slot}")

    missing_locks = constraints.locked - set(ids)
    if missing_locks:
        problems.append(f"locked players missing: {sorted(missing_locks)}")
    present_excluded = constraints.excluded & set(ids)
    if present_excluded:
        problems.append(f"excluded players present: {sorted(present_excluded)}")

    for rule in constraints.stacking:
        counts = Counter(p.group_key(rule.kind) for p in players if p.group_key(rule.kind))
        if rule.key is not None:
            count = counts.get(rule.key, 0)
            if count < rule.min_count or (rule.max_count is not None and count > rule.max_count):
                problems.append(f"{rule.kind} {rule.key} count {count} outside stack bounds")
        else:
            if rule.max_count is not None and counts and max(counts.values()) > rule.max_count:
                problems.append(f"{rule.kind} stack exceeds {rule.max_count}")
            if rule.min_count > 1 and (not counts or max(counts.values()) < rule.min_count):
                problems.append(f"no {rule.kind} stack of {rule.min_count}")
    return problems
