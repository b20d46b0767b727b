"""
Correlation engine.

Players that share a grouping key (team, game, tee-time wave) are correlated.
Each key with two or more players becomes a correlation group with one shared
coefficient. The pairwise coefficient stored in the matrix is the correlation
the simulator's shared group shocks produce, so optimizer bonuses and
simulated co-movement agree.

An opponent group spans the two teams of a game and carries a negative
coefficient. Its shock enters one side with a positive sign and the other side
with a negative sign, so opponents move against each other and teammates move
together by the same magnitude.
"""
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from dfs_sim.errors import ValidationError
from .models import Player

logger = logging.getLogger(__name__)

GROUPING_KINDS = ("team", "game", "wave", "opponent")


@dataclass(frozen=True)
class GroupingRule:
    kind: str
    coefficient: float


@dataclass(frozen=True)
class CorrelationGroup:
    kind: str
    key: str
    coefficient: float
    members: Tuple[int, ...]
    signs: Tuple[int, ...] = ()  # per member, empty means all +1

    def sign(self, index: int) -> int:
        return self.signs[index] if self.signs else 1

    @property
    def strength(self) -> float:
        return abs(self.coefficient)


def default_rules(team: float = 0.2, game: float = 0.1, wave: float = 0.3,
                  opponent: float = 0.0) -> List[GroupingRule]:
    return [GroupingRule("team", team), GroupingRule("game", game), GroupingRule("wave", wave),
            GroupingRule("opponent", opponent)]


class CorrelationMatrix:
    """
    Sparse symmetric correlation over integer player ids.

    Only pairs sharing at least one group are stored; every other pair is 0.
    """

    def __init__(self, player_ids: Iterable[int], groups: Sequence[CorrelationGroup] = ()):
        self.player_ids = tuple(player_ids)
        self.groups = tuple(groups)
        self._adjacency: Dict[int, Dict[int, float]] = {pid: {} for pid in self.player_ids}
        self._memberships: Dict[int, List[int]] = {pid: [] for pid in self.player_ids}
        self._signs: Dict[Tuple[int, int], int] = {}

        for index, group in enumerate(self.groups):
            for position, pid in enumerate(group.members):
                self._memberships.setdefault(pid, []).append(index)
                self._signs[index, pid] = group.sign(position)

        # Players in several groups get their loadings scaled so the shared
        # part of their variance never exceeds 1.
        self._scale = {}
        for pid, memberships in self._memberships.items():
            total = sum(self.groups[i].strength for i in memberships)
            self._scale[pid] = 1.0 / math.sqrt(total) if total > 1.0 else 1.0

        for group in self.groups:
            members = group.members
            for i, a in enumerate(members):
                for j in range(i + 1, len(members)):
                    b = members[j]
                    shared = group.strength * group.sign(i) * group.sign(j)
                    value = self._adjacency[a].get(b, 0.0) + shared * self._scale[a] * self._scale[b]
                    value = max(-1.0, min(1.0, value))
                    self._adjacency[a][b] = value
                    self._adjacency.setdefault(b, {})[a] = value

    def get(self, a: int, b: int) -> float:
        if a == b:
            return 1.0
        return self._adjacency.get(a, {}).get(b, 0.0)

    def neighbors(self, player_id: int) -> Dict[int, float]:
        return dict(self._adjacency.get(player_id, {}))

    def groups_for(self, player_id: int) -> List[CorrelationGroup]:
        return [self.groups[i] for i in self._memberships.get(player_id, [])]

    def loadings(self, player_id: int) -> List[Tuple[int, float]]:
        """(group index, shock loading) pairs used by the simulator"""
        scale = self._scale.get(player_id, 1.0)
        return [(i, self._signs[i, player_id] * math.sqrt(self.groups[i].strength) * scale)
                for i in self._memberships.get(player_id, [])]

    def pairs(self):
        for a, row in self._adjacency.items():
            for b, value in row.items():
                if a < b:
                    yield a, b, value

    def __len__(self):
        return sum(1 for _ in self.pairs())

    def to_dict(self) -> Dict:
        return {
            "players": list(self.player_ids),
            "groups": [
                {"kind": g.kind, "key": g.key, "coefficient": g.coefficient, "members": list(g.members),
                 "signs": list(g.signs)}
                for g in self.groups
            ],
        }


def _opponent_groups(pool: Sequence[Player], coefficient: float) -> List[CorrelationGroup]:
    """One group per game with players on both sides; the alphabetically first team takes the positive sign"""
    games = OrderedDict()
    for player in pool:
        if player.team and player.game:
            games.setdefault(player.game, []).append(player)

    groups = []
    for key, players in games.items():
        teams = sorted({p.team for p in players})
        if len(teams) != 2:
            continue
        groups.append(CorrelationGroup(
            "opponent", key, coefficient,
            tuple(p.player_id for p in players),
            tuple(1 if p.team == teams[0] else -1 for p in players),
        ))
    return groups


def build_correlation_matrix(pool: Sequence[Player],
                             rules: Optional[Sequence[GroupingRule]] = None) -> CorrelationMatrix:
    if rules is None:
        rules = default_rules()

    groups = []
    for rule in rules:
        if rule.kind not in GROUPING_KINDS:
            raise ValidationError(f"grouping kind must be one of {', '.join(GROUPING_KINDS)}, got '{rule.kind}'")
        if rule.kind == "opponent":
            if not -1.0 <= rule.coefficient <= 0.0:
                raise ValidationError("opponent correlation must be between -1 and 0")
        elif not 0.0 <= rule.coefficient <= 1.0:
            raise ValidationError(f"{rule.kind} correlation must be between 0 and 1")
        if rule.coefficient == 0.0:
            continue
        if rule.kind == "opponent":
            groups.extend(_opponent_groups(pool, rule.coefficient))
            continue

        members = OrderedDict()
        for player in pool:
            key = player.group_key(rule.kind)
            if key:
                members.setdefault(key, []).append(player.player_id)
        for key, ids in members.items():
            if len(ids) > 1:
                groups.append(CorrelationGroup(rule.kind, key, rule.coefficient, tuple(ids)))

    matrix = CorrelationMatrix([p.player_id for p in pool], groups)
    logger.debug(f"Correlation matrix: {len(pool)} players, {len(groups)} groups")
    return matrix
