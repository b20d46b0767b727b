"""
Opponent field for contest simulation.

Field lineups are drawn slot by slot from the player pool, weighted by
projected ownership. Players with an ownership projection use it; the rest
get a rank-based estimate within their primary position (best value first),
which is steeper in cash games than in GPPs.
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from dfs_sim.optimizer.models import GeneratedLineup, Player
from .contest import ContestType

logger = logging.getLogger(__name__)

MIN_OWNERSHIP = 0.01
MAX_OWNERSHIP = 0.50
OWNERSHIP_NOISE = 0.1
MAX_ATTEMPTS = 100


def base_ownership(rank: int, total: int, contest_type: ContestType) -> float:
    """Estimated ownership share for the rank-th best value among `total` players"""
    percentile = rank / total
    if ContestType(contest_type) == ContestType.CASH:
        if percentile < 0.2:
            return 0.40 - percentile * 0.5
        if percentile < 0.5:
            return 0.20 - percentile * 0.2
        return 0.05
    if percentile < 0.1:
        return 0.30 - percentile * 0.8
    if percentile < 0.3:
        return 0.20 - percentile * 0.4
    if percentile < 0.6:
        return 0.10 - percentile * 0.1
    return 0.02


def _value(player: Player) -> float:
    return player.projection / player.salary if player.salary > 0 else 0.0


class OwnershipModel:
    def __init__(self, contest_type: ContestType = ContestType.GPP):
        self.contest_type = ContestType(contest_type)

    def ownership(self, players: Sequence[Player], rng: np.random.Generator) -> Dict[int, float]:
        by_position: Dict[str, List[Player]] = defaultdict(list)
        for player in players:
            by_position[player.positions[0] if player.positions else ""].append(player)

        shares = {}
        for position in sorted(by_position):
            group = sorted(by_position[position], key=lambda p: (-_value(p), p.player_id))
            for rank, player in enumerate(group):
                # One noise draw per player, projected or not
                noise = (rng.random() - 0.5) * OWNERSHIP_NOISE
                if player.ownership > 0:
                    shares[player.player_id] = player.ownership / 100.0
                else:
                    estimate = base_ownership(rank, len(group), self.contest_type) + noise
                    shares[player.player_id] = min(MAX_OWNERSHIP, max(MIN_OWNERSHIP, estimate))
        return shares


def slot_template(lineups: Sequence[GeneratedLineup]) -> List[Tuple[str, Set[str]]]:
    """
    Roster slots of the first lineup with the positions each slot accepts:
    the slot name itself plus the primary positions seen in that slot.
    """
    accepted: Dict[str, Set[str]] = defaultdict(set)
    for lineup in lineups:
        for slot, player in lineup.slots:
            accepted[slot].add(slot)
            if player.positions:
                accepted[slot].add(player.positions[0])
    return [(slot, accepted[slot]) for slot, _ in lineups[0].slots] if lineups else []


def _eligible(player: Player, positions: Set[str]) -> bool:
    return any(position in positions for position in player.positions)


def _draw_lineup(pool: Sequence[Player], weights: np.ndarray, template, rng: np.random.Generator,
                 salary_cap: Optional[int]) -> Optional[GeneratedLineup]:
    # Most restrictive slots first
    order = sorted(range(len(template)),
                   key=lambda i: sum(1 for p in pool if _eligible(p, template[i][1])))
    used: Set[int] = set()
    chosen: Dict[int, Player] = {}
    spent = 0
    for i in order:
        positions = template[i][1]
        candidates = [
            k for k, p in enumerate(pool)
            if p.player_id not in used and _eligible(p, positions)
            and (salary_cap is None or spent + p.salary <= salary_cap)
        ]
        if not candidates:
            return None
        w = weights[candidates]
        pick = pool[candidates[rng.choice(len(candidates), p=w / w.sum())]]
        used.add(pick.player_id)
        spent += pick.salary
        chosen[i] = pick
    slots = tuple((template[i][0], chosen[i]) for i in range(len(template)))
    return GeneratedLineup(slots=slots, score=sum(p.projection for _, p in slots), strategy="field")


def generate_field(pool: Sequence[Player], template: Sequence[Tuple[str, Set[str]]], count: int,
                   rng: np.random.Generator, contest_type: ContestType = ContestType.GPP,
                   salary_cap: Optional[int] = None) -> List[GeneratedLineup]:
    """Up to `count` ownership-weighted opponent lineups; a lineup that fails MAX_ATTEMPTS times is skipped"""
    if count <= 0 or not template or not pool:
        return []
    pool = sorted(pool, key=lambda p: p.player_id)
    shares = OwnershipModel(contest_type).ownership(pool, rng)
    weights = np.array([shares[p.player_id] for p in pool])

    field = []
    for _ in range(count):
        for _ in range(MAX_ATTEMPTS):
            lineup = _draw_lineup(pool, weights, template, rng, salary_cap)
            if lineup is not None:
                field.append(lineup)
                break
    if len(field) < count:
        logger.warning(f"Generated {len(field)} of {count} field lineups from a pool of {len(pool)}")
    return field
