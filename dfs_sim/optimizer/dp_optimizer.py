import logging
import math
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from dfs_sim.cancellation import CancellationToken
from .analytics import AnalyticsEngine, BatchAnalytics
from .correlation import CorrelationMatrix, build_correlation_matrix
from .models import Constraints, GeneratedLineup, Player, assign_slots
from .strategies import Strategy, StrategyWeights, resolve_scorer

logger = logging.getLogger(__name__)

EPSILON = 1e-7
# Float tie tolerance for lineup keys, relative to magnitudes above 1
SCORE_TOLERANCE = 1e-12


class PerformanceMode(str, Enum):
    SPEED = "speed"
    BALANCED = "balanced"
    QUALITY = "quality"


@dataclass(frozen=True)
class SearchProfile:
    salary_buckets: int
    candidates_per_slot: Optional[int]
    max_states: int
    check_interval: int = 256


PROFILES = {
    PerformanceMode.SPEED: SearchProfile(salary_buckets=200, candidates_per_slot=15, max_states=100_000),
    PerformanceMode.BALANCED: SearchProfile(salary_buckets=500, candidates_per_slot=30, max_states=500_000),
    PerformanceMode.QUALITY: SearchProfile(salary_buckets=1000, candidates_per_slot=None, max_states=2_000_000),
}


class SearchStatus(str, Enum):
    OPTIMAL = "optimal"
    PARTIAL = "partial"          # stopped early, best lineup so far returned
    INFEASIBLE = "infeasible"    # constraints cannot be jointly satisfied
    EXHAUSTED = "exhausted"      # stopped early before any lineup was found


@dataclass
class SearchStats:
    states_explored: int = 0
    pruned: int = 0
    memo_hits: int = 0
    memo_size: int = 0
    elapsed: float = 0.0

    def merge(self, other: "SearchStats"):
        self.states_explored += other.states_explored
        self.pruned += other.pruned
        self.memo_hits += other.memo_hits
        self.memo_size += other.memo_size
        self.elapsed += other.elapsed


@dataclass
class SearchResult:
    status: SearchStatus
    lineup: Optional[GeneratedLineup] = None
    reason: str = ""
    cancelled: bool = False
    stats: SearchStats = field(default_factory=SearchStats)

    @property
    def found(self) -> bool:
        return self.lineup is not None

    @property
    def partial(self) -> bool:
        return self.status == SearchStatus.PARTIAL


def _close(a: float, b: float) -> bool:
    return abs(a - b) <= SCORE_TOLERANCE * max(1.0, abs(a), abs(b))


def _outranks(candidate, incumbent) -> bool:
    """Lexicographic key comparison; the score and projection fields tie within SCORE_TOLERANCE"""
    for mine, theirs in zip(candidate[:2], incumbent[:2]):
        if not _close(mine, theirs):
            return mine > theirs
    return candidate[2:] > incumbent[2:]


def _first_open(signature):
    for index, remaining in enumerate(signature):
        if remaining > 0:
            return index
    return None


def _take(signature, index):
    return signature[:index] + (signature[index] - 1,) + signature[index + 1:]


class LineupOptimizer:
    """
    Best single lineup for a strategy under salary, position, lock/exclude,
    stacking and diversity constraints.

    Multi-dimensional knapsack: a salary-bucketed DP over remaining position
    signatures gives an optimistic completion bound for every partial lineup,
    and a depth-first branch-and-bound walks candidates in strategy-score order,
    pruning any branch whose bound cannot beat the incumbent.
    """

    def __init__(self, pool: Sequence[Player], constraints: Constraints, strategy=Strategy.BALANCED,
                 analytics: Optional[BatchAnalytics] = None, correlation: Optional[CorrelationMatrix] = None,
                 profile: Optional[SearchProfile] = None, weights: Optional[StrategyWeights] = None):
        constraints.validate(pool)
        self.constraints = constraints
        self.scorer = resolve_scorer(strategy)
        self.strategy = self.scorer.strategy
        self.weights = weights or StrategyWeights()
        self.profile = profile or PROFILES[PerformanceMode.BALANCED]

        engine = AnalyticsEngine(constraints.platform)
        if analytics is None:
            analytics = engine.analyze_pool(pool)
        else:
            missing = [p for p in pool if p.player_id not in analytics]
            if missing:
                extra = engine.analyze_pool(missing)
                analytics.players.update(extra.players)
                analytics.degraded.extend(extra.degraded)
        self.analytics = analytics

        if self.scorer.pairwise and correlation is None:
            correlation = build_correlation_matrix(pool)
        self.correlation = correlation

        self.by_id = {p.player_id: p for p in pool}
        self.order = {p.player_id: index for index, p in enumerate(pool)}
        self.pool = [p for p in pool if p.player_id not in constraints.excluded]
        self.salary = {p.player_id: p.salary_for(constraints.platform) for p in pool}
        self.score = {p.player_id: self.scorer.player_score(analytics[p.player_id], self.weights) for p in pool}

        self.pair_bonus: Dict[int, Dict[int, float]] = {}
        self.bound_score = dict(self.score)
        if self.scorer.pairwise:
            self._build_pair_bonuses()

        # Most constrained slot first
        open_slots = [slot for slot, count in constraints.positions.items() if count > 0]
        eligible = {slot: [p for p in self.pool if constraints.can_fill(p, slot)] for slot in open_slots}
        self.slot_names = tuple(sorted(open_slots, key=lambda s: (len(eligible[s]), open_slots.index(s))))
        self.eligible = {
            slot: sorted(players, key=lambda p: (-self.bound_score[p.player_id], self.order[p.player_id]))
            for slot, players in eligible.items()
        }
        self.full_signature = tuple(constraints.positions[slot] for slot in self.slot_names)
        self.slot_rank = {slot: index for index, slot in enumerate(constraints.positions)}

        self.bucket_size = max(1, math.ceil(constraints.salary_cap / self.profile.salary_buckets))
        self.width = constraints.salary_cap // self.bucket_size + 1

    def _build_pair_bonuses(self):
        roster_size = self.constraints.roster_size
        for player in self.pool:
            row = {}
            for other_id, coefficient in self.correlation.neighbors(player.player_id).items():
                if other_id == player.player_id or other_id not in self.by_id or coefficient == 0.0:
                    continue
                row[other_id] = self.scorer.pair_bonus(
                    self.analytics[player.player_id], self.analytics[other_id], coefficient, self.weights)
            self.pair_bonus[player.player_id] = row
            best = sorted((v for v in row.values() if v > 0), reverse=True)[:roster_size - 1]
            self.bound_score[player.player_id] = self.score[player.player_id] + sum(best)

    def solve(self, extra_locked: Iterable[int] = (), extra_excluded: Iterable[int] = (),
              avoid: Sequence[FrozenSet[int]] = (), max_overlap: Optional[int] = None,
              token: Optional[CancellationToken] = None) -> SearchResult:
        started = time.monotonic()
        constraints = self.constraints
        locked = set(constraints.locked) | set(extra_locked)
        excluded = set(extra_excluded) | set(constraints.excluded)

        conflicting = locked & excluded
        if conflicting:
            return SearchResult(SearchStatus.INFEASIBLE, reason=f"players both locked and excluded: {sorted(conflicting)}")
        unknown = sorted(pid for pid in locked if pid not in self.by_id)
        if unknown:
            return SearchResult(SearchStatus.INFEASIBLE, reason=f"locked players not in pool: {unknown}")

        locked_players = sorted((self.by_id[pid] for pid in locked), key=lambda p: self.order[p.player_id])
        if assign_slots(locked_players, constraints) is None:
            return SearchResult(SearchStatus.INFEASIBLE, reason="locked players cannot all be placed in the roster slots")
        locked_salary = sum(self.salary[p.player_id] for p in locked_players)
        if locked_salary > constraints.salary_cap:
            return SearchResult(SearchStatus.INFEASIBLE, reason="locked players exceed the salary cap")

        unavailable = excluded | locked
        limit = self.profile.candidates_per_slot
        search = _BranchAndBound(self, locked_players, unavailable, avoid, max_overlap, token, limit)
        result = search.run()

        if result.status == SearchStatus.INFEASIBLE and search.truncated:
            # The candidate cap may have cut the only feasible players
            logger.debug("Capped search infeasible, retrying with every candidate")
            stats = result.stats
            search = _BranchAndBound(self, locked_players, unavailable, avoid, max_overlap, token, None)
            result = search.run()
            result.stats.merge(stats)

        result.stats.elapsed = time.monotonic() - started
        logger.debug(f"Search {result.status.value}: {result.stats.states_explored} states, "
                     f"{result.stats.pruned} pruned, {result.stats.memo_hits} memo hits")
        return result


class _BranchAndBound:
    """State for one search; the memo table lives and dies with it"""

    def __init__(self, optimizer: LineupOptimizer, locked_players: List[Player], unavailable, avoid,
                 max_overlap, token, limit):
        self.opt = optimizer
        self.constraints = optimizer.constraints
        self.locked_players = locked_players
        self.token = token
        self.stats = SearchStats()

        self.truncated = False
        self.candidates = []
        for slot in optimizer.slot_names:
            players = [p for p in optimizer.eligible[slot] if p.player_id not in unavailable]
            if limit is not None and len(players) > limit:
                players = players[:limit]
                self.truncated = True
            self.candidates.append(players)

        self.cost = {pid: salary // optimizer.bucket_size for pid, salary in optimizer.salary.items()}
        self.memo: Dict[Tuple[int, ...], np.ndarray] = {}

        self.avoid = [frozenset(s) for s in avoid] if max_overlap is not None else []
        self.max_overlap = max_overlap
        self.avoid_index: Dict[int, List[int]] = {}
        for index, lineup_ids in enumerate(self.avoid):
            for pid in lineup_ids:
                self.avoid_index.setdefault(pid, []).append(index)
        self.overlaps = [0] * len(self.avoid)

        self.rules = list(self.constraints.stacking)
        self.stack_counts = [Counter() for _ in self.rules]

        self.used = set()
        self.best: Optional[List[Tuple[str, Player]]] = None
        self.best_key = None
        self.best_score = None
        self.stopped = False
        self.cancelled = False

    # DP relaxation over (position signature, salary bucket)

    def relaxation(self, signature) -> np.ndarray:
        table = self.memo.get(signature)
        if table is not None:
            self.stats.memo_hits += 1
            return table

        width = self.opt.width
        slot_index = _first_open(signature)
        if slot_index is None:
            table = np.zeros(width)
        else:
            child = self.relaxation(_take(signature, slot_index))
            table = np.full(width, -np.inf)
            for player in self.candidates[slot_index]:
                cost = self.cost[player.player_id]
                if cost >= width:
                    continue
                shifted = child[:width - cost] + self.opt.bound_score[player.player_id]
                np.maximum(table[cost:], shifted, out=table[cost:])
        self.memo[signature] = table
        return table

    # Constraint bookkeeping

    def _admit(self, player: Player) -> bool:
        for rule, counts in zip(self.rules, self.stack_counts):
            if rule.max_count is None:
                continue
            key = player.group_key(rule.kind)
            if key and (rule.key is None or rule.key == key) and counts[key] + 1 > rule.max_count:
                return False
        for index in self.avoid_index.get(player.player_id, ()):
            if self.overlaps[index] + 1 > self.max_overlap:
                return False
        return True

    def _push(self, player: Player):
        self.used.add(player.player_id)
        for rule, counts in zip(self.rules, self.stack_counts):
            key = player.group_key(rule.kind)
            if key:
                counts[key] += 1
        for index in self.avoid_index.get(player.player_id, ()):
            self.overlaps[index] += 1

    def _pop(self, player: Player):
        self.used.discard(player.player_id)
        for rule, counts in zip(self.rules, self.stack_counts):
            key = player.group_key(rule.kind)
            if key:
                counts[key] -= 1
        for index in self.avoid_index.get(player.player_id, ()):
            self.overlaps[index] -= 1

    def _stacks_reachable(self, slots_left: int) -> bool:
        for rule, counts in zip(self.rules, self.stack_counts):
            if rule.key is not None:
                if rule.min_count > 0 and counts[rule.key] + slots_left < rule.min_count:
                    return False
            elif rule.min_count > 1:
                largest = max(counts.values()) if counts else 0
                if largest + slots_left < rule.min_count:
                    return False
        return True

    def _gain(self, player: Player, chosen) -> float:
        gain = self.opt.score[player.player_id]
        row = self.opt.pair_bonus.get(player.player_id)
        if row:
            for _, other in chosen:
                gain += row.get(other.player_id, 0.0)
        return gain

    # Search

    def _seeds(self):
        """Distinct remaining signatures after placing the locked players, with one placement each"""
        seeds = {}

        def place(i, signature, placement):
            if i == len(self.locked_players):
                seeds.setdefault(signature, list(placement))
                return
            player = self.locked_players[i]
            for slot_index, slot in enumerate(self.opt.slot_names):
                if signature[slot_index] > 0 and self.constraints.can_fill(player, slot):
                    placement.append((slot, player))
                    place(i + 1, _take(signature, slot_index), placement)
                    placement.pop()

        place(0, self.opt.full_signature, [])
        return list(seeds.items())

    def run(self) -> SearchResult:
        cap = self.constraints.salary_cap
        locked_salary = sum(self.opt.salary[p.player_id] for p in self.locked_players)
        root_feasible = False

        for signature, placement in self._seeds():
            chosen = []
            score = 0.0
            admissible = True
            for slot, player in placement:
                if not self._admit(player):
                    admissible = False
                score += self._gain(player, chosen)
                chosen.append((slot, player))
                self._push(player)

            bucket = (cap - locked_salary) // self.opt.bucket_size
            if admissible and self.relaxation(signature)[bucket] > -np.inf:
                root_feasible = True
                self._expand(signature, cap - locked_salary, chosen, score, None, -1)

            for _, player in reversed(chosen):
                self._pop(player)
            if self.stopped:
                break

        self.stats.memo_size = len(self.memo)

        if self.best is not None:
            status = SearchStatus.PARTIAL if self.stopped else SearchStatus.OPTIMAL
            return SearchResult(status, lineup=self._lineup(), cancelled=self.cancelled, stats=self.stats)
        if self.stopped:
            reason = "cancelled before a lineup was found" if self.cancelled else "search budget exhausted"
            return SearchResult(SearchStatus.EXHAUSTED, reason=reason, cancelled=self.cancelled, stats=self.stats)
        if not root_feasible:
            reason = "no combination of eligible players fills the roster under the salary cap"
        else:
            reason = "no lineup satisfies the stacking, diversity and salary constraints together"
        return SearchResult(SearchStatus.INFEASIBLE, reason=reason, stats=self.stats)

    def _expand(self, signature, remaining_salary, chosen, score, last_slot, last_index):
        stats = self.stats
        stats.states_explored += 1
        if stats.states_explored % self.opt.profile.check_interval == 0:
            if self.token is not None and self.token.cancelled:
                self.stopped = self.cancelled = True
                return
        if stats.states_explored >= self.opt.profile.max_states:
            self.stopped = True
            return

        slot_index = _first_open(signature)
        if slot_index is None:
            self._consider(chosen, score, remaining_salary)
            return

        bound = score + self.relaxation(signature)[remaining_salary // self.opt.bucket_size]
        if bound == -np.inf or (self.best_score is not None and bound < self.best_score - EPSILON):
            stats.pruned += 1
            return
        if not self._stacks_reachable(sum(signature)):
            stats.pruned += 1
            return

        next_signature = _take(signature, slot_index)
        slot = self.opt.slot_names[slot_index]
        candidates = self.candidates[slot_index]
        start = last_index + 1 if slot_index == last_slot else 0

        for index in range(start, len(candidates)):
            player = candidates[index]
            pid = player.player_id
            if pid in self.used:
                continue
            salary = self.opt.salary[pid]
            if salary > remaining_salary or not self._admit(player):
                continue

            gain = self._gain(player, chosen)
            chosen.append((slot, player))
            self._push(player)
            self._expand(next_signature, remaining_salary - salary, chosen, score + gain, slot_index, index)
            self._pop(player)
            chosen.pop()
            if self.stopped:
                return

    def _consider(self, chosen, score, remaining_salary):
        salary = self.constraints.salary_cap - remaining_salary
        if salary < self.constraints.min_salary:
            return
        if not self._stacks_reachable(0):
            return

        projection = sum(player.projection for _, player in chosen)
        order = tuple(sorted(self.opt.order[player.player_id] for _, player in chosen))
        key = (score, projection, -salary, tuple(-i for i in order))
        if self.best_key is None or _outranks(key, self.best_key):
            self.best_key = key
            self.best_score = score
            self.best = list(chosen)

    def _lineup(self) -> GeneratedLineup:
        slots = sorted(self.best, key=lambda item: (self.opt.slot_rank[item[0]], self.opt.order[item[1].player_id]))
        score = 0.0
        placed = []
        for slot, player in slots:
            score += self._gain(player, placed)
            placed.append((slot, player))
        return GeneratedLineup(slots=tuple(slots), score=score, strategy=self.opt.strategy.value)
