"""
Multi-lineup generation with exposure bounds and diversity.

Lineups are built one at a time. Before each solve, players that can only
reach their minimum exposure by appearing in every remaining lineup are
temporarily locked. A candidate that would push a player, or a team, past its
maximum exposure is rejected and re-solved without those players. Diversity is
enforced inside the search as a maximum overlap with every accepted lineup.

When a solve is infeasible the manager relaxes, in order:
  1. temporary locks, for the current lineup,
  2. temporary exclusions and the maximum exposure check, for the current lineup,
  3. min_unique, one step at a time, for the rest of the batch.
Every relaxation is logged and reported; the batch itself never fails after
the first lineup.
"""
import logging
import math
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from dfs_sim.cancellation import CancellationToken
from dfs_sim.errors import ValidationError
from dfs_sim.progress import EventType, ProgressTracker
from .dp_optimizer import LineupOptimizer, SearchResult, SearchStats, SearchStatus
from .models import Constraints, GeneratedLineup

logger = logging.getLogger(__name__)

COUNT_EPSILON = 1e-9


def max_count(exposure: float, num_lineups: int) -> int:
    return int(math.floor(exposure * num_lineups + COUNT_EPSILON))


def min_count(exposure: float, num_lineups: int) -> int:
    return int(math.ceil(exposure * num_lineups - COUNT_EPSILON))


@dataclass(frozen=True)
class ExposureViolation:
    player_id: int
    count: int
    exposure: float
    min_exposure: float
    max_exposure: float

    @property
    def shortfall(self) -> float:
        return max(0.0, self.min_exposure - self.exposure)

    @property
    def excess(self) -> float:
        return max(0.0, self.exposure - self.max_exposure)

    def to_dict(self):
        return {
            "player_id": self.player_id,
            "count": self.count,
            "exposure": self.exposure,
            "min_exposure": self.min_exposure,
            "max_exposure": self.max_exposure,
            "shortfall": self.shortfall,
            "excess": self.excess,
        }


@dataclass(frozen=True)
class TeamExposureViolation:
    team: str
    count: int
    exposure: float
    max_exposure: float

    @property
    def excess(self) -> float:
        return max(0.0, self.exposure - self.max_exposure)

    def to_dict(self):
        return {
            "team": self.team,
            "count": self.count,
            "exposure": self.exposure,
            "max_exposure": self.max_exposure,
            "excess": self.excess,
        }


@dataclass(frozen=True)
class Relaxation:
    """One recorded loosening of a constraint while building lineup `lineup_index`"""
    lineup_index: int
    constraint: str
    before: str
    after: str
    reason: str

    def to_dict(self):
        return {
            "lineup_index": self.lineup_index,
            "constraint": self.constraint,
            "before": self.before,
            "after": self.after,
            "reason": self.reason,
        }


@dataclass
class ExposureReport:
    total_lineups: int = 0
    counts: Dict[int, int] = field(default_factory=dict)
    exposures: Dict[int, float] = field(default_factory=dict)
    violations: List[ExposureViolation] = field(default_factory=list)
    team_exposures: Dict[str, float] = field(default_factory=dict)
    team_violations: List[TeamExposureViolation] = field(default_factory=list)
    relaxations: List[Relaxation] = field(default_factory=list)
    diversity_score: float = 0.0
    min_unique_used: int = 0

    @property
    def clean(self) -> bool:
        return not self.violations and not self.team_violations and not self.relaxations

    def to_dict(self):
        return {
            "total_lineups": self.total_lineups,
            "exposures": {str(pid): value for pid, value in self.exposures.items()},
            "violations": [v.to_dict() for v in self.violations],
            "team_exposures": dict(self.team_exposures),
            "team_violations": [v.to_dict() for v in self.team_violations],
            "relaxations": [r.to_dict() for r in self.relaxations],
            "diversity_score": self.diversity_score,
            "min_unique_used": self.min_unique_used,
        }


@dataclass
class LineupSet:
    lineups: List[GeneratedLineup]
    report: ExposureReport
    stats: SearchStats
    partial: bool = False
    infeasible_reason: Optional[str] = None
    elapsed: float = 0.0

    @property
    def infeasible(self) -> bool:
        return self.infeasible_reason is not None


class ExposureManager:
    def __init__(self, optimizer: LineupOptimizer, num_lineups: int, max_retries: int = 10):
        if num_lineups < 1:
            raise ValidationError("num_lineups must be at least 1")
        self.optimizer = optimizer
        self.constraints: Constraints = optimizer.constraints
        self.num_lineups = num_lineups
        self.max_retries = max(0, max_retries)
        self.roster_size = self.constraints.roster_size

        ids = list(optimizer.by_id)
        self.max_counts = {pid: max_count(self.constraints.max_exposure_for(pid), num_lineups) for pid in ids}
        self.min_counts = {
            pid: min_count(value, num_lineups)
            for pid, value in self.constraints.min_exposure.items() if value > 0 and pid in optimizer.by_id
        }

        self.rosters: Dict[str, Set[int]] = {}
        for player in optimizer.by_id.values():
            if player.team:
                self.rosters.setdefault(player.team, set()).add(player.player_id)
        self.team_max_counts = {
            team: max_count(self.constraints.max_team_exposure_for(team), num_lineups) for team in self.rosters
        }

        self.counts: Counter = Counter()
        self.team_counts: Counter = Counter()
        self.accepted: List[frozenset] = []
        self.relaxations: List[Relaxation] = []
        self.min_unique = self.constraints.min_unique
        self.stats = SearchStats()

    def build(self, token: Optional[CancellationToken] = None,
              progress: Optional[ProgressTracker] = None) -> LineupSet:
        started = time.monotonic()
        lineups: List[GeneratedLineup] = []
        partial = False

        for index in range(self.num_lineups):
            if token is not None and token.cancelled:
                partial = True
                break

            result = self._generate(index, token)
            if result.lineup is None:
                if result.status == SearchStatus.INFEASIBLE and not lineups:
                    logger.info(f"Lineup set infeasible: {result.reason}")
                    return LineupSet([], self._report([]), self.stats, infeasible_reason=result.reason,
                                     elapsed=time.monotonic() - started)
                if result.status == SearchStatus.INFEASIBLE:
                    logger.warning(f"Stopped after {len(lineups)} lineups: {result.reason}")
                partial = True
                break

            lineup = result.lineup
            lineups.append(lineup)
            self.accepted.append(lineup.player_ids)
            self.counts.update(lineup.player_ids)
            self.team_counts.update(self._teams(lineup))
            logger.debug(f"Lineup {index + 1}/{self.num_lineups}: score={lineup.score:.3f} "
                         f"salary={lineup.total_salary(self.constraints.platform)}")
            if progress is not None:
                progress.advance(f"Generated lineup {index + 1} of {self.num_lineups}",
                                 event_type=EventType.LINEUP_GENERATED)
            if result.partial:
                # Best found within the search budget, not proven optimal
                partial = True
            if result.cancelled:
                break

        report = self._report(lineups)
        logger.info(f"Generated {len(lineups)}/{self.num_lineups} lineups, "
                    f"{len(report.violations)} exposure violations, {len(report.relaxations)} relaxations"
                    + (" (partial)" if partial else ""))
        return LineupSet(lineups, report, self.stats, partial=partial, elapsed=time.monotonic() - started)

    def _generate(self, index: int, token: Optional[CancellationToken]) -> SearchResult:
        locks = self._temporary_locks(index)
        excluded: Set[int] = set()
        enforce_max = True
        retries = 0

        while True:
            result = self._solve(locks, excluded, token)

            if result.lineup is not None:
                if not enforce_max:
                    return result
                offenders = self._over_exposed(result.lineup, locks)
                teams = self._over_exposed_teams(result.lineup, locks)
                if not offenders and not teams:
                    return result
                retries += 1
                if retries > self.max_retries:
                    excluded |= self._saturated(locks)
                else:
                    excluded |= offenders | self._team_players(teams, locks)
                logger.debug(f"Lineup {index + 1}: rejected for exposure, "
                             f"players {sorted(offenders)}, teams {sorted(teams)}")
                continue

            if result.status != SearchStatus.INFEASIBLE:
                return result

            if locks:
                self._record(index, "temporary_locks", sorted(locks), [], result.reason)
                locks = set()
                continue
            if excluded:
                # Exposure caps are waived for this lineup only
                self._record(index, "exposure_exclusions", sorted(excluded), [], result.reason)
                excluded = set()
                enforce_max = False
                continue
            if self._relax_diversity(index, result.reason):
                continue
            return result

    def _solve(self, locks, excluded, token) -> SearchResult:
        max_overlap = None
        if self.min_unique > 0 and self.accepted:
            max_overlap = self.roster_size - self.min_unique
        result = self.optimizer.solve(extra_locked=locks, extra_excluded=excluded,
                                      avoid=self.accepted, max_overlap=max_overlap, token=token)
        self.stats.merge(result.stats)
        return result

    def _temporary_locks(self, index: int) -> Set[int]:
        remaining = self.num_lineups - index
        locks = set()
        for pid, needed in self.min_counts.items():
            if pid in self.constraints.locked:
                continue
            deficit = needed - self.counts[pid]
            if deficit > 0 and deficit >= remaining:
                locks.add(pid)
        return locks

    @staticmethod
    def _teams(lineup: GeneratedLineup) -> Set[str]:
        return {player.team for player in lineup.players if player.team}

    def _pinned_teams(self, locks) -> Set[str]:
        """Teams that must appear because one of their players is locked"""
        pinned = set(self.constraints.locked) | set(locks)
        return {team for team, ids in self.rosters.items() if ids & pinned}

    def _over_exposed(self, lineup: GeneratedLineup, locks) -> Set[int]:
        return {
            pid for pid in lineup.player_ids
            if pid not in self.constraints.locked and pid not in locks
            and self.counts[pid] + 1 > self.max_counts[pid]
        }

    def _over_exposed_teams(self, lineup: GeneratedLineup, locks) -> Set[str]:
        pinned = self._pinned_teams(locks)
        return {
            team for team in self._teams(lineup)
            if team not in pinned and self.team_counts[team] + 1 > self.team_max_counts[team]
        }

    def _team_players(self, teams, locks) -> Set[int]:
        players = set()
        for team in teams:
            players |= self.rosters[team]
        return players - set(self.constraints.locked) - set(locks)

    def _saturated(self, locks) -> Set[int]:
        players = {
            pid for pid, limit in self.max_counts.items()
            if pid not in self.constraints.locked and pid not in locks and self.counts[pid] >= limit
        }
        pinned = self._pinned_teams(locks)
        teams = {
            team for team, limit in self.team_max_counts.items()
            if team not in pinned and self.team_counts[team] >= limit
        }
        return players | self._team_players(teams, locks)

    def _relax_diversity(self, index: int, reason: str) -> bool:
        if self.min_unique <= 0 or not self.accepted:
            return False
        before = self.min_unique
        self.min_unique -= 1
        self._record(index, "min_unique", before, self.min_unique, reason)
        return True

    def _record(self, index, constraint, before, after, reason):
        relaxation = Relaxation(index, constraint, str(before), str(after), reason)
        self.relaxations.append(relaxation)
        logger.warning(f"Lineup {index + 1}: relaxed {constraint} from {before} to {after} ({reason})")

    def _report(self, lineups: List[GeneratedLineup]) -> ExposureReport:
        total = len(lineups)
        counts = Counter()
        team_counts = Counter()
        for lineup in lineups:
            counts.update(lineup.player_ids)
            team_counts.update(self._teams(lineup))

        report = ExposureReport(total_lineups=total, relaxations=list(self.relaxations),
                                min_unique_used=self.min_unique)
        if not total:
            return report

        report.counts = dict(counts)
        report.exposures = {pid: count / total for pid, count in counts.items()}

        for pid in self.optimizer.by_id:
            count = counts.get(pid, 0)
            low = self.constraints.min_exposure_for(pid)
            high = self.constraints.max_exposure_for(pid)
            if count < min_count(low, total) or count > max_count(high, total):
                report.violations.append(ExposureViolation(pid, count, count / total, low, high))

        report.team_exposures = {team: count / total for team, count in sorted(team_counts.items())}
        for team, count in sorted(team_counts.items()):
            high = self.constraints.max_team_exposure_for(team)
            if count > max_count(high, total):
                report.team_violations.append(TeamExposureViolation(team, count, count / total, high))

        report.diversity_score = len(counts) / float(total * self.roster_size)
        return report
