"""
Orchestration: optimize a lineup set and simulate it.

Validation errors are raised before any work starts. Infeasibility and
timeouts come back as typed results. Complete results are cached by request
content; partial results never are.
"""
import logging
from dataclasses import asdict, dataclass, field, replace
from functools import lru_cache
from typing import List, Mapping, Optional, Sequence, Union

from dfs_sim.cache import InMemoryResultCache, ResultCache, cache_key, content_hash
from dfs_sim.cancellation import CancellationToken
from dfs_sim.config import settings as default_settings
from dfs_sim.errors import CacheUnavailableError, ValidationError
from dfs_sim.optimizer.analytics import AnalyticsEngine, BatchAnalytics
from dfs_sim.optimizer.correlation import (
    CorrelationMatrix, GroupingRule, build_correlation_matrix, default_rules,
)
from dfs_sim.optimizer.dp_optimizer import PROFILES, LineupOptimizer, PerformanceMode
from dfs_sim.optimizer.exposure import ExposureManager, ExposureReport
from dfs_sim.optimizer.models import Constraints, GeneratedLineup, Player
from dfs_sim.optimizer.strategies import Strategy, StrategyWeights
from dfs_sim.progress import NullProgressReporter, ProgressReporter, ProgressTracker, QueueProgressReporter
from dfs_sim.simulator.contest import ContestType
from dfs_sim.simulator.models import SimulationConfig, SimulationResult
from dfs_sim.simulator.monte_carlo import MonteCarloSimulator

logger = logging.getLogger(__name__)


@dataclass
class OptimizationRequest:
    pool: Sequence[Player]
    constraints: Constraints
    strategy: Strategy = Strategy.BALANCED
    num_lineups: int = 1
    mode: PerformanceMode = PerformanceMode.BALANCED
    correlation_rules: Optional[Sequence[GroupingRule]] = None
    timeout: Optional[float] = None
    history: Optional[Mapping[int, Sequence[float]]] = None


@dataclass
class OptimizationResult:
    lineups: List[GeneratedLineup]
    report: ExposureReport
    strategy: Strategy
    mode: PerformanceMode
    elapsed: float = 0.0
    states_explored: int = 0
    pruned: int = 0
    memo_hits: int = 0
    partial: bool = False
    cache_hit: bool = False
    degraded_players: List[int] = field(default_factory=list)
    correlation: Optional[CorrelationMatrix] = None
    analytics: Optional[BatchAnalytics] = None


@dataclass
class Infeasible:
    reason: str
    elapsed: float = 0.0


@dataclass
class Timeout:
    reason: str
    elapsed: float = 0.0
    states_explored: int = 0


def pool_hash(pool: Sequence[Player]) -> str:
    return content_hash([asdict(p) for p in pool])


def constraints_payload(constraints: Constraints):
    return {
        "salary_cap": constraints.salary_cap,
        "min_salary": constraints.min_salary,
        "positions": dict(constraints.positions),
        "flex_slots": {slot: sorted(allowed) for slot, allowed in constraints.flex_slots.items()},
        "locked": sorted(constraints.locked),
        "excluded": sorted(constraints.excluded),
        "min_exposure": {str(k): v for k, v in constraints.min_exposure.items()},
        "max_exposure": {str(k): v for k, v in constraints.max_exposure.items()},
        "default_max_exposure": constraints.default_max_exposure,
        "max_team_exposure": dict(constraints.max_team_exposure),
        "default_max_team_exposure": constraints.default_max_team_exposure,
        "stacking": [asdict(rule) for rule in constraints.stacking],
        "min_unique": constraints.min_unique,
        "platform": constraints.platform,
    }


def _cacheable(result) -> bool:
    if isinstance(result, Timeout):
        return False
    return not getattr(result, "partial", False)


class OptimizationService:
    def __init__(self, cache: Optional[ResultCache] = None, progress: Optional[ProgressReporter] = None,
                 settings=None, simulator: Optional[MonteCarloSimulator] = None):
        settings = settings or default_settings
        self.settings = settings
        self.cache = cache
        self.progress = progress or NullProgressReporter()
        self.simulator = simulator or MonteCarloSimulator()
        self.weights = StrategyWeights.from_settings(settings)

    def correlation_rules(self, rules=None):
        if rules is not None:
            return list(rules)
        return default_rules(self.settings.TEAM_CORRELATION, self.settings.GAME_CORRELATION,
                             self.settings.WAVE_CORRELATION, self.settings.OPPONENT_CORRELATION)

    def _cached(self, key: str, compute, ttl: Optional[float] = None):
        if self.cache is None:
            return compute(), False
        ttl = self.settings.CACHE_TTL_SECONDS if ttl is None else ttl
        try:
            return self.cache.compute_if_absent(key, compute, ttl, cacheable=_cacheable)
        except CacheUnavailableError as e:
            logger.warning(f"Result cache unavailable, computing without it: {e}")
            return compute(), False

    # Optimization

    def optimize(self, request: OptimizationRequest,
                 progress: Optional[ProgressReporter] = None,
                 token: Optional[CancellationToken] = None) -> Union[OptimizationResult, Infeasible, Timeout]:
        pool = list(request.pool)
        if not pool:
            raise ValidationError("player pool is empty")
        request.constraints.validate(pool)
        if not 1 <= request.num_lineups <= self.settings.MAX_LINEUPS:
            raise ValidationError(f"num_lineups must be between 1 and {self.settings.MAX_LINEUPS}")
        try:
            strategy = Strategy(request.strategy)
        except ValueError:
            raise ValidationError(f"unknown strategy: {request.strategy}")
        try:
            mode = PerformanceMode(request.mode)
        except ValueError:
            raise ValidationError(f"unknown performance mode: {request.mode}")
        if request.timeout is not None and request.timeout <= 0:
            raise ValidationError("timeout must be positive")
        rules = self.correlation_rules(request.correlation_rules)
        correlation = build_correlation_matrix(pool, rules)

        payload = {
            "constraints": constraints_payload(request.constraints),
            "strategy": strategy.value,
            "num_lineups": request.num_lineups,
            "mode": mode.value,
            "rules": [asdict(rule) for rule in rules],
            "history": {str(k): list(v) for k, v in (request.history or {}).items()},
        }
        key = cache_key("optimize", pool_hash(pool), payload)

        def compute():
            return self._optimize(pool, request, strategy, mode, correlation, progress or self.progress, token)

        result, hit = self._cached(key, compute)
        if hit and isinstance(result, OptimizationResult):
            result = replace(result, cache_hit=True)
        return result

    def _optimize(self, pool, request, strategy, mode, correlation, reporter, token=None):
        constraints = request.constraints
        timeout = request.timeout if request.timeout is not None else self.settings.OPTIMIZER_TIMEOUT
        if token is None:
            token = CancellationToken.with_timeout(timeout)
        tracker = ProgressTracker(reporter, request.num_lineups, "optimization")
        tracker.start(f"Optimizing {request.num_lineups} lineups ({strategy.value}, {mode.value})")

        logger.info(f"Optimize: {len(pool)} players, {request.num_lineups} lineups, "
                    f"strategy={strategy.value}, mode={mode.value}, timeout={timeout}s")
        try:
            analytics = AnalyticsEngine(constraints.platform).analyze_pool(pool, request.history)
            optimizer = LineupOptimizer(pool, constraints, strategy, analytics, correlation,
                                        PROFILES[mode], self.weights)
            manager = ExposureManager(optimizer, request.num_lineups, self.settings.EXPOSURE_MAX_RETRIES)
            lineup_set = manager.build(token, tracker)
        except Exception as e:
            tracker.fail(f"Optimization failed: {e}")
            raise

        stats = lineup_set.stats
        if lineup_set.infeasible:
            tracker.fail(f"Infeasible: {lineup_set.infeasible_reason}")
            return Infeasible(lineup_set.infeasible_reason, elapsed=lineup_set.elapsed)
        if not lineup_set.lineups:
            tracker.fail("Timed out before any lineup was found")
            return Timeout("deadline elapsed before any lineup was found",
                           elapsed=lineup_set.elapsed, states_explored=stats.states_explored)

        tracker.complete(f"Generated {len(lineup_set.lineups)} lineups")
        return OptimizationResult(
            lineups=lineup_set.lineups,
            report=lineup_set.report,
            strategy=strategy,
            mode=mode,
            elapsed=lineup_set.elapsed,
            states_explored=stats.states_explored,
            pruned=stats.pruned,
            memo_hits=stats.memo_hits,
            partial=lineup_set.partial,
            degraded_players=list(analytics.degraded),
            correlation=correlation,
            analytics=analytics,
        )

    # Simulation

    def simulate(self, lineups: Sequence[GeneratedLineup], contest_type=ContestType.GPP,
                 iterations: int = 10000, correlation: Optional[CorrelationMatrix] = None,
                 seed: Optional[int] = None, entry_fee: Optional[int] = None,
                 field_lineups: Sequence[GeneratedLineup] = (), timeout: Optional[float] = None,
                 pool: Sequence[Player] = (), field_size: Optional[int] = None,
                 salary_cap: Optional[int] = None,
                 analytics: Optional[BatchAnalytics] = None,
                 progress: Optional[ProgressReporter] = None) -> Union[SimulationResult, Timeout]:
        config = SimulationConfig(
            iterations=iterations,
            contest_type=contest_type,
            correlation=correlation,
            seed=seed,
            entry_fee=self.settings.DEFAULT_ENTRY_FEE if entry_fee is None else entry_fee,
            field_lineups=list(field_lineups),
            field_size=self.settings.SIMULATION_FIELD_SIZE if field_size is None else field_size,
            field_pool=list(pool),
            salary_cap=salary_cap,
            workers=self.settings.SIMULATION_WORKERS,
            chunk_size=self.settings.SIMULATION_CHUNK_SIZE,
            timeout=self.settings.SIMULATION_TIMEOUT if timeout is None else timeout,
            max_iterations=self.settings.MAX_SIMULATION_ITERATIONS,
        )
        config.validate(lineups)

        def compute():
            tracker = ProgressTracker(progress or self.progress, 1, "simulation")
            try:
                result = self.simulator.simulate(lineups, config, analytics=analytics, progress=tracker)
            except Exception as e:
                tracker.fail(f"Simulation failed: {e}")
                raise
            if result.iterations_completed == 0:
                return Timeout("deadline elapsed before any iteration completed", elapsed=result.elapsed)
            return result

        if seed is None:
            # unseeded runs are never cached
            return compute()

        players = {p.player_id: p for p in pool}
        for lineup in list(lineups) + list(config.field_lineups):
            for player in lineup.players:
                players.setdefault(player.player_id, player)
        payload = {
            "lineups": [list(lineup.key) for lineup in lineups],
            "field": [list(lineup.key) for lineup in config.field_lineups],
            "contest_type": config.contest_type.value,
            "iterations": iterations,
            "seed": seed,
            "entry_fee": config.entry_fee,
            "field_size": config.field_size,
            "salary_cap": salary_cap,
            "correlation": correlation.to_dict() if correlation is not None else None,
        }
        key = cache_key("simulate", pool_hash(list(players.values())), payload)
        result, hit = self._cached(key, compute)
        if hit and isinstance(result, SimulationResult):
            result = replace(result, cache_hit=True)
        return result

    def invalidate_pool(self, pool: Sequence[Player]) -> int:
        """Drop every cached result computed for this exact pool"""
        if self.cache is None:
            return 0
        return self.cache.invalidate_prefix(pool_hash(pool))


@lru_cache()
def get_service() -> OptimizationService:
    """Process-wide service used by the HTTP routers"""
    return OptimizationService(
        cache=InMemoryResultCache(default_ttl=default_settings.CACHE_TTL_SECONDS),
        progress=QueueProgressReporter(default_settings.PROGRESS_QUEUE_SIZE),
    )
