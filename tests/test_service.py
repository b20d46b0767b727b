import pytest

from dfs_sim.cache import InMemoryResultCache
from dfs_sim.cancellation import CancellationToken
from dfs_sim.errors import ValidationError
from dfs_sim.optimizer.dp_optimizer import PROFILES, PerformanceMode, SearchProfile
from dfs_sim.optimizer.models import Constraints, Player, lineup_violations
from dfs_sim.optimizer.strategies import Strategy
from dfs_sim.service import (
    Infeasible, OptimizationRequest, OptimizationResult, OptimizationService, Timeout,
)
from dfs_sim.simulator.models import SimulationResult


def make_pool():
    teams = ["BOS", "NYK"]
    return [
        Player(player_id=i, positions=("G",) if i % 2 else ("F",), salary=4000 + 250 * i,
               projection=12.0 + i, ownership=5.0 * i, team=teams[i % 2], opponent=teams[(i + 1) % 2])
        for i in range(1, 13)
    ]


def request_for(pool=None, **kwargs):
    constraints = kwargs.pop("constraints", None) or Constraints(salary_cap=30000, positions={"G": 3, "F": 3})
    return OptimizationRequest(pool=pool or make_pool(), constraints=constraints, **kwargs)


@pytest.mark.parametrize("strategy", list(Strategy))
def test_every_strategy_produces_valid_lineups(strategy):
    request = request_for(strategy=strategy, num_lineups=3)
    result = OptimizationService().optimize(request)

    assert isinstance(result, OptimizationResult)
    assert len(result.lineups) == 3
    for lineup in result.lineups:
        assert lineup_violations(lineup, request.constraints) == []
        assert lineup.strategy == strategy.value


def test_locks_and_exclusions_hold_across_the_set():
    constraints = Constraints(salary_cap=30000, positions={"G": 3, "F": 3}, locked={1}, excluded={12}, min_unique=2)
    result = OptimizationService().optimize(request_for(constraints=constraints, num_lineups=4))

    assert len(result.lineups) == 4
    for lineup in result.lineups:
        assert 1 in lineup.player_ids
        assert 12 not in lineup.player_ids


def test_cap_below_cheapest_combination_returns_infeasible():
    constraints = Constraints(salary_cap=20000, positions={"G": 3, "F": 3})
    result = OptimizationService().optimize(request_for(constraints=constraints))

    assert isinstance(result, Infeasible)
    assert result.reason


def test_cancelled_before_first_lineup_returns_timeout():
    token = CancellationToken()
    token.cancel()
    result = OptimizationService().optimize(request_for(num_lineups=2), token=token)
    assert isinstance(result, Timeout)


def test_timeouts_are_not_cached():
    service = OptimizationService(cache=InMemoryResultCache())
    token = CancellationToken()
    token.cancel()
    service.optimize(request_for(), token=token)

    assert isinstance(service.optimize(request_for()), OptimizationResult)


@pytest.mark.parametrize("kwargs, message", [
    (dict(num_lineups=0), "num_lineups must be between 1 and"),
    (dict(strategy="moonshot"), "unknown strategy"),
    (dict(mode="turbo"), "unknown performance mode"),
    (dict(constraints=Constraints(salary_cap=-5, positions={"G": 1})), "salary_cap must be positive"),
])
def test_malformed_requests_raise(kwargs, message):
    with pytest.raises(ValidationError) as excinfo:
        OptimizationService().optimize(request_for(**kwargs))
    assert message in str(excinfo.value)


def test_empty_pool_raises():
    with pytest.raises(ValidationError):
        OptimizationService().optimize(request_for(pool=[]))


def test_optimize_then_simulate():
    service = OptimizationService()
    optimized = service.optimize(request_for(num_lineups=3))
    result = service.simulate(optimized.lineups, contest_type="cash", iterations=2000,
                              correlation=optimized.correlation, seed=9, analytics=optimized.analytics)

    assert isinstance(result, SimulationResult)
    assert len(result.lineups) == 3
    assert result.seed == 9
    assert 0.0 <= result.portfolio.any_cash_rate <= 1.0


def test_seeded_simulations_are_cached():
    service = OptimizationService(cache=InMemoryResultCache())
    lineups = service.optimize(request_for(num_lineups=2)).lineups

    first = service.simulate(lineups, iterations=500, seed=4)
    second = service.simulate(lineups, iterations=500, seed=4)
    unseeded = service.simulate(lineups, iterations=500)

    assert not first.cache_hit
    assert second.cache_hit
    assert not unseeded.cache_hit


def test_simulation_with_zero_iterations_raises():
    service = OptimizationService()
    lineups = service.optimize(request_for()).lineups
    with pytest.raises(ValidationError):
        service.simulate(lineups, iterations=0)


def test_budget_limited_search_is_partial_and_not_cached(monkeypatch):
    monkeypatch.setitem(PROFILES, PerformanceMode.SPEED,
                        SearchProfile(salary_buckets=200, candidates_per_slot=None, max_states=50))
    pool = [Player(player_id=i, positions=("G",), salary=5000, projection=10.0 + i) for i in range(1, 31)]
    cache = InMemoryResultCache()
    service = OptimizationService(cache=cache)
    request = OptimizationRequest(pool=pool, constraints=Constraints(salary_cap=50000, positions={"G": 6}),
                                  mode="speed")

    result = service.optimize(request)

    assert isinstance(result, OptimizationResult)
    assert result.partial
    assert len(result.lineups) == 1
    assert len(cache) == 0
    assert not service.optimize(request).cache_hit
