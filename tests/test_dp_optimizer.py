import pytest

from dfs_sim.cancellation import CancellationToken
from dfs_sim.errors import ValidationError
from dfs_sim.optimizer.dp_optimizer import LineupOptimizer, SearchProfile, SearchStatus
from dfs_sim.optimizer.models import Constraints, Player, StackRule, lineup_violations
from dfs_sim.optimizer.strategies import Strategy


def guard_pool(n=8):
    # Salaries 5500..9000, projections 21..28
    return [
        Player(player_id=i, positions=("G",), salary=5000 + 500 * i, projection=20.0 + i, name=f"Guard {i}")
        for i in range(1, n + 1)
    ]


class CountdownToken(CancellationToken):
    """Reports cancelled on the n-th poll"""

    def __init__(self, polls):
        super().__init__()
        self.polls = polls

    @property
    def cancelled(self):
        self.polls -= 1
        return self.polls <= 0


def test_eight_player_pool_six_guards():
    constraints = Constraints(salary_cap=50000, positions={"G": 6})
    result = LineupOptimizer(guard_pool(), constraints, Strategy.BALANCED).solve()

    assert result.status == SearchStatus.OPTIMAL
    lineup = result.lineup
    assert len(lineup.player_ids) == 6
    assert lineup.total_salary() <= 50000
    assert lineup_violations(lineup, constraints) == []
    # Balanced score equals projection when floor and ceiling are symmetric
    assert lineup.player_ids == {3, 4, 5, 6, 7, 8}


def test_cap_below_cheapest_combination_is_infeasible():
    constraints = Constraints(salary_cap=30000, positions={"G": 6})
    result = LineupOptimizer(guard_pool(), constraints).solve()

    assert result.status == SearchStatus.INFEASIBLE
    assert result.lineup is None
    assert "salary cap" in result.reason


def test_locked_and_excluded_players():
    constraints = Constraints(salary_cap=50000, positions={"G": 6}, locked={1}, excluded={8})
    result = LineupOptimizer(guard_pool(), constraints).solve()

    assert result.found
    assert 1 in result.lineup.player_ids
    assert 8 not in result.lineup.player_ids
    assert result.lineup.player_ids == {1, 3, 4, 5, 6, 7}


def test_extra_locks_that_cannot_be_placed_are_infeasible():
    constraints = Constraints(salary_cap=50000, positions={"G": 1})
    result = LineupOptimizer(guard_pool(2), constraints).solve(extra_locked={1, 2})
    assert result.status == SearchStatus.INFEASIBLE


def test_tie_break_prefers_lower_salary():
    pool = [
        Player(player_id=1, positions=("G",), salary=6000, projection=20.0),
        Player(player_id=2, positions=("G",), salary=5000, projection=20.0),
    ]
    constraints = Constraints(salary_cap=50000, positions={"G": 1})
    result = LineupOptimizer(pool, constraints, Strategy.BALANCED).solve()
    assert result.lineup.player_ids == {2}


def test_tie_break_falls_back_to_pool_order():
    pool = [
        Player(player_id=7, positions=("G",), salary=5000, projection=20.0),
        Player(player_id=3, positions=("G",), salary=5000, projection=20.0),
    ]
    constraints = Constraints(salary_cap=50000, positions={"G": 1})
    result = LineupOptimizer(pool, constraints).solve()
    assert result.lineup.player_ids == {7}


def test_value_strategy_separates_close_value_scores():
    # Values 0.0020000 vs 0.0019999: the better value wins over the higher projection
    pool = [
        Player(player_id=1, positions=("G",), salary=5000, projection=10.0),
        Player(player_id=2, positions=("G",), salary=5001, projection=10.0015),
    ]
    constraints = Constraints(salary_cap=50000, positions={"G": 1})
    result = LineupOptimizer(pool, constraints, Strategy.VALUE).solve()
    assert result.lineup.player_ids == {1}


def test_flex_slots_accept_base_positions():
    pool = [
        Player(player_id=1, positions=("PG",), salary=8000, projection=40.0),
        Player(player_id=2, positions=("PG",), salary=7000, projection=35.0),
        Player(player_id=3, positions=("SG",), salary=6000, projection=30.0),
        Player(player_id=4, positions=("SG",), salary=5000, projection=10.0),
        Player(player_id=5, positions=("C",), salary=5000, projection=50.0),
    ]
    constraints = Constraints(
        salary_cap=30000,
        positions={"PG": 1, "SG": 1, "G": 1},
        flex_slots={"G": ("PG", "SG")},
    )
    result = LineupOptimizer(pool, constraints).solve()

    assert result.lineup.player_ids == {1, 2, 3}
    assert lineup_violations(result.lineup, constraints) == []
    slots = dict((player.player_id, slot) for slot, player in result.lineup.slots)
    assert slots[3] == "SG"


def test_team_stack_minimum():
    teams = {1: "AAA", 2: "AAA", 3: "AAA", 4: "BBB", 5: "CCC", 6: "DDD", 7: "EEE", 8: "FFF"}
    pool = [
        Player(player_id=i, positions=("G",), salary=5000, projection=20.0 + i, team=teams[i])
        for i in range(1, 9)
    ]
    constraints = Constraints(salary_cap=50000, positions={"G": 4},
                              stacking=(StackRule(kind="team", min_count=3),))
    result = LineupOptimizer(pool, constraints).solve()

    assert result.lineup.player_ids == {1, 2, 3, 8}
    assert lineup_violations(result.lineup, constraints) == []


def test_team_stack_maximum():
    pool = [
        Player(player_id=i, positions=("G",), salary=5000, projection=20.0 + i, team="XXX" if i > 5 else f"T{i}")
        for i in range(1, 9)
    ]
    constraints = Constraints(salary_cap=50000, positions={"G": 4},
                              stacking=(StackRule(kind="team", max_count=1),))
    result = LineupOptimizer(pool, constraints).solve()

    teams = [player.team for player in result.lineup.players]
    assert teams.count("XXX") == 1
    assert result.lineup.player_ids == {3, 4, 5, 8}


def test_diversity_avoids_previous_lineup():
    constraints = Constraints(salary_cap=50000, positions={"G": 6})
    optimizer = LineupOptimizer(guard_pool(), constraints)
    first = optimizer.solve().lineup
    second = optimizer.solve(avoid=[first.player_ids], max_overlap=4).lineup

    assert len(first.player_ids & second.player_ids) <= 4


def test_correlation_strategy_rewards_teammates():
    pool = [
        Player(player_id=1, positions=("G",), salary=5000, projection=20.0, team="AAA"),
        Player(player_id=2, positions=("G",), salary=5000, projection=20.0, team="AAA"),
        Player(player_id=3, positions=("G",), salary=5000, projection=20.3, team="BBB"),
        Player(player_id=4, positions=("G",), salary=5000, projection=19.0, team="CCC"),
    ]
    constraints = Constraints(salary_cap=50000, positions={"G": 2})

    plain = LineupOptimizer(pool, constraints, Strategy.BALANCED).solve().lineup
    stacked = LineupOptimizer(pool, constraints, Strategy.CORRELATION).solve().lineup

    assert plain.player_ids == {1, 3}
    # Teammate bonus 0.1 * 0.2 * 20 = 0.4 outweighs the 0.3 projection gap
    assert stacked.player_ids == {1, 2}


def test_pre_cancelled_search_is_exhausted():
    profile = SearchProfile(salary_buckets=500, candidates_per_slot=None, max_states=1_000_000, check_interval=1)
    token = CancellationToken()
    token.cancel()
    constraints = Constraints(salary_cap=50000, positions={"G": 6})
    result = LineupOptimizer(guard_pool(), constraints, profile=profile).solve(token=token)

    assert result.status == SearchStatus.EXHAUSTED
    assert result.cancelled
    assert result.lineup is None


def test_cancellation_returns_incumbent_as_partial():
    profile = SearchProfile(salary_buckets=500, candidates_per_slot=None, max_states=1_000_000, check_interval=1)
    constraints = Constraints(salary_cap=50000, positions={"G": 6})
    result = LineupOptimizer(guard_pool(), constraints, profile=profile).solve(token=CountdownToken(10))

    assert result.status == SearchStatus.PARTIAL
    assert result.partial
    assert result.lineup is not None
    assert lineup_violations(result.lineup, constraints) == []


@pytest.mark.parametrize("constraints, message", [
    (Constraints(salary_cap=0, positions={"G": 6}), "salary_cap must be positive"),
    (Constraints(salary_cap=50000, positions={}), "position requirements are missing"),
    (Constraints(salary_cap=50000, positions={"G": 6}, locked={99}), "locked players not in pool: [99]"),
    (Constraints(salary_cap=50000, positions={"G": 6}, locked={1}, excluded={1}), "both locked and excluded"),
])
def test_malformed_constraints_raise(constraints, message):
    with pytest.raises(ValidationError) as excinfo:
        LineupOptimizer(guard_pool(), constraints)
    assert message in str(excinfo.value)
