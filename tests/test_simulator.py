import numpy as np
import pytest

from dfs_sim.cancellation import CancellationToken
from dfs_sim.errors import ValidationError
from dfs_sim.optimizer.correlation import GroupingRule, build_correlation_matrix
from dfs_sim.optimizer.models import GeneratedLineup, Player
from dfs_sim.simulator.contest import ContestType, PayoutTable, rank_entries
from dfs_sim.simulator.models import SimulationConfig
from dfs_sim.simulator.monte_carlo import MonteCarloSimulator, draw_player_scores


def make_pool():
    return [
        Player(player_id=i, positions=("G",), salary=5000, projection=15.0 + 2 * i,
               floor=5.0 + 2 * i, ceiling=25.0 + 2 * i, team="BOS" if i <= 3 else "NYK",
               opponent="NYK" if i <= 3 else "BOS")
        for i in range(1, 9)
    ]


def make_lineups(pool):
    by_id = {p.player_id: p for p in pool}
    return [GeneratedLineup.from_players([by_id[i] for i in ids]) for ids in ((1, 2, 3), (4, 5, 6), (2, 5, 8))]


def run(config, pool=None):
    pool = pool or make_pool()
    return MonteCarloSimulator().simulate(make_lineups(pool), config)


def test_same_seed_same_results_regardless_of_workers():
    first = run(SimulationConfig(iterations=3000, seed=42, workers=1, chunk_size=500))
    second = run(SimulationConfig(iterations=3000, seed=42, workers=4, chunk_size=500))

    assert first.seed == second.seed == 42
    for a, b in zip(first.lineups, second.lineups):
        assert a.percentiles == b.percentiles
        assert a.expected_score == b.expected_score
        assert a.cash_rate == b.cash_rate


def test_unseeded_runs_report_their_seed():
    first = run(SimulationConfig(iterations=500, chunk_size=100))
    replay = run(SimulationConfig(iterations=500, chunk_size=100, seed=first.seed))

    assert first.lineups[0].percentiles == replay.lineups[0].percentiles


def test_percentiles_are_ordered_and_rates_bounded():
    result = run(SimulationConfig(iterations=2000, seed=7, contest_type=ContestType.CASH))

    assert result.iterations_completed == 2000
    assert not result.partial
    for lineup in result.lineups:
        values = [lineup.percentiles[k] for k in ("p10", "p25", "p50", "p75", "p90", "p95", "p99")]
        assert values == sorted(values)
        assert lineup.min_score <= values[0] and values[-1] <= lineup.max_score
        assert 0.0 <= lineup.cash_rate <= 1.0
        assert 0.0 <= lineup.win_rate <= lineup.top_rates["top_50"] <= 1.0
        assert lineup.top_rates["top_1"] <= lineup.top_rates["top_10"] <= lineup.top_rates["top_20"]


def test_expected_score_tracks_projection():
    pool = make_pool()
    result = run(SimulationConfig(iterations=20000, seed=3), pool)
    lineup = result.lineups[0]

    assert lineup.expected_score == pytest.approx(17.0 + 19.0 + 21.0, abs=0.5)
    assert lineup.std_dev == pytest.approx(np.sqrt(lineup.variance))


def test_single_entry_competes_against_generated_field():
    pool = make_pool()
    lineup = make_lineups(pool)[:1]
    config = SimulationConfig(iterations=2000, seed=1, contest_type=ContestType.CASH, entry_fee=1000,
                              field_size=100, field_pool=pool)
    result = MonteCarloSimulator().simulate(lineup, config)

    assert result.field_size == 101
    assert 0.0 < result.lineups[0].cash_rate < 1.0
    assert result.lineups[0].roi < 0.8
    assert result.portfolio.total_cost == 1000


def test_generated_field_is_reproducible_for_a_seed():
    pool = make_pool()
    lineup = make_lineups(pool)[:1]
    first = MonteCarloSimulator().simulate(lineup, SimulationConfig(iterations=500, seed=8, field_pool=pool))
    second = MonteCarloSimulator().simulate(lineup, SimulationConfig(iterations=500, seed=8, field_pool=pool))

    assert first.lineups[0].to_dict() == second.lineups[0].to_dict()


def test_zero_field_size_ranks_only_the_entries():
    pool = make_pool()
    lineup = make_lineups(pool)[:1]
    result = MonteCarloSimulator().simulate(
        lineup, SimulationConfig(iterations=200, seed=1, contest_type=ContestType.CASH, field_size=0))

    assert result.field_size == 1
    assert result.lineups[0].cash_rate == 1.0


def test_field_lineups_join_the_ranking():
    pool = make_pool()
    lineups = make_lineups(pool)
    config = SimulationConfig(iterations=1000, seed=5, field_lineups=lineups[1:])
    result = MonteCarloSimulator().simulate(lineups[:1], config)

    assert result.field_size == 3
    assert len(result.lineups) == 1
    assert result.portfolio.total_entries == 1


def test_wave_correlation_matches_coefficient():
    pool = [
        Player(player_id=1, positions=("G",), salary=5000, projection=30.0, floor=20.0, ceiling=40.0,
               team="AAA", wave="early"),
        Player(player_id=2, positions=("G",), salary=5000, projection=30.0, floor=20.0, ceiling=40.0,
               team="BBB", wave="early"),
    ]
    correlation = build_correlation_matrix(pool)
    assert correlation.get(1, 2) == pytest.approx(0.3)

    draws = draw_player_scores(pool, 10000, seed=11, correlation=correlation)
    assert draws.shape == (10000, 2)
    observed = np.corrcoef(draws[:, 0], draws[:, 1])[0, 1]
    assert observed == pytest.approx(0.3, abs=0.05)
    assert draws[:, 0].mean() == pytest.approx(30.0, abs=0.5)


def test_uncorrelated_players_stay_independent():
    pool = [
        Player(player_id=1, positions=("G",), salary=5000, projection=30.0, floor=20.0, ceiling=40.0, team="AAA"),
        Player(player_id=2, positions=("G",), salary=5000, projection=30.0, floor=20.0, ceiling=40.0, team="BBB"),
    ]
    draws = draw_player_scores(pool, 10000, seed=11)
    assert abs(np.corrcoef(draws[:, 0], draws[:, 1])[0, 1]) < 0.05


def test_zero_iterations_rejected():
    with pytest.raises(ValidationError) as excinfo:
        run(SimulationConfig(iterations=0))
    assert "iterations must be positive" in str(excinfo.value)


def test_empty_lineups_rejected():
    with pytest.raises(ValidationError):
        MonteCarloSimulator().simulate([], SimulationConfig(iterations=10))


def test_cancelled_simulation_is_partial():
    token = CancellationToken()
    token.cancel()
    pool = make_pool()
    result = MonteCarloSimulator().simulate(make_lineups(pool), SimulationConfig(iterations=1000, seed=1), token=token)

    assert result.partial
    assert result.iterations_completed == 0
    assert result.lineups == []


def test_rank_entries_breaks_ties_by_entry_order():
    ranks = rank_entries(np.array([[10.0, 12.0, 10.0], [5.0, 1.0, 7.0]]))
    assert ranks.tolist() == [[2, 1, 3], [2, 3, 1]]


def test_gpp_payouts_are_top_heavy():
    table = PayoutTable(ContestType.GPP, field_size=1000, entry_fee=100)
    payouts = table.payout_for_ranks(np.array([1, 2, 10, 50, 100, 200, 201]))
    assert payouts.tolist() == [10000.0, 2000.0, 2000.0, 500.0, 300.0, 150.0, 0.0]
    assert table.cash_line == 200


def test_opponent_correlation_is_negative_in_draws():
    pool = [
        Player(player_id=1, positions=("G",), salary=5000, projection=30.0, floor=20.0, ceiling=40.0,
               team="AAA", opponent="BBB"),
        Player(player_id=2, positions=("G",), salary=5000, projection=30.0, floor=20.0, ceiling=40.0,
               team="BBB", opponent="AAA"),
    ]
    correlation = build_correlation_matrix(pool, [GroupingRule("opponent", -0.25)])
    draws = draw_player_scores(pool, 10000, seed=13, correlation=correlation)

    observed = np.corrcoef(draws[:, 0], draws[:, 1])[0, 1]
    assert observed == pytest.approx(-0.25, abs=0.05)
