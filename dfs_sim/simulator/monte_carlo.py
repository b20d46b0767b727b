"""
Correlated Monte Carlo contest simulation.

Each player's simulated score is projection + volatility * z. The standard
normal z mixes one shared shock per correlation group with an individual
draw, weighted so Var(z) = 1; two players therefore co-move with exactly the
pair coefficient held in the correlation matrix.

Iterations are split into fixed-size chunks. Chunk i always draws from the
i-th child of SeedSequence(seed), so a seeded run is bit-identical no matter
how many workers execute the chunks. The generated opponent field draws from
the child after the last chunk.
"""
import logging
import math
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from dfs_sim.cancellation import CancellationToken
from dfs_sim.optimizer.analytics import AnalyticsEngine, BatchAnalytics
from dfs_sim.optimizer.correlation import CorrelationMatrix, build_correlation_matrix
from dfs_sim.optimizer.models import GeneratedLineup, Player
from dfs_sim.progress import ProgressTracker
from .field import generate_field, slot_template
from .contest import TOP_FRACTIONS, PayoutTable, rank_cutoff, rank_entries
from .models import PERCENTILES, LineupSimulation, PortfolioSummary, SimulationConfig, SimulationResult

logger = logging.getLogger(__name__)


class ScoreModel:
    """Vectorized correlated score draws for a fixed set of players"""

    def __init__(self, players: Sequence[Player], correlation: CorrelationMatrix,
                 analytics: BatchAnalytics):
        self.player_ids = [p.player_id for p in players]
        index = {pid: i for i, pid in enumerate(self.player_ids)}

        self.mean = np.array([analytics[pid].projection for pid in self.player_ids])
        self.sigma = np.array([analytics[pid].volatility for pid in self.player_ids])

        # Dense loadings over the groups that touch these players
        columns: Dict[int, int] = {}
        entries = []
        for pid in self.player_ids:
            for group_index, loading in correlation.loadings(pid):
                column = columns.setdefault(group_index, len(columns))
                entries.append((index[pid], column, loading))
        self.loadings = np.zeros((len(self.player_ids), len(columns)))
        for row, column, loading in entries:
            self.loadings[row, column] = loading

        shared = np.sum(self.loadings ** 2, axis=1)
        self.idiosyncratic = np.sqrt(np.clip(1.0 - shared, 0.0, None))

    @property
    def num_groups(self) -> int:
        return self.loadings.shape[1]

    def draw(self, rng: np.random.Generator, size: int) -> np.ndarray:
        """(size, players) matrix of simulated fantasy points"""
        shocks = rng.standard_normal((size, self.num_groups))
        own = rng.standard_normal((size, len(self.player_ids)))
        z = shocks @ self.loadings.T + own * self.idiosyncratic
        return self.mean + z * self.sigma


@dataclass
class _Chunk:
    index: int
    scores: np.ndarray  # (size, user lineups)
    ranks: np.ndarray   # (size, user lineups)


def _chunk_sizes(iterations: int, chunk_size: int) -> List[int]:
    full, rest = divmod(iterations, chunk_size)
    return [chunk_size] * full + ([rest] if rest else [])


def draw_player_scores(players: Sequence[Player], iterations: int, seed: Optional[int] = None,
                       correlation: Optional[CorrelationMatrix] = None,
                       analytics: Optional[BatchAnalytics] = None, chunk_size: int = 1000) -> np.ndarray:
    """Raw correlated draws, (iterations, players) in pool order"""
    if correlation is None:
        correlation = build_correlation_matrix(players)
    if analytics is None:
        analytics = AnalyticsEngine().analyze_pool(players)
    model = ScoreModel(players, correlation, analytics)

    sizes = _chunk_sizes(iterations, chunk_size)
    sequences = np.random.SeedSequence(seed).spawn(len(sizes))
    blocks = [model.draw(np.random.default_rng(seq), size) for seq, size in zip(sequences, sizes)]
    return np.concatenate(blocks, axis=0) if blocks else np.empty((0, len(players)))


def _lineup_players(lineups: Sequence[GeneratedLineup]) -> List[Player]:
    players: Dict[int, Player] = {}
    for lineup in lineups:
        for player in lineup.players:
            players.setdefault(player.player_id, player)
    return list(players.values())


class MonteCarloSimulator:
    def simulate(self, lineups: Sequence[GeneratedLineup], config: SimulationConfig,
                 analytics: Optional[BatchAnalytics] = None, token: Optional[CancellationToken] = None,
                 progress: Optional[ProgressTracker] = None) -> SimulationResult:
        config.validate(lineups)
        started = time.monotonic()
        lineups = list(lineups)
        num_user = len(lineups)

        seed = config.seed if config.seed is not None else int(np.random.SeedSequence().entropy)
        sizes = _chunk_sizes(config.iterations, config.chunk_size)
        # One child per chunk plus a trailing one for the generated field
        sequences = np.random.SeedSequence(seed).spawn(len(sizes) + 1)

        field_lineups = list(config.field_lineups)
        if not field_lineups and config.field_size > 0:
            field_pool = list(config.field_pool) or _lineup_players(lineups)
            field_lineups = generate_field(field_pool, slot_template(lineups), config.field_size,
                                           np.random.default_rng(sequences[-1]), config.contest_type,
                                           config.salary_cap)
        entries = lineups + field_lineups

        pool = _lineup_players(entries)

        if analytics is None:
            analytics = AnalyticsEngine().analyze_pool(pool)
        else:
            missing = [p for p in pool if p.player_id not in analytics]
            if missing:
                extra = AnalyticsEngine().analyze_pool(missing)
                analytics.players.update(extra.players)
                analytics.degraded.extend(extra.degraded)
        correlation = config.correlation if config.correlation is not None else build_correlation_matrix(pool)
        model = ScoreModel(pool, correlation, analytics)

        column = {pid: i for i, pid in enumerate(model.player_ids)}
        membership = np.zeros((len(entries), len(pool)))
        for row, lineup in enumerate(entries):
            for player in lineup.players:
                membership[row, column[player.player_id]] = 1.0

        if token is None:
            token = CancellationToken.with_timeout(config.timeout)
        if progress is not None:
            progress.total_steps = len(sizes)
            progress.start(f"Simulating {num_user} lineups over {config.iterations} iterations")

        def run_chunk(i):
            if token.cancelled:
                return None
            rng = np.random.default_rng(sequences[i])
            player_scores = model.draw(rng, sizes[i])
            lineup_scores = player_scores @ membership.T
            ranks = rank_entries(lineup_scores)
            return _Chunk(i, lineup_scores[:, :num_user], ranks[:, :num_user])

        logger.info(f"Simulation: {num_user} lineups, field {len(entries)}, {config.iterations} iterations "
                    f"in {len(sizes)} chunks on {config.workers} workers, seed={seed}")

        completed: Dict[int, _Chunk] = {}
        executor = ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="monte-carlo")
        try:
            pending = {executor.submit(run_chunk, i) for i in range(len(sizes))}
            while pending:
                done, pending = wait(pending, timeout=self._poll_interval(token), return_when=FIRST_COMPLETED)
                for future in done:
                    chunk = future.result()
                    if chunk is not None:
                        completed[chunk.index] = chunk
                        if progress is not None:
                            progress.advance(f"Completed chunk {len(completed)} of {len(sizes)}")
                if pending and token.cancelled:
                    logger.warning(f"Simulation stopped early: {len(completed)}/{len(sizes)} chunks completed")
                    for future in pending:
                        future.cancel()
                    break
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        chunks = [completed[i] for i in sorted(completed)]
        iterations_done = sum(c.scores.shape[0] for c in chunks)
        partial = iterations_done < config.iterations

        if chunks:
            scores = np.concatenate([c.scores for c in chunks], axis=0)
            ranks = np.concatenate([c.ranks for c in chunks], axis=0)
            results, portfolio = self._summarize(lineups, scores, ranks, len(entries), config)
        else:
            results, portfolio = [], PortfolioSummary(total_entries=num_user, total_cost=config.entry_fee * num_user)

        elapsed = time.monotonic() - started
        if progress is not None:
            progress.complete(f"Simulated {iterations_done} iterations in {elapsed:.2f}s")
        logger.info(f"Simulation finished: {iterations_done}/{config.iterations} iterations in {elapsed:.2f}s"
                    + (" (partial)" if partial else ""))

        return SimulationResult(
            lineups=results,
            portfolio=portfolio,
            seed=seed,
            contest_type=config.contest_type,
            iterations_requested=config.iterations,
            iterations_completed=iterations_done,
            field_size=len(entries),
            partial=partial,
            elapsed=elapsed,
            degraded_players=list(analytics.degraded),
        )

    @staticmethod
    def _poll_interval(token: CancellationToken) -> float:
        remaining = token.remaining()
        return 0.25 if remaining is None else min(0.25, max(remaining, 0.01))

    def _summarize(self, lineups, scores: np.ndarray, ranks: np.ndarray, field_size: int,
                   config: SimulationConfig):
        fee = config.entry_fee
        table = PayoutTable(config.contest_type, field_size, fee)
        payouts = table.payout_for_ranks(ranks)
        iterations = scores.shape[0]

        quantiles = np.percentile(scores, PERCENTILES, axis=0)
        means = scores.mean(axis=0)
        variances = scores.var(axis=0, ddof=1) if iterations > 1 else np.zeros(scores.shape[1])

        results = []
        for i, lineup in enumerate(lineups):
            paid = payouts[:, i]
            results.append(LineupSimulation(
                index=i,
                player_ids=[p.player_id for p in lineup.players],
                expected_score=float(means[i]),
                variance=float(variances[i]),
                std_dev=float(math.sqrt(variances[i])),
                min_score=float(scores[:, i].min()),
                max_score=float(scores[:, i].max()),
                percentiles={f"p{q}": float(quantiles[k, i]) for k, q in enumerate(PERCENTILES)},
                cash_rate=float(np.mean(paid > 0)),
                roi=float(np.mean((paid - fee) / fee)),
                expected_payout=float(paid.mean()),
                top_rates={
                    name: float(np.mean(ranks[:, i] <= rank_cutoff(fraction, field_size)))
                    for name, fraction in TOP_FRACTIONS.items()
                },
                win_rate=float(np.mean(ranks[:, i] == 1)),
            ))

        cost = fee * len(lineups)
        total_paid = payouts.sum(axis=1)
        profit = total_paid - cost
        profit_std = float(profit.std())
        rois = [r.roi for r in results]
        portfolio = PortfolioSummary(
            total_entries=len(lineups),
            total_cost=cost,
            expected_payout=float(total_paid.mean()),
            roi=float(profit.mean() / cost),
            any_cash_rate=float(np.mean((payouts > 0).any(axis=1))),
            average_cash_rate=float(np.mean([r.cash_rate for r in results])),
            best_roi=max(rois),
            worst_roi=min(rois),
            mean_best_score=float(scores.max(axis=1).mean()),
            sharpe=float(profit.mean() / profit_std) if profit_std > 0 else 0.0,
        )
        return results, portfolio
