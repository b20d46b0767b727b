"""
Contest payout model.

Payouts are expressed as multiples of the entry fee and paid by finishing
rank within the simulated field. A tier pays every rank up to
max(1, floor(top_fraction * field_size)).
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np


class ContestType(str, Enum):
    CASH = "cash"
    GPP = "gpp"


@dataclass(frozen=True)
class PayoutTier:
    top_fraction: float
    multiplier: float


PAYOUT_STRUCTURES: Dict[ContestType, Tuple[PayoutTier, ...]] = {
    # Double-up: top half roughly doubles the entry after rake
    ContestType.CASH: (PayoutTier(0.5, 1.8),),
    ContestType.GPP: (
        PayoutTier(0.001, 100.0),
        PayoutTier(0.01, 20.0),
        PayoutTier(0.05, 5.0),
        PayoutTier(0.1, 3.0),
        PayoutTier(0.2, 1.5),
    ),
}

TOP_FRACTIONS = {"top_1": 0.01, "top_10": 0.10, "top_20": 0.20, "top_50": 0.50}


def rank_cutoff(fraction: float, field_size: int) -> int:
    return max(1, int(math.floor(fraction * field_size + 1e-9)))


class PayoutTable:
    def __init__(self, contest_type: ContestType, field_size: int, entry_fee: int,
                 tiers: Optional[Sequence[PayoutTier]] = None):
        self.contest_type = ContestType(contest_type)
        self.field_size = field_size
        self.entry_fee = entry_fee
        tiers = sorted(tiers or PAYOUT_STRUCTURES[self.contest_type], key=lambda t: t.top_fraction)
        self.cutoffs = np.array([rank_cutoff(t.top_fraction, field_size) for t in tiers], dtype=np.int64)
        # Trailing zero pays everyone past the last cutoff
        self.payouts = np.array([t.multiplier * entry_fee for t in tiers] + [0.0])

    @property
    def cash_line(self) -> int:
        """Worst rank that still gets paid"""
        return int(self.cutoffs[-1])

    def payout_for_ranks(self, ranks: np.ndarray) -> np.ndarray:
        # First tier whose cutoff covers the rank; equal cutoffs resolve to the richer tier
        return self.payouts[np.searchsorted(self.cutoffs, ranks, side="left")]


def rank_entries(scores: np.ndarray) -> np.ndarray:
    """
    1-based finishing ranks for an (iterations, entries) score matrix.
    Ties go to the earlier entry.
    """
    order = np.argsort(-scores, axis=1, kind="stable")
    ranks = np.empty(scores.shape, dtype=np.int32)
    positions = np.broadcast_to(np.arange(1, scores.shape[1] + 1, dtype=np.int32), scores.shape)
    np.put_along_axis(ranks, order, positions, axis=1)
    return ranks
