from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .analytics import PlayerAnalytics


class Strategy(str, Enum):
    CEILING = "ceiling"
    FLOOR = "floor"
    BALANCED = "balanced"
    CONTRARIAN = "contrarian"
    CORRELATION = "correlation"
    VALUE = "value"


@dataclass(frozen=True)
class StrategyWeights:
    ceiling_probability: float = 0.5
    floor_probability: float = 0.5
    balanced_projection: float = 0.5
    balanced_floor: float = 0.25
    balanced_ceiling: float = 0.25
    contrarian_penalty: float = 15.0
    correlation_bonus: float = 0.1

    @classmethod
    def from_settings(cls, settings) -> "StrategyWeights":
        return cls(
            ceiling_probability=settings.CEILING_PROBABILITY_WEIGHT,
            floor_probability=settings.FLOOR_PROBABILITY_WEIGHT,
            balanced_projection=settings.BALANCED_PROJECTION_WEIGHT,
            balanced_floor=settings.BALANCED_FLOOR_WEIGHT,
            balanced_ceiling=settings.BALANCED_CEILING_WEIGHT,
            contrarian_penalty=settings.CONTRARIAN_OWNERSHIP_PENALTY,
            correlation_bonus=settings.CORRELATION_BONUS_WEIGHT,
        )


def ceiling_score(a: PlayerAnalytics, w: StrategyWeights) -> float:
    # GPP upside
    return a.ceiling + w.ceiling_probability * a.ceiling_probability * a.projection


def floor_score(a: PlayerAnalytics, w: StrategyWeights) -> float:
    # Cash game safety: reward a low chance of busting below the floor
    return a.floor + w.floor_probability * (1.0 - a.floor_probability) * a.projection


def balanced_score(a: PlayerAnalytics, w: StrategyWeights) -> float:
    total = w.balanced_projection + w.balanced_floor + w.balanced_ceiling
    return (w.balanced_projection * a.projection
            + w.balanced_floor * a.floor
            + w.balanced_ceiling * a.ceiling) / total


def contrarian_score(a: PlayerAnalytics, w: StrategyWeights) -> float:
    ownership = a.ownership / 100.0
    return a.projection - w.contrarian_penalty * ownership ** 2


def correlation_base_score(a: PlayerAnalytics, w: StrategyWeights) -> float:
    return a.projection


def value_score(a: PlayerAnalytics, w: StrategyWeights) -> float:
    return a.value


def correlation_pair_bonus(a: PlayerAnalytics, b: PlayerAnalytics, coefficient: float,
                           w: StrategyWeights) -> float:
    """Bonus for rostering a correlated pair together, counted once per pair"""
    return w.correlation_bonus * coefficient * (a.projection + b.projection) / 2.0


@dataclass(frozen=True)
class Scorer:
    strategy: Strategy
    player_score: Callable[[PlayerAnalytics, StrategyWeights], float]
    pair_bonus: Optional[Callable[[PlayerAnalytics, PlayerAnalytics, float, StrategyWeights], float]] = None

    @property
    def pairwise(self) -> bool:
        return self.pair_bonus is not None


SCORERS = {
    Strategy.CEILING: Scorer(Strategy.CEILING, ceiling_score),
    Strategy.FLOOR: Scorer(Strategy.FLOOR, floor_score),
    Strategy.BALANCED: Scorer(Strategy.BALANCED, balanced_score),
    Strategy.CONTRARIAN: Scorer(Strategy.CONTRARIAN, contrarian_score),
    Strategy.CORRELATION: Scorer(Strategy.CORRELATION, correlation_base_score, correlation_pair_bonus),
    Strategy.VALUE: Scorer(Strategy.VALUE, value_score),
}


def resolve_scorer(strategy) -> Scorer:
    return SCORERS[Strategy(strategy)]
