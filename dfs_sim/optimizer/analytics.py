import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
from scipy.stats import norm

from .models import Player

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlayerAnalytics:
    player_id: int
    projection: float
    floor: float
    ceiling: float
    volatility: float
    value: float
    ceiling_probability: float
    floor_probability: float
    consistency: float
    ownership: float
    degraded: bool = False


@dataclass
class BatchAnalytics:
    players: Dict[int, PlayerAnalytics] = field(default_factory=dict)
    degraded: List[int] = field(default_factory=list)

    def __getitem__(self, player_id: int) -> PlayerAnalytics:
        return self.players[player_id]

    def __contains__(self, player_id: int) -> bool:
        return player_id in self.players

    def __len__(self):
        return len(self.players)


def spread_factor(projection: float) -> float:
    """Default floor/ceiling spread as a fraction of projection"""
    if projection > 40:
        return 0.25
    if projection < 20:
        return 0.45
    return 0.35


class AnalyticsEngine:
    """
    Derives ceiling, floor, volatility and value for each player.

    Floor and ceiling come from the player when present, else from recent
    history (15th / 85th percentile), else from a projection-based spread.
    A player that cannot be analysed gets defaults; the batch always completes.
    """

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform

    def analyze_pool(self, players: Sequence[Player],
                     history: Optional[Mapping[int, Sequence[float]]] = None) -> BatchAnalytics:
        history = history or {}
        batch = BatchAnalytics()

        for player in players:
            try:
                analytics = self.analyze_player(player, history.get(player.player_id))
            except (ValueError, ArithmeticError) as e:
                logger.warning(f"Analytics failed for player {player.player_id}, using defaults: {e}")
                analytics = self.default_analytics(player)
            batch.players[player.player_id] = analytics
            if analytics.degraded:
                batch.degraded.append(player.player_id)

        if batch.degraded:
            logger.info(f"Analytics: {len(batch.degraded)}/{len(players)} players on default estimates")
        return batch

    def analyze_player(self, player: Player, history: Optional[Sequence[float]] = None) -> PlayerAnalytics:
        projection = float(player.projection)
        if not math.isfinite(projection):
            raise ValueError(f"projection is not a finite number: {player.projection}")

        degraded = False
        floor, ceiling = player.floor, player.ceiling
        if floor is None and ceiling is None:
            if history is not None and len(history) >= 2:
                floor, ceiling = self._floor_ceiling_from_history(projection, history)
            else:
                floor, ceiling = self._estimate_floor_ceiling(projection)
                degraded = True
        elif floor is None:
            floor = 2 * projection - ceiling
        elif ceiling is None:
            ceiling = 2 * projection - floor
        floor, ceiling = float(floor), float(ceiling)
        if floor > ceiling:
            raise ValueError(f"floor {floor} is above ceiling {ceiling}")

        if player.volatility is not None:
            if player.volatility < 0:
                raise ValueError("volatility must be non-negative")
            volatility = float(player.volatility)
        elif ceiling == floor:
            volatility = 0.0
        else:
            volatility = (ceiling - floor) / 2.0

        return self._build(player, projection, floor, ceiling, volatility, degraded)

    def default_analytics(self, player: Player) -> PlayerAnalytics:
        projection = float(player.projection) if math.isfinite(player.projection) else 0.0
        floor, ceiling = self._estimate_floor_ceiling(projection)
        return self._build(player, projection, floor, ceiling, (ceiling - floor) / 2.0, True)

    def _build(self, player, projection, floor, ceiling, volatility, degraded):
        salary = player.salary_for(self.platform)
        value = projection / salary if salary > 0 else 0.0

        if volatility == 0.0:
            # Zero-variance player always scores the projection
            ceiling_probability = 1.0 if projection >= ceiling else 0.0
            floor_probability = 1.0 if projection <= floor else 0.0
            consistency = 1.0
        else:
            ceiling_probability = float(norm.sf(ceiling, loc=projection, scale=volatility))
            floor_probability = float(norm.cdf(floor, loc=projection, scale=volatility))
            consistency = 1.0 / (1.0 + volatility / projection) if projection > 0 else 0.0

        return PlayerAnalytics(
            player_id=player.player_id,
            projection=projection,
            floor=floor,
            ceiling=ceiling,
            volatility=volatility,
            value=value,
            ceiling_probability=ceiling_probability,
            floor_probability=floor_probability,
            consistency=consistency,
            ownership=float(player.ownership or 0.0),
            degraded=degraded,
        )

    @staticmethod
    def _estimate_floor_ceiling(projection):
        factor = spread_factor(projection)
        return projection * (1.0 - factor), projection * (1.0 + factor)

    @staticmethod
    def _floor_ceiling_from_history(projection, history):
        points = np.asarray(history, dtype=float)
        floor = float(np.percentile(points, 15))
        ceiling = float(np.percentile(points, 85))
        # Keep the projection inside the band
        if floor > projection:
            floor = projection * 0.75
        if ceiling < projection:
            ceiling = projection * 1.25
        return floor, ceiling
