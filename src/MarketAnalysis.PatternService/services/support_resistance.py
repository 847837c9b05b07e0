"""
Support and resistance levels from local price extrema.

A bar is a support candidate when its low is the minimum of the surrounding
window of `lookback` bars on each side (ties allowed), and a resistance
candidate when its high is the maximum. Each candidate is scored by how many
bars touch its price within a relative tolerance.
"""

import numpy as np
from scipy.signal import argrelextrema
import logging

from models.technicals import LevelType, SupportResistanceLevel
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK = 20
DEFAULT_TOLERANCE = 0.005
MIN_TOUCHES = 2


def find_support_resistance(
    frame: PriceFrame,
    lookback: int = DEFAULT_LOOKBACK,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[SupportResistanceLevel]:
    """
    Detect support and resistance levels, supports first then resistances,
    each in ascending index order. Overlapping levels are not merged.
    """
    n = frame.n
    if lookback < 1 or n < 2 * lookback + 1:
        return []

    supports = _candidates(frame.low, np.less_equal, lookback)
    resistances = _candidates(frame.high, np.greater_equal, lookback)

    levels: list[SupportResistanceLevel] = []
    for series, indices, level_type in (
        (frame.low, supports, LevelType.SUPPORT),
        (frame.high, resistances, LevelType.RESISTANCE),
    ):
        for i in indices:
            price = float(series[i])
            touches = count_touches(series, i, tolerance)
            if touches < MIN_TOUCHES:
                continue
            levels.append(SupportResistanceLevel(
                price=price,
                type=level_type,
                touches=touches,
                strength=float(touches),
                start_index=max(0, i - lookback),
                end_index=min(n - 1, i + lookback),
            ))

    logger.debug(
        f"Found {sum(l.type == LevelType.SUPPORT for l in levels)} support and "
        f"{sum(l.type == LevelType.RESISTANCE for l in levels)} resistance levels over {n} bars"
    )
    return levels


def _candidates(series: np.ndarray, comparator, lookback: int) -> list[int]:
    """Indices that are window extrema and have a full window on both sides."""
    idx = argrelextrema(series, comparator, order=lookback, mode="clip")[0]
    n = len(series)
    return [int(i) for i in idx if lookback <= i < n - lookback]


def count_touches(series: np.ndarray, i: int, tolerance: float) -> int:
    """The candidate itself plus every other bar within `tolerance` of its price."""
    price = series[i]
    if price == 0:
        return 1
    near = np.abs(series - price) / abs(price) <= tolerance
    near[i] = False
    return 1 + int(near.sum())


def nearest_level(
    levels: list[SupportResistanceLevel],
    level_type: LevelType,
    price: float,
    max_distance: float,
):
    """First level of `level_type` within `max_distance` of `price`, measured relative to `price`."""
    if price == 0:
        return None
    for level in levels:
        if level.type != level_type:
            continue
        if abs(level.price - price) / price <= max_distance:
            return level
    return None
