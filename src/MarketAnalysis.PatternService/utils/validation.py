"""Boundary checks for bar sequences and indicator bundles."""

from typing import Optional

from models.market_data import OHLCVBar
from models.technicals import IndicatorSeries


class InvalidInputError(ValueError):
    """Raised when a caller passes bars or indicators that break the input contract."""


def validate_bars(bars: list[OHLCVBar]) -> None:
    """
    Check a bar sequence before it reaches the detectors.

    An empty sequence is valid. Timestamps must be strictly increasing,
    every bar must have high >= low and a non-negative volume.
    """
    for i, bar in enumerate(bars):
        if bar.high < bar.low:
            raise InvalidInputError(f"Bar {i} has high {bar.high} below low {bar.low}")
        if bar.volume < 0:
            raise InvalidInputError(f"Bar {i} has negative volume {bar.volume}")
        if i > 0 and bar.timestamp <= bars[i - 1].timestamp:
            raise InvalidInputError(
                f"Bar timestamps must be strictly increasing (bar {i}: {bar.timestamp} "
                f"after {bars[i - 1].timestamp})"
            )


def validate_indicators(indicators: Optional[IndicatorSeries], n: int) -> None:
    """Every supplied indicator array must be exactly as long as the bar sequence."""
    if indicators is None:
        return
    for name, values in indicators.named_arrays().items():
        if len(values) != n:
            raise InvalidInputError(
                f"Indicator '{name}' has {len(values)} values but there are {n} bars"
            )
