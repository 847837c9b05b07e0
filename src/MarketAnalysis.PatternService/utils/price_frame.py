"""Column-oriented view of a bar sequence shared by the detectors."""

import numpy as np
from typing import Optional

from models.market_data import OHLCVBar

VOLUME_LOOKBACK = 20
TREND_LOOKBACK = 20
ATR_LOOKBACK = 14


class PriceFrame:
    """Holds the bars alongside numpy arrays of each OHLCV column."""

    def __init__(self, bars: list[OHLCVBar]):
        self.bars = bars
        self.n = len(bars)
        self.open = np.array([b.open for b in bars], dtype=float)
        self.high = np.array([b.high for b in bars], dtype=float)
        self.low = np.array([b.low for b in bars], dtype=float)
        self.close = np.array([b.close for b in bars], dtype=float)
        self.volume = np.array([b.volume for b in bars], dtype=float)

    def __len__(self) -> int:
        return self.n

    def body(self, i: int) -> float:
        return abs(self.close[i] - self.open[i])

    def range(self, i: int) -> float:
        return self.high[i] - self.low[i]

    def upper_wick(self, i: int) -> float:
        return self.high[i] - max(self.open[i], self.close[i])

    def lower_wick(self, i: int) -> float:
        return min(self.open[i], self.close[i]) - self.low[i]

    def is_bullish(self, i: int) -> bool:
        return self.close[i] > self.open[i]

    def is_bearish(self, i: int) -> bool:
        return self.close[i] < self.open[i]

    def avg_volume_before(self, i: int, period: int = VOLUME_LOOKBACK) -> float:
        """
        Trailing average volume of the `period` bars before i.

        The divisor is always `period`, so early bars see a damped average.
        """
        start = max(0, i - period)
        return float(self.volume[start:i].sum()) / period

    def avg_volume_through(self, i: int, period: int = VOLUME_LOOKBACK) -> float:
        """Average volume of the `period` bars ending at i, inclusive."""
        start = max(0, i - period + 1)
        return float(self.volume[start:i + 1].sum()) / period

    def trend(self, i: int) -> float:
        """Relative distance of close[i] from the mean close of bars i-20..i; 0 without history."""
        if i < TREND_LOOKBACK:
            return 0.0
        mean_close = float(self.close[i - TREND_LOOKBACK:i + 1].mean())
        if mean_close == 0:
            return 0.0
        return (self.close[i] - mean_close) / mean_close

    def true_range(self, i: int) -> float:
        if i == 0:
            return self.high[0] - self.low[0]
        prev_close = self.close[i - 1]
        return max(
            self.high[i] - self.low[i],
            abs(self.high[i] - prev_close),
            abs(self.low[i] - prev_close),
        )

    def trailing_atr(self, i: int, period: int = ATR_LOOKBACK) -> Optional[float]:
        """Simple mean of the last `period` true ranges ending at i."""
        if i < period:
            return None
        return sum(self.true_range(j) for j in range(i - period + 1, i + 1)) / period
