import numpy as np
import pandas as pd
import pandas_ta as ta
import logging
from typing import Optional, Sequence

from models.market_data import OHLCVBar
from models.technicals import (
    IndicatorSeries, MACDSeries, MovingAverageSeries, EMASeries,
    BollingerSeries, StochasticSeries, Series,
)

logger = logging.getLogger(__name__)

RSI_PERIOD = 14
MACD_FAST = 12
MACD_SLOW = 26
MACD_SIGNAL = 9
BOLLINGER_PERIOD = 20
BOLLINGER_STDDEV = 2.0
STOCH_K_PERIOD = 14
STOCH_D_PERIOD = 3
ATR_PERIOD = 14
VOLUME_SMA_PERIOD = 20

# RS used when the average loss is zero.
RS_NO_LOSS = 100.0


class IndicatorEngine:
    """Computes the indicator bundle consumed by the pattern detectors."""

    @staticmethod
    def compute_indicators(bars: list[OHLCVBar]) -> IndicatorSeries:
        """
        Compute every indicator for a bar sequence.

        Args:
            bars: Chronologically ascending OHLCV bars

        Returns:
            IndicatorSeries whose arrays are all len(bars) long, with None
            wherever an indicator lacks enough history.
        """
        df = bars_to_dataframe(bars)
        if df.empty:
            return IndicatorSeries()

        close = df["close"]
        line, signal, histogram = calculate_macd(close)
        upper, middle, lower = calculate_bollinger(close)
        k, d = calculate_stochastic(df["high"], df["low"], close)

        indicators = IndicatorSeries(
            rsi=_to_list(calculate_rsi(close)),
            macd=MACDSeries(line=_to_list(line), signal=_to_list(signal), histogram=_to_list(histogram)),
            sma=MovingAverageSeries(
                sma20=_to_list(sma(close, 20)),
                sma50=_to_list(sma(close, 50)),
                sma200=_to_list(sma(close, 200)),
            ),
            ema=EMASeries(
                ema12=_to_list(ema(close, 12)),
                ema26=_to_list(ema(close, 26)),
                ema20=_to_list(ema(close, 20)),
                ema50=_to_list(ema(close, 50)),
            ),
            bollinger=BollingerSeries(upper=_to_list(upper), middle=_to_list(middle), lower=_to_list(lower)),
            stochastic=StochasticSeries(k=_to_list(k), d=_to_list(d)),
            atr=_to_list(calculate_atr(df["high"], df["low"], close)),
            obv=_to_list(calculate_obv(close, df["volume"])),
            vwap=_to_list(calculate_vwap(df["high"], df["low"], close, df["volume"])),
        )
        logger.debug(f"Computed indicators for {len(df)} bars")
        return indicators

    @staticmethod
    def volume_sma(bars: list[OHLCVBar], period: int = VOLUME_SMA_PERIOD) -> Series:
        """Simple moving average of volume, aligned to the bars."""
        df = bars_to_dataframe(bars)
        if df.empty:
            return []
        return _to_list(sma(df["volume"], period))


def bars_to_dataframe(bars: list[OHLCVBar]) -> pd.DataFrame:
    """Convert bars to a DataFrame with a positional index."""
    columns = ["timestamp", "open", "high", "low", "close", "volume"]
    if not bars:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([bar.model_dump(include=set(columns)) for bar in bars], columns=columns)


# --- Moving averages ---

def _aligned(result: Optional[pd.Series], index: pd.Index) -> pd.Series:
    """pandas-ta returns None when the input is shorter than the window."""
    if result is None:
        return pd.Series(np.nan, index=index, dtype=float)
    return result.reindex(index).astype(float)


def sma(values: pd.Series, period: int) -> pd.Series:
    return _aligned(ta.sma(values, length=period, talib=False), values.index)


def ema(values: pd.Series, period: int) -> pd.Series:
    """EMA seeded with the SMA of the first `period` defined values, multiplier 2/(period+1)."""
    start = values.first_valid_index()
    if start is None:
        return _aligned(None, values.index)
    return _aligned(ta.ema(values.loc[start:], length=period, presma=True, talib=False), values.index)


def _wilder(values: pd.Series, period: int) -> pd.Series:
    """
    Wilder smoothing over the defined tail of `values`.

    Leading NaNs are skipped; the first output lands on the `period`-th defined
    value and equals the mean of those `period` values, then
    prev + (value - prev) / period.
    """
    result = pd.Series(np.nan, index=values.index, dtype=float)
    defined = values.dropna()
    if len(defined) < period:
        return result
    seeded = defined.astype(float).copy()
    seeded.iloc[:period - 1] = np.nan
    seeded.iloc[period - 1] = defined.iloc[:period].mean()
    smoothed = seeded.ewm(alpha=1.0 / period, adjust=False, ignore_na=True).mean()
    smoothed.iloc[:period - 1] = np.nan
    result.loc[smoothed.index] = smoothed
    return result


# --- Momentum ---

def calculate_rsi(close: pd.Series, period: int = RSI_PERIOD) -> pd.Series:
    """Wilder RSI; the first value lands on index `period`."""
    delta = close.diff()
    gains = delta.clip(lower=0)
    losses = (-delta).clip(lower=0)
    avg_gain = _wilder(gains, period)
    avg_loss = _wilder(losses, period)

    rs = avg_gain / avg_loss.replace(0, np.nan)
    rs = rs.where(avg_loss != 0, RS_NO_LOSS)
    rsi = 100 - 100 / (1 + rs)
    return rsi.where(avg_gain.notna())


def calculate_macd(
    close: pd.Series, fast: int = MACD_FAST, slow: int = MACD_SLOW, signal: int = MACD_SIGNAL,
) -> tuple[pd.Series, pd.Series, pd.Series]:
    """
    MACD line, signal (EMA of the defined line values) and histogram.

    Composed from ta.ema as ta.macd does; ta.macd itself fails below
    slow + signal bars instead of leaving the signal undefined.
    """
    line = ema(close, fast) - ema(close, slow)
    signal_line = ema(line, signal)
    histogram = line - signal_line
    return line, signal_line, histogram


def calculate_stochastic(
    high: pd.Series, low: pd.Series, close: pd.Series,
    k_period: int = STOCH_K_PERIOD, d_period: int = STOCH_D_PERIOD,
) -> tuple[pd.Series, pd.Series]:
    """%K over `k_period` bars and %D as its `d_period` SMA; a flat window leaves %K undefined."""
    highest = high.rolling(window=k_period, min_periods=k_period).max()
    lowest = low.rolling(window=k_period, min_periods=k_period).min()
    spread = (highest - lowest).replace(0, np.nan)
    k = (close - lowest) / spread * 100
    d = sma(k, d_period)
    return k, d


# --- Volatility ---

def calculate_bollinger(
    close: pd.Series, period: int = BOLLINGER_PERIOD, num_std: float = BOLLINGER_STDDEV,
) -> tuple[pd.Series, pd.Series, pd.Series]:
    """Upper, middle and lower bands over the population standard deviation."""
    bands = ta.bbands(close, length=period, std=num_std, ddof=0, talib=False)
    if bands is None:
        empty = _aligned(None, close.index)
        return empty, empty, empty

    def column(prefix: str) -> pd.Series:
        name = next(c for c in bands.columns if c.startswith(prefix))
        return _aligned(bands[name], close.index)

    return column("BBU"), column("BBM"), column("BBL")


def true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    prev_close = close.shift(1)
    tr = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1,
    ).max(axis=1)
    # First bar has no previous close
    if len(tr):
        tr.iloc[0] = high.iloc[0] - low.iloc[0]
    return tr


def calculate_atr(
    high: pd.Series, low: pd.Series, close: pd.Series, period: int = ATR_PERIOD,
) -> pd.Series:
    """Wilder ATR; the seed averages the true ranges of bars 1..period."""
    tr = true_range(high, low, close)
    if len(tr):
        tr.iloc[0] = np.nan
    return _wilder(tr, period)


# --- Volume ---

def calculate_obv(close: pd.Series, volume: pd.Series) -> pd.Series:
    """On-balance volume seeded at 0 on the first bar."""
    obv = _aligned(ta.obv(close, volume, talib=False), close.index)
    # ta.obv counts the first bar's volume as an up day
    return obv - float(volume.iloc[0]) if len(volume) else obv


def calculate_vwap(high: pd.Series, low: pd.Series, close: pd.Series, volume: pd.Series) -> pd.Series:
    """Cumulative VWAP from the first bar; undefined while no volume has traded."""
    typical = (high + low + close) / 3
    cum_volume = volume.cumsum()
    cum_value = (typical * volume).cumsum()
    return cum_value / cum_volume.replace(0, np.nan)


def _to_list(series: Optional[pd.Series]) -> Series:
    """Convert a pandas Series to a list with None for missing values."""
    if series is None:
        return []
    return [float(v) if pd.notna(v) else None for v in series.tolist()]


def value_at(values: Optional[Sequence[Optional[float]]], i: int) -> Optional[float]:
    """Safe lookup into an indicator array; None when absent or out of range."""
    if values is None or i < 0 or i >= len(values):
        return None
    return values[i]
