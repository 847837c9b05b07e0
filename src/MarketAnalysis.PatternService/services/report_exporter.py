"""CSV exports of detected patterns and of chart data with indicator columns."""

import logging
from typing import Optional

import pandas as pd

from models.market_data import OHLCVBar
from models.technicals import DetectedPattern, IndicatorSeries, Series
from services.indicator_engine import value_at

logger = logging.getLogger(__name__)

PATTERN_COLUMNS = [
    "Name", "Code", "Type", "Signal", "Confidence", "Probability", "Win Rate",
    "Risk/Reward", "Entry", "Target", "Stop", "Start", "End", "Timeframe", "Evidence",
]

# column -> (header, decimals)
CHART_COLUMNS = {
    "rsi": ("RSI", 2),
    "sma20": ("SMA20", 2),
    "sma50": ("SMA50", 2),
    "sma200": ("SMA200", 2),
    "macd": ("MACD", 4),
}


def patterns_to_csv(patterns: list[DetectedPattern]) -> str:
    rows = [
        {
            "Name": p.name,
            "Code": p.code,
            "Type": p.type.value,
            "Signal": p.signal.value,
            "Confidence": p.confidence.value,
            "Probability": round(p.probability, 1),
            "Win Rate": round(p.win_rate, 1),
            "Risk/Reward": round(p.risk_reward, 2),
            "Entry": round(p.entry_price, 2),
            "Target": round(p.target_price, 2),
            "Stop": round(p.stop_loss, 2),
            "Start": p.start_index,
            "End": p.end_index,
            "Timeframe": p.timeframe,
            "Evidence": "; ".join(p.evidence),
        }
        for p in patterns
    ]
    return pd.DataFrame(rows, columns=PATTERN_COLUMNS).to_csv(index=False)


def _indicator_column(indicators: Optional[IndicatorSeries], name: str) -> Optional[Series]:
    if indicators is None:
        return None
    if name == "rsi":
        return indicators.rsi
    if name == "macd":
        return indicators.macd.line if indicators.macd is not None else None
    return getattr(indicators.sma, name)


def _format(value: Optional[float], decimals: int) -> str:
    return "" if value is None else f"{value:.{decimals}f}"


def chart_data_to_csv(
    bars: list[OHLCVBar],
    indicators: Optional[IndicatorSeries],
    columns: list[str],
) -> str:
    """
    One row per bar with the selected indicator columns appended.

    Unknown column names raise ValueError; missing indicator values are left blank.
    """
    unknown = [c for c in columns if c not in CHART_COLUMNS]
    if unknown:
        raise ValueError(f"Unknown export columns: {', '.join(unknown)}")

    df = pd.DataFrame({
        "Date": [b.timestamp.date().isoformat() for b in bars],
        "Open": [round(b.open, 2) for b in bars],
        "High": [round(b.high, 2) for b in bars],
        "Low": [round(b.low, 2) for b in bars],
        "Close": [round(b.close, 2) for b in bars],
        "Volume": [int(b.volume) for b in bars],
    })
    for name in columns:
        header, decimals = CHART_COLUMNS[name]
        values = _indicator_column(indicators, name)
        df[header] = [_format(value_at(values, i), decimals) for i in range(len(bars))]

    logger.debug(f"Exported {len(bars)} bars with columns {columns}")
    return df.to_csv(index=False)
