"""
Cross-indicator confluence signals evaluated at a single bar.

Detects: RSI divergence (RD+/RD-), MACD histogram acceleration (MA+/MA-),
stochastic crosses (SC+/SC-), VWAP reclaim/reject (VW+/VW-). Also hosts the
confluence booster that re-scores existing patterns sitting on a level or a
volume spike.
"""

import numpy as np
from scipy.signal import argrelextrema
import logging
from typing import Optional

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle,
    DetectedPattern, IndicatorSeries, SupportResistanceLevel,
)
from services.indicator_engine import value_at
from services.pattern_builder import make_pattern, confidence_from_probability
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

DIVERGENCE_LOOKBACK = 20
DIVERGENCE_PIVOT_ORDER = 3
RSI_BULLISH_RANGE = (30.0, 45.0)
RSI_BEARISH_RANGE = (55.0, 70.0)
STOCH_OVERSOLD = 20.0
STOCH_OVERBOUGHT = 80.0
ATR_STOP_MULTIPLIER = 1.5
ATR_FALLBACK_PCT = 0.02

BOOST_LEVEL_DISTANCE = 0.02
BOOST_LEVEL_BONUS = 15
BOOST_VOLUME_RATIO = 1.5
BOOST_VOLUME_BONUS = 10
BOOST_CAP = 95


def _strict_extrema(values: np.ndarray, comparator, order: int) -> list[float]:
    """Values that strictly beat every neighbour within `order` bars on both sides."""
    idx = argrelextrema(values, comparator, order=order)[0]
    return [float(values[j]) for j in idx if order <= j < len(values) - order]


def _atr_stop_distance(frame: PriceFrame, i: int, entry: float) -> float:
    atr = frame.trailing_atr(i) or ATR_FALLBACK_PCT * entry
    return atr * ATR_STOP_MULTIPLIER


# ---------- RSI divergence ----------

def detect_rsi_divergence(
    frame: PriceFrame, indicators: IndicatorSeries, direction: SignalDirection, i: int,
) -> Optional[DetectedPattern]:
    """
    Bullish: price lower low with RSI higher low, current RSI in [30, 45].
    Bearish: price higher high with RSI lower high, current RSI in [55, 70].
    """
    if i < DIVERGENCE_LOOKBACK or indicators.rsi is None or i >= len(indicators.rsi):
        return None

    start = i - DIVERGENCE_LOOKBACK
    window_rsi = indicators.rsi[start:i + 1]
    if any(v is None for v in window_rsi):
        return None
    rsi = np.array(window_rsi, dtype=float)
    current_rsi = float(rsi[-1])
    bullish = direction == SignalDirection.BULLISH

    if bullish:
        price_pivots = _strict_extrema(frame.low[start:i + 1], np.less, DIVERGENCE_PIVOT_ORDER)
        rsi_pivots = _strict_extrema(rsi, np.less, DIVERGENCE_PIVOT_ORDER)
    else:
        price_pivots = _strict_extrema(frame.high[start:i + 1], np.greater, DIVERGENCE_PIVOT_ORDER)
        rsi_pivots = _strict_extrema(rsi, np.greater, DIVERGENCE_PIVOT_ORDER)

    if len(price_pivots) < 2 or len(rsi_pivots) < 2:
        return None

    last_price, prev_price = price_pivots[-1], price_pivots[-2]
    last_rsi, prev_rsi = rsi_pivots[-1], rsi_pivots[-2]
    low, high = RSI_BULLISH_RANGE if bullish else RSI_BEARISH_RANGE

    if bullish:
        diverges = last_price < prev_price and last_rsi > prev_rsi
    else:
        diverges = last_price > prev_price and last_rsi < prev_rsi
    if not diverges or not (low <= current_rsi <= high):
        return None

    entry = frame.close[i]
    if bullish:
        stop = last_price * 0.98
        target = entry + (entry - stop) * 2
    else:
        stop = last_price * 1.02
        target = entry - (stop - entry) * 2

    return make_pattern(
        id=f"RD_{'BULL' if bullish else 'BEAR'}_{i}",
        type=PatternCategory.CONFLUENCE,
        name=f"RSI {'Bullish' if bullish else 'Bearish'} Divergence",
        code="RD+" if bullish else "RD-",
        description=(
            "Price lower low, RSI higher low - bullish reversal signal" if bullish
            else "Price higher high, RSI lower high - bearish reversal signal"
        ),
        start_index=start,
        end_index=i,
        probability=78,
        win_rate=72.5,
        risk_reward=2.0,
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            f"Price made {'lower low' if bullish else 'higher high'} at ${last_price:.2f}",
            f"RSI made {'higher low' if bullish else 'lower high'} ({prev_rsi:.1f} -> {last_rsi:.1f})",
            f"Current RSI: {current_rsi:.1f} (optimal range)",
        ],
        trading_style=TradingStyle.SWING,
        algorithm=f"Compares the last two 3-bar pivots of price and RSI over {DIVERGENCE_LOOKBACK} bars.",
        confirmation=[f"RSI: {current_rsi:.1f}"],
    )


# ---------- MACD acceleration ----------

def detect_macd_acceleration(
    frame: PriceFrame, indicators: IndicatorSeries, i: int,
) -> Optional[DetectedPattern]:
    """Three strictly rising (or falling) histogram bars ending at i."""
    if i < 5 or indicators.macd is None:
        return None
    hist = indicators.macd.histogram
    recent = [value_at(hist, j) for j in (i - 2, i - 1, i)]
    if any(v is None for v in recent):
        return None

    if recent[2] > recent[1] > recent[0]:
        direction = SignalDirection.BULLISH
    elif recent[2] < recent[1] < recent[0]:
        direction = SignalDirection.BEARISH
    else:
        return None

    bullish = direction == SignalDirection.BULLISH
    entry = frame.close[i]
    distance = _atr_stop_distance(frame, i, entry)
    stop = entry - distance if bullish else entry + distance
    target = entry + 2 * distance if bullish else entry - 2 * distance
    word = "rising" if bullish else "falling"

    return make_pattern(
        id=f"MA_{direction.value.upper()}_{i}",
        type=PatternCategory.CONFLUENCE,
        name=f"MACD {'Bullish' if bullish else 'Bearish'} Acceleration",
        code="MA+" if bullish else "MA-",
        description=f"MACD histogram {word} for 3+ candles",
        start_index=i - 2,
        end_index=i,
        probability=72,
        win_rate=68.4,
        risk_reward=2.0,
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            f"MACD histogram {word} for 3 consecutive periods",
            f"Current histogram: {recent[2]:.3f}",
            "Momentum acceleration confirmed",
        ],
        trading_style=TradingStyle.SWING,
        algorithm="Three consecutive monotonic MACD histogram bars; stop 1.5 ATR from entry.",
        confirmation=[f"Histogram: {recent[2]:.3f}"],
    )


# ---------- Stochastic cross ----------

def detect_stochastic_cross(
    frame: PriceFrame, indicators: IndicatorSeries, direction: SignalDirection, i: int,
) -> Optional[DetectedPattern]:
    """%K crossing %D with both below 20 (bullish) or both above 80 (bearish)."""
    if i < 2 or indicators.stochastic is None:
        return None
    k, d = indicators.stochastic.k, indicators.stochastic.d
    cur_k, cur_d = value_at(k, i), value_at(d, i)
    prev_k, prev_d = value_at(k, i - 1), value_at(d, i - 1)
    if None in (cur_k, cur_d, prev_k, prev_d):
        return None

    bullish = direction == SignalDirection.BULLISH
    if bullish:
        crossed = prev_k <= prev_d and cur_k > cur_d
        in_zone = cur_k < STOCH_OVERSOLD and cur_d < STOCH_OVERSOLD
    else:
        crossed = prev_k >= prev_d and cur_k < cur_d
        in_zone = cur_k > STOCH_OVERBOUGHT and cur_d > STOCH_OVERBOUGHT
    if not (crossed and in_zone):
        return None

    entry = frame.close[i]
    distance = _atr_stop_distance(frame, i, entry)
    stop = entry - distance if bullish else entry + distance
    target = entry + 2 * distance if bullish else entry - 2 * distance

    return make_pattern(
        id=f"SC_{'BULL' if bullish else 'BEAR'}_{i}",
        type=PatternCategory.CONFLUENCE,
        name=f"Stochastic {'Bullish' if bullish else 'Bearish'} Cross",
        code="SC+" if bullish else "SC-",
        description=(
            "%K crosses %D upward in oversold territory" if bullish
            else "%K crosses %D downward in overbought territory"
        ),
        start_index=i - 1,
        end_index=i,
        probability=70,
        win_rate=65.9,
        risk_reward=2.0,
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.MEDIUM,
        evidence=[
            f"%K crossed {'above' if bullish else 'below'} %D ({cur_k:.1f} {'>' if bullish else '<'} {cur_d:.1f})",
            f"Both lines {'below 20 (oversold)' if bullish else 'above 80 (overbought)'}",
        ],
        trading_style=TradingStyle.SWING,
        algorithm="%K crosses %D inside the extreme zone; stop 1.5 ATR from entry.",
        confirmation=[f"%K: {cur_k:.1f}, %D: {cur_d:.1f}"],
    )


# ---------- VWAP reclaim / reject ----------

def detect_vwap_signal(
    frame: PriceFrame, indicators: IndicatorSeries, direction: SignalDirection, i: int,
) -> Optional[DetectedPattern]:
    """
    Bullish: prior close at or below VWAP, close above it and the low holds above.
    Bearish: prior close at or above VWAP, close below it and the high holds below.
    """
    if i < 5 or indicators.vwap is None:
        return None
    vwap, prev_vwap = value_at(indicators.vwap, i), value_at(indicators.vwap, i - 1)
    if vwap is None or prev_vwap is None:
        return None

    bullish = direction == SignalDirection.BULLISH
    prev_close = frame.close[i - 1]
    if bullish:
        triggered = prev_close <= prev_vwap and frame.close[i] > vwap and frame.low[i] > vwap * 0.999
        stop = vwap * 0.995
    else:
        triggered = prev_close >= prev_vwap and frame.close[i] < vwap and frame.high[i] < vwap * 1.001
        stop = vwap * 1.005
    if not triggered:
        return None

    entry = frame.close[i]
    target = entry + (entry - stop) * 2 if bullish else entry - (stop - entry) * 2

    return make_pattern(
        id=f"VWAP_{'BULL' if bullish else 'BEAR'}_{i}",
        type=PatternCategory.CONFLUENCE,
        name="VWAP Bullish Reclaim" if bullish else "VWAP Bearish Reject",
        code="VW+" if bullish else "VW-",
        description=(
            "Price crosses up through VWAP and holds above" if bullish
            else "Price crosses down through VWAP and holds below"
        ),
        start_index=i - 1,
        end_index=i,
        probability=75,
        win_rate=70.3,
        risk_reward=2.0,
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            f"Price crossed {'above' if bullish else 'below'} VWAP (${vwap:.2f})",
            f"{'Low held above' if bullish else 'High held below'} VWAP",
        ],
        trading_style=TradingStyle.SWING,
        algorithm="Close crosses VWAP while the bar's extreme stays on the new side.",
        confirmation=[f"VWAP: ${vwap:.2f}"],
    )


def detect_confluence_signals(
    frame: PriceFrame, indicators: IndicatorSeries, i: int,
) -> list[DetectedPattern]:
    """All indicator confluence signals at bar i, in a fixed order."""
    candidates = [
        detect_rsi_divergence(frame, indicators, SignalDirection.BULLISH, i),
        detect_rsi_divergence(frame, indicators, SignalDirection.BEARISH, i),
        detect_macd_acceleration(frame, indicators, i),
        detect_stochastic_cross(frame, indicators, SignalDirection.BULLISH, i),
        detect_stochastic_cross(frame, indicators, SignalDirection.BEARISH, i),
        detect_vwap_signal(frame, indicators, SignalDirection.BULLISH, i),
        detect_vwap_signal(frame, indicators, SignalDirection.BEARISH, i),
    ]
    return [p for p in candidates if p is not None]


# ---------- Confluence booster ----------

def boost_confluence(
    patterns: list[DetectedPattern],
    levels: list[SupportResistanceLevel],
    frame: PriceFrame,
) -> list[DetectedPattern]:
    """
    Re-score each pattern that sits within 2% of any level or ends on a volume
    spike. Patterns with neither factor are not re-emitted.
    """
    boosted: list[DetectedPattern] = []
    for pattern in patterns:
        factors = list(pattern.evidence)
        probability = pattern.probability
        entry = pattern.entry_price

        near_level = None
        if entry != 0:
            near_level = next(
                (l for l in levels if abs(l.price - entry) / entry <= BOOST_LEVEL_DISTANCE), None,
            )
        if near_level is not None:
            factors.append(f"Near {near_level.type.value} level at ${near_level.price:.1f}")
            probability += BOOST_LEVEL_BONUS

        end = pattern.end_index
        if end < frame.n:
            avg_volume = frame.avg_volume_before(end)
            if avg_volume > 0 and frame.volume[end] > avg_volume * BOOST_VOLUME_RATIO:
                factors.append(
                    f"Volume spike: {(frame.volume[end] / avg_volume - 1) * 100:.0f}% above average"
                )
                probability += BOOST_VOLUME_BONUS

        if len(factors) == len(pattern.evidence):
            continue

        boosted.append(pattern.model_copy(update={
            "id": f"confluence_{pattern.id}",
            "type": PatternCategory.CONFLUENCE,
            "name": f"{pattern.name} + Confluence",
            "probability": min(probability, BOOST_CAP),
            "evidence": tuple(factors),
            "confidence": confidence_from_probability(probability, high=80, medium=60),
        }))

    logger.debug(f"Confluence booster promoted {len(boosted)} of {len(patterns)} patterns")
    return boosted
