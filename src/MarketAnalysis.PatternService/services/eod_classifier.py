"""
End-of-day sharp drop classifier.

A 3-5% down day on a liquid, >= $3 name is scored twice: once for a bounce
(BPS) and once for continuation (CPS). Each score starts at 50, adds bonuses
for its own evidence and is capped at 90. The stronger score wins when it
clears 70 on its own or beats the other by at least 10 points; otherwise the
result is neutral.
"""

import logging
from typing import Optional

from models.technicals import (
    PatternCategory, SignalDirection, TradingStyle,
    DetectedPattern, IndicatorSeries,
)
from services.indicator_engine import value_at
from services.pattern_builder import make_pattern, confidence_from_probability
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

MIN_HISTORY = 30
DROP_RANGE = (-0.05, -0.03)
SWING_LOOKBACK = 30
BASE_SCORE = 50
SCORE_CAP = 90
SIGNAL_THRESHOLD = 70
MIN_MARGIN = 10
SUPPORT_PROXIMITY = 0.01


def _near(price: float, reference: Optional[float]) -> bool:
    return bool(reference) and abs(price - reference) / reference <= SUPPORT_PROXIMITY


def bounce_score(
    frame: PriceFrame, indicators: IndicatorSeries, i: int, avg_volume: float, swing_low: float,
) -> tuple[int, list[str]]:
    """Bounce Probability Score and its evidence lines."""
    f = frame
    prev = i - 1
    score = BASE_SCORE
    evidence: list[str] = []

    rsi_today = value_at(indicators.rsi, i)
    rsi_prev = value_at(indicators.rsi, prev)
    if rsi_today is not None and rsi_prev is not None and rsi_today < 35 and rsi_prev > 50:
        score += 15
        evidence.append(f"Oversold Shock: RSI {rsi_today:.1f} < 35 (was {rsi_prev:.1f} yesterday)")

    if avg_volume > 0 and f.volume[i] >= avg_volume * 1.5:
        score += 10
        evidence.append(f"Capitulation Volume: {f.volume[i] / avg_volume:.1f}x average (>=1.5x)")

    ma50 = value_at(indicators.sma.sma50, i)
    ma200 = value_at(indicators.sma.sma200, i)
    low = f.low[i]
    support = None
    if _near(low, ma50):
        support = f"MA50 (${ma50:.2f})"
    elif _near(low, ma200):
        support = f"MA200 (${ma200:.2f})"
    elif _near(low, swing_low):
        support = f"30-day swing low (${swing_low:.2f})"
    if support:
        score += 15
        evidence.append(f"Support Catch: Low near {support} (within 1%)")

    body, total = f.body(i), f.range(i)
    is_hammer = total > 0 and f.lower_wick(i) >= body * 2 and (f.close[i] - low) / total >= 0.6
    is_engulfing = (
        f.is_bullish(i) and body > f.body(prev)
        and f.open[i] < f.close[prev] and f.close[i] > f.open[prev]
    )
    if is_hammer:
        score += 5
        evidence.append("Hammer Pattern: Lower wick >=2x body, close in top 40% of range")
    elif is_engulfing:
        score += 5
        evidence.append("Bullish Engulfing: Today's body engulfs yesterday's body")

    return min(score, SCORE_CAP), evidence


def continuation_score(
    frame: PriceFrame, indicators: IndicatorSeries, i: int, avg_volume: float, swing_low: float,
) -> tuple[int, list[str]]:
    """Continuation Probability Score and its evidence lines."""
    f = frame
    prev = i - 1
    score = BASE_SCORE
    evidence: list[str] = []

    rsi = [value_at(indicators.rsi, j) for j in (i, i - 1, i - 2)]
    if None not in rsi and rsi[0] < 30 and rsi[0] < rsi[1] < rsi[2]:
        score += 20
        evidence.append("Deep Oversold: RSI < 30 and declining 3 days")

    if avg_volume > 0 and f.volume[i] < avg_volume:
        score += 20
        evidence.append(f"No Capitulation: Volume {f.volume[i] / avg_volume:.1f}x < 1.0x average")

    total = f.range(i)
    close_position = (f.close[i] - f.low[i]) / total if total > 0 else 0.5
    if close_position <= 0.1:
        score += 15
        evidence.append(f"Weak Close: Close within {close_position * 100:.1f}% of day's low")

    ma50 = value_at(indicators.sma.sma50, i)
    if swing_low and f.close[i] < swing_low * 0.99:
        score += 10
        evidence.append("Support Failure: Close below 30-day swing low")
    elif ma50 and f.close[prev] < ma50 and f.close[i] < ma50 * 0.99:
        score += 10
        evidence.append("Support Failure: Close >1% below MA50")

    if indicators.macd is not None:
        hist = [value_at(indicators.macd.histogram, j) for j in (i, i - 1, i - 2)]
        if None not in hist and hist[0] < hist[1] < hist[2]:
            score += 5
            evidence.append("Momentum Down: MACD histogram declining 3+ days")

    return min(score, SCORE_CAP), evidence


def resolve_scores(bps: int, cps: int) -> SignalDirection:
    """Pick the winning side, or neutral when neither dominates."""
    bounce_strong = bps >= SIGNAL_THRESHOLD
    continuation_strong = cps >= SIGNAL_THRESHOLD
    if bounce_strong and not continuation_strong:
        return SignalDirection.BULLISH
    if continuation_strong and not bounce_strong:
        return SignalDirection.BEARISH
    if bounce_strong and continuation_strong and abs(bps - cps) >= MIN_MARGIN:
        return SignalDirection.BULLISH if bps > cps else SignalDirection.BEARISH
    return SignalDirection.NEUTRAL


def detect_eod_sharp_drop(
    frame: PriceFrame,
    indicators: IndicatorSeries,
    i: int,
    min_avg_volume: float = 500_000,
    min_price: float = 3.0,
) -> Optional[DetectedPattern]:
    f = frame
    if i < MIN_HISTORY or value_at(indicators.rsi, i) is None:
        return None
    prev = i - 1
    if f.close[prev] == 0:
        return None
    change = (f.close[i] - f.close[prev]) / f.close[prev]
    if not (DROP_RANGE[0] <= change <= DROP_RANGE[1]):
        return None

    avg_volume = f.avg_volume_through(i)
    if avg_volume < min_avg_volume or f.close[i] < min_price:
        return None

    swing_low = float(f.low[max(0, i - SWING_LOOKBACK):i + 1].min())
    bps, bounce_evidence = bounce_score(f, indicators, i, avg_volume, swing_low)
    cps, continuation_evidence = continuation_score(f, indicators, i, avg_volume, swing_low)
    signal = resolve_scores(bps, cps)

    entry = f.close[i]
    trigger = f"Triggered: {change * 100:.1f}% drop (3-5% range)"
    if signal == SignalDirection.BULLISH:
        probability, name, code = bps, "EOD Sharp Drop Bounce", "SDB+"
        evidence = [trigger] + bounce_evidence
        stop = swing_low * 0.98
        target = entry + (entry - stop) * 1.5
    elif signal == SignalDirection.BEARISH:
        probability, name, code = cps, "EOD Sharp Drop Continuation", "SDC-"
        evidence = [trigger] + continuation_evidence
        stop = f.high[prev] * 1.02
        target = entry - (stop - entry) * 1.5
    else:
        probability, name, code = max(bps, cps), "EOD Sharp Drop - Neutral", "SDN"
        if bps >= SIGNAL_THRESHOLD and cps >= SIGNAL_THRESHOLD:
            evidence = ["Conflicting signals - BPS and CPS both high with <10pt margin"]
        else:
            evidence = ["Weak signals - both BPS and CPS below 70%"]
        stop = f.low[i] * 0.98
        target = entry
    evidence.append(f"Bounce Score (BPS): {bps}% | Continuation Score (CPS): {cps}%")

    risk = abs(entry - stop)
    logger.debug(f"EOD drop at {i}: change={change:.3%} BPS={bps} CPS={cps} -> {signal.value}")
    return make_pattern(
        id=f"EOD_DROP_{signal.value.upper()}_{i}",
        type=PatternCategory.COMBINATION,
        name=name,
        code=code,
        description=f"EOD analysis: {abs(change) * 100:.1f}% drop with {probability}% {signal.value} probability",
        start_index=prev,
        end_index=i,
        probability=probability,
        win_rate=73.0,
        risk_reward=abs(target - entry) / risk if risk > 0 else 0.0,
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=signal,
        confidence=confidence_from_probability(probability, high=80, medium=65, inclusive=True),
        evidence=evidence,
        trading_style=TradingStyle.SWING,
        timeframe="EOD",
        algorithm="Dual scoring of a 3-5% daily drop: bounce (RSI shock, volume, support, candle) "
                  "against continuation (deep oversold, thin volume, weak close, support failure, momentum).",
        confirmation=[f"BPS: {bps}%", f"CPS: {cps}%", f"Volume: {f.volume[i] / avg_volume:.1f}x avg"],
    )
