"""Intraday-style setups: opening range breakout, VWAP bounce/reject and liquidity sweeps."""

import logging
from typing import Optional

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle, LevelType,
    DetectedPattern, IndicatorSeries, SupportResistanceLevel,
)
from services.indicator_engine import value_at
from services.pattern_builder import make_pattern, apply_bonuses
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

ORB_WINDOW = 15
ORB_RANGE_BARS = 4
ORB_VOLUME_RATIO = 1.5
VWAP_SLOPE_BARS = 10
SWEEP_LEVEL_DISTANCE = 0.03
SWEEP_RANGE_BARS = 5


def _risk_reward(entry: float, target: float, stop: float) -> float:
    risk = abs(entry - stop)
    return abs(target - entry) / risk if risk > 0 else 0.0


def detect_opening_range_breakout(frame: PriceFrame, i: int) -> Optional[DetectedPattern]:
    """Close breaks the range of the first 4 bars of the trailing 15-bar window on 1.5x volume."""
    f = frame
    if i < ORB_WINDOW:
        return None
    range_start = i - (ORB_WINDOW - 1)
    range_high = float(f.high[range_start:range_start + ORB_RANGE_BARS].max())
    range_low = float(f.low[range_start:range_start + ORB_RANGE_BARS].min())
    range_size = range_high - range_low

    close, prev_close = f.close[i], f.close[i - 1]
    bullish = close > range_high >= prev_close
    bearish = close < range_low <= prev_close
    if not (bullish or bearish):
        return None

    avg_volume = f.avg_volume_before(i)
    if avg_volume <= 0 or f.volume[i] < avg_volume * ORB_VOLUME_RATIO:
        return None

    entry = close
    if bullish:
        stop = range_low - range_size * 0.1
        target = entry + range_size * 1.5
    else:
        stop = range_high + range_size * 0.1
        target = entry - range_size * 1.5
    direction = SignalDirection.BULLISH if bullish else SignalDirection.BEARISH
    ratio = f.volume[i] / avg_volume

    return make_pattern(
        id=f"ORB_{direction.value.upper()}_{i}",
        type=PatternCategory.COMBINATION,
        name=f"Opening Range {'Bullish' if bullish else 'Bearish'} Breakout",
        code="ORB",
        description=f"{'Bullish' if bullish else 'Bearish'} breakout of opening range with volume",
        start_index=range_start,
        end_index=i,
        probability=78,
        win_rate=73.6,
        risk_reward=_risk_reward(entry, target, stop),
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            f"Opening range: ${range_low:.2f} - ${range_high:.2f} ({range_size:.2f} range)",
            f"{'Bullish' if bullish else 'Bearish'} breakout confirmed",
            f"Volume surge: {ratio:.1f}x average (>=1.5x required)",
            f"Range size: {range_size / entry * 100:.1f}% of price",
        ],
        trading_style=TradingStyle.INTRADAY,
        timeframe="Intraday",
        algorithm="Opening range from the first 4 bars of a 15-bar window; breakout close on >=1.5x volume.",
        confirmation=[f"Range: ${range_low:.2f}-${range_high:.2f}", f"Volume: {ratio:.1f}x"],
    )


def detect_vwap_bounce(
    frame: PriceFrame, indicators: IndicatorSeries, i: int,
) -> Optional[DetectedPattern]:
    """Mean-reversion touch of VWAP filtered by the 10-bar close slope."""
    f = frame
    if i < VWAP_SLOPE_BARS or indicators.vwap is None:
        return None
    vwap = value_at(indicators.vwap, i)
    if vwap is None:
        return None

    closes = f.close[i - VWAP_SLOPE_BARS:i + 1]
    slope = float(closes[-1] - closes[0]) / len(closes)
    if slope > 0:
        trend = SignalDirection.BULLISH
    elif slope < 0:
        trend = SignalDirection.BEARISH
    else:
        trend = SignalDirection.NEUTRAL

    prev = i - 1
    bounce = f.low[prev] <= vwap and f.close[i] > vwap and trend != SignalDirection.BEARISH
    reject = f.high[prev] >= vwap and f.close[i] < vwap and trend != SignalDirection.BULLISH
    if not (bounce or reject):
        return None

    avg_volume = f.avg_volume_before(i)
    volume_confirmed = avg_volume > 0 and f.volume[i] >= avg_volume * 1.2
    probability = apply_bonuses(70.5, [
        (volume_confirmed, 8),
        (abs(slope) < 0.001, 5),
    ], cap=95)

    entry = f.close[i]
    atr = f.trailing_atr(i) or 0.01 * entry
    if bounce:
        stop = vwap * 0.998
        target = entry + atr * 1.5
    else:
        stop = vwap * 1.002
        target = entry - atr * 1.5
    direction = SignalDirection.BULLISH if bounce else SignalDirection.BEARISH

    return make_pattern(
        id=f"VWAP_BOUNCE_{direction.value.upper()}_{i}",
        type=PatternCategory.COMBINATION,
        name=f"VWAP {'Bounce' if bounce else 'Reject'}",
        code="VWB",
        description=f"Intraday VWAP {'bounce' if bounce else 'rejection'} with trend filter",
        start_index=prev,
        end_index=i,
        probability=probability,
        win_rate=70.5,
        risk_reward=_risk_reward(entry, target, stop),
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.MEDIUM if volume_confirmed else ConfidenceLevel.LOW,
        evidence=[
            f"Price {'bounced from' if bounce else 'rejected at'} VWAP (${vwap:.2f})",
            f"Trend filter: {trend.value} bias (MA slope: {slope:.4f})",
            "Volume confirmation" if volume_confirmed else "Low volume - reduced probability",
            "Mean reversion setup - tight stops, modest targets",
        ],
        trading_style=TradingStyle.INTRADAY,
        timeframe="Intraday",
        algorithm="VWAP as dynamic support/resistance with a slope filter; target 1.5 ATR.",
        confirmation=[
            f"VWAP: ${vwap:.2f}",
            f"Trend: {trend.value}",
            "Volume OK" if volume_confirmed else "Low Volume",
        ],
    )


def detect_liquidity_sweep(
    frame: PriceFrame, levels: list[SupportResistanceLevel], i: int,
) -> Optional[DetectedPattern]:
    """Spike through a nearby level followed by a close back on the original side."""
    f = frame
    if i < SWEEP_RANGE_BARS:
        return None
    close, prev = f.close[i], i - 1

    swept, bullish = None, False
    for level in levels:
        if level.price <= 0 or abs(close - level.price) / level.price > SWEEP_LEVEL_DISTANCE:
            continue
        if level.type == LevelType.SUPPORT:
            if f.low[i] < level.price <= f.low[prev] and close > level.price:
                swept, bullish = level, True
                break
        elif f.high[i] > level.price >= f.high[prev] and close < level.price:
            swept, bullish = level, False
            break
    if swept is None:
        return None

    avg_volume = f.avg_volume_before(i)
    volume_spike = avg_volume > 0 and f.volume[i] >= avg_volume * 1.3
    prior_high = float(f.high[i - SWEEP_RANGE_BARS:i].max())
    prior_low = float(f.low[i - SWEEP_RANGE_BARS:i].min())
    inside_range = prior_low <= close <= prior_high

    probability = apply_bonuses(68.9, [
        (volume_spike, 8),
        (inside_range, 7),
        (swept.strength >= 3, 5),
    ], cap=95)

    entry = close
    if bullish:
        stop = f.low[i] * 0.995
        target = swept.price + (swept.price - stop) * 1.5
    else:
        stop = f.high[i] * 1.005
        target = swept.price - (stop - swept.price) * 1.5
    direction = SignalDirection.BULLISH if bullish else SignalDirection.BEARISH
    kind = swept.type.value

    return make_pattern(
        id=f"LIQ_SWEEP_{direction.value.upper()}_{i}",
        type=PatternCategory.COMBINATION,
        name=f"{'Bullish' if bullish else 'Bearish'} Liquidity Sweep",
        code="LS",
        description=f"False {kind} breakout reversal - liquidity sweep detected",
        start_index=i - SWEEP_RANGE_BARS,
        end_index=i,
        probability=probability,
        win_rate=68.9,
        risk_reward=_risk_reward(entry, target, stop),
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.HIGH if volume_spike and inside_range else ConfidenceLevel.MEDIUM,
        evidence=[
            f"Liquidity sweep of {kind} at ${swept.price:.2f}",
            f"Price spiked {'below support' if bullish else 'above resistance'} then reversed",
            (f"Volume spike: {f.volume[i] / avg_volume:.1f}x average" if volume_spike
             else "No volume spike"),
            ("Confirmation: closed back inside prior range" if inside_range
             else "No range confirmation"),
            f"{kind.capitalize()} strength: {swept.strength:g}",
        ],
        trading_style=TradingStyle.INTRADAY,
        timeframe="Intraday",
        algorithm="Stop-hunt spike beyond a level within 3% of price that closes back across it.",
        confirmation=[
            f"Swept {kind}: ${swept.price:.2f}",
            "Volume spike" if volume_spike else "No volume",
            "Range confirm" if inside_range else "No confirm",
        ],
    )
