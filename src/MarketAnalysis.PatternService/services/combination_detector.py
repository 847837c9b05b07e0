"""
Multi-factor setups evaluated at the most recent bar.

Combines candlestick, moving-average, level and volume conditions into
higher-conviction patterns: engulfing at a level (BES/BER), golden/death
cross follow-through (GCP/DCF), volume breakouts and breakdowns (BRV/BSV),
RSI divergence at support (RS+), inside-bar volume breakout (IBV),
cup & handle (CH) and EMA pullback (EP).
"""

import logging
from typing import Optional

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle, LevelType,
    DetectedPattern, IndicatorSeries, SupportResistanceLevel,
)
from services.confluence_detector import detect_rsi_divergence, detect_confluence_signals
from services.eod_classifier import detect_eod_sharp_drop
from services.indicator_engine import value_at
from services.intraday_detector import (
    detect_opening_range_breakout, detect_vwap_bounce, detect_liquidity_sweep,
)
from services.pattern_builder import make_pattern, apply_bonuses
from services.support_resistance import nearest_level
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

MIN_BARS = 50
LEVEL_DISTANCE = 0.02
CROSS_LOOKBACK = 5
MA_PROXIMITY = 0.015
BREAKOUT_VOLUME_RATIO = 1.5

CUP_LOOKBACK = 30
CUP_MIN_DEPTH = 0.12
CUP_MAX_DEPTH = 0.33
HANDLE_MAX_DEPTH = 0.12


# ---------- Engulfing at a level ----------

def detect_engulfing_at_level(
    frame: PriceFrame, levels: list[SupportResistanceLevel], i: int, bullish: bool,
) -> Optional[DetectedPattern]:
    f = frame
    if i < 1:
        return None
    p = i - 1
    if bullish:
        engulfs = f.is_bearish(p) and f.is_bullish(i) and f.open[i] < f.close[p] and f.close[i] > f.open[p]
    else:
        engulfs = f.is_bullish(p) and f.is_bearish(i) and f.open[i] > f.close[p] and f.close[i] < f.open[p]
    if not engulfs:
        return None

    close = f.close[i]
    level_type = LevelType.SUPPORT if bullish else LevelType.RESISTANCE
    level = nearest_level(levels, level_type, close, LEVEL_DISTANCE)
    if level is None:
        return None

    if bullish:
        target = close + (close - level.price) * 2.1
        stop = level.price * 0.98
    else:
        target = close - (level.price - close) * 2.0
        stop = level.price * 1.02

    zone = "demand" if bullish else "supply"
    return make_pattern(
        id=f"{'bullish' if bullish else 'bearish'}_engulfing_{level_type.value}_{i}",
        type=PatternCategory.COMBINATION,
        name=f"{'Bullish' if bullish else 'Bearish'} Engulfing + {level_type.value.capitalize()} Zone",
        code="BES" if bullish else "BER",
        description=f"Reversal signal from a {zone} area with engulfing pattern",
        start_index=p,
        end_index=i,
        probability=82 if bullish else 81,
        win_rate=78.5 if bullish else 77.3,
        risk_reward=2.1 if bullish else 2.0,
        entry_price=close,
        target_price=target,
        stop_loss=stop,
        signal=SignalDirection.BULLISH if bullish else SignalDirection.BEARISH,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            f"{'Bullish' if bullish else 'Bearish'} engulfing pattern confirmed",
            f"{level_type.value.capitalize()} level at ${level.price:.1f} ({level.touches} touches)",
            f"Candle closes {'above support' if bullish else 'below resistance'} zone",
            f"Higher probability due to {zone} area confluence",
        ],
        trading_style=TradingStyle.SWING,
        algorithm=f"Engulfing candle within {LEVEL_DISTANCE:.0%} of an established {level_type.value} level.",
        confirmation=(
            ["Volume above average", "RSI above 30", "Price above support zone"] if bullish
            else ["Volume above average", "RSI below 70", "Price rejected at resistance"]
        ),
    )


# ---------- Moving-average crosses ----------

def detect_cross_follow_through(
    frame: PriceFrame, indicators: IndicatorSeries, i: int, bullish: bool,
) -> Optional[DetectedPattern]:
    """Golden cross with pullback bounce (GCP) or death cross with failed rally (DCF)."""
    if i < 10:
        return None
    sma50_series, sma200_series = indicators.sma.sma50, indicators.sma.sma200
    sma50, sma200 = value_at(sma50_series, i), value_at(sma200_series, i)
    prev50, prev200 = value_at(sma50_series, i - CROSS_LOOKBACK), value_at(sma200_series, i - CROSS_LOOKBACK)
    if None in (sma50, sma200, prev50, prev200):
        return None

    f = frame
    close = f.close[i]
    near_ma = abs(close - sma50) / close <= MA_PROXIMITY
    if bullish:
        crossed = prev50 <= prev200 and sma50 > sma200
        reaction = f.low[i] <= sma50 < close
    else:
        crossed = prev50 >= prev200 and sma50 < sma200
        reaction = f.high[i] >= sma50 * 0.98 and close < sma50
    if not (crossed and near_ma and reaction):
        return None

    if bullish:
        target = close + (sma50 - sma200) * 1.5
        stop = sma50 * 0.97
    else:
        target = close - (sma200 - sma50) * 1.2
        stop = sma50 * 1.03

    return make_pattern(
        id=f"{'golden_cross_pullback' if bullish else 'death_cross_failure'}_{i}",
        type=PatternCategory.COMBINATION,
        name="Golden Cross + Pullback to 50 MA" if bullish else "Death Cross + Failed Rally to 50 MA",
        code="GCP" if bullish else "DCF",
        description=(
            "Long-term trend change with continuation signal at 50 MA support" if bullish
            else "Long-term downtrend confirmation with failed rebound attempt"
        ),
        start_index=i - CROSS_LOOKBACK,
        end_index=i,
        probability=76 if bullish else 74,
        win_rate=73.2 if bullish else 71.5,
        risk_reward=2.5 if bullish else 2.2,
        entry_price=close,
        target_price=target,
        stop_loss=stop,
        signal=SignalDirection.BULLISH if bullish else SignalDirection.BEARISH,
        confidence=ConfidenceLevel.HIGH,
        evidence=(
            ["50 MA crossed above 200 MA (Golden Cross)", "Price bounced at 50 MA support",
             "Long-term bullish trend confirmed"] if bullish
            else ["50 MA crossed below 200 MA (Death Cross)", "Failed rally at 50 MA resistance",
                  "Long-term bearish trend confirmed"]
        ),
        trading_style=TradingStyle.POSITION,
        algorithm=f"SMA50/SMA200 cross within {CROSS_LOOKBACK} bars and a test of the 50 MA.",
        confirmation=(
            ["Volume confirmation", "Price above 50 MA", "MACD bullish crossover"] if bullish
            else ["Volume on rejection", "Price below 50 MA", "MACD bearish crossover"]
        ),
    )


# ---------- Level breaks on volume ----------

def detect_level_break(
    frame: PriceFrame, levels: list[SupportResistanceLevel], i: int, bullish: bool,
) -> Optional[DetectedPattern]:
    """Resistance breakout (BRV) or support breakdown (BSV) on > 1.5x the 20-bar volume."""
    f = frame
    if bullish:
        level = next((
            l for l in levels
            if l.type == LevelType.RESISTANCE
            and f.close[i] > l.price >= f.open[i] and f.high[i] > l.price
        ), None)
    else:
        level = next((
            l for l in levels
            if l.type == LevelType.SUPPORT
            and f.close[i] < l.price <= f.open[i] and f.low[i] < l.price
        ), None)
    if level is None:
        return None

    avg_volume = f.avg_volume_through(i)
    if avg_volume <= 0 or f.volume[i] <= avg_volume * BREAKOUT_VOLUME_RATIO:
        return None

    close = f.close[i]
    if bullish:
        target = close + (close - level.price) * 2.3
        stop = level.price * 0.99
    else:
        target = close - (level.price - close) * 2.1
        stop = level.price * 1.01
    surge = (f.volume[i] / avg_volume - 1) * 100

    return make_pattern(
        id=f"{'resistance_breakout' if bullish else 'support_breakdown'}_volume_{i}",
        type=PatternCategory.COMBINATION,
        name="Breakout above Resistance + Volume Surge" if bullish else "Breakdown below Support + Volume Spike",
        code="BRV" if bullish else "BSV",
        description=(
            "Confirmed breakout with strong volume indicating institutional interest" if bullish
            else "Confirmed breakdown with panic selling or institutional exit"
        ),
        start_index=i,
        end_index=i,
        probability=79 if bullish else 77,
        win_rate=75.8 if bullish else 74.1,
        risk_reward=2.3 if bullish else 2.1,
        entry_price=close,
        target_price=target,
        stop_loss=stop,
        signal=SignalDirection.BULLISH if bullish else SignalDirection.BEARISH,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            f"{'Breakout above resistance' if bullish else 'Breakdown below support'} at ${level.price:.1f}",
            f"Volume surge: {surge:.0f}% above average",
            f"Strong {'buying' if bullish else 'selling'} pressure confirmed",
        ],
        trading_style=TradingStyle.SWING,
        algorithm="Bar crosses a level from open to close with volume above 1.5x the 20-bar average.",
        confirmation=[
            "Volume > 1.5x average",
            "Close above resistance" if bullish else "Close below support",
        ],
    )


# ---------- RSI divergence at support ----------

def detect_rsi_divergence_at_support(
    frame: PriceFrame, indicators: IndicatorSeries, levels: list[SupportResistanceLevel], i: int,
) -> Optional[DetectedPattern]:
    if i < 20 or indicators.rsi is None:
        return None
    if detect_rsi_divergence(frame, indicators, SignalDirection.BULLISH, i) is None:
        return None

    close = frame.close[i]
    support = next((
        l for l in levels
        if l.type == LevelType.SUPPORT and l.price > 0
        and abs(close - l.price) / l.price <= LEVEL_DISTANCE and close >= l.price * 0.98
    ), None)
    if support is None:
        return None

    avg_volume = frame.avg_volume_before(i)
    volume_confirmed = frame.volume[i] >= avg_volume * 1.1
    probability = apply_bonuses(78, [
        (volume_confirmed, 10),
        (support.strength > 3, 5),
    ], cap=95)

    stop = support.price * 0.97
    return make_pattern(
        id=f"RSI_SUPP_{i}",
        type=PatternCategory.COMBINATION,
        name="RSI Divergence + Support",
        code="RS+",
        description="RSI bullish divergence near established support zone",
        start_index=i - 20,
        end_index=i,
        probability=probability,
        win_rate=78.2,
        risk_reward=2.5,
        entry_price=close,
        target_price=close + (close - stop) * 2.5,
        stop_loss=stop,
        signal=SignalDirection.BULLISH,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            "RSI bullish divergence confirmed",
            f"Support zone at ${support.price:.2f} ({support.touches} touches)",
            "Price within 2% of support level",
            "Volume confirmation adds +10% probability" if volume_confirmed else "No volume confirmation",
        ],
        trading_style=TradingStyle.SWING,
        algorithm="Bullish RSI divergence within 2% of support; volume and level strength add probability.",
        confirmation=[
            f"Support: ${support.price:.2f}",
            "Volume confirmed" if volume_confirmed else "Volume not confirmed",
        ],
    )


# ---------- Inside bar breakout ----------

def detect_inside_bar_breakout(frame: PriceFrame, i: int) -> Optional[DetectedPattern]:
    """Bar i-1 sits inside mother bar i-2 and bar i breaks the mother's range on 1.5x volume."""
    f = frame
    if i < 2:
        return None
    inside, mother = i - 1, i - 2
    if not (f.high[inside] <= f.high[mother] and f.low[inside] >= f.low[mother]):
        return None

    avg_volume = f.avg_volume_before(i)
    if avg_volume <= 0 or f.volume[i] < avg_volume * BREAKOUT_VOLUME_RATIO:
        return None

    bullish = f.close[i] > f.high[mother] > f.open[i]
    bearish = f.close[i] < f.low[mother] < f.open[i]
    if not (bullish or bearish):
        return None

    mother_range = f.range(mother)
    entry = f.close[i]
    if bullish:
        stop = f.low[mother] - mother_range * 0.1
        target = entry + (entry - stop) * 2
    else:
        stop = f.high[mother] + mother_range * 0.1
        target = entry - (stop - entry) * 2
    ratio = f.volume[i] / avg_volume
    direction = SignalDirection.BULLISH if bullish else SignalDirection.BEARISH

    return make_pattern(
        id=f"IB_VOL_{i}",
        type=PatternCategory.COMBINATION,
        name=f"Inside Bar {'Bullish' if bullish else 'Bearish'} Breakout",
        code="IBV",
        description=f"Inside bar breakout with {ratio:.1f}x volume surge",
        start_index=mother,
        end_index=i,
        probability=74.5,
        win_rate=74.5,
        risk_reward=2.0,
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.HIGH,
        evidence=[
            "Inside bar pattern formed (range contraction)",
            f"{'Bullish' if bullish else 'Bearish'} breakout confirmed",
            f"Volume surge: {ratio:.1f}x average (>=1.5x required)",
        ],
        trading_style=TradingStyle.SWING,
        algorithm="Range contraction followed by a close beyond the mother bar on >=1.5x volume.",
        confirmation=[f"Volume: {ratio:.1f}x average", f"Breakout: {direction.value}"],
    )


# ---------- Cup & handle ----------

def detect_cup_and_handle(frame: PriceFrame, i: int) -> Optional[DetectedPattern]:
    f = frame
    if i < 40:
        return None
    start = i - CUP_LOOKBACK
    closes = f.close[start:i + 1]
    highs = f.high[start:i + 1]
    lows = f.low[start:i + 1]
    size = len(closes)

    # Rim: highest close in the middle of the window, scanning backwards
    rim_idx, rim = -1, 0.0
    for j in range(int(CUP_LOOKBACK * 0.7), int(CUP_LOOKBACK * 0.3) - 1, -1):
        if j < size and closes[j] > rim:
            rim, rim_idx = float(closes[j]), j
    if rim_idx == -1 or rim <= 0:
        return None

    bottom = rim
    for j in range(rim_idx + 1, int(size * 0.8)):
        bottom = min(bottom, float(lows[j]))

    handle_start = int(size * 0.75)
    handle_low = handle_high = float(closes[handle_start])
    for j in range(handle_start, size - 1):
        handle_low = min(handle_low, float(lows[j]))
        handle_high = max(handle_high, float(highs[j]))

    cup_depth = (rim - bottom) / rim
    handle_depth = (handle_high - handle_low) / handle_high if handle_high > 0 else 1.0
    if not (CUP_MIN_DEPTH <= cup_depth <= CUP_MAX_DEPTH):
        return None
    if handle_depth > HANDLE_MAX_DEPTH or f.close[i] < rim * 0.98:
        return None

    avg_volume = f.avg_volume_before(i)
    volume_confirmed = avg_volume > 0 and f.volume[i] >= avg_volume * 1.5
    probability = apply_bonuses(76.1, [(volume_confirmed, 10)], cap=95)

    entry = rim * 1.01
    stop = handle_low * 0.97
    target = entry + (rim - bottom) * 1.2
    if entry <= stop:
        return None

    return make_pattern(
        id=f"CUP_HANDLE_{i}",
        type=PatternCategory.COMBINATION,
        name="Cup & Handle Breakout",
        code="CH",
        description="Classic cup and handle pattern near breakout",
        start_index=start,
        end_index=i,
        probability=probability,
        win_rate=76.1,
        risk_reward=(target - entry) / (entry - stop),
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=SignalDirection.BULLISH,
        confidence=ConfidenceLevel.HIGH if volume_confirmed else ConfidenceLevel.MEDIUM,
        evidence=[
            f"Cup formed with {cup_depth * 100:.1f}% retracement (12-33% ideal)",
            f"Handle formed with {handle_depth * 100:.1f}% pullback (<12% ideal)",
            f"Price near cup rim (${rim:.2f}) - breakout imminent",
            (f"Volume surge {f.volume[i] / avg_volume:.1f}x confirmed" if volume_confirmed
             else "Awaiting volume confirmation"),
        ],
        trading_style=TradingStyle.SWING,
        algorithm="Rounded 12-33% cup over 30 bars with a shallow handle and price near the rim.",
        confirmation=[
            f"Cup Rim: ${rim:.2f}",
            "Volume confirmed" if volume_confirmed else "Awaiting volume",
        ],
    )


# ---------- EMA pullback ----------

def detect_ema_pullback(
    frame: PriceFrame, indicators: IndicatorSeries, i: int,
) -> Optional[DetectedPattern]:
    """Trend above (below) both EMAs, prior bar touches one and the close bounces (rejects)."""
    if i < 50:
        return None
    fast_series = indicators.ema.ema20 or indicators.sma.sma20
    slow_series = indicators.ema.ema50 or indicators.sma.sma50
    fast, slow = value_at(fast_series, i), value_at(slow_series, i)
    if fast is None or slow is None or slow == 0:
        return None

    f = frame
    close = f.close[i]
    prev = i - 1
    if close > fast > slow:
        bullish = True
        if f.low[prev] <= fast and close > fast:
            level = fast
        elif f.low[prev] <= slow and close > slow:
            level = slow
        else:
            return None
    elif close < fast < slow:
        bullish = False
        if f.high[prev] >= fast and close < fast:
            level = fast
        elif f.high[prev] >= slow and close < slow:
            level = slow
        else:
            return None
    else:
        return None

    avg_volume = f.avg_volume_before(i)
    volume_confirmed = avg_volume > 0 and f.volume[i] >= avg_volume * 1.3
    probability = apply_bonuses(72.8, [
        (volume_confirmed, 8),
        (abs(level - slow) / slow < 0.02, 5),
    ], cap=95)

    entry = close
    if bullish:
        stop = level * 0.985
        target = entry + (entry - stop) * 2
    else:
        stop = level * 1.015
        target = entry - (stop - entry) * 2
    ema_type = "20" if abs(level - fast) < abs(level - slow) else "50"
    direction = SignalDirection.BULLISH if bullish else SignalDirection.BEARISH

    return make_pattern(
        id=f"EMA_PB_{direction.value.upper()}_{i}",
        type=PatternCategory.COMBINATION,
        name=f"EMA {ema_type} {'Bullish' if bullish else 'Bearish'} Pullback",
        code="EP",
        description=f"Price {'bounced from' if bullish else 'rejected at'} EMA {ema_type} in {direction.value} trend",
        start_index=prev,
        end_index=i,
        probability=probability,
        win_rate=72.8,
        risk_reward=2.0,
        entry_price=entry,
        target_price=target,
        stop_loss=stop,
        signal=direction,
        confidence=ConfidenceLevel.HIGH if volume_confirmed else ConfidenceLevel.MEDIUM,
        evidence=[
            f"Strong {direction.value} trend (price {'above' if bullish else 'below'} both EMAs)",
            f"Pullback to EMA {ema_type} level (${level:.2f})",
            (f"Volume confirmation: {f.volume[i] / avg_volume:.1f}x average" if volume_confirmed
             else "Awaiting volume confirmation"),
        ],
        trading_style=TradingStyle.SWING,
        algorithm="Trend across the 20/50 EMAs, pullback touch on the prior bar, close back on the trend side.",
        confirmation=[
            f"EMA {ema_type}: ${level:.2f}",
            "Volume confirmed" if volume_confirmed else "Awaiting volume",
        ],
    )


# ---------- Orchestration ----------

def detect_advanced_combinations(
    frame: PriceFrame,
    indicators: IndicatorSeries,
    levels: list[SupportResistanceLevel],
    eod_min_avg_volume: float = 500_000,
    eod_min_price: float = 3.0,
) -> list[DetectedPattern]:
    """
    Evaluate every combination, confluence and intraday setup at the last bar.

    Needs at least 50 bars; returns patterns in a fixed detector order.
    """
    n = frame.n
    if n < MIN_BARS:
        return []
    i = n - 1

    results: list[Optional[DetectedPattern]] = [
        detect_engulfing_at_level(frame, levels, i, bullish=True),
        detect_cross_follow_through(frame, indicators, i, bullish=True),
        detect_level_break(frame, levels, i, bullish=True),
        detect_engulfing_at_level(frame, levels, i, bullish=False),
        detect_cross_follow_through(frame, indicators, i, bullish=False),
        detect_level_break(frame, levels, i, bullish=False),
    ]
    results.extend(detect_confluence_signals(frame, indicators, i))
    results.extend([
        detect_rsi_divergence_at_support(frame, indicators, levels, i),
        detect_inside_bar_breakout(frame, i),
        detect_cup_and_handle(frame, i),
        detect_ema_pullback(frame, indicators, i),
        detect_opening_range_breakout(frame, i),
        detect_vwap_bounce(frame, indicators, i),
        detect_liquidity_sweep(frame, levels, i),
        detect_eod_sharp_drop(
            frame, indicators, i,
            min_avg_volume=eod_min_avg_volume, min_price=eod_min_price,
        ),
    ])

    patterns = [p for p in results if p is not None]
    logger.debug(f"Combination scan at bar {i} found {len(patterns)} patterns")
    return patterns
