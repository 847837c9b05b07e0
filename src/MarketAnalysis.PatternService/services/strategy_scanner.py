"""
Multi-condition strategy scanners.

- 2-3 Day Swing Trade (ST): trend, volume, momentum and price action must all
  agree; ATR-sized stop and target.
- Triple Confirmation Bounce (TCB): uptrend pullback to the 50 MA or a
  horizontal support with bullish RSI/MACD momentum.
- Intraday Gap-Up Breakout (GUB): open above the prior high plus enough
  core and technical conditions.
"""

import logging
from typing import Optional

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle, LevelType,
    DetectedPattern, IndicatorSeries, SupportResistanceLevel,
)
from services.candlestick_detector import CandlestickDetector
from services.indicator_engine import value_at
from services.pattern_builder import make_pattern, apply_bonuses, confidence_from_probability
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

SWING_MIN_BARS = 50
SWING_VOLUME_RATIO = 1.2
SWING_STOP_ATR = 1.5
SWING_TARGET_ATR = 2.0
SWING_WIN_RATE = 72.0
SWING_CANDLE_NAMES = ("Bullish Engulfing", "Hammer", "Morning Star")

TCB_MIN_BARS = 200
TCB_SCAN_BARS = 20
TCB_SUPPORT_LOOKBACK = 20


# ---------- 2-3 day swing trade ----------

def _find_breakout_level(
    levels: list[SupportResistanceLevel], prev_close: float, close: float,
) -> Optional[SupportResistanceLevel]:
    return next((
        l for l in levels
        if l.type == LevelType.RESISTANCE
        and prev_close < l.price <= close
        and abs(close - l.price) / l.price <= 0.02
    ), None)


def _find_bounce_level(
    levels: list[SupportResistanceLevel], low: float, close: float,
) -> Optional[SupportResistanceLevel]:
    return next((
        l for l in levels
        if l.type == LevelType.SUPPORT
        and low <= l.price * 1.01
        and close >= l.price
        and abs(close - l.price) / l.price <= 0.03
    ), None)


def _has_bullish_candle(frame: PriceFrame, i: int) -> bool:
    """Bullish Engulfing, Hammer or Morning Star within the last three bars."""
    window = PriceFrame(frame.bars[max(0, i - 2):i + 1])
    return any(
        p.signal == SignalDirection.BULLISH and p.name in SWING_CANDLE_NAMES
        for p in CandlestickDetector(window).detect()
    )


def detect_swing_trades(
    frame: PriceFrame, indicators: IndicatorSeries, levels: list[SupportResistanceLevel],
) -> list[DetectedPattern]:
    f = frame
    if f.n < SWING_MIN_BARS or indicators.macd is None:
        return []
    rsi_series, atr_series = indicators.rsi, indicators.atr
    macd_line, macd_signal = indicators.macd.line, indicators.macd.signal
    sma50_series, sma200_series = indicators.sma.sma50, indicators.sma.sma200
    if None in (rsi_series, atr_series, sma50_series, sma200_series):
        return []

    signals: list[DetectedPattern] = []
    for i in range(SWING_MIN_BARS, f.n - 1):
        rsi = [value_at(rsi_series, j) for j in (i, i - 1, i - 2)]
        line = [value_at(macd_line, j) for j in (i, i - 1, i - 2)]
        sig = [value_at(macd_signal, j) for j in (i, i - 1, i - 2)]
        sma50, sma200 = value_at(sma50_series, i), value_at(sma200_series, i)
        atr = value_at(atr_series, i)
        volume_avg = f.avg_volume_through(i) if i >= 19 else 0.0
        if None in rsi or None in line or None in sig or None in (sma50, sma200, atr) or not volume_avg:
            continue

        close = f.close[i]
        trend_ok = close > sma50 > sma200
        volume_ok = f.volume[i] > volume_avg * SWING_VOLUME_RATIO

        rsi_ok = (rsi[0] > 50 and (rsi[1] <= 50 or rsi[2] <= 50)) or rsi[0] > 55
        macd_cross = line[0] > sig[0] and (line[1] <= sig[1] or line[2] <= sig[2])
        histogram_rising = (line[0] - sig[0]) > (line[1] - sig[1])
        momentum_ok = rsi_ok and (macd_cross or histogram_rising)

        breakout = _find_breakout_level(levels, f.close[i - 1], close)
        bounce = None if breakout else _find_bounce_level(levels, f.low[i], close)

        if not (trend_ok and volume_ok and momentum_ok and (breakout or bounce)):
            continue

        candle_ok = _has_bullish_candle(f, i)
        probability = apply_bonuses(65, [
            (volume_ok, 10),
            (candle_ok, 8),
            (breakout is not None, 7),
            (rsi[0] > 55, 5),
        ], cap=90)

        stop = close - SWING_STOP_ATR * atr
        target = close + SWING_TARGET_ATR * atr
        action = (
            f"Breakout above resistance at ${breakout.price:.1f}" if breakout
            else f"Bounce from support at ${bounce.price:.1f}"
        )
        pattern = make_pattern(
            id=f"swing_trade_{i}",
            type=PatternCategory.SWING_STRATEGY,
            name="2-3 Day Swing Trade",
            code="ST",
            description="Swing trading signal with trend, volume, momentum, and price action confirmation",
            start_index=i,
            end_index=i,
            probability=probability,
            win_rate=SWING_WIN_RATE,
            risk_reward=SWING_TARGET_ATR / SWING_STOP_ATR,
            entry_price=close,
            target_price=target,
            stop_loss=stop,
            signal=SignalDirection.BULLISH,
            confidence=confidence_from_probability(probability, high=80, medium=70),
            evidence=[
                "Trend: Price > MA50 > MA200",
                f"Volume: {(f.volume[i] / volume_avg - 1) * 100:.0f}% above 20-day average",
                "Momentum: RSI above 50 with MACD bullish",
                f"Price Action: {action}",
                "Bullish candlestick pattern confirmed" if candle_ok else "No specific candlestick pattern",
                f"Target: ${target:.1f} (+{(target / close - 1) * 100:.1f}%)",
                f"Stop: ${stop:.1f} (-{(1 - stop / close) * 100:.1f}%)",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Trend (MA alignment), volume > 1.2x average, RSI + MACD momentum, "
                      "breakout/bounce price action; ATR-based 1.5/2.0 stop and target.",
            confirmation=[
                "All trend conditions met",
                "Volume surge confirmed",
                "Momentum indicators aligned",
                "Price action signal triggered",
            ],
        )
        if pattern is not None:
            signals.append(pattern)

    logger.debug(f"Swing scanner found {len(signals)} signals over {f.n} bars")
    return signals


# ---------- Triple confirmation bounce ----------

def _support_bounce(frame: PriceFrame, sma50: float, i: int) -> Optional[tuple[float, str, bool]]:
    """(support level, description, touching) for a pullback to the 50 MA or the 20-bar low."""
    f = frame
    close, low = f.close[i], f.low[i]
    near_ma = abs(close - sma50) / sma50 <= 0.02
    touching_ma = low <= sma50 and close >= sma50 * 0.995
    if near_ma or touching_ma:
        return sma50, "50-day MA", touching_ma

    support = float(f.low[max(0, i - TCB_SUPPORT_LOOKBACK):i].min())
    if support <= 0:
        return None
    near = abs(close - support) / support <= 0.015
    touching = low <= support * 1.005 and close > support
    if near or touching:
        return support, "Horizontal Support", touching
    return None


def _bullish_momentum(indicators: IndicatorSeries, i: int) -> Optional[str]:
    """Momentum details when RSI and MACD both lean bullish at i."""
    rsi = [value_at(indicators.rsi, j) for j in (i, i - 1, i - 2)]
    if None in rsi or indicators.macd is None:
        return None
    macd = indicators.macd
    line = [value_at(macd.line, j) for j in (i, i - 1)]
    sig = [value_at(macd.signal, j) for j in (i, i - 1)]
    hist = [value_at(macd.histogram, j) for j in (i, i - 1)]
    if None in line or None in sig or None in hist:
        return None

    oversold = rsi[0] < 40
    rising = rsi[0] > rsi[1] > rsi[2]
    curling_up = rsi[0] > rsi[1] and not oversold
    macd_cross = line[0] > sig[0] and line[1] <= sig[1]
    histogram_rising = hist[0] > hist[1]
    line_rising = line[0] > line[1]

    if not ((oversold and rising) or curling_up):
        return None
    if not (macd_cross or histogram_rising or line_rising):
        return None

    parts = ["RSI rising from oversold (<40)" if oversold and rising else "RSI curling up from pullback"]
    if macd_cross:
        parts.append("MACD bullish crossover")
    elif histogram_rising:
        parts.append("MACD histogram rising")
    else:
        parts.append("MACD line rising")
    return ", ".join(parts)


def detect_triple_confirmation_bounce(
    frame: PriceFrame, indicators: IndicatorSeries,
) -> list[DetectedPattern]:
    f = frame
    if f.n < TCB_MIN_BARS:
        return []
    sma50_series, sma200_series = indicators.sma.sma50, indicators.sma.sma200
    if sma50_series is None or sma200_series is None:
        return []

    recent_volume_avg = float(f.volume[-20:].sum()) / 20
    strategies: list[DetectedPattern] = []
    for i in range(max(TCB_MIN_BARS - 1, f.n - TCB_SCAN_BARS), f.n):
        sma50, sma200 = value_at(sma50_series, i), value_at(sma200_series, i)
        if sma50 is None or sma200 is None or sma50 <= 0:
            continue
        close = f.close[i]
        if not (sma50 > sma200 and close > sma200):
            continue

        support = _support_bounce(f, sma50, i)
        if support is None:
            continue
        momentum_details = _bullish_momentum(indicators, i)
        if momentum_details is None:
            continue
        level, support_kind, support_strong = support

        volume_ok = f.volume[i] > recent_volume_avg
        probability = apply_bonuses(72, [
            (volume_ok, 8),
            (support_strong, 5),
        ], cap=90)

        stop = level * 0.98
        risk = close - stop
        if risk <= 0:
            continue
        target = max(close + risk * 2.0, close * 1.05)

        pattern = make_pattern(
            id=f"triple_confirmation_bounce_{i}",
            type=PatternCategory.SWING_STRATEGY,
            name="Triple Confirmation Bounce",
            code="TCB",
            description="Low-risk swing trade setup with trend, support, and momentum confirmation",
            start_index=i - 5,
            end_index=i,
            probability=probability,
            win_rate=76.3,
            risk_reward=(target - close) / risk,
            entry_price=close,
            target_price=target,
            stop_loss=stop,
            signal=SignalDirection.BULLISH,
            confidence=ConfidenceLevel.HIGH if probability > 80 else ConfidenceLevel.MEDIUM,
            evidence=[
                "Uptrend: 50MA > 200MA, Price > 200MA",
                f"Support Bounce: {support_kind} at ${level:.1f}",
                f"Momentum: {momentum_details}",
                "Volume: Above average" if volume_ok else "Volume: Below average (reduces probability)",
                f"Target: ${target:.1f} ({(target / close - 1) * 100:.1f}% gain)",
                f"Stop: ${stop:.1f} ({(1 - stop / close) * 100:.1f}% risk)",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Uptrend via 50MA > 200MA, pullback to the 50MA or 20-bar support, "
                      "RSI/MACD turning up; volume above average raises probability.",
            confirmation=[
                "Price above 200-day MA",
                "RSI and MACD showing bullish momentum",
                "Support level holds",
            ],
        )
        if pattern is not None:
            strategies.append(pattern)

    logger.debug(f"Triple confirmation scan found {len(strategies)} setups")
    return strategies


# ---------- Intraday gap-up breakout ----------

def detect_gap_up_breakouts(
    frame: PriceFrame,
    indicators: IndicatorSeries,
    min_gap_pct: float = 0.3,
    core_gap_pct: float = 0.5,
) -> list[DetectedPattern]:
    f = frame
    if f.n < 20:
        return []

    macd = indicators.macd
    signals: list[DetectedPattern] = []
    for i in range(20, f.n):
        prev_high = f.high[i - 1]
        if prev_high <= 0 or f.open[i] <= prev_high:
            continue
        gap_pct = (f.open[i] - prev_high) / prev_high * 100
        if gap_pct < min_gap_pct:
            continue

        close = f.close[i]
        volume_avg = f.avg_volume_through(i)
        volume_ok = f.volume[i] > volume_avg * 1.2
        bullish_candle = close > f.open[i]
        ma10 = float(f.close[i - 9:i + 1].mean())
        ma20 = float(f.close[i - 19:i + 1].mean())
        rsi = value_at(indicators.rsi, i)
        macd_line = value_at(macd.line, i) if macd is not None else None
        macd_signal = value_at(macd.signal, i) if macd is not None else None

        core = [gap_pct >= core_gap_pct, volume_ok, bullish_candle]
        technical = [
            (close > ma10, 15),
            (close > ma20, 10),
            (ma10 > ma20, 15),
            (rsi is not None and 40 <= rsi <= 70, 20),
            (macd_line is not None and macd_signal is not None and macd_line > macd_signal, 15),
        ]
        conditions_met = sum(core) + sum(1 for met, _ in technical if met)
        if conditions_met < 4:
            continue
        probability = apply_bonuses(25, technical, cap=95)

        entry = f.high[i]
        gap = f.open[i] - prev_high
        target = entry + gap * 2
        stop = f.open[i] * 0.98
        risk = entry - stop
        if risk <= 0:
            continue
        risk_reward = (target - entry) / risk
        if risk_reward < 1.5:
            continue

        ma_bullish = ma10 > ma20
        pattern = make_pattern(
            id=f"intraday_gap_breakout_{i}",
            type=PatternCategory.COMBINATION,
            name="Intraday Gap-Up Breakout",
            code="GUB",
            description=f"Gap-up breakout with {gap_pct:.1f}% gap and volume confirmation",
            start_index=i,
            end_index=i,
            probability=probability,
            win_rate=72.0,
            risk_reward=risk_reward,
            entry_price=entry,
            target_price=target,
            stop_loss=stop,
            signal=SignalDirection.BULLISH,
            confidence=confidence_from_probability(probability, high=80, medium=65),
            evidence=[
                f"Gap size: {gap_pct:.1f}%",
                f"Volume: {'Confirmed' if volume_ok else 'Not confirmed'}"
                + (f" ({f.volume[i] / volume_avg:.1f}x avg)" if volume_avg > 0 else ""),
                f"Price action: {'Bullish' if bullish_candle else 'Bearish'} candle",
                f"MA alignment: {'Bullish' if ma_bullish else 'Bearish'}",
                f"RSI: {rsi:.1f}" if rsi is not None else "RSI: N/A",
                f"Risk/Reward: {risk_reward:.2f}:1",
            ],
            trading_style=TradingStyle.INTRADAY,
            timeframe="5M-1H",
            algorithm="Open above the prior high by the minimum gap, at least 4 of the core/technical "
                      "conditions; target 2x gap distance, stop 2% below the open.",
            confirmation=[
                "Gap-up opening above previous high",
                "Bullish price action confirmed",
                "Favorable risk-reward ratio",
            ],
        )
        if pattern is not None:
            signals.append(pattern)

    logger.debug(f"Gap-up scanner found {len(signals)} signals over {f.n} bars")
    return signals
