"""
Single and multi-candle reversal/continuation patterns.

Detects: Bullish/Bearish Engulfing, Hammer, Shooting Star, Doji, Morning Star,
Evening Star, Inside Bar, Marubozu. Every detector looks at one index and
emits at most one pattern there.
"""

import logging
from typing import Callable, Optional

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle, DetectedPattern,
)
from services.pattern_builder import make_pattern
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

STAR_LARGE_BODY = 0.6      # body share of range for the outer star candles
STAR_SMALL_BODY = 0.3      # middle candle body vs first body
STAR_VOLUME_RATIO = 1.3
MARUBOZU_MAX_WICK = 0.01   # wick / body
MARUBOZU_VOLUME_RATIO = 1.2
DOJI_MAX_BODY = 0.1        # body share of range
SHADOW_RATIO = 2.0
SHADOW_OPPOSITE_MAX = 0.1
SHADOW_MAX_BODY = 0.3


class CandlestickDetector:
    """Scans every bar of a PriceFrame for candlestick patterns."""

    def __init__(self, frame: PriceFrame):
        self.frame = frame
        self._detectors: list[Callable[[int], Optional[DetectedPattern]]] = [
            self._detect_bullish_engulfing,
            self._detect_bearish_engulfing,
            self._detect_hammer,
            self._detect_shooting_star,
            self._detect_doji,
            self._detect_morning_star,
            self._detect_evening_star,
            self._detect_inside_bar,
            self._detect_marubozu,
        ]

    def detect(self, start: int = 1, end: Optional[int] = None) -> list[DetectedPattern]:
        """Run every detector on indices [start, end); results ordered by index, then detector."""
        end = self.frame.n if end is None else min(end, self.frame.n)
        results: list[DetectedPattern] = []
        for i in range(max(1, start), end):
            for fn in self._detectors:
                pattern = fn(i)
                if pattern is not None:
                    results.append(pattern)
        logger.debug(f"Candlestick scan over {self.frame.n} bars found {len(results)} patterns")
        return results

    # ---------- Engulfing ----------
    def _detect_bullish_engulfing(self, i: int) -> Optional[DetectedPattern]:
        f = self.frame
        if i < 1:
            return None
        p = i - 1
        if not (f.is_bearish(p) and f.is_bullish(i)):
            return None
        if not (f.open[i] < f.close[p] and f.close[i] > f.open[p]):
            return None

        entry = f.close[i]
        return make_pattern(
            id=f"bullish_engulfing_{i}",
            type=PatternCategory.CANDLESTICK,
            name="Bullish Engulfing",
            code="BE",
            description="Strong reversal pattern where a large green candle engulfs the previous red candle",
            start_index=p,
            end_index=i,
            probability=68,
            win_rate=68.2,
            risk_reward=1.5,
            entry_price=entry,
            target_price=entry + (entry - f.low[p]) * 1.5,
            stop_loss=f.low[p] * 0.99,
            signal=SignalDirection.BULLISH,
            confidence=ConfidenceLevel.HIGH,
            evidence=[
                "Previous candle was bearish",
                "Current candle completely engulfs previous",
                "Strong buying pressure indicated",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Compares open/close of consecutive candles; a bullish body that engulfs the prior bearish body.",
        )

    def _detect_bearish_engulfing(self, i: int) -> Optional[DetectedPattern]:
        f = self.frame
        if i < 1:
            return None
        p = i - 1
        if not (f.is_bullish(p) and f.is_bearish(i)):
            return None
        if not (f.open[i] > f.close[p] and f.close[i] < f.open[p]):
            return None

        entry = f.close[i]
        return make_pattern(
            id=f"bearish_engulfing_{i}",
            type=PatternCategory.CANDLESTICK,
            name="Bearish Engulfing",
            code="BR",
            description="Strong reversal pattern where a large red candle engulfs the previous green candle",
            start_index=p,
            end_index=i,
            probability=65,
            win_rate=65.4,
            risk_reward=1.5,
            entry_price=entry,
            target_price=entry - (f.high[p] - entry) * 1.5,
            stop_loss=f.high[p] * 1.01,
            signal=SignalDirection.BEARISH,
            confidence=ConfidenceLevel.HIGH,
            evidence=[
                "Previous candle was bullish",
                "Current candle completely engulfs previous",
                "Strong selling pressure indicated",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="A bearish body that engulfs the prior bullish body, signalling strong selling pressure.",
        )

    # ---------- Shadow patterns ----------
    def _detect_hammer(self, i: int) -> Optional[DetectedPattern]:
        f = self.frame
        body, total = f.body(i), f.range(i)
        if body <= 0 or total <= 0:
            return None
        lower, upper = f.lower_wick(i), f.upper_wick(i)
        if not (lower >= body * SHADOW_RATIO and upper <= body * SHADOW_OPPOSITE_MAX
                and body <= total * SHADOW_MAX_BODY):
            return None

        entry = f.high[i]
        return make_pattern(
            id=f"hammer_{i}",
            type=PatternCategory.CANDLESTICK,
            name="Hammer",
            code="H",
            description="Bullish reversal pattern with long lower shadow and small body",
            start_index=i,
            end_index=i,
            probability=59,
            win_rate=59.1,
            risk_reward=2.0,
            entry_price=entry,
            target_price=entry + (entry - f.low[i]),
            stop_loss=f.low[i] * 0.98,
            signal=SignalDirection.BULLISH,
            confidence=ConfidenceLevel.MEDIUM,
            evidence=[
                f"Lower shadow is {lower / body:.1f}x body size",
                "Small upper shadow indicates buying pressure",
                "Formed after downtrend (reversal signal)",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Lower shadow at least 2x the body with almost no upper shadow: rejection of lower prices.",
        )

    def _detect_shooting_star(self, i: int) -> Optional[DetectedPattern]:
        f = self.frame
        body, total = f.body(i), f.range(i)
        if body <= 0 or total <= 0:
            return None
        lower, upper = f.lower_wick(i), f.upper_wick(i)
        if not (upper >= body * SHADOW_RATIO and lower <= body * SHADOW_OPPOSITE_MAX
                and body <= total * SHADOW_MAX_BODY):
            return None

        entry = f.low[i]
        return make_pattern(
            id=f"shooting_star_{i}",
            type=PatternCategory.CANDLESTICK,
            name="Shooting Star",
            code="SS",
            description="Bearish reversal pattern with long upper shadow and small body",
            start_index=i,
            end_index=i,
            probability=56,
            win_rate=56.8,
            risk_reward=2.0,
            entry_price=entry,
            target_price=entry - (f.high[i] - entry),
            stop_loss=f.high[i] * 1.02,
            signal=SignalDirection.BEARISH,
            confidence=ConfidenceLevel.MEDIUM,
            evidence=[
                f"Upper shadow is {upper / body:.1f}x body size",
                "Small lower shadow indicates selling pressure",
                "Formed after uptrend (reversal signal)",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Upper shadow at least 2x the body with almost no lower shadow: rejection of higher prices.",
        )

    def _detect_doji(self, i: int) -> Optional[DetectedPattern]:
        f = self.frame
        body, total = f.body(i), f.range(i)
        if total <= 0 or body > total * DOJI_MAX_BODY:
            return None

        close = f.close[i]
        return make_pattern(
            id=f"doji_{i}",
            type=PatternCategory.CANDLESTICK,
            name="Doji",
            code="D",
            description="Indecision pattern where open and close are nearly equal",
            start_index=i,
            end_index=i,
            probability=50,
            win_rate=50.0,
            risk_reward=1.0,
            entry_price=close,
            target_price=close,
            stop_loss=close,
            signal=SignalDirection.NEUTRAL,
            confidence=ConfidenceLevel.LOW,
            evidence=[
                f"Body is only {body / total * 100:.1f}% of total range",
                "Market indecision between buyers and sellers",
                "Often signals trend reversal or continuation",
            ],
            trading_style=TradingStyle.INTRADAY,
            algorithm="Body under 10% of the bar range, showing equilibrium between buyers and sellers.",
        )

    # ---------- Three-candle stars ----------
    def _detect_morning_star(self, i: int) -> Optional[DetectedPattern]:
        return self._detect_star(i, bullish=True)

    def _detect_evening_star(self, i: int) -> Optional[DetectedPattern]:
        return self._detect_star(i, bullish=False)

    def _detect_star(self, i: int, bullish: bool) -> Optional[DetectedPattern]:
        f = self.frame
        if i < 2:
            return None
        a, b, c = i - 2, i - 1, i
        avg_volume = f.avg_volume_before(i)
        if avg_volume <= 0:
            return None

        first_body, third_body = f.body(a), f.body(c)
        if bullish:
            outer_ok = f.is_bearish(a) and f.is_bullish(c)
            past_midpoint = f.close[c] > (f.open[a] + f.close[a]) / 2
        else:
            outer_ok = f.is_bullish(a) and f.is_bearish(c)
            past_midpoint = f.close[c] < (f.open[a] + f.close[a]) / 2

        if not (
            outer_ok
            and first_body > f.range(a) * STAR_LARGE_BODY
            and f.body(b) < first_body * STAR_SMALL_BODY
            and third_body > f.range(c) * STAR_LARGE_BODY
            and past_midpoint
            and f.volume[c] >= avg_volume * STAR_VOLUME_RATIO
        ):
            return None

        entry = f.close[c]
        volume_ratio = f.volume[c] / avg_volume
        if bullish:
            stop = min(f.low[b], f.low[c]) * 0.99
            target = entry + (entry - stop) * 2
        else:
            stop = max(f.high[b], f.high[c]) * 1.01
            target = entry - (stop - entry) * 2

        side = "buyer" if bullish else "seller"
        win_rate = 70.1 if bullish else 69.4
        return make_pattern(
            id=f"{'MS' if bullish else 'ES'}_{i}",
            type=PatternCategory.CANDLESTICK,
            name="Morning Star" if bullish else "Evening Star",
            code="MS" if bullish else "ES",
            description=(
                "Bullish reversal pattern at downtrend bottom" if bullish
                else "Bearish reversal pattern at uptrend top"
            ),
            start_index=a,
            end_index=c,
            probability=75 if bullish else 74,
            win_rate=win_rate,
            risk_reward=2.0,
            entry_price=entry,
            target_price=target,
            stop_loss=stop,
            signal=SignalDirection.BULLISH if bullish else SignalDirection.BEARISH,
            confidence=ConfidenceLevel.HIGH,
            evidence=[
                f"Large {'red' if bullish else 'green'} candle followed by indecision and a strong reversal",
                f"Volume surge {volume_ratio:.1f}x average confirms {side} interest",
                f"Closes {'above' if bullish else 'below'} first candle midpoint showing momentum shift",
                f"Classic 3-candle reversal pattern with {win_rate}% historical win rate",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Large candle, small indecision candle, then a large opposite candle past the first midpoint on >=1.3x volume.",
            confirmation=[f"Volume {volume_ratio:.1f}x average"],
        )

    # ---------- Inside bar ----------
    def _detect_inside_bar(self, i: int) -> Optional[DetectedPattern]:
        f = self.frame
        if i < 1:
            return None
        p = i - 1
        if not (f.high[i] <= f.high[p] and f.low[i] >= f.low[p]):
            return None

        trend = f.trend(i)
        if trend > 0:
            signal = SignalDirection.BULLISH
        elif trend < 0:
            signal = SignalDirection.BEARISH
        else:
            signal = SignalDirection.NEUTRAL

        if signal == SignalDirection.BULLISH:
            entry = f.high[p] * 1.001
            stop = f.low[i] * 0.99
            target = entry + (entry - stop) * 2
        else:
            entry = f.low[p] * 0.999
            stop = f.high[i] * 1.01
            target = entry - (stop - entry) * 2

        return make_pattern(
            id=f"IB_{i}",
            type=PatternCategory.CANDLESTICK,
            name="Inside Bar",
            code="IB",
            description="Range contraction pattern awaiting breakout",
            start_index=p,
            end_index=i,
            probability=65,
            win_rate=71.6,
            risk_reward=2.0,
            entry_price=entry,
            target_price=target,
            stop_loss=stop,
            signal=signal,
            confidence=ConfidenceLevel.MEDIUM,
            evidence=[
                "Current candle entirely within previous candle's range",
                "Range contraction suggests imminent volatility expansion",
                "Awaiting breakout with volume >=1.5x average for confirmation",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Current high <= previous high and current low >= previous low; bias from the 20-bar trend.",
            confirmation=["Requires volume breakout for entry"],
        )

    # ---------- Marubozu ----------
    def _detect_marubozu(self, i: int) -> Optional[DetectedPattern]:
        f = self.frame
        body, total = f.body(i), f.range(i)
        if total <= 0 or body <= 0:
            return None
        avg_volume = f.avg_volume_before(i)
        if avg_volume <= 0:
            return None
        if (total - body) / body >= MARUBOZU_MAX_WICK:
            return None
        if f.volume[i] < avg_volume * MARUBOZU_VOLUME_RATIO:
            return None

        bullish = f.is_bullish(i)
        trend = f.trend(i)
        if not ((bullish and trend > 0) or (not bullish and trend < 0)):
            return None

        entry = f.close[i]
        if bullish:
            stop = f.low[i] * 0.99
            target = entry + (entry - stop) * 2
        else:
            stop = f.high[i] * 1.01
            target = entry - (stop - entry) * 2

        volume_ratio = f.volume[i] / avg_volume
        direction = "bullish" if bullish else "bearish"
        return make_pattern(
            id=f"MB_{i}",
            type=PatternCategory.CANDLESTICK,
            name=f"{direction.capitalize()} Marubozu",
            code="MB",
            description=f"Strong {direction} continuation signal",
            start_index=i,
            end_index=i,
            probability=70,
            win_rate=66.7,
            risk_reward=2.0,
            entry_price=entry,
            target_price=target,
            stop_loss=stop,
            signal=SignalDirection.BULLISH if bullish else SignalDirection.BEARISH,
            confidence=ConfidenceLevel.HIGH,
            evidence=[
                f"No wicks - {'buyers' if bullish else 'sellers'} in complete control",
                f"Volume {volume_ratio:.1f}x average confirms strength",
                "Strong trend continuation pattern",
            ],
            trading_style=TradingStyle.SWING,
            algorithm="Wicks under 1% of the body on >=1.2x average volume, in the direction of the 20-bar trend.",
            confirmation=[f"Volume {volume_ratio:.1f}x average"],
        )


def detect_candlestick_patterns(frame: PriceFrame) -> list[DetectedPattern]:
    return CandlestickDetector(frame).detect()
