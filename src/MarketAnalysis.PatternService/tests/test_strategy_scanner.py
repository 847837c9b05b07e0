"""Unit tests for the swing, triple confirmation and gap-up strategy scanners."""

import pytest

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle, LevelType,
    IndicatorSeries, MACDSeries, MovingAverageSeries, SupportResistanceLevel,
)
from services.strategy_scanner import (
    detect_swing_trades, detect_triple_confirmation_bounce, detect_gap_up_breakouts,
)
from utils.price_frame import PriceFrame


def _resistance(price):
    return SupportResistanceLevel(
        price=price, type=LevelType.RESISTANCE, touches=3, strength=3, start_index=0, end_index=40,
    )


class TestSwingTrades:
    """All four gates must pass on a single bar."""

    def _frame(self, make_bars):
        rows = [(103.8, 104.2, 103.6, 104.0, 1000.0)] * 50 + [
            (104.1, 105.1, 104.0, 105.0, 3000.0),
            (105.0, 105.5, 104.5, 105.0, 1000.0),
        ]
        return PriceFrame(make_bars(rows))

    def _indicators(self, sma50=100.0):
        line = [1.0] * 52
        line[50] = 1.2
        return IndicatorSeries(
            rsi=[56.0] * 52,
            macd=MACDSeries(line=line, signal=[0.0] * 52, histogram=line),
            sma=MovingAverageSeries(sma50=[sma50] * 52, sma200=[90.0] * 52),
            atr=[2.0] * 52,
        )

    def test_breakout_signal(self, make_bars):
        patterns = detect_swing_trades(self._frame(make_bars), self._indicators(), [_resistance(104.5)])
        assert len(patterns) == 1
        p = patterns[0]
        assert p.id == "swing_trade_50"
        assert p.code == "ST"
        assert p.type == PatternCategory.SWING_STRATEGY
        assert (p.start_index, p.end_index) == (50, 50)
        assert p.probability == 87
        assert p.confidence == ConfidenceLevel.HIGH
        assert p.win_rate == pytest.approx(72.0)
        assert p.stop_loss == pytest.approx(102.0)
        assert p.target_price == pytest.approx(109.0)
        assert p.evidence[4] == "No specific candlestick pattern"

    def test_trend_gate(self, make_bars):
        patterns = detect_swing_trades(self._frame(make_bars), self._indicators(sma50=106.0), [_resistance(104.5)])
        assert patterns == []

    def test_price_action_gate(self, make_bars):
        assert detect_swing_trades(self._frame(make_bars), self._indicators(), []) == []

    def test_requires_history(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(40)))
        assert detect_swing_trades(frame, IndicatorSeries(), []) == []


class TestTripleConfirmationBounce:
    """Uptrend, 50 MA touch and turning momentum."""

    def _frame(self, make_bars, last_volume=2000.0):
        rows = [(100.5, 101.0, 100.0, 100.5, 1000.0)] * 199 + [(100.2, 101.5, 99.8, 101.0, last_volume)]
        return PriceFrame(make_bars(rows))

    def _indicators(self, sma50=100.0, rsi_tail=(30.0, 33.0, 36.0), last_line=-0.5):
        rsi = [50.0] * 200
        rsi[197], rsi[198], rsi[199] = rsi_tail
        line = [-1.0] * 200
        line[199] = last_line
        signal = [-0.8] * 200
        return IndicatorSeries(
            rsi=rsi,
            macd=MACDSeries(line=line, signal=signal, histogram=[l - s for l, s in zip(line, signal)]),
            sma=MovingAverageSeries(sma50=[sma50] * 200, sma200=[90.0] * 200),
        )

    def test_bounce_at_fifty_ma(self, make_bars):
        patterns = detect_triple_confirmation_bounce(self._frame(make_bars), self._indicators())
        assert len(patterns) == 1
        p = patterns[0]
        assert p.id == "triple_confirmation_bounce_199"
        assert p.code == "TCB"
        assert p.type == PatternCategory.SWING_STRATEGY
        assert p.start_index == 194
        assert p.probability == 85
        assert p.confidence == ConfidenceLevel.HIGH
        assert p.stop_loss == pytest.approx(98.0)
        assert p.target_price == pytest.approx(107.0)
        assert p.risk_reward == pytest.approx(2.0)
        assert p.evidence[2] == "Momentum: RSI rising from oversold (<40), MACD bullish crossover"

    def test_probability_ignores_momentum_strength(self, make_bars):
        # RSI curling up without oversold, MACD histogram rising without a cross
        indicators = self._indicators(rsi_tail=(45.0, 47.0, 50.0), last_line=-0.9)
        patterns = detect_triple_confirmation_bounce(self._frame(make_bars), indicators)
        assert len(patterns) == 1
        assert patterns[0].evidence[2] == "Momentum: RSI curling up from pullback, MACD histogram rising"
        assert patterns[0].probability == 85

    def test_below_average_volume(self, make_bars):
        patterns = detect_triple_confirmation_bounce(self._frame(make_bars, last_volume=1000.0), self._indicators())
        assert len(patterns) == 1
        assert patterns[0].probability == 77
        assert patterns[0].confidence == ConfidenceLevel.MEDIUM
        assert patterns[0].evidence[3] == "Volume: Below average (reduces probability)"

    def test_downtrend_rejected(self, make_bars):
        assert detect_triple_confirmation_bounce(self._frame(make_bars), self._indicators(sma50=80.0)) == []

    def test_requires_two_hundred_bars(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(150)))
        assert detect_triple_confirmation_bounce(frame, IndicatorSeries()) == []


class TestGapUpBreakouts:
    """Gap over the prior high with enough supporting conditions."""

    def _rows(self):
        rows = []
        for k in range(24):
            close = 100.0 + 0.5 * k
            rows.append((close - 0.2, close + 0.3, close - 0.5, close, 1000.0))
        rows.append((114.8, 115.6, 114.7, 115.5, 3000.0))
        return rows

    def test_flat_bars_emit_nothing(self, make_bars, flat):
        assert detect_gap_up_breakouts(PriceFrame(make_bars(flat(5))), IndicatorSeries()) == []
        assert detect_gap_up_breakouts(PriceFrame(make_bars(flat(30))), IndicatorSeries()) == []

    def test_gap_up_breakout(self, make_bars):
        patterns = detect_gap_up_breakouts(PriceFrame(make_bars(self._rows())), IndicatorSeries())
        assert len(patterns) == 1
        p = patterns[0]
        assert p.id == "intraday_gap_breakout_24"
        assert p.code == "GUB"
        assert p.type == PatternCategory.COMBINATION
        assert p.timeframe == "5M-1H"
        assert p.trading_style == TradingStyle.INTRADAY
        assert p.probability == 65
        assert p.confidence == ConfidenceLevel.LOW
        assert p.entry_price == pytest.approx(115.6)
        assert p.target_price == pytest.approx(121.6)
        assert p.stop_loss == pytest.approx(114.8 * 0.98)

    def test_momentum_raises_probability(self, make_bars):
        indicators = IndicatorSeries(
            rsi=[55.0] * 25,
            macd=MACDSeries(line=[1.0] * 25, signal=[0.5] * 25, histogram=[0.5] * 25),
        )
        patterns = detect_gap_up_breakouts(PriceFrame(make_bars(self._rows())), indicators)
        assert patterns[0].probability == 95
        assert patterns[0].confidence == ConfidenceLevel.HIGH

    def test_gap_below_minimum(self, make_bars):
        frame = PriceFrame(make_bars(self._rows()))
        patterns = detect_gap_up_breakouts(frame, IndicatorSeries(), min_gap_pct=5.0)
        assert patterns == []
