"""Unit tests for multi-factor combination setups."""

import pytest

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.technicals import (
    SignalDirection, ConfidenceLevel, TradingStyle, LevelType,
    IndicatorSeries, MovingAverageSeries, SupportResistanceLevel,
)
from services.combination_detector import (
    detect_engulfing_at_level, detect_cross_follow_through, detect_level_break,
    detect_inside_bar_breakout, detect_ema_pullback, detect_advanced_combinations,
)
from utils.price_frame import PriceFrame


def _level(price, level_type, touches=2):
    return SupportResistanceLevel(
        price=price, type=level_type, touches=touches, strength=touches,
        start_index=0, end_index=1,
    )


class TestEngulfingAtLevel:
    """Engulfing candles only count near a matching level."""

    def _frame(self, make_bars):
        return PriceFrame(make_bars([
            (102.0, 102.2, 100.3, 100.5, 1000.0),
            (100.2, 102.7, 100.0, 102.5, 1000.0),
        ]))

    def test_bullish_engulfing_at_support(self, make_bars):
        p = detect_engulfing_at_level(self._frame(make_bars), [_level(101.0, LevelType.SUPPORT)], 1, bullish=True)
        assert p.code == "BES"
        assert p.probability == 82
        assert p.target_price == pytest.approx(102.5 + 1.5 * 2.1)
        assert p.stop_loss == pytest.approx(101.0 * 0.98)

    def test_level_too_far(self, make_bars):
        assert detect_engulfing_at_level(
            self._frame(make_bars), [_level(95.0, LevelType.SUPPORT)], 1, bullish=True,
        ) is None

    def test_wrong_level_type(self, make_bars):
        assert detect_engulfing_at_level(
            self._frame(make_bars), [_level(101.0, LevelType.RESISTANCE)], 1, bullish=True,
        ) is None


class TestCrossFollowThrough:
    """Golden/death cross within 5 bars plus a test of the 50 MA."""

    def _frame(self, make_bars, last):
        rows = [(100.0, 100.5, 99.5, 100.0, 1000.0)] * 10 + [last]
        return PriceFrame(make_bars(rows))

    def test_golden_cross_pullback(self, make_bars):
        frame = self._frame(make_bars, (100.2, 101.2, 99.8, 101.0, 1000.0))
        indicators = IndicatorSeries(sma=MovingAverageSeries(
            sma50=[99.0] * 6 + [100.0] * 5, sma200=[99.5] * 11,
        ))
        p = detect_cross_follow_through(frame, indicators, 10, bullish=True)
        assert p.code == "GCP"
        assert p.start_index == 5
        assert p.trading_style == TradingStyle.POSITION
        assert p.target_price == pytest.approx(101.0 + 0.5 * 1.5)

    def test_death_cross_failed_rally(self, make_bars):
        frame = self._frame(make_bars, (99.2, 99.3, 98.2, 98.5, 1000.0))
        indicators = IndicatorSeries(sma=MovingAverageSeries(
            sma50=[100.0] * 6 + [99.0] * 5, sma200=[99.5] * 11,
        ))
        p = detect_cross_follow_through(frame, indicators, 10, bullish=False)
        assert p.code == "DCF"
        assert p.target_price == pytest.approx(98.5 - 0.5 * 1.2)
        assert p.stop_loss == pytest.approx(99.0 * 1.03)

    def test_death_cross_needs_proximity(self, make_bars):
        frame = self._frame(make_bars, (97.5, 98.0, 94.8, 95.0, 1000.0))
        indicators = IndicatorSeries(sma=MovingAverageSeries(
            sma50=[100.0] * 6 + [99.0] * 5, sma200=[99.5] * 11,
        ))
        assert detect_cross_follow_through(frame, indicators, 10, bullish=False) is None

    def test_missing_averages(self, make_bars):
        frame = self._frame(make_bars, (100.2, 101.2, 99.8, 101.0, 1000.0))
        assert detect_cross_follow_through(frame, IndicatorSeries(), 10, bullish=True) is None


class TestLevelBreak:
    """Breakouts need the bar to cross the level on a volume surge."""

    def _rows(self, flat, volume):
        return flat(20, price=99.0, spread=0.5) + [(99.0, 104.0, 98.8, 103.0, volume)]

    def test_resistance_breakout(self, make_bars, flat):
        frame = PriceFrame(make_bars(self._rows(flat, 5000.0)))
        p = detect_level_break(frame, [_level(100.0, LevelType.RESISTANCE)], 20, bullish=True)
        assert p.code == "BRV"
        assert p.target_price == pytest.approx(103.0 + 3.0 * 2.3)
        assert p.stop_loss == pytest.approx(99.0)

    def test_breakout_without_volume(self, make_bars, flat):
        frame = PriceFrame(make_bars(self._rows(flat, 1500.0)))
        assert detect_level_break(frame, [_level(100.0, LevelType.RESISTANCE)], 20, bullish=True) is None

    def test_support_breakdown(self, make_bars, flat):
        rows = flat(20, price=101.0, spread=0.5) + [(101.0, 101.2, 96.0, 97.0, 5000.0)]
        frame = PriceFrame(make_bars(rows))
        p = detect_level_break(frame, [_level(100.0, LevelType.SUPPORT)], 20, bullish=False)
        assert p.code == "BSV"
        assert p.signal == SignalDirection.BEARISH


class TestInsideBarBreakout:
    """Close beyond the mother bar on 1.5x volume."""

    def _rows(self, flat, volume):
        return flat(20) + [
            (100.0, 105.0, 95.0, 101.0, 1000.0),
            (100.0, 103.0, 97.0, 101.0, 1000.0),
            (104.0, 108.0, 103.5, 107.0, volume),
        ]

    def test_bullish_breakout(self, make_bars, flat):
        p = detect_inside_bar_breakout(PriceFrame(make_bars(self._rows(flat, 3000.0))), 22)
        assert p.code == "IBV"
        assert p.start_index == 20
        assert p.stop_loss == pytest.approx(94.0)
        assert p.target_price == pytest.approx(107.0 + 13.0 * 2)

    def test_breakout_needs_volume(self, make_bars, flat):
        assert detect_inside_bar_breakout(PriceFrame(make_bars(self._rows(flat, 1200.0))), 22) is None


class TestEMAPullback:
    """Falls back to the simple averages when EMAs are absent."""

    def test_bullish_pullback_on_sma_fallback(self, make_bars, flat):
        rows = flat(49, price=101.0, spread=0.5) + [
            (101.0, 101.5, 99.5, 101.0, 1000.0),
            (101.0, 102.5, 100.8, 102.0, 1000.0),
        ]
        indicators = IndicatorSeries(sma=MovingAverageSeries(sma20=[100.0] * 51, sma50=[98.0] * 51))
        p = detect_ema_pullback(PriceFrame(make_bars(rows)), indicators, 50)
        assert p.code == "EP"
        assert p.name == "EMA 20 Bullish Pullback"
        assert p.probability == pytest.approx(72.8)
        assert p.confidence == ConfidenceLevel.MEDIUM
        assert p.stop_loss == pytest.approx(98.5)
        assert p.target_price == pytest.approx(109.0)


class TestAdvancedCombinations:
    """Orchestrated evaluation at the final bar."""

    def test_requires_fifty_bars(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(49)))
        assert detect_advanced_combinations(frame, IndicatorSeries(), []) == []

    def test_all_patterns_end_at_last_bar(self, wave_bars):
        from services.indicator_engine import IndicatorEngine
        from services.support_resistance import find_support_resistance

        for n in (60, 120, 200, 260):
            bars = wave_bars[:n]
            frame = PriceFrame(bars)
            indicators = IndicatorEngine.compute_indicators(bars)
            levels = find_support_resistance(frame)
            for p in detect_advanced_combinations(frame, indicators, levels):
                assert p.end_index == n - 1
                assert 0 <= p.start_index <= p.end_index
