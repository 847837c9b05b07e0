"""Unit tests for chart overlay generation."""

import pytest

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle, LevelType,
    OverlayShape, OverlayKind, SupportResistanceLevel,
)
from services.overlay_generator import generate_overlays, select_overlay_patterns
from services.pattern_builder import make_pattern
from utils.price_frame import PriceFrame


def _pattern(end, probability=75, confidence=ConfidenceLevel.MEDIUM,
             type=PatternCategory.CANDLESTICK, signal=SignalDirection.BULLISH):
    entry = 100.0
    target, stop = (110.0, 95.0) if signal == SignalDirection.BULLISH else (90.0, 105.0)
    return make_pattern(
        id=f"p_{end}", type=type, name="Test", code="T", description="",
        start_index=end - 1, end_index=end, probability=probability, win_rate=60,
        risk_reward=2, entry_price=entry, target_price=target, stop_loss=stop,
        signal=signal, confidence=confidence, evidence=[], trading_style=TradingStyle.SWING,
    )


def _level(price, level_type, touches):
    return SupportResistanceLevel(
        price=price, type=level_type, touches=touches, strength=touches,
        start_index=2, end_index=22,
    )


class TestSelection:
    """High confidence or >70% probability, most recent first."""

    def test_filters_weak_patterns(self):
        weak = _pattern(5, probability=60, confidence=ConfidenceLevel.LOW)
        strong = _pattern(6, probability=60, confidence=ConfidenceLevel.HIGH)
        likely = _pattern(7, probability=71)
        assert [p.end_index for p in select_overlay_patterns([weak, strong, likely])] == [7, 6]

    def test_keeps_five_most_recent(self):
        patterns = [_pattern(end) for end in range(3, 10)]
        assert [p.end_index for p in select_overlay_patterns(patterns)] == [9, 8, 7, 6, 5]


class TestGenerateOverlays:
    """Icons, projection lines and level lines."""

    def test_candlestick_icon(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(30)))
        overlays = generate_overlays([_pattern(10)], [], frame)
        assert len(overlays) == 1
        icon = overlays[0]
        assert icon.type == OverlayShape.ICON
        assert icon.start_x == 10
        assert icon.start_y == pytest.approx(101.0 * 1.02)
        assert icon.color == "#10b981"
        assert icon.label == "Test (75%)"
        assert icon.code == "T"
        assert icon.icon == "T"
        assert icon.pattern_type == OverlayKind.CANDLESTICK

    def test_bearish_icon_colour(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(30)))
        overlays = generate_overlays([_pattern(10, signal=SignalDirection.BEARISH)], [], frame)
        assert overlays[0].color == "#ef4444"

    def test_combination_projects_target_and_stop(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(30)))
        overlays = generate_overlays([_pattern(25, type=PatternCategory.COMBINATION)], [], frame)
        icon, target, stop = overlays
        assert icon.start_y == pytest.approx(100.0)
        assert (target.label, target.start_y, target.end_x) == ("T1: $110.0", 110.0, 29)
        assert target.code == "T1"
        assert target.pattern_type == OverlayKind.TARGET
        assert (stop.label, stop.start_y, stop.end_x) == ("SL: $95.0", 95.0, 29)
        assert stop.code == "SL"
        assert stop.color == "#ef4444"

    def test_strongest_levels(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(30)))
        levels = [
            _level(95.0, LevelType.SUPPORT, 3),
            _level(105.0, LevelType.RESISTANCE, 5),
            _level(97.0, LevelType.SUPPORT, 2),
            _level(103.0, LevelType.RESISTANCE, 4),
            _level(93.0, LevelType.SUPPORT, 3),
        ]
        overlays = generate_overlays([], levels, frame)
        assert [(o.code, o.start_y) for o in overlays] == [("R1", 105.0), ("R2", 103.0), ("S3", 95.0)]
        assert overlays[0].label == "R1: $105.0"
        assert overlays[0].color == "#f472b6"
        assert overlays[2].color == "#22d3ee"
        assert [o.stroke_width for o in overlays] == [3, 3, 3]
        assert (overlays[0].start_x, overlays[0].end_x) == (2, 22)

    def test_nothing_to_draw(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(30)))
        assert generate_overlays([_pattern(10, probability=50, confidence=ConfidenceLevel.LOW)], [], frame) == []
