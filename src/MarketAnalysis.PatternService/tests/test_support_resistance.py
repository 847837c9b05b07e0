"""Unit tests for support/resistance level discovery."""

import pytest

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.technicals import LevelType, SupportResistanceLevel
from services.support_resistance import find_support_resistance, nearest_level
from utils.price_frame import PriceFrame


def _rows_with_lows(n, lows):
    rows = []
    for k in range(n):
        low = lows.get(k, 99.0)
        rows.append((100.0, 101.0, low, 100.0, 1000.0))
    return rows


class TestFindSupportResistance:
    """Extremum candidates become levels only with a second touch."""

    def test_single_touch_minimum_is_not_a_level(self, make_bars):
        frame = PriceFrame(make_bars(_rows_with_lows(41, {20: 90.0})))
        levels = find_support_resistance(frame)
        assert [l for l in levels if l.type == LevelType.SUPPORT] == []

    def test_second_touch_makes_support(self, make_bars):
        frame = PriceFrame(make_bars(_rows_with_lows(41, {5: 90.2, 20: 90.0})))
        supports = [l for l in find_support_resistance(frame) if l.type == LevelType.SUPPORT]
        assert len(supports) == 1
        level = supports[0]
        assert level.price == pytest.approx(90.0)
        assert level.touches == 2
        assert level.strength == pytest.approx(2.0)
        assert (level.start_index, level.end_index) == (0, 40)

    def test_supports_listed_before_resistances(self, make_bars):
        frame = PriceFrame(make_bars(_rows_with_lows(41, {5: 90.2, 20: 90.0})))
        levels = find_support_resistance(frame)
        types = [l.type for l in levels]
        assert types == sorted(types, key=lambda t: t != LevelType.SUPPORT)
        assert LevelType.RESISTANCE in types

    def test_short_series_has_no_levels(self, make_bars, flat):
        frame = PriceFrame(make_bars(flat(40)))
        assert find_support_resistance(frame) == []

    def test_every_level_has_two_touches(self, wave_bars):
        levels = find_support_resistance(PriceFrame(wave_bars), lookback=10)
        assert levels
        assert all(l.touches >= 2 for l in levels)


class TestNearestLevel:
    """First level of a type within a relative distance of the price."""

    def _levels(self):
        return [
            SupportResistanceLevel(price=95.0, type=LevelType.SUPPORT, touches=2, strength=2, start_index=0, end_index=10),
            SupportResistanceLevel(price=99.0, type=LevelType.SUPPORT, touches=3, strength=3, start_index=0, end_index=10),
            SupportResistanceLevel(price=101.0, type=LevelType.RESISTANCE, touches=2, strength=2, start_index=0, end_index=10),
        ]

    def test_returns_first_match_of_type(self):
        level = nearest_level(self._levels(), LevelType.SUPPORT, 100.0, 0.02)
        assert level.price == 99.0

    def test_none_when_out_of_range(self):
        assert nearest_level(self._levels(), LevelType.SUPPORT, 120.0, 0.02) is None

    def test_zero_price(self):
        assert nearest_level(self._levels(), LevelType.RESISTANCE, 0.0, 0.02) is None
