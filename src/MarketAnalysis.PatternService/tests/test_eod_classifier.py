"""Unit tests for the end-of-day sharp drop dual scoring."""

import pytest

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.technicals import PatternCategory, SignalDirection, ConfidenceLevel, IndicatorSeries
from services.eod_classifier import (
    detect_eod_sharp_drop, resolve_scores, bounce_score, continuation_score,
)
from utils.price_frame import PriceFrame


def _drop_rows(today_volume=1_200_000.0, base_volume=600_000.0, today=None):
    """30 quiet bars with one deep early low, then a -4% bearish day."""
    rows = [(100.0, 101.0, 99.0, 100.0, base_volume) for _ in range(30)]
    rows[5] = (100.0, 101.0, 80.0, 100.0, base_volume)
    rows.append(today or (100.5, 101.0, 95.0, 96.0, today_volume))
    return rows


def _rsi(today=30.0, yesterday=55.0):
    rsi = [55.0] * 31
    rsi[29], rsi[30] = yesterday, today
    return IndicatorSeries(rsi=rsi)


class TestResolveScores:
    """Threshold and margin rule."""

    @pytest.mark.parametrize("bps,cps,expected", [
        (75, 50, SignalDirection.BULLISH),
        (50, 75, SignalDirection.BEARISH),
        (90, 75, SignalDirection.BULLISH),
        (75, 85, SignalDirection.BEARISH),
        (80, 75, SignalDirection.NEUTRAL),
        (65, 60, SignalDirection.NEUTRAL),
    ])
    def test_resolution(self, bps, cps, expected):
        assert resolve_scores(bps, cps) == expected


class TestSharpDrop:
    """A -4% day with an RSI shock and capitulation volume."""

    def test_bounce_wins(self, make_bars):
        frame = PriceFrame(make_bars(_drop_rows()))
        p = detect_eod_sharp_drop(frame, _rsi(), 30)
        assert p is not None
        assert p.code == "SDB+"
        assert p.name == "EOD Sharp Drop Bounce"
        assert p.id == "EOD_DROP_BULLISH_30"
        assert p.type == PatternCategory.COMBINATION
        assert p.signal == SignalDirection.BULLISH
        assert p.probability == 75
        assert p.confidence == ConfidenceLevel.MEDIUM
        assert p.timeframe == "EOD"
        assert p.stop_loss == pytest.approx(80.0 * 0.98)
        assert p.target_price == pytest.approx(96.0 + (96.0 - 78.4) * 1.5)
        assert p.evidence[0].startswith("Triggered: -4.0% drop")
        assert p.evidence[-1] == "Bounce Score (BPS): 75% | Continuation Score (CPS): 50%"

    def test_scores(self, make_bars):
        frame = PriceFrame(make_bars(_drop_rows()))
        avg_volume = frame.avg_volume_through(30)
        assert avg_volume == pytest.approx(630_000)
        assert bounce_score(frame, _rsi(), 30, avg_volume, 80.0)[0] == 75
        assert continuation_score(frame, _rsi(), 30, avg_volume, 80.0)[0] == 50

    def test_weak_signals_are_neutral(self, make_bars):
        frame = PriceFrame(make_bars(_drop_rows(today_volume=700_000.0)))
        p = detect_eod_sharp_drop(frame, _rsi(today=45.0), 30)
        assert p.code == "SDN"
        assert p.signal == SignalDirection.NEUTRAL
        assert p.evidence[0] == "Weak signals - both BPS and CPS below 70%"

    def test_drop_outside_range(self, make_bars):
        rows = _drop_rows(today=(100.5, 101.0, 97.5, 98.0, 1_200_000.0))
        assert detect_eod_sharp_drop(PriceFrame(make_bars(rows)), _rsi(), 30) is None

    def test_illiquid_name_skipped(self, make_bars):
        frame = PriceFrame(make_bars(_drop_rows(today_volume=20_000.0, base_volume=10_000.0)))
        assert detect_eod_sharp_drop(frame, _rsi(), 30) is None

    def test_custom_liquidity_floor(self, make_bars):
        frame = PriceFrame(make_bars(_drop_rows(today_volume=20_000.0, base_volume=10_000.0)))
        p = detect_eod_sharp_drop(frame, _rsi(), 30, min_avg_volume=5_000)
        assert p is not None

    def test_requires_rsi(self, make_bars):
        frame = PriceFrame(make_bars(_drop_rows()))
        assert detect_eod_sharp_drop(frame, IndicatorSeries(), 30) is None
