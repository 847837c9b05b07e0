"""Shared synthetic bar builders for the detector tests."""

import math
from datetime import datetime, timedelta

import pytest

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.market_data import OHLCVBar


def build_bars(rows, start=datetime(2024, 1, 1)):
    """rows of (open, high, low, close, volume) -> daily OHLCVBar list."""
    return [
        OHLCVBar(
            timestamp=start + timedelta(days=k),
            open=o, high=h, low=l, close=c, volume=v,
        )
        for k, (o, h, l, c, v) in enumerate(rows)
    ]


def flat_rows(n, price=100.0, volume=1000.0, spread=1.0):
    """n identical bars: open == close, symmetric spread around price."""
    return [(price, price + spread, price - spread, price, volume) for _ in range(n)]


def wave_rows(n):
    """Deterministic oscillating series with drift, varying ranges and volume."""
    rows = []
    prev_close = 100.0
    for k in range(n):
        close = 100 + 10 * math.sin(k / 8) + 0.05 * k
        open_ = prev_close
        wick = 0.5 + 0.3 * abs(math.sin(k / 3))
        high = max(open_, close) + wick
        low = min(open_, close) - wick
        volume = 1_000_000 * (1 + 0.5 * abs(math.sin(k / 5)))
        rows.append((open_, high, low, close, volume))
        prev_close = close
    return rows


@pytest.fixture
def make_bars():
    return build_bars


@pytest.fixture
def flat():
    return flat_rows


@pytest.fixture
def wave_bars():
    return build_bars(wave_rows(260))
