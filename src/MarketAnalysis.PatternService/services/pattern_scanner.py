"""
Scan orchestration: validate input, compute what's missing, run the enabled
detectors, rank, and build chart overlays.
"""

import logging
from typing import Optional

from config import get_settings, Settings
from models.market_data import OHLCVBar
from models.technicals import (
    PatternCategory, ConfidenceLevel, ScanMode, ScanOptions, ScanResult,
    DetectedPattern, IndicatorSeries,
)
from services.candlestick_detector import CandlestickDetector
from services.combination_detector import detect_advanced_combinations
from services.confluence_detector import boost_confluence
from services.indicator_engine import IndicatorEngine
from services.overlay_generator import generate_overlays
from services.strategy_scanner import (
    detect_swing_trades, detect_triple_confirmation_bounce, detect_gap_up_breakouts,
)
from services.support_resistance import find_support_resistance
from utils.price_frame import PriceFrame
from utils.validation import validate_bars, validate_indicators

logger = logging.getLogger(__name__)

CONFIDENCE_WEIGHT = {
    ConfidenceLevel.HIGH: 3,
    ConfidenceLevel.MEDIUM: 2,
    ConfidenceLevel.LOW: 1,
}


def rank_patterns(patterns: list[DetectedPattern], top_n: int) -> list[DetectedPattern]:
    """Order by confidence weight then probability; ties keep detection order."""
    ranked = sorted(
        patterns,
        key=lambda p: CONFIDENCE_WEIGHT[p.confidence] * 100 + p.probability,
        reverse=True,
    )
    return ranked[:top_n]


class PatternScanner:
    """Runs the detector suite over one bar sequence."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def scan(
        self,
        bars: list[OHLCVBar],
        indicators: Optional[IndicatorSeries] = None,
        options: Optional[ScanOptions] = None,
    ) -> ScanResult:
        """
        Scan a bar sequence for patterns.

        Args:
            bars: Chronologically ascending OHLCV bars
            indicators: Precomputed indicator bundle; computed from bars when omitted
            options: Scan mode, enabled pattern categories and result limit

        Raises:
            InvalidInputError: bars or indicators break the input contract
        """
        options = options or ScanOptions()
        validate_bars(bars)
        validate_indicators(indicators, len(bars))
        if indicators is None:
            indicators = IndicatorEngine.compute_indicators(bars)

        s = self.settings
        frame = PriceFrame(bars)
        levels = find_support_resistance(frame, s.sr_lookback, s.sr_tolerance)

        if options.mode == ScanMode.SWING:
            candidates = detect_swing_trades(frame, indicators, levels)
        elif options.mode == ScanMode.INTRADAY:
            candidates = detect_gap_up_breakouts(frame, indicators, s.gap_min_pct, s.gap_core_pct)
        else:
            candidates = self._standard_scan(frame, indicators, levels, options.pattern_types)

        top_n = options.top_n or s.top_patterns
        patterns = rank_patterns(candidates, top_n)
        overlays = generate_overlays(
            patterns, levels, frame,
            max_patterns=s.max_overlay_patterns, max_levels=s.max_overlay_levels,
        )

        logger.info(
            f"Scan ({options.mode.value}) over {frame.n} bars: {len(candidates)} candidates, "
            f"kept {len(patterns)}, {len(levels)} levels, {len(overlays)} overlays"
        )
        return ScanResult(patterns=patterns, support_resistance=levels, overlays=overlays)

    def _standard_scan(self, frame, indicators, levels, enabled) -> list[DetectedPattern]:
        s = self.settings
        patterns: list[DetectedPattern] = []

        candlesticks: list[DetectedPattern] = []
        if PatternCategory.CANDLESTICK in enabled or PatternCategory.CONFLUENCE in enabled:
            candlesticks = CandlestickDetector(frame).detect()
        if PatternCategory.CANDLESTICK in enabled:
            patterns.extend(candlesticks)
        if PatternCategory.CONFLUENCE in enabled:
            patterns.extend(boost_confluence(candlesticks, levels, frame))
        if PatternCategory.COMBINATION in enabled:
            patterns.extend(detect_advanced_combinations(
                frame, indicators, levels,
                eod_min_avg_volume=s.eod_min_avg_volume, eod_min_price=s.eod_min_price,
            ))
        if PatternCategory.SWING_STRATEGY in enabled:
            patterns.extend(detect_triple_confirmation_bounce(frame, indicators))
        return patterns
