"""Chart overlay primitives for the most recent high-value patterns and the strongest levels."""

import logging

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, LevelType, OverlayShape, OverlayKind,
    DetectedPattern, SupportResistanceLevel, PatternOverlay,
)
from utils.price_frame import PriceFrame

logger = logging.getLogger(__name__)

BULLISH_COLOR = "#10b981"
BEARISH_COLOR = "#ef4444"
NEUTRAL_COLOR = "#f59e0b"
SUPPORT_COLOR = "#22d3ee"
RESISTANCE_COLOR = "#f472b6"

MIN_LEVEL_TOUCHES = 3
PROJECTION_BARS = 15
ICON_OFFSET = 1.02

SIGNAL_COLORS = {
    SignalDirection.BULLISH: BULLISH_COLOR,
    SignalDirection.BEARISH: BEARISH_COLOR,
    SignalDirection.NEUTRAL: NEUTRAL_COLOR,
}


def select_overlay_patterns(patterns: list[DetectedPattern], limit: int = 5) -> list[DetectedPattern]:
    """High-confidence or >70% patterns, most recent first."""
    eligible = [
        p for p in patterns
        if p.confidence == ConfidenceLevel.HIGH or p.probability > 70
    ]
    return sorted(eligible, key=lambda p: p.end_index, reverse=True)[:limit]


def _pattern_icon(pattern: DetectedPattern, frame: PriceFrame) -> PatternOverlay:
    if pattern.type == PatternCategory.CANDLESTICK:
        y = max(frame.high[pattern.start_index], frame.high[pattern.end_index]) * ICON_OFFSET
    else:
        y = frame.close[pattern.end_index]
    return PatternOverlay(
        type=OverlayShape.ICON,
        start_x=pattern.end_index,
        start_y=float(y),
        color=SIGNAL_COLORS[pattern.signal],
        stroke_width=2,
        label=f"{pattern.name} ({pattern.probability:.0f}%)",
        code=pattern.code,
        icon=pattern.code,
        pattern_type=OverlayKind.CANDLESTICK,
        confidence=pattern.confidence,
    )


def _projection_lines(pattern: DetectedPattern, frame: PriceFrame) -> list[PatternOverlay]:
    """Target and stop lines projected forward from the signal bar."""
    end_x = min(pattern.end_index + PROJECTION_BARS, frame.n - 1)
    return [
        PatternOverlay(
            type=OverlayShape.LINE,
            start_x=pattern.end_index,
            start_y=pattern.target_price,
            end_x=end_x,
            end_y=pattern.target_price,
            color=BULLISH_COLOR,
            stroke_width=1,
            label=f"T1: ${pattern.target_price:.1f}",
            code="T1",
            pattern_type=OverlayKind.TARGET,
            confidence=pattern.confidence,
        ),
        PatternOverlay(
            type=OverlayShape.LINE,
            start_x=pattern.end_index,
            start_y=pattern.stop_loss,
            end_x=end_x,
            end_y=pattern.stop_loss,
            color=BEARISH_COLOR,
            stroke_width=1,
            label=f"SL: ${pattern.stop_loss:.1f}",
            code="SL",
            pattern_type=OverlayKind.STOP,
            confidence=pattern.confidence,
        ),
    ]


def _level_lines(levels: list[SupportResistanceLevel], limit: int) -> list[PatternOverlay]:
    strong = [l for l in levels if l.touches >= MIN_LEVEL_TOUCHES]
    strong.sort(key=lambda l: l.strength, reverse=True)

    overlays: list[PatternOverlay] = []
    for k, level in enumerate(strong[:limit], start=1):
        support = level.type == LevelType.SUPPORT
        code = f"{'S' if support else 'R'}{k}"
        overlays.append(PatternOverlay(
            type=OverlayShape.LINE,
            start_x=level.start_index,
            start_y=level.price,
            end_x=level.end_index,
            end_y=level.price,
            color=SUPPORT_COLOR if support else RESISTANCE_COLOR,
            stroke_width=min(level.strength, 3),
            label=f"{code}: ${level.price:.1f}",
            code=code,
            pattern_type=OverlayKind.SUPPORT if support else OverlayKind.RESISTANCE,
        ))
    return overlays


def generate_overlays(
    patterns: list[DetectedPattern],
    levels: list[SupportResistanceLevel],
    frame: PriceFrame,
    max_patterns: int = 5,
    max_levels: int = 3,
) -> list[PatternOverlay]:
    overlays: list[PatternOverlay] = []
    for pattern in select_overlay_patterns(patterns, max_patterns):
        if pattern.end_index >= frame.n:
            logger.warning(f"Skipping overlay for {pattern.id}: end_index beyond {frame.n} bars")
            continue
        overlays.append(_pattern_icon(pattern, frame))
        if pattern.type in (PatternCategory.COMBINATION, PatternCategory.SWING_STRATEGY):
            overlays.extend(_projection_lines(pattern, frame))
    overlays.extend(_level_lines(levels, max_levels))
    return overlays
