"""Shared construction helpers for detected patterns."""

import logging
from typing import Iterable, Optional

from models.technicals import (
    PatternCategory, SignalDirection, ConfidenceLevel, TradingStyle, DetectedPattern,
)

logger = logging.getLogger(__name__)


def levels_are_ordered(signal: SignalDirection, entry: float, target: float, stop: float) -> bool:
    """Bullish needs stop < entry < target, bearish the reverse; neutral is unconstrained."""
    if signal == SignalDirection.BULLISH:
        return stop < entry < target
    if signal == SignalDirection.BEARISH:
        return target < entry < stop
    return True


def apply_bonuses(base: float, bonuses: Iterable[tuple[bool, float]], cap: float) -> float:
    """Sum every bonus whose condition holds onto `base` and clamp to `cap`."""
    score = base
    for condition, bonus in bonuses:
        if condition:
            score += bonus
    return min(score, cap)


def confidence_from_probability(
    probability: float, high: float, medium: float, inclusive: bool = False,
) -> ConfidenceLevel:
    """Bucket a probability; thresholds are exclusive unless `inclusive` is set."""
    if inclusive:
        if probability >= high:
            return ConfidenceLevel.HIGH
        if probability >= medium:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW
    if probability > high:
        return ConfidenceLevel.HIGH
    if probability > medium:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def make_pattern(
    *,
    id: str,
    type: PatternCategory,
    name: str,
    code: str,
    description: str,
    start_index: int,
    end_index: int,
    probability: float,
    win_rate: float,
    risk_reward: float,
    entry_price: float,
    target_price: float,
    stop_loss: float,
    signal: SignalDirection,
    confidence: ConfidenceLevel,
    evidence: Iterable[str],
    trading_style: TradingStyle,
    timeframe: str = "1D",
    algorithm: str = "",
    confirmation: Iterable[str] = (),
) -> Optional[DetectedPattern]:
    """
    Build a DetectedPattern, or return None when its price levels are not ordered
    for its direction (e.g. a stop computed above a bullish entry).
    """
    entry_price, target_price, stop_loss = float(entry_price), float(target_price), float(stop_loss)
    if not levels_are_ordered(signal, entry_price, target_price, stop_loss):
        logger.debug(
            f"Dropping {code} at {end_index}: {signal.value} levels out of order "
            f"(entry={entry_price:.4f}, target={target_price:.4f}, stop={stop_loss:.4f})"
        )
        return None

    return DetectedPattern(
        id=id,
        type=type,
        name=name,
        code=code,
        description=description,
        start_index=max(0, start_index),
        end_index=end_index,
        probability=max(0.0, min(float(probability), 95.0)),
        win_rate=win_rate,
        risk_reward=risk_reward,
        entry_price=entry_price,
        target_price=target_price,
        stop_loss=stop_loss,
        signal=signal,
        confidence=confidence,
        evidence=tuple(evidence),
        trading_style=trading_style,
        timeframe=timeframe,
        algorithm=algorithm,
        confirmation=tuple(confirmation),
    )
