"""Normalization of out-of-range input.

Bad numbers are never errors for the caller: they are clamped to the nearest
valid value and logged.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import TYPE_CHECKING

from dialtimer.core.angles import MAX_TIME_MS, START_ANGLE, constrain_angle, is_valid_angle

if TYPE_CHECKING:
    from dialtimer.core.timer import TimerState

logger = logging.getLogger(__name__)


def clamp_time_ms(ms: float) -> int:
    """Clamp *ms* to ``[0, MAX_TIME_MS]``; NaN becomes 0."""
    if isinstance(ms, float) and math.isnan(ms):
        logger.warning("Time is not a number, reset to 0")
        return 0
    if ms < 0:
        logger.warning("Time %s is negative, reset to 0", ms)
        return 0
    if ms > MAX_TIME_MS:
        logger.warning("Time %s exceeds the maximum, reset to %s", ms, MAX_TIME_MS)
        return MAX_TIME_MS
    return int(ms)


def sanitize_angle(angle: float) -> float:
    """Return *angle* reduced to ``[0, 360)`` and constrained onto the dial."""
    if math.isnan(angle) or math.isinf(angle):
        logger.warning("Angle %s is not finite, reset to the start angle", angle)
        return START_ANGLE
    reduced = angle % 360.0
    if not is_valid_angle(reduced):
        constrained = constrain_angle(reduced)
        logger.warning("Angle %s is outside the dial, constrained to %s", angle, constrained)
        return constrained
    if reduced != angle:
        logger.debug("Angle %s reduced to %s", angle, reduced)
    return reduced


def validate_state(state: TimerState) -> TimerState:
    """Return a copy of *state* with every field clamped into range."""
    total = clamp_time_ms(state.total_ms)
    remaining = min(clamp_time_ms(state.remaining_ms), total)
    progress = state.progress
    if math.isnan(progress):
        progress = 0.0
    return dataclasses.replace(
        state,
        total_ms=total,
        remaining_ms=remaining,
        angle=sanitize_angle(state.angle),
        progress=min(max(progress, 0.0), 1.0),
    )
