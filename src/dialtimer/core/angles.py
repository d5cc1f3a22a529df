"""Dial geometry: pure conversions between dial angle and time.

The dial sweeps 270 degrees clockwise from ``START_ANGLE`` (135) through 180,
270 and 0 to ``END_ANGLE`` (45).  Angles inside the notch (45, 135) are not on
the dial.  Every function here is pure so that a drag gesture can be rendered
without touching the timer state.
"""

from __future__ import annotations

import math

START_ANGLE = 135.0
END_ANGLE = 45.0
TOTAL_ANGLE = 270.0

MAX_TIME_MINUTES = 45
MAX_TIME_MS = MAX_TIME_MINUTES * 60 * 1000


def coordinate_to_angle(x: float, y: float, center_x: float, center_y: float) -> float:
    """Return the angle of ``(x, y)`` around the center, in degrees ``[0, 360)``."""
    # Adding 0.0 turns -0.0 into 0.0.
    degrees = math.degrees(math.atan2(y - center_y, x - center_x)) + 0.0
    if degrees < 0.0:
        degrees += 360.0
    # Tiny negatives can round up to exactly 360.
    if degrees >= 360.0:
        degrees -= 360.0
    return degrees


def is_valid_angle(angle: float) -> bool:
    """Return ``True`` if *angle* lies on the dial sweep."""
    return angle >= START_ANGLE or angle <= END_ANGLE


def constrain_angle(angle: float) -> float:
    """Snap an angle inside the notch to the nearer dial end.

    An angle exactly halfway between the two ends snaps to ``START_ANGLE``.
    """
    if is_valid_angle(angle):
        return angle
    if START_ANGLE - angle <= angle - END_ANGLE:
        return START_ANGLE
    return END_ANGLE


def _relative_sweep(angle: float) -> float:
    """Degrees travelled clockwise from ``START_ANGLE`` to *angle*."""
    if angle >= START_ANGLE:
        return angle - START_ANGLE
    return (360.0 - START_ANGLE) + angle


def angle_to_time(angle: float) -> int:
    """Convert a dial angle to a duration in milliseconds."""
    relative = _relative_sweep(constrain_angle(angle))
    ms = int(round(relative / TOTAL_ANGLE * MAX_TIME_MS))
    return min(max(ms, 0), MAX_TIME_MS)


def _sweep_to_angle(fraction: float) -> float:
    angle = START_ANGLE + fraction * TOTAL_ANGLE
    if angle >= 360.0:
        angle -= 360.0
    return angle


def time_to_angle(ms: int) -> float:
    """Convert a duration in milliseconds to its dial angle."""
    clamped = min(max(ms, 0), MAX_TIME_MS)
    return _sweep_to_angle(clamped / MAX_TIME_MS)


def progress_to_angle(progress: float) -> float:
    """Return the angle of the progress marker for *progress* in ``[0, 1]``."""
    return _sweep_to_angle(min(max(progress, 0.0), 1.0))


def calculate_progress(elapsed_ms: int, total_ms: int) -> float:
    """Return ``elapsed_ms / total_ms`` clamped to ``[0, 1]`` (0 for no total)."""
    if total_ms <= 0:
        return 0.0
    return min(max(elapsed_ms / total_ms, 0.0), 1.0)
