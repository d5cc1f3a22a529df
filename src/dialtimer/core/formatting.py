"""Display helpers for durations."""

from __future__ import annotations

from dialtimer.core.angles import MAX_TIME_MS

TIME_SUGGESTIONS = (1, 5, 10, 15, 20, 25, 30, 35, 40, 45)


def format_time(ms: int) -> str:
    """Format *ms* as ``MM:SS``."""
    total = max(int(ms), 0) // 1000
    return f"{total // 60:02d}:{total % 60:02d}"


def format_time_detailed(ms: int) -> str:
    """Format *ms* as ``25m 30s``, ``25m``, ``30s`` or ``0s``."""
    total = max(int(ms), 0) // 1000
    minutes, seconds = divmod(total, 60)
    if minutes and seconds:
        return f"{minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"


def format_time_short(ms: int) -> str:
    """Format *ms* as whole minutes, or seconds under a minute."""
    total = max(int(ms), 0) // 1000
    if total >= 60:
        return f"{total // 60}m"
    return f"{total}s"


def format_progress(progress: float) -> str:
    return f"{int(progress * 100)}%"


def minutes_to_ms(minutes: float) -> int:
    return int(minutes * 60 * 1000)


def ms_to_minutes(ms: int) -> float:
    return ms / 60000


def seconds_to_ms(seconds: int) -> int:
    return seconds * 1000


def ms_to_seconds(ms: int) -> int:
    return int(ms // 1000)


def round_to_nearest_minute(ms: int) -> int:
    """Round *ms* to the nearest whole minute (halves round up)."""
    return ((int(ms) + 30000) // 60000) * 60000


def is_valid_time(ms: int) -> bool:
    return 0 <= ms <= MAX_TIME_MS
