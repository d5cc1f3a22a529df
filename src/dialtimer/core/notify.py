"""Notification and alarm side-channel."""

from __future__ import annotations

import logging
from typing import Protocol

from dialtimer.core.formatting import format_time

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Device-level progress display plus a one-shot completion alarm."""

    def show_progress(self, total_ms: int, remaining_ms: int, status: str) -> None: ...

    def show_finished(self) -> None: ...

    def vibrate(self) -> None: ...

    def clear(self) -> None: ...


class LoggingNotifier:
    """Notifier that only writes to the log."""

    def show_progress(self, total_ms: int, remaining_ms: int, status: str) -> None:
        logger.debug(
            "Countdown %s: %s of %s remaining",
            status,
            format_time(remaining_ms),
            format_time(total_ms),
        )

    def show_finished(self) -> None:
        logger.info("Countdown finished")

    def vibrate(self) -> None:
        logger.info("Alarm")

    def clear(self) -> None:
        logger.debug("Notification cleared")
