"""Keyed, cancelable deferred actions."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Hashable

logger = logging.getLogger(__name__)


class DeferredActions:
    """Runs callbacks after a delay unless they are canceled first.

    Actions are keyed; scheduling under a key that is already pending replaces
    the earlier action.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._timers: dict[Hashable, threading.Timer] = {}

    def schedule(self, key: Hashable, delay: float, action: Callable[[], None]) -> None:
        timer = threading.Timer(delay, self._fire, args=(key, action))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(key, None)
            self._timers[key] = timer
        if previous is not None:
            previous.cancel()
        timer.start()
        logger.debug("Scheduled %r in %.1fs", key, delay)

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        logger.debug("Canceled %r", key)
        return True

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._timers

    def _fire(self, key: Hashable, action: Callable[[], None]) -> None:
        with self._lock:
            timer = self._timers.get(key)
            if timer is None or timer is not threading.current_thread():
                return
            del self._timers[key]
        try:
            action()
        except Exception:
            logger.exception("Deferred action %r failed", key)
