"""Background countdown runner.

The runner ticks against a wall-clock deadline on its own thread, whether or
not anyone is listening.  Remaining time is always ``deadline - now``, never a
count of ticks, so slow or skipped ticks cannot accumulate drift and a
suspended process catches up on its next tick.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from dialtimer.config import DEFAULT_TICK_INTERVAL
from dialtimer.core.channel import UpdateChannel
from dialtimer.core.notify import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)


class RunnerUnavailableError(Exception):
    """Raised when attaching to a runner that has been closed."""


class RunnerEvent(Enum):
    TICK = "tick"
    PAUSED = "paused"
    COMPLETED = "completed"
    USER_STOPPED = "user_stopped"


@dataclass(frozen=True)
class RunnerUpdate:
    event: RunnerEvent
    remaining_ms: int
    total_ms: int
    serial: int = 0


@dataclass
class RunnerSession:
    """Bookkeeping for one Running/Paused countdown attempt."""

    serial: int
    total_ms: int
    target_ms: int
    frozen_remaining_ms: int
    running: bool = True
    last_emitted_second: Optional[int] = None


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


def _whole_seconds(ms: int) -> int:
    return (ms + 999) // 1000


class BackgroundCountdownRunner:
    """Produces countdown ticks on a background thread.

    Ticks are computed every ``interval`` seconds but only forwarded when the
    whole-seconds-remaining value changes.  Updates go out on a conflated
    :class:`UpdateChannel`; use :meth:`attach` and :meth:`detach` to listen.

    With ``threaded=False`` no thread is spawned and ticks happen only when
    :meth:`poll` is called.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        *,
        interval: float = DEFAULT_TICK_INTERVAL,
        threaded: bool = True,
    ) -> None:
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._interval = interval
        self._threaded = threaded
        self._lock = threading.Lock()
        self._session: Optional[RunnerSession] = None
        self._remaining_ms = 0
        self._generation = 0
        self._serial = 0
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._closed = False
        self._listener: Optional[Callable[[RunnerUpdate], None]] = None
        self.updates: UpdateChannel[RunnerUpdate] = UpdateChannel("runner-updates")

    # -- public interface ----------------------------------------------------

    @property
    def remaining_ms(self) -> int:
        """Last computed remaining time."""
        with self._lock:
            return self._remaining_ms

    @property
    def serial(self) -> int:
        """Serial number of the most recently started session."""
        with self._lock:
            return self._serial

    @property
    def session(self) -> Optional[RunnerSession]:
        with self._lock:
            return self._session

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._session is not None and self._session.running

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._session is not None and not self._session.running

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, total_ms: int, remaining_ms: int) -> None:
        """Begin a new session, replacing any existing one."""
        with self._lock:
            self._cancel_ticking_locked()
            self._serial += 1
            serial = self._serial
            generation = self._generation
            if remaining_ms <= 0:
                self._session = None
                self._remaining_ms = 0
                completed = True
            else:
                self._session = RunnerSession(
                    serial=serial,
                    total_ms=total_ms,
                    target_ms=_now_ms() + remaining_ms,
                    frozen_remaining_ms=remaining_ms,
                )
                self._remaining_ms = remaining_ms
                completed = False
        if completed:
            logger.info("Deadline already passed at start, completing immediately")
            self._complete(total_ms, serial)
            return
        logger.debug("Runner started: total_ms=%s remaining_ms=%s", total_ms, remaining_ms)
        self._spawn(generation)

    def pause(self) -> int:
        """Freeze the session and return the remaining time."""
        with self._lock:
            session = self._session
            if session is None or not session.running:
                return self._remaining_ms
            self._cancel_ticking_locked()
            remaining = max(session.target_ms - _now_ms(), 0)
            self._remaining_ms = remaining
            total = session.total_ms
            if remaining <= 0:
                self._session = None
            else:
                session.running = False
                session.frozen_remaining_ms = remaining
        if remaining <= 0:
            self._complete(total, session.serial)
            return 0
        logger.debug("Runner paused at %s ms", remaining)
        self._safe_notify(self._notifier.show_progress, total, remaining, "paused")
        self.updates.publish(RunnerUpdate(RunnerEvent.PAUSED, remaining, total, session.serial))
        return remaining

    def resume(self) -> bool:
        """Restart a paused session from its frozen remaining time."""
        with self._lock:
            session = self._session
            if session is None or session.running:
                return False
            self._cancel_ticking_locked()
            session.target_ms = _now_ms() + session.frozen_remaining_ms
            session.running = True
            session.last_emitted_second = None
            generation = self._generation
            frozen = session.frozen_remaining_ms
        logger.debug("Runner resumed with %s ms", frozen)
        self._spawn(generation)
        return True

    def stop(self) -> None:
        """Discard the session at the user's request."""
        with self._lock:
            self._cancel_ticking_locked()
            session = self._session
            self._session = None
            total = session.total_ms if session is not None else 0
            remaining = self._remaining_ms
            serial = self._serial
        self._safe_notify(self._notifier.clear)
        self.updates.publish(RunnerUpdate(RunnerEvent.USER_STOPPED, remaining, total, serial))

    def poll(self) -> Optional[RunnerUpdate]:
        """Run one internal tick; return the update if one was forwarded."""
        return self._tick(None)

    def attach(self, listener: Callable[[RunnerUpdate], None]) -> int:
        """Route updates to *listener* and return the last known remaining time."""
        if self._closed:
            raise RunnerUnavailableError("runner has been closed")
        self.detach()
        self._listener = listener
        self.updates.subscribe(listener)
        return self.remaining_ms

    def detach(self) -> None:
        """Stop routing updates.  Ticking continues."""
        listener, self._listener = self._listener, None
        if listener is not None:
            self.updates.unsubscribe(listener)

    def close(self, timeout: Optional[float] = 1.0) -> None:
        """Stop the thread without touching the session state."""
        with self._lock:
            self._closed = True
            self._cancel_ticking_locked()
            thread = self._thread
        self.detach()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    # -- ticking -------------------------------------------------------------

    def _spawn(self, generation: int) -> None:
        if not self._threaded:
            return
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._run,
            args=(generation, stop_event),
            name="countdown-runner",
            daemon=True,
        )
        with self._lock:
            if generation != self._generation:
                return
            self._stop_event = stop_event
            self._thread = thread
        thread.start()

    def _run(self, generation: int, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self._tick(generation)
            except Exception:
                logger.exception("Countdown tick failed")
            if stop_event.wait(self._interval):
                break

    def _cancel_ticking_locked(self) -> None:
        # A superseded thread notices the generation change and goes inert.
        self._generation += 1
        self._stop_event.set()

    def _tick(self, generation: Optional[int]) -> Optional[RunnerUpdate]:
        with self._lock:
            if generation is not None and generation != self._generation:
                return None
            session = self._session
            if session is None or not session.running:
                return None
            remaining = max(session.target_ms - _now_ms(), 0)
            self._remaining_ms = remaining
            total = session.total_ms
            serial = session.serial
            if remaining <= 0:
                self._session = None
                self._cancel_ticking_locked()
                completed = True
            else:
                second = _whole_seconds(remaining)
                if second == session.last_emitted_second:
                    return None
                session.last_emitted_second = second
                completed = False
        if completed:
            return self._complete(total, serial)
        update = RunnerUpdate(RunnerEvent.TICK, remaining, total, serial)
        self._safe_notify(self._notifier.show_progress, total, remaining, "running")
        self.updates.publish(update)
        return update

    def _complete(self, total_ms: int, serial: int) -> RunnerUpdate:
        """Emit the final tick and fire the alarm.  Called once per session."""
        update = RunnerUpdate(RunnerEvent.COMPLETED, 0, total_ms, serial)
        self._safe_notify(self._notifier.show_progress, total_ms, 0, "finished")
        self.updates.publish(update)
        self._safe_notify(self._notifier.show_finished)
        self._safe_notify(self._notifier.vibrate)
        return update

    @staticmethod
    def _safe_notify(call: Callable[..., None], *args: object) -> None:
        try:
            call(*args)
        except Exception:
            logger.exception("Notifier call %s failed", getattr(call, "__name__", call))
