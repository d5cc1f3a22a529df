"""Session coordinator connecting user intents, the state machine and the runner.

All state-machine mutations go through one re-entrant lock, whether they come
from the caller's thread or from the runner's tick thread.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from dialtimer.config import Config
from dialtimer.core.runner import (
    BackgroundCountdownRunner,
    RunnerEvent,
    RunnerUnavailableError,
    RunnerUpdate,
)
from dialtimer.core.scheduler import DeferredActions
from dialtimer.core.settings import SettingsStore
from dialtimer.core.timer import TimerState, TimerStateMachine, TimerStatus

logger = logging.getLogger(__name__)

_ATTACH_ATTEMPTS = 3
_KEEP_SCREEN_ON = "keep-screen-on"


class Intent(Enum):
    """User intents accepted by :meth:`SessionCoordinator.handle`."""

    SET_TIME = "set_time"
    SET_ANGLE = "set_angle"
    START = "start"
    PAUSE = "pause"
    STOP = "stop"
    RESET = "reset"


class SessionCoordinator:
    """Drives one countdown from user intents to background ticks.

    The runner is created lazily on the first start.  While the presentation
    layer is in the background the coordinator detaches from the runner, which
    keeps counting; on return it re-attaches and adopts the runner's remaining
    time if the two have drifted apart by more than the configured threshold.
    """

    def __init__(
        self,
        settings: SettingsStore,
        *,
        config: Optional[Config] = None,
        runner_factory: Optional[Callable[[], BackgroundCountdownRunner]] = None,
        scheduler: Optional[DeferredActions] = None,
    ) -> None:
        self._config = config or Config()
        self._lock = threading.RLock()
        self._machine = TimerStateMachine(settings)
        self._runner_factory = runner_factory or self._default_runner
        self._runner: Optional[BackgroundCountdownRunner] = None
        self._scheduler = scheduler or DeferredActions()
        self._session_id = 0
        self._in_background = False

    # -- observation ---------------------------------------------------------

    @property
    def state(self) -> TimerState:
        with self._lock:
            return self._machine.state

    @property
    def runner(self) -> Optional[BackgroundCountdownRunner]:
        return self._runner

    @property
    def session_id(self) -> int:
        return self._session_id

    def subscribe(self, listener: Callable[[TimerState], None]) -> Callable[[], None]:
        """Deliver every new :class:`TimerState` to *listener*."""
        return self._machine.states.subscribe(listener)

    # -- intents -------------------------------------------------------------

    def handle(self, intent: Intent, value: Optional[float] = None) -> bool:
        if intent == Intent.SET_TIME:
            return self.set_time(value if value is not None else 0)
        if intent == Intent.SET_ANGLE:
            return self.set_angle(float(value if value is not None else float("nan")))
        if intent == Intent.START:
            return self.start()
        if intent == Intent.PAUSE:
            return self.pause()
        if intent == Intent.STOP:
            return self.stop()
        return self.reset()

    def set_time(self, ms: float) -> bool:
        with self._lock:
            return self._machine.set_time(ms)

    def set_angle(self, angle: float) -> bool:
        with self._lock:
            return self._machine.set_angle(angle)

    def start(self) -> bool:
        """Start from IDLE or resume from PAUSED."""
        with self._lock:
            resuming = self._machine.state.status == TimerStatus.PAUSED
            if not self._machine.start():
                return False
            state = self._machine.state
            if not resuming:
                self._session_id += 1
            runner = self._ensure_runner()
            if resuming and runner.is_paused:
                runner.resume()
            else:
                runner.start(state.total_ms, state.remaining_ms)
            logger.info(
                "Session %s %s with %s ms remaining",
                self._session_id,
                "resumed" if resuming else "started",
                state.remaining_ms,
            )
            return True

    def pause(self) -> bool:
        with self._lock:
            if not self._machine.state.can_pause:
                return False
            runner = self._runner
            remaining: Optional[int] = None
            if runner is not None:
                remaining = runner.pause()
                if remaining <= 0:
                    # The deadline passed before the pause request got here.
                    self._finish()
                    return False
            return self._machine.pause(remaining)

    def stop(self) -> bool:
        with self._lock:
            if not self._machine.stop():
                return False
            self._discard_runner_session()
            self._cancel_keep_screen_clear()
            return True

    def reset(self) -> bool:
        with self._lock:
            self._machine.reset()
            self._discard_runner_session()
            self._cancel_keep_screen_clear()
            return True

    def clear_all_data(self) -> None:
        """Stop any countdown, forget persisted settings and restore defaults."""
        with self._lock:
            self._discard_runner_session()
            self._cancel_keep_screen_clear()
            self._machine.clear_data()

    # -- process lifecycle ---------------------------------------------------

    def on_background(self) -> None:
        """Detach from the runner, making sure a running countdown keeps going."""
        with self._lock:
            self._in_background = True
            state = self._machine.state
            if self._runner is not None:
                self._runner.detach()
            if state.status != TimerStatus.RUNNING:
                return
            runner = self._runner
            if runner is not None and not runner.closed and runner.remaining_ms <= 0:
                self._finish()
                return
            if runner is None or runner.closed or not runner.is_running:
                logger.warning("No live runner for a running countdown, restarting it")
                self._replace_runner()

    def on_foreground(self) -> None:
        """Re-attach to the runner and reconcile with its remaining time."""
        with self._lock:
            self._in_background = False
            if self._runner is None:
                return
            if self._attach():
                self.sync_with_runner()

    def sync_with_runner(self) -> bool:
        """Adopt the runner's remaining time if it diverges from the local one.

        Returns ``True`` if the local state was overwritten.
        """
        with self._lock:
            runner = self._runner
            state = self._machine.state
            if runner is None or state.status != TimerStatus.RUNNING:
                return False
            runner_remaining = runner.remaining_ms
            if not runner.is_running and runner_remaining <= 0:
                self._finish()
                return True
            divergence = abs(runner_remaining - state.remaining_ms)
            if divergence <= self._config.divergence_threshold_ms:
                return False
            logger.info(
                "Local remaining %s ms diverges from runner %s ms, adopting runner",
                state.remaining_ms,
                runner_remaining,
            )
            if runner_remaining <= 0:
                self._finish()
            else:
                self._machine.tick(runner_remaining)
            return True

    def close(self) -> None:
        """Cancel deferred work and shut the runner thread down."""
        self._scheduler.cancel_all()
        runner = self._runner
        if runner is not None:
            runner.close()

    # -- runner plumbing -----------------------------------------------------

    def _default_runner(self) -> BackgroundCountdownRunner:
        return BackgroundCountdownRunner(interval=self._config.tick_interval)

    def _ensure_runner(self) -> BackgroundCountdownRunner:
        if self._runner is None or self._runner.closed:
            self._runner = self._runner_factory()
            if not self._in_background:
                self._attach()
        return self._runner

    def _attach(self) -> bool:
        for attempt in range(1, _ATTACH_ATTEMPTS + 1):
            runner = self._runner
            if runner is None:
                return False
            try:
                runner.attach(self._on_runner_update)
                return True
            except RunnerUnavailableError:
                logger.warning(
                    "Runner unavailable (attempt %s of %s), recreating it",
                    attempt,
                    _ATTACH_ATTEMPTS,
                )
                self._replace_runner(attach=False)
        logger.error("Could not attach to a runner, continuing from local state")
        return False

    def _replace_runner(self, attach: bool = True) -> None:
        """Create a fresh runner and restart it from the local snapshot."""
        self._runner = self._runner_factory()
        state = self._machine.state
        if state.status == TimerStatus.RUNNING:
            self._runner.start(state.total_ms, state.remaining_ms)
        if attach and not self._in_background:
            self._attach()

    def _discard_runner_session(self) -> None:
        runner = self._runner
        if runner is not None and (runner.is_running or runner.is_paused):
            runner.stop()

    def _on_runner_update(self, update: RunnerUpdate) -> None:
        with self._lock:
            runner = self._runner
            if runner is None or update.serial != runner.serial:
                logger.debug("Dropping update from a superseded session: %s", update)
                return
            if update.event == RunnerEvent.TICK:
                self._machine.tick(update.remaining_ms)
            elif update.event == RunnerEvent.COMPLETED:
                self._finish()

    # -- completion ----------------------------------------------------------

    def _finish(self) -> None:
        if self._machine.tick(0):
            self._schedule_keep_screen_clear()

    def _keep_screen_key(self) -> tuple[str, int]:
        return (_KEEP_SCREEN_ON, self._session_id)

    def _schedule_keep_screen_clear(self) -> None:
        session_id = self._session_id
        self._scheduler.schedule(
            self._keep_screen_key(),
            self._config.keep_screen_on_delay,
            lambda: self._clear_keep_screen_on(session_id),
        )

    def _cancel_keep_screen_clear(self) -> None:
        self._scheduler.cancel(self._keep_screen_key())

    def _clear_keep_screen_on(self, session_id: int) -> None:
        with self._lock:
            if session_id != self._session_id:
                return
            if self._machine.state.status != TimerStatus.FINISHED:
                return
            self._machine.set_keep_screen_on(False)
