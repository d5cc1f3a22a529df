"""Timer core: the countdown state machine.

The machine owns the canonical :class:`TimerState`.  It performs no I/O of its
own apart from handing the idle ``(total_ms, angle)`` pair to the settings
store, and it is not thread-safe: callers serialize mutations.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from dialtimer.core.angles import (
    START_ANGLE,
    angle_to_time,
    calculate_progress,
    progress_to_angle,
    time_to_angle,
)
from dialtimer.core.channel import UpdateChannel
from dialtimer.core.normalize import clamp_time_ms, sanitize_angle, validate_state
from dialtimer.core.settings import SettingsStore

logger = logging.getLogger(__name__)


class TimerStatus(Enum):
    """Possible states of the timer."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"


_STARTABLE = frozenset({TimerStatus.IDLE, TimerStatus.PAUSED})
_STOPPABLE = frozenset({TimerStatus.RUNNING, TimerStatus.PAUSED})


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass(frozen=True)
class TimerState:
    """Immutable snapshot of the timer."""

    status: TimerStatus = TimerStatus.IDLE
    total_ms: int = 0
    remaining_ms: int = 0
    progress: float = 0.0
    angle: float = START_ANGLE
    keep_screen_on: bool = False
    last_update: int = 0

    @property
    def elapsed_ms(self) -> int:
        return self.total_ms - self.remaining_ms

    @property
    def total_minutes(self) -> float:
        return self.total_ms / 60000

    @property
    def remaining_minutes(self) -> float:
        return self.remaining_ms / 60000

    @property
    def is_active(self) -> bool:
        return self.status == TimerStatus.RUNNING

    @property
    def can_start(self) -> bool:
        return self.status in _STARTABLE

    @property
    def can_pause(self) -> bool:
        return self.status == TimerStatus.RUNNING

    @property
    def can_stop(self) -> bool:
        return self.status in _STOPPABLE


class TimerStateMachine:
    """Applies named transitions to a :class:`TimerState`.

    Every transition method returns ``True`` when it changed the state.  An
    illegal transition is a silent no-op that returns ``False``.  Each new
    snapshot is published on :attr:`states`; every snapshot whose status is
    IDLE is also persisted.
    """

    def __init__(self, settings: SettingsStore) -> None:
        self._settings = settings
        self.states: UpdateChannel[TimerState] = UpdateChannel("timer-states")
        self._state = self._initial_state()

    @property
    def state(self) -> TimerState:
        return self._state

    # -- idle configuration --------------------------------------------------

    def set_time(self, ms: float) -> bool:
        """Set the duration.  Only allowed while IDLE."""
        if self._state.status != TimerStatus.IDLE:
            logger.debug("set_time ignored in %s state", self._state.status.value)
            return False
        total = clamp_time_ms(ms)
        self._commit(self._idle_state(total, time_to_angle(total)))
        return True

    def set_angle(self, angle: float) -> bool:
        """Set the duration from a dial angle.  Only allowed while IDLE."""
        if self._state.status != TimerStatus.IDLE:
            logger.debug("set_angle ignored in %s state", self._state.status.value)
            return False
        constrained = sanitize_angle(angle)
        self._commit(self._idle_state(angle_to_time(constrained), constrained))
        return True

    # -- countdown transitions -----------------------------------------------

    def start(self) -> bool:
        if not self._state.can_start or self._state.total_ms <= 0:
            logger.debug(
                "start ignored: status=%s total_ms=%s",
                self._state.status.value,
                self._state.total_ms,
            )
            return False
        self._commit(
            dataclasses.replace(self._state, status=TimerStatus.RUNNING, keep_screen_on=True)
        )
        return True

    def pause(self, remaining_ms: Optional[int] = None) -> bool:
        """Pause the countdown, optionally adopting a frozen *remaining_ms*."""
        if not self._state.can_pause:
            return False
        paused = dataclasses.replace(
            self._state, status=TimerStatus.PAUSED, keep_screen_on=False
        )
        if remaining_ms is not None and remaining_ms > 0:
            paused = self._with_remaining(paused, remaining_ms)
        self._commit(paused)
        return True

    def stop(self) -> bool:
        if not self._state.can_stop:
            return False
        self._commit(self._rewound())
        return True

    def reset(self) -> bool:
        """Return to IDLE with the full duration.  Always permitted."""
        self._commit(self._rewound())
        return True

    def tick(self, remaining_ms: int) -> bool:
        """Apply a runner tick.  Only accepted while RUNNING."""
        if self._state.status != TimerStatus.RUNNING:
            return False
        if remaining_ms <= 0:
            self._finish()
        else:
            self._commit(self._with_remaining(self._state, remaining_ms))
        return True

    def set_keep_screen_on(self, keep_screen_on: bool) -> bool:
        if self._state.keep_screen_on == keep_screen_on:
            return False
        self._commit(dataclasses.replace(self._state, keep_screen_on=keep_screen_on))
        return True

    def clear_data(self) -> None:
        """Forget persisted settings and return to the default state."""
        self._settings.clear()
        self._state = self._initial_state()
        self.states.publish(self._state)

    # -- private helpers -----------------------------------------------------

    def _initial_state(self) -> TimerState:
        total_ms, angle = self._settings.load()
        return validate_state(self._idle_state(total_ms, angle))

    def _idle_state(self, total_ms: int, angle: float) -> TimerState:
        return TimerState(
            status=TimerStatus.IDLE,
            total_ms=total_ms,
            remaining_ms=total_ms,
            progress=0.0,
            angle=angle,
            keep_screen_on=False,
            last_update=_now_ms(),
        )

    def _rewound(self) -> TimerState:
        total = self._state.total_ms
        return self._idle_state(total, time_to_angle(total))

    @staticmethod
    def _with_remaining(state: TimerState, remaining_ms: int) -> TimerState:
        remaining = min(max(int(remaining_ms), 0), state.total_ms)
        progress = calculate_progress(state.total_ms - remaining, state.total_ms)
        return dataclasses.replace(
            state,
            remaining_ms=remaining,
            progress=progress,
            angle=progress_to_angle(progress),
        )

    def _finish(self) -> None:
        logger.info("Countdown of %s ms finished", self._state.total_ms)
        self._commit(
            dataclasses.replace(
                self._state,
                status=TimerStatus.FINISHED,
                remaining_ms=0,
                progress=1.0,
                angle=progress_to_angle(1.0),
                keep_screen_on=True,
            )
        )

    def _commit(self, state: TimerState) -> None:
        """Stamp, store, persist (when IDLE) and publish *state*."""
        self._state = dataclasses.replace(state, last_update=_now_ms())
        if self._state.status == TimerStatus.IDLE:
            self._settings.save(self._state.total_ms, self._state.angle)
        self.states.publish(self._state)
