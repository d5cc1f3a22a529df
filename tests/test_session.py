"""Comprehensive tests for the SessionCoordinator."""

import math
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from dialtimer.config import Config
from dialtimer.core.angles import END_ANGLE, MAX_TIME_MS, time_to_angle
from dialtimer.core.runner import BackgroundCountdownRunner, RunnerEvent, RunnerUpdate
from dialtimer.core.scheduler import DeferredActions
from dialtimer.core.session import Intent, SessionCoordinator
from dialtimer.core.settings import MemoryBackend, SettingsStore
from dialtimer.core.timer import TimerState, TimerStatus

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def mock_time():
    with patch("dialtimer.core.runner.time") as mocked:
        mocked.monotonic.return_value = 0.0
        yield mocked


@pytest.fixture()
def runners() -> list[BackgroundCountdownRunner]:
    return []


@pytest.fixture()
def scheduler() -> MagicMock:
    return MagicMock()


@pytest.fixture()
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture()
def coordinator(
    tmp_path: Path,
    runners: list[BackgroundCountdownRunner],
    scheduler: MagicMock,
    backend: MemoryBackend,
) -> SessionCoordinator:
    def factory() -> BackgroundCountdownRunner:
        runner = BackgroundCountdownRunner(MagicMock(), threaded=False)
        runners.append(runner)
        return runner

    return SessionCoordinator(
        SettingsStore(backend),
        config=Config(config_dir=tmp_path),
        runner_factory=factory,
        scheduler=scheduler,
    )


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


class TestIntents:
    def test_start_creates_and_starts_runner(self, mock_time, coordinator) -> None:
        assert coordinator.start() is True
        assert coordinator.state.status == TimerStatus.RUNNING
        assert coordinator.runner is not None
        assert coordinator.runner.is_running
        assert coordinator.session_id == 1

    def test_start_with_zero_duration_is_rejected(self, mock_time, coordinator, runners) -> None:
        coordinator.set_time(0)
        assert coordinator.start() is False
        assert runners == []

    def test_ticks_flow_into_state(self, mock_time, coordinator) -> None:
        coordinator.start()
        mock_time.monotonic.return_value = 299.0
        coordinator.runner.poll()
        state = coordinator.state
        assert state.status == TimerStatus.RUNNING
        assert state.remaining_ms == 1000
        assert state.progress == pytest.approx(0.99667, abs=1e-5)

    def test_set_time_rejected_while_running(self, mock_time, coordinator) -> None:
        coordinator.start()
        assert coordinator.set_time(60_000) is False
        assert coordinator.set_angle(200.0) is False
        assert coordinator.state.total_ms == 300_000

    def test_handle_dispatches_intents(self, mock_time, coordinator) -> None:
        assert coordinator.handle(Intent.SET_TIME, 120_000) is True
        assert coordinator.state.total_ms == 120_000
        assert coordinator.handle(Intent.SET_ANGLE, 180.0) is True
        assert coordinator.state.total_ms == 450_000
        assert coordinator.handle(Intent.START) is True
        assert coordinator.handle(Intent.PAUSE) is True
        assert coordinator.handle(Intent.STOP) is True
        assert coordinator.handle(Intent.RESET) is True
        assert coordinator.state.status == TimerStatus.IDLE

    @pytest.mark.parametrize(
        ("value", "expected"), [(math.nan, 0), (math.inf, MAX_TIME_MS), (-math.inf, 0)]
    )
    def test_handle_clamps_non_finite_time(self, coordinator, value, expected) -> None:
        assert coordinator.handle(Intent.SET_TIME, value) is True
        assert coordinator.state.total_ms == expected
        assert coordinator.state.remaining_ms == expected

    def test_subscribers_see_state_changes(self, mock_time, coordinator) -> None:
        seen: list[TimerState] = []
        coordinator.subscribe(seen.append)
        coordinator.start()
        coordinator.pause()
        assert [s.status for s in seen][-2:] == [TimerStatus.RUNNING, TimerStatus.PAUSED]


# ---------------------------------------------------------------------------
# Pause / resume / stop
# ---------------------------------------------------------------------------


class TestPauseResume:
    def test_pause_duration_does_not_drift(self, mock_time, coordinator) -> None:
        coordinator.start()
        assert coordinator.pause() is True
        before = coordinator.state.remaining_ms

        mock_time.monotonic.return_value = 10.0
        assert coordinator.start() is True
        coordinator.runner.poll()
        assert coordinator.state.remaining_ms == before == 300_000
        assert coordinator.session_id == 1

    def test_pause_snapshots_runner_remaining(self, mock_time, coordinator) -> None:
        coordinator.start()
        mock_time.monotonic.return_value = 42.5
        coordinator.pause()
        assert coordinator.state.status == TimerStatus.PAUSED
        assert coordinator.state.remaining_ms == 300_000 - 42_500
        assert coordinator.state.keep_screen_on is False

    def test_resume_reuses_paused_runner(self, mock_time, coordinator, runners) -> None:
        coordinator.start()
        coordinator.pause()
        coordinator.start()
        assert len(runners) == 1
        assert runners[0].serial == 1
        assert runners[0].is_running

    def test_pause_after_deadline_finishes(self, mock_time, coordinator, scheduler) -> None:
        coordinator.set_time(5000)
        coordinator.start()
        mock_time.monotonic.return_value = 8.0
        assert coordinator.pause() is False
        assert coordinator.state.status == TimerStatus.FINISHED
        scheduler.schedule.assert_called_once()

    def test_stop_while_paused(self, mock_time, coordinator) -> None:
        coordinator.set_time(600_000)
        coordinator.start()
        mock_time.monotonic.return_value = 400.0
        coordinator.pause()
        assert coordinator.state.remaining_ms == 200_000

        assert coordinator.stop() is True
        state = coordinator.state
        assert state.status == TimerStatus.IDLE
        assert state.remaining_ms == 600_000
        assert state.progress == 0.0
        assert state.angle == pytest.approx(time_to_angle(600_000))
        assert coordinator.runner.session is None

    def test_stop_when_idle_is_rejected(self, mock_time, coordinator) -> None:
        assert coordinator.stop() is False


# ---------------------------------------------------------------------------
# Natural completion and the keep-screen-on flag
# ---------------------------------------------------------------------------


class TestCompletion:
    def _finish(self, mock_time, coordinator) -> None:
        coordinator.set_time(5000)
        coordinator.start()
        mock_time.monotonic.return_value = 5.0
        coordinator.runner.poll()

    def test_completion_finishes_state(self, mock_time, coordinator) -> None:
        self._finish(mock_time, coordinator)
        state = coordinator.state
        assert state.status == TimerStatus.FINISHED
        assert state.progress == 1.0
        assert state.angle == pytest.approx(END_ANGLE)
        assert state.keep_screen_on is True

    def test_alarm_fires_once(self, mock_time, coordinator) -> None:
        self._finish(mock_time, coordinator)
        coordinator.runner._notifier.vibrate.assert_called_once()

    def test_keep_screen_on_cleared_after_delay(self, mock_time, coordinator, scheduler) -> None:
        self._finish(mock_time, coordinator)
        key, delay, action = scheduler.schedule.call_args.args
        assert key == ("keep-screen-on", 1)
        assert delay == 5.0
        action()
        assert coordinator.state.keep_screen_on is False
        assert coordinator.state.status == TimerStatus.FINISHED

    def test_reset_cancels_keep_screen_clear(self, mock_time, coordinator, scheduler) -> None:
        self._finish(mock_time, coordinator)
        _, _, action = scheduler.schedule.call_args.args
        coordinator.reset()
        scheduler.cancel.assert_called_with(("keep-screen-on", 1))

        action()
        assert coordinator.state.status == TimerStatus.IDLE
        assert coordinator.state.keep_screen_on is False

    def test_reset_returns_to_idle_and_persists(self, mock_time, coordinator, backend) -> None:
        self._finish(mock_time, coordinator)
        coordinator.reset()
        assert coordinator.state.status == TimerStatus.IDLE
        assert coordinator.state.remaining_ms == 5000
        assert backend.get("timer_prefs.last_total_time") == 5000

    def test_superseded_session_updates_are_dropped(self, mock_time, coordinator) -> None:
        coordinator.start()
        before = coordinator.state
        coordinator.runner.updates.publish(RunnerUpdate(RunnerEvent.COMPLETED, 0, 300_000, 99))
        assert coordinator.state == before


# ---------------------------------------------------------------------------
# Background / foreground reconciliation
# ---------------------------------------------------------------------------


class TestReattachment:
    def _run_to_fifty_seconds(self, mock_time, coordinator) -> None:
        coordinator.set_time(60_000)
        coordinator.start()
        mock_time.monotonic.return_value = 10.0
        coordinator.runner.poll()
        assert coordinator.state.remaining_ms == 50_000

    def test_runner_value_adopted_on_divergence(self, mock_time, coordinator) -> None:
        self._run_to_fifty_seconds(mock_time, coordinator)
        coordinator.on_background()

        mock_time.monotonic.return_value = 20.0
        coordinator.runner.poll()
        assert coordinator.state.remaining_ms == 50_000

        coordinator.on_foreground()
        assert coordinator.state.remaining_ms == 40_000
        assert coordinator.state.status == TimerStatus.RUNNING

    def test_small_divergence_is_ignored(self, mock_time, coordinator) -> None:
        self._run_to_fifty_seconds(mock_time, coordinator)
        coordinator.on_background()
        mock_time.monotonic.return_value = 10.5
        coordinator.runner.poll()
        coordinator.on_foreground()
        assert coordinator.state.remaining_ms == 50_000

    def test_completion_while_backgrounded(self, mock_time, coordinator, scheduler) -> None:
        self._run_to_fifty_seconds(mock_time, coordinator)
        coordinator.on_background()
        mock_time.monotonic.return_value = 61.0
        coordinator.runner.poll()
        assert coordinator.state.status == TimerStatus.RUNNING

        coordinator.on_foreground()
        assert coordinator.state.status == TimerStatus.FINISHED
        scheduler.schedule.assert_called_once()

    def test_ticks_resume_after_reattach(self, mock_time, coordinator) -> None:
        self._run_to_fifty_seconds(mock_time, coordinator)
        coordinator.on_background()
        coordinator.on_foreground()
        mock_time.monotonic.return_value = 30.0
        coordinator.runner.poll()
        assert coordinator.state.remaining_ms == 30_000

    def test_unavailable_runner_is_replaced(self, mock_time, coordinator, runners) -> None:
        self._run_to_fifty_seconds(mock_time, coordinator)
        coordinator.on_background()
        runners[0].close()

        coordinator.on_foreground()
        assert len(runners) == 2
        assert coordinator.runner is runners[1]
        assert runners[1].is_running
        assert coordinator.state.status == TimerStatus.RUNNING
        assert coordinator.state.remaining_ms == 50_000

    def test_background_restarts_missing_runner(self, mock_time, coordinator, runners) -> None:
        self._run_to_fifty_seconds(mock_time, coordinator)
        runners[0].close()
        coordinator.on_background()
        assert len(runners) == 2
        assert runners[1].is_running
        assert runners[1].remaining_ms == 50_000

    def test_foreground_without_runner_is_harmless(self, coordinator) -> None:
        coordinator.on_background()
        coordinator.on_foreground()
        assert coordinator.state.status == TimerStatus.IDLE

    def test_sync_ignored_unless_running(self, mock_time, coordinator) -> None:
        coordinator.start()
        coordinator.pause()
        assert coordinator.sync_with_runner() is False


# ---------------------------------------------------------------------------
# Data management
# ---------------------------------------------------------------------------


class TestClearData:
    def test_clear_all_data(self, mock_time, coordinator, backend) -> None:
        coordinator.set_time(60_000)
        coordinator.start()
        coordinator.clear_all_data()
        assert coordinator.state.status == TimerStatus.IDLE
        assert coordinator.state.total_ms == 300_000
        assert coordinator.runner.session is None
        assert backend.get("timer_prefs.last_total_time") is None

    def test_close_shuts_down(self, mock_time, coordinator, scheduler) -> None:
        coordinator.start()
        coordinator.close()
        scheduler.cancel_all.assert_called_once()
        assert coordinator.runner.closed


# ---------------------------------------------------------------------------
# Live runner thread and real deferred actions
# ---------------------------------------------------------------------------


class TestLiveSession:
    """Drives a coordinator end to end with a ticking thread."""

    def test_pause_resume_finish_and_clear(self, tmp_path: Path) -> None:
        coordinator = SessionCoordinator(
            SettingsStore(MemoryBackend()),
            config=Config(config_dir=tmp_path, tick_interval=0.01, keep_screen_on_delay=0.05),
            runner_factory=lambda: BackgroundCountdownRunner(MagicMock(), interval=0.01),
            scheduler=DeferredActions(),
        )
        ticked = threading.Event()
        finished = threading.Event()
        cleared = threading.Event()

        def on_state(state: TimerState) -> None:
            if state.status == TimerStatus.RUNNING and state.remaining_ms < 1500:
                ticked.set()
            if state.status == TimerStatus.FINISHED:
                finished.set()
                if not state.keep_screen_on:
                    cleared.set()

        coordinator.subscribe(on_state)
        coordinator.set_time(1500)
        try:
            assert coordinator.start() is True
            assert ticked.wait(5.0)

            assert coordinator.pause() is True
            paused = coordinator.state
            assert paused.status == TimerStatus.PAUSED
            time.sleep(0.3)
            assert coordinator.state.remaining_ms == paused.remaining_ms
            assert not coordinator.runner.is_running

            assert coordinator.start() is True
            assert coordinator.session_id == 1
            assert finished.wait(5.0)
            assert coordinator.state.progress == 1.0

            assert cleared.wait(5.0)
            assert coordinator.state.status == TimerStatus.FINISHED
            assert coordinator.state.keep_screen_on is False
        finally:
            coordinator.close()
