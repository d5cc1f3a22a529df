"""CLI entry point for dialtimer.

Uses Click to expose the ``dialtimer`` command group.  The commands are a thin
terminal front end over :class:`SessionCoordinator`.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Optional

import click

import dialtimer
from dialtimer.config import Config, load_config
from dialtimer.core.angles import (
    MAX_TIME_MINUTES,
    angle_to_time,
    constrain_angle,
    coordinate_to_angle,
)
from dialtimer.core.formatting import format_time, minutes_to_ms
from dialtimer.core.notify import Notifier
from dialtimer.core.runner import BackgroundCountdownRunner
from dialtimer.core.session import SessionCoordinator
from dialtimer.core.settings import JsonFileBackend, SettingsStore
from dialtimer.core.timer import TimerState, TimerStatus

_POLL_SECONDS = 0.25


class TerminalNotifier:
    """Renders countdown progress on a single terminal line."""

    def show_progress(self, total_ms: int, remaining_ms: int, status: str) -> None:
        suffix = " (paused)" if status == "paused" else ""
        click.echo(f"\r{format_time(remaining_ms)} remaining{suffix}  ", nl=False)

    def show_finished(self) -> None:
        click.echo("\nTime's up!")

    def vibrate(self) -> None:
        click.echo("\a", nl=False)

    def clear(self) -> None:
        click.echo("")


def _build_coordinator(
    config: Optional[Config] = None, notifier: Optional[Notifier] = None
) -> SessionCoordinator:
    config = config or load_config()
    store = SettingsStore(JsonFileBackend(config.settings_path))
    return SessionCoordinator(
        store,
        config=config,
        runner_factory=lambda: BackgroundCountdownRunner(
            notifier, interval=config.tick_interval
        ),
    )


def _describe(state: TimerState) -> str:
    return f"{format_time(state.total_ms)} (angle {state.angle:.1f}°)"


@click.group()
@click.version_option(version=dialtimer.__version__, prog_name="dialtimer")
@click.option("-v", "--verbose", is_flag=True, help="Log diagnostics to stderr.")
def cli(verbose: bool) -> None:
    """dialtimer: a countdown timer set by angle or minutes (0-45)."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


@cli.command()
@click.option(
    "--minutes",
    type=click.FloatRange(0, MAX_TIME_MINUTES),
    help="Duration in minutes; defaults to the last one used.",
)
@click.option("--angle", type=float, help="Duration as a dial angle in degrees.")
def run(minutes: Optional[float], angle: Optional[float]) -> None:
    """Count down in the foreground.  Ctrl+C stops the countdown."""
    coordinator = _build_coordinator(notifier=TerminalNotifier())
    if minutes is not None:
        coordinator.set_time(minutes_to_ms(minutes))
    elif angle is not None:
        coordinator.set_angle(angle)

    done = threading.Event()

    def on_state(state: TimerState) -> None:
        if state.status in (TimerStatus.FINISHED, TimerStatus.IDLE):
            done.set()

    coordinator.subscribe(on_state)
    if not coordinator.start():
        click.echo("Nothing to count down: the duration is 00:00", err=True)
        coordinator.close()
        sys.exit(1)

    click.echo(f"Counting down {format_time(coordinator.state.total_ms)}")
    try:
        while not done.wait(_POLL_SECONDS):
            pass
    except KeyboardInterrupt:
        coordinator.stop()
        click.echo("\nCountdown stopped")
    finally:
        coordinator.close()


@cli.command(name="set")
@click.argument("minutes", type=click.FloatRange(0, MAX_TIME_MINUTES), required=False)
@click.option("--angle", type=float, help="Set the duration from a dial angle instead.")
def set_duration(minutes: Optional[float], angle: Optional[float]) -> None:
    """Store MINUTES (or a dial angle) as the last-used duration."""
    if minutes is None and angle is None:
        raise click.UsageError("Give MINUTES or --angle.")
    coordinator = _build_coordinator()
    if minutes is not None:
        coordinator.set_time(minutes_to_ms(minutes))
    else:
        coordinator.set_angle(angle)  # type: ignore[arg-type]
    click.echo(f"Duration set: {_describe(coordinator.state)}")


@cli.command()
def show() -> None:
    """Show the persisted duration and dial angle."""
    coordinator = _build_coordinator()
    click.echo(f"Last duration: {_describe(coordinator.state)}")


@cli.command()
@click.argument("x", type=float)
@click.argument("y", type=float)
@click.option(
    "--center",
    type=(float, float),
    default=(0.0, 0.0),
    show_default=True,
    help="Dial center.",
)
def angle(x: float, y: float, center: tuple[float, float]) -> None:
    """Show the duration a pointer at (X, Y) selects on the dial."""
    raw = coordinate_to_angle(x, y, center[0], center[1])
    constrained = constrain_angle(raw)
    click.echo(f"Angle: {raw:.1f}°")
    if constrained != raw:
        click.echo(f"Constrained: {constrained:.1f}°")
    click.echo(f"Duration: {format_time(angle_to_time(constrained))}")


@cli.command()
def clear() -> None:
    """Forget the persisted duration."""
    coordinator = _build_coordinator()
    coordinator.clear_all_data()
    click.echo(f"Settings cleared, duration reset to {_describe(coordinator.state)}")
