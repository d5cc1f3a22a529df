"""Runtime configuration read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 0.1
DEFAULT_KEEP_SCREEN_ON_DELAY = 5.0
DEFAULT_DIVERGENCE_THRESHOLD_MS = 1000
SETTINGS_FILE = "settings.json"


def default_config_dir() -> Path:
    override = os.environ.get("DIALTIMER_CONFIG_DIR")
    if override:
        return Path(override)
    base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "dialtimer"


def _float_from_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring %s=%r: must be positive", name, raw)
        return default
    return value


@dataclass(frozen=True)
class Config:
    config_dir: Path = field(default_factory=default_config_dir)
    tick_interval: float = DEFAULT_TICK_INTERVAL
    keep_screen_on_delay: float = DEFAULT_KEEP_SCREEN_ON_DELAY
    divergence_threshold_ms: int = DEFAULT_DIVERGENCE_THRESHOLD_MS

    @property
    def settings_path(self) -> Path:
        return self.config_dir / SETTINGS_FILE


def load_config() -> Config:
    """Build a :class:`Config` from ``DIALTIMER_*`` environment variables."""
    return Config(
        config_dir=default_config_dir(),
        tick_interval=_float_from_env("DIALTIMER_TICK_INTERVAL", DEFAULT_TICK_INTERVAL),
        keep_screen_on_delay=_float_from_env(
            "DIALTIMER_KEEP_SCREEN_ON_DELAY", DEFAULT_KEEP_SCREEN_ON_DELAY
        ),
    )
