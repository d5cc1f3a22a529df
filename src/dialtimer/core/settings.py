"""Persisted settings: the last-used duration and dial angle.

The store sits on a plain key-value backend.  ``JsonFileBackend`` keeps the
values in one JSON file so that they survive across terminal invocations.
Persistence failures are logged and never propagate to the timer.
"""

from __future__ import annotations

import fcntl
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from dialtimer.core.angles import time_to_angle
from dialtimer.core.normalize import clamp_time_ms, sanitize_angle

logger = logging.getLogger(__name__)

DEFAULT_TIME_MS = 5 * 60 * 1000
DEFAULT_ANGLE = time_to_angle(DEFAULT_TIME_MS)

_NAMESPACE = "timer_prefs"
KEY_LAST_TOTAL_TIME = "last_total_time"
KEY_LAST_ANGLE = "last_angle"


class SettingsBackend(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def clear(self) -> None: ...


class MemoryBackend:
    """Dict-backed backend; nothing is written to disk."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def clear(self) -> None:
        self._data.clear()


class JsonFileBackend:
    """Backend storing all keys in one JSON object at *path*."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def clear(self) -> None:
        if self._path.exists():
            self._path.unlink()

    # -- file access ---------------------------------------------------------

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        with open(self._path) as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not hold a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            json.dump(data, f)


class SettingsStore:
    """Typed access to the last-used ``(total_ms, angle)`` pair."""

    def __init__(self, backend: SettingsBackend, namespace: str = _NAMESPACE) -> None:
        self._backend = backend
        self._namespace = namespace

    def _key(self, name: str) -> str:
        return f"{self._namespace}.{name}"

    def load(self) -> tuple[int, float]:
        """Return the saved ``(total_ms, angle)``, or the 5-minute default."""
        try:
            total_ms = self._backend.get(self._key(KEY_LAST_TOTAL_TIME), DEFAULT_TIME_MS)
            angle = self._backend.get(self._key(KEY_LAST_ANGLE), DEFAULT_ANGLE)
            return clamp_time_ms(float(total_ms)), sanitize_angle(float(angle))
        except (OSError, ValueError, TypeError, OverflowError):
            logger.exception("Failed to load timer settings, using defaults")
            return DEFAULT_TIME_MS, DEFAULT_ANGLE

    def save(self, total_ms: int, angle: float) -> bool:
        """Persist the pair.  Returns ``False`` if the backend failed."""
        try:
            self._backend.set(self._key(KEY_LAST_TOTAL_TIME), int(total_ms))
            self._backend.set(self._key(KEY_LAST_ANGLE), float(angle))
        except (OSError, ValueError, TypeError):
            logger.exception("Failed to save timer settings")
            return False
        logger.debug("Saved timer settings: total_ms=%s angle=%s", total_ms, angle)
        return True

    def clear(self) -> None:
        try:
            self._backend.clear()
        except OSError:
            logger.exception("Failed to clear timer settings")
