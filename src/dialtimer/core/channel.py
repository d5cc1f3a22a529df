"""Conflated update channel.

A channel holds at most one undelivered value.  Publishing while a value is
still pending replaces it, so a slow subscriber only ever sees the newest
update and nothing queues up behind it.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]

_EMPTY = object()


class UpdateChannel(Generic[T]):
    """Latest-value channel with synchronous, serialized delivery.

    Delivery happens on the publishing thread.  If another thread is already
    delivering, ``publish`` only replaces the pending value and returns; the
    delivering thread picks it up before it finishes.  Subscribers therefore
    never run concurrently with each other.
    """

    def __init__(self, name: str = "channel") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber[T]] = []
        self._pending: object = _EMPTY
        self._latest: Optional[T] = None
        self._delivering = False
        self.dropped = 0

    @property
    def latest(self) -> Optional[T]:
        """The most recently published value, delivered or not."""
        with self._lock:
            return self._latest

    def subscribe(self, subscriber: Subscriber[T]) -> Callable[[], None]:
        """Register *subscriber* and return a callable that removes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            self.unsubscribe(subscriber)

        return unsubscribe

    def unsubscribe(self, subscriber: Subscriber[T]) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def has_subscribers(self) -> bool:
        with self._lock:
            return bool(self._subscribers)

    def publish(self, value: T) -> None:
        with self._lock:
            if self._pending is not _EMPTY:
                self.dropped += 1
            self._pending = value
            self._latest = value
            if self._delivering:
                return
            self._delivering = True
        self._drain()

    def _drain(self) -> None:
        try:
            while True:
                with self._lock:
                    value = self._pending
                    self._pending = _EMPTY
                    if value is _EMPTY:
                        self._delivering = False
                        return
                    subscribers = list(self._subscribers)
                for subscriber in subscribers:
                    try:
                        subscriber(value)  # type: ignore[arg-type]
                    except Exception:
                        logger.exception("Subscriber of %s failed", self._name)
        except BaseException:
            with self._lock:
                self._delivering = False
            raise
