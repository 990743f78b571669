"""
Bounded notification channel between producers (launcher, worker threads) and a
presentation layer that drains it on its own schedule.

Producers never block: when the queue is full the new message is dropped and
counted, the same policy the logging queue uses.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Final

try:
    from datetime import UTC
except ImportError:
    UTC = timezone.utc  # noqa: UP017

DEFAULT_CAPACITY: Final[int] = 256


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class Notification:
    """One toast-style message."""

    level: NotificationLevel
    title: str
    body: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if not isinstance(self.level, NotificationLevel):
            object.__setattr__(self, "level", NotificationLevel(self.level))
        if not self.title.strip():
            raise ValueError("notification title must not be empty")

    def to_dict(self) -> dict[str, str]:
        return {
            "level": self.level.value,
            "title": self.title,
            "body": self.body,
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
        }


class NotificationChannel:
    """Thread-safe bounded FIFO of notifications."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._queue: queue.Queue[Notification] = queue.Queue(maxsize=capacity)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def __len__(self) -> int:
        return self._queue.qsize()

    def publish(self, notification: Notification) -> bool:
        """Enqueue without blocking; return ``False`` when the message was dropped."""
        try:
            self._queue.put_nowait(notification)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1
            return False
        return True

    def success(self, title: str, body: str = "") -> bool:
        return self.publish(Notification(NotificationLevel.SUCCESS, title, body))

    def error(self, title: str, body: str = "") -> bool:
        return self.publish(Notification(NotificationLevel.ERROR, title, body))

    def warning(self, title: str, body: str = "") -> bool:
        return self.publish(Notification(NotificationLevel.WARNING, title, body))

    def info(self, title: str, body: str = "") -> bool:
        return self.publish(Notification(NotificationLevel.INFO, title, body))

    def drain(self, max_items: int | None = None) -> list[Notification]:
        """Remove and return queued notifications in publish order."""
        if max_items is not None and max_items <= 0:
            raise ValueError("max_items must be > 0")
        drained: list[Notification] = []
        while max_items is None or len(drained) < max_items:
            try:
                drained.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return drained


__all__ = [
    "DEFAULT_CAPACITY",
    "Notification",
    "NotificationChannel",
    "NotificationLevel",
]
