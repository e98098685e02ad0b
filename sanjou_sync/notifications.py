"""
User-facing notifications.

Components never raise I/O failures to the host; they emit classified
notifications here instead. The host renders them as toasts.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50


class NotificationLevel(Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    """A single user-visible message."""

    level: NotificationLevel
    message: str
    category: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


NotificationListener = Callable[[Notification], None]


class Notifier:
    """Fan-out of notifications to subscribers, with a bounded history."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._listeners: list[NotificationListener] = []
        self._history: deque[Notification] = deque(maxlen=history_size)

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(
        self,
        level: NotificationLevel,
        message: str,
        category: str | None = None,
    ) -> Notification:
        notification = Notification(level=level, message=message, category=category)
        self._history.append(notification)
        logger.debug("Notification [%s] %s", level.value, message)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")
        return notification

    def success(self, message: str, category: str | None = None) -> Notification:
        return self.notify(NotificationLevel.SUCCESS, message, category)

    def info(self, message: str, category: str | None = None) -> Notification:
        return self.notify(NotificationLevel.INFO, message, category)

    def warning(self, message: str, category: str | None = None) -> Notification:
        return self.notify(NotificationLevel.WARNING, message, category)

    def error(self, message: str, category: str | None = None) -> Notification:
        return self.notify(NotificationLevel.ERROR, message, category)

    @property
    def history(self) -> list[Notification]:
        return list(self._history)

    def clear(self) -> None:
        self._history.clear()
