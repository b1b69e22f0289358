"""Structured notifications emitted by the orchestrator."""

import threading
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..common.logging import get_logger

logger = get_logger(__name__)


class NotificationLevel(str, Enum):
    """Notification severity."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """Presentation-neutral notification value."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(min_length=1, description="Event or error kind identifier")
    level: NotificationLevel = Field(default=NotificationLevel.INFO)
    title: str = Field(description="Short headline")
    message: str = Field(description="One-line description")
    recovery_suggestion: str | None = Field(
        default=None, description="Optional multi-step recovery guidance"
    )
    tunnel: str | None = Field(default=None, description="Tunnel name or id")
    timestamp: datetime = Field(default_factory=datetime.now)


NotificationCallback = Callable[[Notification], None]


class NotificationBus:
    """Fan-out of notifications to external subscribers.

    Subscribers run on the emitting thread. A failing subscriber is logged and
    skipped; it never interrupts the operation that emitted the notification.
    """

    def __init__(self) -> None:
        self._subscribers: list[NotificationCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: NotificationCallback) -> Callable[[], None]:
        """Register a callback, returning a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def emit(self, notification: Notification) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        logger.debug(
            "Emitting notification",
            kind=notification.kind,
            title=notification.title,
            tunnel=notification.tunnel,
        )
        for callback in subscribers:
            try:
                callback(notification)
            except Exception as e:
                logger.error(
                    "Notification subscriber failed",
                    kind=notification.kind,
                    error=str(e),
                )
