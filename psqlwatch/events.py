"""Lifecycle events emitted by the runner, retry loop and watcher."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

LOG = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Observable lifecycle transitions."""

    CONNECTING = "connecting"
    ESTABLISHED = "established"
    CONNECT_FAILED = "connect_failed"
    LOST = "lost"
    WORK_SUCCEEDED = "work_succeeded"
    WORK_FAILED = "work_failed"
    ATTEMPT_FAILED = "attempt_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    GAVE_UP = "gave_up"
    NOTIFICATION = "notification"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_FAILED = "subscription_failed"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """Single lifecycle transition."""

    kind: EventKind
    detail: str = ""
    attempt: int | None = None
    error: BaseException | None = None
    at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))


EventListener = Callable[[LifecycleEvent], None]


class EventHub:
    """Fan-out of lifecycle events to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: set[EventListener] = set()

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Subscribe to lifecycle events; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def emit(
        self,
        kind: EventKind,
        detail: str = "",
        *,
        attempt: int | None = None,
        error: BaseException | None = None,
    ) -> LifecycleEvent:
        event = LifecycleEvent(kind=kind, detail=detail, attempt=attempt, error=error)
        for listener in tuple(self._listeners):
            try:
                listener(event)
            except Exception:
                LOG.exception("Lifecycle listener failed", extra={"kind": kind.value})
        return event


def emit(
    hub: EventHub | None,
    kind: EventKind,
    detail: str = "",
    *,
    attempt: int | None = None,
    error: BaseException | None = None,
) -> None:
    """Emit on ``hub`` when one is configured."""

    if hub is not None:
        hub.emit(kind, detail, attempt=attempt, error=error)


__all__ = ["EventHub", "EventKind", "EventListener", "LifecycleEvent", "emit"]
