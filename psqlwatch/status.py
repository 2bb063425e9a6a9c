"""Folds lifecycle events into a status snapshot for the UI."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable

from .events import EventHub, EventKind, LifecycleEvent

StatusListener = Callable[["WatchStatus"], None]

_LABELS = {
    EventKind.CONNECTING: "Connecting",
    EventKind.ESTABLISHED: "Connected",
    EventKind.CONNECT_FAILED: "Connect failed",
    EventKind.LOST: "Connection lost",
    EventKind.WORK_SUCCEEDED: "Finished",
    EventKind.WORK_FAILED: "Work failed",
    EventKind.RETRY_SCHEDULED: "Waiting to retry",
    EventKind.GAVE_UP: "Gave up",
}


@dataclass(frozen=True, slots=True)
class WatchStatus:
    """Current supervisor snapshot."""

    status: str = "Idle"
    connected: bool = False
    attempt: int = 1
    notifications: int = 0
    last_error: str | None = None
    updated_at: datetime | None = None


class StatusTracker:
    """Keeps a :class:`WatchStatus` current and notifies listeners on change."""

    def __init__(self, events: EventHub) -> None:
        self._state = WatchStatus()
        self._listeners: set[StatusListener] = set()
        self._events_unsubscribe = events.subscribe(self._handle_event)

    @property
    def state(self) -> WatchStatus:
        return self._state

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to status updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def close(self) -> None:
        self._events_unsubscribe()
        self._listeners.clear()

    def _handle_event(self, event: LifecycleEvent) -> None:
        state = self._state
        kind = event.kind
        updates: dict[str, object] = {"updated_at": event.at}
        if kind in _LABELS:
            updates["status"] = _LABELS[kind]
        if kind is EventKind.ESTABLISHED:
            updates["connected"] = True
        elif kind in {EventKind.LOST, EventKind.CONNECT_FAILED, EventKind.WORK_SUCCEEDED, EventKind.WORK_FAILED}:
            updates["connected"] = False
        if kind is EventKind.NOTIFICATION:
            updates["notifications"] = state.notifications + 1
        if kind is EventKind.RETRY_SCHEDULED and event.attempt is not None:
            updates["attempt"] = event.attempt
        if event.error is not None:
            updates["last_error"] = str(event.error)
        self._state = replace(state, **updates)
        for listener in tuple(self._listeners):
            listener(self._state)


__all__ = ["StatusTracker", "WatchStatus"]
