"""Scrolling log of lifecycle events."""

from __future__ import annotations

from typing import Callable

from textual.widgets import Log

from psqlwatch.events import EventHub, LifecycleEvent


class EventLog(Log):
    """Appends one line per lifecycle event."""

    DEFAULT_CSS = """
    EventLog {
        height: 1fr;
        border: round $primary;
    }
    """

    def __init__(self, events: EventHub, *, max_lines: int = 500) -> None:
        super().__init__(id="event-log", max_lines=max_lines)
        self._events = events
        self._unsubscribe: Callable[[], None] | None = None

    def on_mount(self) -> None:
        self._unsubscribe = self._events.subscribe(self._handle_event)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_event(self, event: LifecycleEvent) -> None:
        self.write_line(format_event(event))


def format_event(event: LifecycleEvent) -> str:
    stamp = event.at.astimezone().strftime("%H:%M:%S")
    line = f"{stamp} {event.kind.value:<22}"
    if event.attempt is not None:
        line += f" [attempt {event.attempt}]"
    if event.detail:
        line += f" {event.detail}"
    return line


__all__ = ["EventLog", "format_event"]
