"""Status bar widget that mirrors supervisor state."""

from __future__ import annotations

from typing import Callable

from textual.widgets import Static

from psqlwatch.status import StatusTracker, WatchStatus


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, tracker: StatusTracker, *, profile_name: str, channel: str) -> None:
        super().__init__("", id="status-bar")
        self._tracker = tracker
        self._profile_name = profile_name
        self._channel = channel
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._tracker.subscribe(self._handle_status_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_status_update(self, state: WatchStatus) -> None:
        self.update(render_status(state, profile_name=self._profile_name, channel=self._channel))


def render_status(state: WatchStatus, *, profile_name: str, channel: str) -> str:
    """Format a status snapshot as a single line."""

    updated = state.updated_at.astimezone().strftime("%H:%M:%S") if state.updated_at else "—"
    parts = [
        f"Profile: {profile_name}",
        f"Channel: {channel}",
        f"Status: {state.status}",
        f"Attempt: {state.attempt}",
        f"Notifications: {state.notifications}",
        f"Updated: {updated}",
    ]
    if state.last_error:
        reason = state.last_error.splitlines()[0][:80]
        parts.append(f"Error: {reason}")
    return " | ".join(parts)


__all__ = ["StatusBar", "render_status"]
