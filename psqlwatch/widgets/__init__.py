"""Widget library for the Textual UI."""

from __future__ import annotations

from .event_log import EventLog
from .status_bar import StatusBar

__all__ = ["EventLog", "StatusBar"]
