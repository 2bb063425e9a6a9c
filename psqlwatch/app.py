"""Textual application and command-line entry point for psqlwatch."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Callable, Sequence

from textual.app import App, ComposeResult
from textual.logging import TextualHandler
from textual.widgets import Footer, Header

from .config import AppConfig, load_config
from .connections import AsyncpgConnectionProvider, ConnectionProvider, DemoConnectionProvider
from .events import EventHub, LifecycleEvent
from .runner import run_with_retry
from .status import StatusTracker
from .watcher import ChannelWatcher
from .widgets import EventLog, StatusBar

LOG = logging.getLogger(__name__)


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


def build_provider(config: AppConfig) -> ConnectionProvider:
    """Pick the connection provider for ``config``."""

    if config.demo:
        return DemoConnectionProvider(
            label=config.profile.name,
            drop_after_s=30.0,
            heartbeat_channel=config.watch.channel,
        )
    return AsyncpgConnectionProvider(config.profile.to_profile())


async def supervise(
    config: AppConfig,
    *,
    provider: ConnectionProvider | None = None,
    events: EventHub | None = None,
) -> int:
    """Run the channel watcher under the configured retry policy."""

    events = events or EventHub()
    watcher = ChannelWatcher(config.watch, events=events)
    return await run_with_retry(
        provider or build_provider(config),
        config.manifest.to_manifest(),
        watcher,
        config.retry,
        events=events,
    )


class WatchApp(App[None]):
    """Live view of the supervised LISTEN loop."""

    CSS = """
    Screen {
        layout: vertical;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+d", "drop", "Drop Connection"),
    ]

    def __init__(self, config: AppConfig | None = None, *, provider: ConnectionProvider | None = None) -> None:
        super().__init__()
        self._config = config or _load_app_config()
        self._events = EventHub()
        self._tracker = StatusTracker(self._events)
        self._provider = provider or build_provider(self._config)
        self._history: list[LifecycleEvent] = []
        self._history_unsubscribe: Callable[[], None] | None = self._events.subscribe(self._history.append)
        self.watch_result: int | None = None

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        yield EventLog(self._events)
        yield StatusBar(
            self._tracker,
            profile_name=self._config.profile.name,
            channel=self._config.watch.channel,
        )
        yield Footer()

    def on_mount(self) -> None:
        self.title = self._config.manifest.display_name
        self.sub_title = f"LISTEN {self._config.watch.channel}"
        self.run_worker(self._supervise(), name="supervisor", exclusive=True)

    @property
    def events(self) -> EventHub:
        return self._events

    @property
    def tracker(self) -> StatusTracker:
        return self._tracker

    @property
    def provider(self) -> ConnectionProvider:
        return self._provider

    @property
    def history(self) -> tuple[LifecycleEvent, ...]:
        """Lifecycle events seen so far (testing helper)."""

        return tuple(self._history)

    def action_drop(self) -> None:
        """Simulate a dropped connection when running against the demo provider."""

        if not isinstance(self._provider, DemoConnectionProvider):
            self.notify("Dropping connections is only available in demo mode.", severity="warning")
            return
        if not self._provider.drop():
            self.notify("No active connection to drop.", severity="warning")

    async def _supervise(self) -> None:
        try:
            self.watch_result = await supervise(self._config, provider=self._provider, events=self._events)
        except Exception as exc:
            LOG.exception("Supervisor stopped")
            self.notify(f"Supervisor stopped: {exc}", severity="error", timeout=30)
            return
        self.notify(f"Watcher finished after {self.watch_result} notification(s).", severity="information")

    async def _shutdown(self) -> None:
        if self._history_unsubscribe:
            self._history_unsubscribe()
            self._history_unsubscribe = None
        self._tracker.close()
        await super()._shutdown()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="psqlwatch", description="Supervised LISTEN loop with retries.")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    parser.add_argument("--demo", action="store_true", help="Use the in-memory demo provider")
    parser.add_argument("--headless", action="store_true", help="Run without the TUI, logging to stderr")
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Invoke the Textual application (or the headless loop)."""

    args = build_parser().parse_args(argv)
    handlers: list[logging.Handler] = [logging.StreamHandler()] if args.headless else [TextualHandler()]
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )
    config = load_config(args.config)
    if args.demo:
        config = config.with_demo(True)
    if args.headless:
        try:
            received = asyncio.run(supervise(config))
        except KeyboardInterrupt:
            return 130
        except Exception as exc:
            LOG.error("Giving up: %s", exc)
            return 1
        LOG.info("Watcher finished after %d notification(s)", received)
        return 0
    WatchApp(config).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
