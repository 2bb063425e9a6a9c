"""App-level tests for the Textual monitor and CLI."""

from __future__ import annotations

from pathlib import Path

import pytest

from psqlwatch import app as app_module
from psqlwatch.app import WatchApp, build_parser, build_provider, main, supervise
from psqlwatch.config import AppConfig, RetryConfig, WatchConfig
from psqlwatch.connections import AsyncpgConnectionProvider, DemoConnectionProvider
from psqlwatch.events import EventHub, EventKind


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _fast_watch(max_cycles: int | None = 1) -> WatchConfig:
    return WatchConfig(channel="events", resubscribe_after_s=0.02, idle_interval_s=0.0, max_cycles=max_cycles)


def test_build_provider_respects_demo_flag() -> None:
    assert isinstance(build_provider(AppConfig(demo=True)), DemoConnectionProvider)
    assert isinstance(build_provider(AppConfig()), AsyncpgConnectionProvider)


@pytest.mark.anyio
async def test_supervise_retries_failed_connects() -> None:
    config = AppConfig(retry=RetryConfig(max_retries=3), watch=_fast_watch())
    provider = DemoConnectionProvider(fail_first=2, heartbeat_channel="events", heartbeat_interval_s=0.01)
    hub = EventHub()
    kinds: list[EventKind] = []
    hub.subscribe(lambda event: kinds.append(event.kind))

    received = await supervise(config, provider=provider, events=hub)

    assert received >= 1
    assert provider.attempts == 3
    assert kinds.count(EventKind.CONNECT_FAILED) == 2
    assert kinds.count(EventKind.RETRY_SCHEDULED) == 2


@pytest.mark.anyio
async def test_app_runs_watcher_to_completion(monkeypatch: pytest.MonkeyPatch) -> None:
    config = AppConfig(retry=RetryConfig(), watch=_fast_watch())
    monkeypatch.setattr("psqlwatch.app._load_app_config", lambda: config)
    provider = DemoConnectionProvider(heartbeat_channel="events", heartbeat_interval_s=0.01)
    app = WatchApp(provider=provider)

    async with app.run_test() as pilot:
        for _ in range(100):
            if app.watch_result is not None:
                break
            await pilot.pause(0.02)

    assert app.watch_result is not None and app.watch_result >= 1
    kinds = [event.kind for event in app.history]
    assert kinds[:2] == [EventKind.CONNECTING, EventKind.ESTABLISHED]
    assert EventKind.WORK_SUCCEEDED in kinds
    assert app.tracker.state.status == "Finished"


@pytest.mark.anyio
async def test_drop_action_triggers_reconnect() -> None:
    config = AppConfig(retry=RetryConfig(), watch=_fast_watch(max_cycles=None))
    provider = DemoConnectionProvider()
    app = WatchApp(config, provider=provider)

    async with app.run_test() as pilot:
        for _ in range(100):
            if provider.active is not None:
                break
            await pilot.pause(0.01)
        app.action_drop()
        for _ in range(100):
            if provider.attempts >= 2 and provider.active is not None:
                break
            await pilot.pause(0.01)

        kinds = [event.kind for event in app.history]
        assert EventKind.LOST in kinds
        assert EventKind.RETRY_SCHEDULED in kinds
        assert provider.attempts == 2
        assert provider.sessions[0].disposed


@pytest.mark.anyio
async def test_drop_action_requires_demo_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    config = AppConfig()
    monkeypatch.setattr("psqlwatch.app._load_app_config", lambda: config)
    app = WatchApp()
    messages: list[str] = []
    monkeypatch.setattr(app, "notify", lambda message, **kwargs: messages.append(message))

    app.action_drop()

    assert isinstance(app.provider, AsyncpgConnectionProvider)
    assert messages and "demo mode" in messages[0]


def test_main_headless_demo_run(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        "[watch]\nchannel = \"events\"\nresubscribe_after_s = 0.01\nidle_interval_s = 0\nmax_cycles = 1\n"
    )
    monkeypatch.setattr(
        app_module,
        "build_provider",
        lambda config: DemoConnectionProvider(heartbeat_channel="events", heartbeat_interval_s=0.01),
    )

    assert main(["--headless", "--demo", "--config", str(config_path), "--log-level", "warning"]) == 0


def test_main_headless_reports_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[retry]\nmax_retries = 1\nretry_timeout_ms = 0\n")
    monkeypatch.setattr(app_module, "build_provider", lambda config: DemoConnectionProvider(fail_first=5))

    assert main(["--headless", "--config", str(config_path)]) == 1


def test_log_level_is_normalized_and_validated(capsys: pytest.CaptureFixture[str]) -> None:
    parser = build_parser()

    assert parser.parse_args(["--log-level", "warning"]).log_level == "WARNING"
    assert parser.parse_args([]).log_level == "INFO"
    with pytest.raises(SystemExit):
        parser.parse_args(["--log-level", "verbose"])
    assert "invalid choice" in capsys.readouterr().err
