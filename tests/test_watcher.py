"""Tests for the channel watcher work function."""

from __future__ import annotations

import pytest

from psqlwatch.config import WatchConfig
from psqlwatch.connections import DemoConnectionProvider
from psqlwatch.events import EventHub, EventKind, LifecycleEvent
from psqlwatch.models import Manifest
from psqlwatch.runner import run_supervised
from psqlwatch.subscriptions import Notification
from psqlwatch.watcher import ChannelWatcher

MANIFEST = Manifest(app_id="com.example.tests", display_name="Tests", version="1.0.0")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _fast_config(**overrides: object) -> WatchConfig:
    values: dict[str, object] = {
        "channel": "events",
        "resubscribe_after_s": 0.05,
        "idle_interval_s": 0.0,
        "max_cycles": 2,
    }
    values.update(overrides)
    return WatchConfig(**values)


@pytest.mark.anyio
async def test_watcher_self_cancels_and_returns_without_loss() -> None:
    hub = EventHub()
    seen: list[LifecycleEvent] = []
    hub.subscribe(seen.append)
    provider = DemoConnectionProvider(heartbeat_channel="events", heartbeat_interval_s=0.01)
    watcher = ChannelWatcher(_fast_config(), events=hub)

    received = await run_supervised(provider, MANIFEST, watcher, events=hub)

    kinds = [event.kind for event in seen]
    assert received == watcher.received
    assert received >= 2
    assert watcher.cycles == 2
    assert kinds.count(EventKind.SUBSCRIPTION_CANCELLED) == 2
    assert EventKind.LOST not in kinds
    assert kinds[-1] is EventKind.WORK_SUCCEEDED
    assert provider.sessions[0].disposed


@pytest.mark.anyio
async def test_watcher_keeps_going_after_subscription_error() -> None:
    hub = EventHub()
    seen: list[LifecycleEvent] = []
    hub.subscribe(seen.append)
    calls = 0

    def _on_notification(notification: Notification) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise ValueError("handler bug")

    provider = DemoConnectionProvider(heartbeat_channel="events", heartbeat_interval_s=0.01)
    watcher = ChannelWatcher(_fast_config(), events=hub, on_notification=_on_notification)

    await run_supervised(provider, MANIFEST, watcher)

    kinds = [event.kind for event in seen]
    assert kinds.index(EventKind.SUBSCRIPTION_FAILED) < kinds.index(EventKind.SUBSCRIPTION_CANCELLED)
    assert watcher.cycles == 2


@pytest.mark.anyio
async def test_watcher_returns_count_for_each_call() -> None:
    provider = DemoConnectionProvider(heartbeat_channel="other", heartbeat_interval_s=0.01)
    watcher = ChannelWatcher(_fast_config(channel="other", max_cycles=1))

    first = await run_supervised(provider, MANIFEST, watcher)
    second = await run_supervised(provider, MANIFEST, watcher)

    assert first >= 1 and second >= 1
    assert watcher.received == first + second
    assert second < watcher.received
    assert watcher.cycles == 2
    assert watcher.config.channel == "other"
