"""Work function that keeps a LISTEN subscription cycling on one channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from .config import WatchConfig
from .events import EventHub, EventKind, emit
from .subscriptions import Notification, Subscription, SubscriptionError

LOG = logging.getLogger(__name__)


class ChannelWatcher:
    """Subscribe, let the subscription run for a while, cancel it, repeat.

    The first notification of each cycle arms a timer that cancels the
    subscription after ``resubscribe_after_s``; the cycle then ends and a new
    one starts after ``idle_interval_s``. Subscription failures are logged and
    the loop carries on. Each call returns the number of notifications it saw
    once ``max_cycles`` cycles completed (never, when unset); ``cycles`` and
    ``received`` keep running totals across calls.
    """

    def __init__(
        self,
        config: WatchConfig | None = None,
        *,
        events: EventHub | None = None,
        on_notification: Callable[[Notification], None] | None = None,
    ) -> None:
        self._config = config or WatchConfig()
        self._events = events
        self._on_notification = on_notification
        self.cycles = 0
        self.received = 0

    @property
    def config(self) -> WatchConfig:
        return self._config

    async def __call__(self, connection: Any) -> int:
        config = self._config
        cycles = 0
        start = self.received
        while config.max_cycles is None or cycles < config.max_cycles:
            cycles += 1
            self.cycles += 1
            LOG.info("Starting subscription", extra={"channel": config.channel, "cycle": cycles})
            try:
                await self._watch_once(connection)
            except SubscriptionError as exc:
                LOG.warning("Caught error in subscription: %s", exc, extra={"channel": config.channel})
                emit(self._events, EventKind.SUBSCRIPTION_FAILED, str(exc), error=exc)
            else:
                emit(self._events, EventKind.SUBSCRIPTION_CANCELLED, config.channel)
            if config.max_cycles is not None and cycles >= config.max_cycles:
                break
            await asyncio.sleep(config.idle_interval_s)
        return self.received - start

    async def _watch_once(self, connection: Any) -> None:
        loop = asyncio.get_running_loop()
        timer: asyncio.TimerHandle | None = None

        def _on_data(notification: Notification) -> None:
            nonlocal timer
            self.received += 1
            emit(self._events, EventKind.NOTIFICATION, notification.payload)
            if self._on_notification is not None:
                self._on_notification(notification)
            if timer is None:
                timer = loop.call_later(self._config.resubscribe_after_s, subscription.cancel)

        subscription = Subscription(connection, self._config.channel, _on_data)
        try:
            async with subscription:
                await subscription.wait()
        finally:
            if timer is not None:
                timer.cancel()


__all__ = ["ChannelWatcher"]
