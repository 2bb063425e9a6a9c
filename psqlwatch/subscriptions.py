"""Cancellable LISTEN/NOTIFY subscriptions for work functions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Callable

LOG = logging.getLogger(__name__)


class SubscriptionError(RuntimeError):
    """Raised (or delivered to ``on_error``) when a subscription tears down on failure."""


@dataclass(frozen=True, slots=True)
class Notification:
    """Payload delivered for each NOTIFY on the subscribed channel."""

    channel: str
    payload: str
    pid: int


DataCallback = Callable[[Notification], None]
ErrorCallback = Callable[[SubscriptionError], None]


class Subscription:
    """Long-running LISTEN on one channel with explicit teardown.

    :meth:`start` returns the cancel handle synchronously; the LISTEN itself is
    issued in the background. Once :meth:`cancel` returns, ``on_data`` is never
    called again. Cancelling twice, or after an error teardown, is a no-op.
    """

    def __init__(
        self,
        connection: Any,
        channel: str,
        on_data: DataCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self._connection = connection
        self._channel = channel
        self._on_data = on_data
        self._on_error = on_error
        self._closed = False
        self._listening = False
        self._listen_task: asyncio.Task[None] | None = None
        self._unlisten_task: asyncio.Task[None] | None = None
        self._outcome: asyncio.Future[SubscriptionError | None] | None = None
        self.delivered = 0

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def started(self) -> bool:
        return self._outcome is not None

    def start(self) -> Callable[[], None]:
        """Begin listening and return the cancel handle."""

        if self._outcome is not None:
            raise RuntimeError(f"Subscription to '{self._channel}' already started.")
        loop = asyncio.get_running_loop()
        self._outcome = loop.create_future()
        self._listen_task = loop.create_task(self._listen())
        return self.cancel

    def cancel(self) -> None:
        """Stop delivery; safe to call any number of times."""

        if not self._close():
            return
        LOG.debug("Subscription cancelled", extra={"channel": self._channel})
        self._settle(None)

    async def wait(self) -> None:
        """Wait until the subscription is cancelled; raises SubscriptionError on failure."""

        if self._outcome is None:
            raise RuntimeError("Subscription has not been started.")
        error = await asyncio.shield(self._outcome)
        if error is not None:
            raise error

    async def aclose(self) -> None:
        """Cancel and wait for the UNLISTEN to finish."""

        self.cancel()
        if self._listen_task is not None:
            await asyncio.wait({self._listen_task})
        if self._unlisten_task is not None:
            await asyncio.wait({self._unlisten_task})

    async def __aenter__(self) -> Subscription:
        if self._outcome is None:
            self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _listen(self) -> None:
        try:
            await self._connection.add_listener(self._channel, self._deliver)
        except Exception as exc:
            self._fail(SubscriptionError(f"LISTEN on '{self._channel}' failed: {exc}"), exc)
            return
        self._listening = True
        if self._closed:
            self._schedule_unlisten()

    def _deliver(self, connection: object, pid: int, channel: str, payload: str) -> None:
        if self._closed:
            return
        self.delivered += 1
        try:
            self._on_data(Notification(channel=channel, payload=payload, pid=pid))
        except Exception as exc:
            self._fail(SubscriptionError(f"Handler for '{self._channel}' failed: {exc}"), exc)

    def _fail(self, error: SubscriptionError, cause: BaseException) -> None:
        error.__cause__ = cause
        if not self._close():
            return
        LOG.warning("Subscription failed: %s", error, extra={"channel": self._channel})
        self._settle(error)
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            LOG.exception("Subscription error callback failed", extra={"channel": self._channel})

    def _close(self) -> bool:
        if self._closed:
            return False
        self._closed = True
        if self._listening:
            self._schedule_unlisten()
        return True

    def _settle(self, error: SubscriptionError | None) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(error)

    def _schedule_unlisten(self) -> None:
        if self._unlisten_task is not None:
            return
        self._listening = False
        self._unlisten_task = asyncio.get_running_loop().create_task(self._unlisten())

    async def _unlisten(self) -> None:
        try:
            await self._connection.remove_listener(self._channel, self._deliver)
        except Exception:  # pragma: no cover - connection may already be gone
            LOG.debug("UNLISTEN failed", exc_info=True, extra={"channel": self._channel})


def subscribe(
    connection: Any,
    channel: str,
    on_data: DataCallback,
    on_error: ErrorCallback | None = None,
) -> Callable[[], None]:
    """Start a subscription and return its cancel handle."""

    return Subscription(connection, channel, on_data, on_error).start()


__all__ = [
    "DataCallback",
    "ErrorCallback",
    "Notification",
    "Subscription",
    "SubscriptionError",
    "subscribe",
]
