"""Connection providers and the per-attempt connection session."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import asyncpg

from .models import ConnectionProfile, Manifest

LOG = logging.getLogger(__name__)

EstablishedCallback = Callable[["ConnectionSession"], None]
NotificationCallback = Callable[[Any, int, str, str], None]


class ConnectionBackendError(RuntimeError):
    """Base class for connection-level failures."""


class ConnectionFailedError(ConnectionBackendError):
    """Raised when the initial connection attempt cannot be established."""


class ConnectionLostError(ConnectionBackendError):
    """Raised when an established connection drops while work is in flight."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class LossSignal:
    """One-shot notification that an established connection went away.

    The signal resolves at most once with the transport's reported cause. A
    fire that happens before :meth:`arm` is held back and delivered when the
    owning session is handed to its caller.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[BaseException] = asyncio.get_running_loop().create_future()
        self._armed = False
        self._fired = False
        self._pending: BaseException | None = None

    @property
    def fired(self) -> bool:
        """Whether the transport reported a loss (delivered or pending)."""

        return self._fired

    def done(self) -> bool:
        return self._future.done()

    def fire(self, cause: BaseException) -> bool:
        """Record the loss; returns False when the signal already fired."""

        if self._fired:
            return False
        self._fired = True
        if self._armed:
            self._settle(cause)
        else:
            self._pending = cause
        return True

    def arm(self) -> None:
        if self._armed:
            return
        self._armed = True
        if self._pending is not None:
            cause, self._pending = self._pending, None
            self._settle(cause)

    async def wait(self) -> BaseException:
        """Wait for the loss and return its cause."""

        return await asyncio.shield(self._future)

    def _settle(self, cause: BaseException) -> None:
        if not self._future.done():
            self._future.set_result(cause)


class ConnectionSession:
    """A live connection handle plus its loss signal."""

    def __init__(
        self,
        connection: Any,
        lost: LossSignal,
        *,
        label: str,
        release: Callable[[], Awaitable[None]],
    ) -> None:
        self._connection = connection
        self._lost = lost
        self._label = label
        self._release = release
        self._disposed = False

    @property
    def connection(self) -> Any:
        return self._connection

    @property
    def lost(self) -> LossSignal:
        return self._lost

    @property
    def label(self) -> str:
        return self._label

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def alive(self) -> bool:
        """True until the session is disposed or its loss signal fired."""

        return not self._disposed and not self._lost.fired

    async def dispose(self) -> None:
        """Release the underlying connection (idempotent)."""

        if self._disposed:
            return
        self._disposed = True
        await self._release()


@runtime_checkable
class ConnectionProvider(Protocol):
    """Protocol implemented by connection providers."""

    async def open(
        self,
        manifest: Manifest,
        *,
        on_established: EstablishedCallback | None = None,
    ) -> ConnectionSession:
        """Connect and return an armed session; raises ConnectionFailedError."""


def notify_established(callback: EstablishedCallback | None, session: ConnectionSession) -> None:
    """Run an ``on_established`` observer without letting it affect control flow."""

    if callback is None:
        return
    try:
        callback(session)
    except Exception:
        LOG.exception("on_established callback failed", extra={"session": session.label})


class AsyncpgConnectionProvider:
    """Connection provider that opens PostgreSQL connections via asyncpg."""

    def __init__(self, profile: ConnectionProfile, *, close_timeout: float = 2.0) -> None:
        self._profile = profile
        self._close_timeout = close_timeout

    @property
    def profile(self) -> ConnectionProfile:
        return self._profile

    async def open(
        self,
        manifest: Manifest,
        *,
        on_established: EstablishedCallback | None = None,
    ) -> ConnectionSession:
        profile = self._profile
        try:
            conn = await asyncpg.connect(**self._connect_kwargs(profile, manifest))
        except Exception as exc:
            raise ConnectionFailedError(f"Failed to connect to profile '{profile.name}': {exc}") from exc

        lost = LossSignal()

        def _on_terminated(connection: object) -> None:
            if lost.fire(ConnectionResetError(f"Connection to '{profile.name}' was terminated")):
                LOG.warning("Connection lost", extra={"profile": profile.name})

        conn.add_termination_listener(_on_terminated)

        async def _release() -> None:
            conn.remove_termination_listener(_on_terminated)
            if conn.is_closed():
                return
            try:
                await conn.close(timeout=self._close_timeout)
            except Exception:
                LOG.debug("Graceful close failed; terminating", exc_info=True)
                conn.terminate()

        session = ConnectionSession(conn, lost, label=profile.name, release=_release)
        LOG.info("Connection established", extra={"profile": profile.name})
        notify_established(on_established, session)
        lost.arm()
        return session

    @staticmethod
    def _connect_kwargs(profile: ConnectionProfile, manifest: Manifest) -> dict[str, object]:
        kwargs: dict[str, object] = {}
        if profile.dsn:
            kwargs["dsn"] = profile.dsn
        else:
            kwargs["host"] = profile.host or "localhost"
            if profile.port is not None:
                kwargs["port"] = profile.port
            if profile.user:
                kwargs["user"] = profile.user
            if profile.database:
                kwargs["database"] = profile.database
        if profile.password:
            kwargs["password"] = profile.password
        kwargs["timeout"] = profile.connect_timeout
        kwargs["server_settings"] = {"application_name": manifest.application_name}
        return kwargs


class DemoConnection:
    """In-memory stand-in for an asyncpg connection with LISTEN/NOTIFY support."""

    def __init__(self, label: str, pid: int) -> None:
        self._label = label
        self._pid = pid
        self._listeners: dict[str, list[NotificationCallback]] = defaultdict(list)
        self._termination_listeners: list[Callable[[DemoConnection], None]] = []
        self._closed = False

    def get_server_pid(self) -> int:
        return self._pid

    def is_closed(self) -> bool:
        return self._closed

    def listening(self, channel: str) -> int:
        """Number of callbacks registered on ``channel`` (testing helper)."""

        return len(self._listeners.get(channel, ()))

    async def add_listener(self, channel: str, callback: NotificationCallback) -> None:
        self._ensure_open()
        self._listeners[channel].append(callback)

    async def remove_listener(self, channel: str, callback: NotificationCallback) -> None:
        if self._closed:
            return
        callbacks = self._listeners.get(channel)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    async def execute(self, query: str, *args: object) -> str:
        self._ensure_open()
        return "SELECT 1"

    def notify(self, channel: str, payload: str = "") -> int:
        """Deliver a notification to every listener on ``channel``."""

        self._ensure_open()
        callbacks = tuple(self._listeners.get(channel, ()))
        for callback in callbacks:
            callback(self, self._pid, channel, payload)
        return len(callbacks)

    def add_termination_listener(self, callback: Callable[[DemoConnection], None]) -> None:
        self._termination_listeners.append(callback)

    def remove_termination_listener(self, callback: Callable[[DemoConnection], None]) -> None:
        if callback in self._termination_listeners:
            self._termination_listeners.remove(callback)

    async def close(self, *, timeout: float | None = None) -> None:
        self.terminate()

    def terminate(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        for callback in tuple(self._termination_listeners):
            callback(self)

    def _ensure_open(self) -> None:
        if self._closed:
            raise asyncpg.exceptions.ConnectionDoesNotExistError(
                f"connection '{self._label}' was closed in the middle of operation"
            )


class DemoConnectionProvider:
    """Stub provider that hands out in-memory connections.

    ``fail_first`` makes the first N connection attempts fail, ``drop_after_s``
    simulates the service going away some time after each connect, and
    ``heartbeat_channel`` publishes a notification every
    ``heartbeat_interval_s`` so watchers have something to display.
    """

    def __init__(
        self,
        *,
        label: str = "demo",
        fail_first: int = 0,
        drop_after_s: float | None = None,
        heartbeat_channel: str | None = None,
        heartbeat_interval_s: float = 1.0,
    ) -> None:
        self._label = label
        self._failures_remaining = fail_first
        self._drop_after_s = drop_after_s
        self._heartbeat_channel = heartbeat_channel
        self._heartbeat_interval_s = heartbeat_interval_s
        self._pids = itertools.count(4000)
        self.attempts = 0
        self.sessions: list[ConnectionSession] = []

    @property
    def active(self) -> ConnectionSession | None:
        """Most recent session that is still alive."""

        if self.sessions and self.sessions[-1].alive:
            return self.sessions[-1]
        return None

    async def open(
        self,
        manifest: Manifest,
        *,
        on_established: EstablishedCallback | None = None,
    ) -> ConnectionSession:
        self.attempts += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise ConnectionFailedError(f"Failed to connect to profile '{self._label}': connection refused")

        conn = DemoConnection(self._label, next(self._pids))
        lost = LossSignal()
        tasks: list[asyncio.Task[None]] = []

        def _on_terminated(connection: DemoConnection) -> None:
            for task in tasks:
                task.cancel()
            lost.fire(ConnectionResetError(f"Connection to '{self._label}' was reset by peer"))

        conn.add_termination_listener(_on_terminated)

        async def _release() -> None:
            conn.remove_termination_listener(_on_terminated)
            for task in tasks:
                task.cancel()
            await conn.close()

        session = ConnectionSession(conn, lost, label=self._label, release=_release)
        if self._drop_after_s is not None:
            tasks.append(asyncio.create_task(self._drop_later(conn, self._drop_after_s)))
        if self._heartbeat_channel:
            tasks.append(asyncio.create_task(self._heartbeat(conn, self._heartbeat_channel)))
        self.sessions.append(session)
        notify_established(on_established, session)
        lost.arm()
        return session

    def drop(self, session: ConnectionSession | None = None) -> bool:
        """Simulate the service dropping ``session`` (defaults to the active one)."""

        target = session or self.active
        if target is None:
            return False
        target.connection.terminate()
        return True

    async def _drop_later(self, conn: DemoConnection, delay: float) -> None:
        await asyncio.sleep(delay)
        conn.terminate()

    async def _heartbeat(self, conn: DemoConnection, channel: str) -> None:
        beat = 0
        while not conn.is_closed():
            await asyncio.sleep(self._heartbeat_interval_s)
            if conn.is_closed():
                return
            beat += 1
            conn.notify(channel, f"heartbeat {beat}")


__all__ = [
    "AsyncpgConnectionProvider",
    "ConnectionBackendError",
    "ConnectionFailedError",
    "ConnectionLostError",
    "ConnectionProvider",
    "ConnectionSession",
    "DemoConnection",
    "DemoConnectionProvider",
    "LossSignal",
    "notify_established",
]
