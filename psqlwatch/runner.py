"""Run work against a supervised connection and retry the whole cycle."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from .config import RetryConfig
from .connections import (
    ConnectionFailedError,
    ConnectionLostError,
    ConnectionProvider,
    EstablishedCallback,
    LossSignal,
)
from .events import EventHub, EventKind, emit
from .models import Manifest
from .retry import with_retry

LOG = logging.getLogger(__name__)

T = TypeVar("T")

WorkFunction = Callable[[Any], Awaitable[T]]


class SupervisedRunner:
    """Opens one connection per call and races the work against its loss.

    Whichever of the work task and the loss signal settles first decides the
    outcome. When the loss wins, the work task is cancelled and awaited before
    the connection is released, so subscriptions opened by the work get a
    chance to tear down. A loss that fired before the work returned or raised
    wins even when both are observed in the same wakeup: the outcome is
    :class:`ConnectionLostError` and any value the work produced is discarded.
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        manifest: Manifest,
        *,
        on_established: EstablishedCallback | None = None,
        events: EventHub | None = None,
    ) -> None:
        self._provider = provider
        self._manifest = manifest
        self._on_established = on_established
        self._events = events

    async def run(self, work: WorkFunction[T]) -> T:
        events = self._events
        emit(events, EventKind.CONNECTING, self._manifest.display_name)
        try:
            session = await self._provider.open(self._manifest, on_established=self._on_established)
        except ConnectionFailedError as exc:
            emit(events, EventKind.CONNECT_FAILED, str(exc), error=exc)
            raise
        emit(events, EventKind.ESTABLISHED, session.label)

        work_task: asyncio.Task[tuple[T, bool]] = asyncio.create_task(
            _invoke(work, session.connection, session.lost)
        )
        loss_task: asyncio.Task[BaseException] = asyncio.create_task(session.lost.wait())
        try:
            done, _ = await asyncio.wait({work_task, loss_task}, return_when=asyncio.FIRST_COMPLETED)
            result: T | None = None
            if _succeeded(work_task):
                result, lost_first = work_task.result()
            else:
                lost_first = loss_task in done or session.lost.fired
            if lost_first:
                cause = await session.lost.wait()
                work_error = await _cancel_and_wait(work_task)
                error = ConnectionLostError(f"Connection to '{session.label}' lost: {cause}", cause)
                if work_error is not None:
                    error.__context__ = work_error
                LOG.warning("Connection lost while work was running", extra={"session": session.label})
                emit(events, EventKind.LOST, str(cause), error=error)
                raise error from cause

            if work_task.exception() is not None:
                exc = work_task.exception()
                emit(events, EventKind.WORK_FAILED, str(exc), error=exc)
                raise exc
            emit(events, EventKind.WORK_SUCCEEDED, session.label)
            return result
        finally:
            loss_task.cancel()
            if not work_task.done():
                await _cancel_and_wait(work_task)
            await session.dispose()


async def run_supervised(
    provider: ConnectionProvider,
    manifest: Manifest,
    work: WorkFunction[T],
    *,
    on_established: EstablishedCallback | None = None,
    events: EventHub | None = None,
) -> T:
    """Open a session, run ``work`` against it and normalize the outcome."""

    runner = SupervisedRunner(provider, manifest, on_established=on_established, events=events)
    return await runner.run(work)


async def run_with_retry(
    provider: ConnectionProvider,
    manifest: Manifest,
    work: WorkFunction[T],
    retry: RetryConfig,
    *,
    on_established: EstablishedCallback | None = None,
    events: EventHub | None = None,
) -> T:
    """Retry the connect-and-run cycle under ``retry``."""

    runner = SupervisedRunner(provider, manifest, on_established=on_established, events=events)
    return await with_retry(retry, lambda: runner.run(work), events=events)


async def _invoke(work: WorkFunction[T], connection: Any, lost: LossSignal) -> tuple[T, bool]:
    """Run ``work`` and report whether the loss had fired by the time it returned."""

    result = work(connection)
    if inspect.isawaitable(result):
        result = await result
    return result, lost.fired


def _succeeded(task: asyncio.Task[Any]) -> bool:
    return task.done() and not task.cancelled() and task.exception() is None


async def _cancel_and_wait(task: asyncio.Task[Any]) -> BaseException | None:
    """Cancel ``task``, wait for it to unwind and return any error it raised."""

    task.cancel()
    await asyncio.wait({task})
    if task.cancelled():
        return None
    error = task.exception()
    if error is not None:
        LOG.debug("Work raised while unwinding", exc_info=error)
    return error


__all__ = ["SupervisedRunner", "WorkFunction", "run_supervised", "run_with_retry"]
