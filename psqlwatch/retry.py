"""Bounded or unbounded retry loop with a fixed inter-attempt delay."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .config import RetryConfig
from .events import EventHub, EventKind, emit

LOG = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryState:
    """Transient counters owned by a single retry invocation."""

    max_retries: int | None
    delay_ms: int
    attempts: int = 0
    retries: int = 0

    @property
    def first_attempt(self) -> bool:
        return self.retries == 0

    def exhausted(self) -> bool:
        """True when no further retry is allowed."""

        return self.max_retries is not None and self.retries >= self.max_retries

    def describe(self) -> str:
        if self.first_attempt:
            return "first run"
        return f"retry {self.retries}"


class RetryPolicy:
    """Re-invokes a fallible coroutine factory until it succeeds or runs out of retries.

    Any ``Exception`` counts as a failure; the error kind is never inspected.
    With ``max_retries=N`` the operation runs at most ``N + 1`` times and the
    most recent failure is re-raised once the budget is spent.
    """

    def __init__(self, config: RetryConfig | None = None, *, events: EventHub | None = None) -> None:
        self._config = config or RetryConfig()
        self._events = events

    @property
    def config(self) -> RetryConfig:
        return self._config

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        config = self._config
        state = RetryState(max_retries=config.max_retries, delay_ms=config.retry_timeout_ms)
        while True:
            state.attempts += 1
            try:
                return await operation()
            except Exception as exc:
                if state.exhausted():
                    LOG.error(
                        "Giving up after %d attempt(s): %s",
                        state.attempts,
                        exc,
                        extra={"attempts": state.attempts},
                    )
                    emit(self._events, EventKind.GAVE_UP, str(exc), attempt=state.attempts, error=exc)
                    raise
                LOG.warning(
                    "Error on %s: %s",
                    state.describe(),
                    exc,
                    extra={"attempts": state.attempts},
                )
                emit(self._events, EventKind.ATTEMPT_FAILED, state.describe(), attempt=state.attempts, error=exc)
            state.retries += 1
            emit(
                self._events,
                EventKind.RETRY_SCHEDULED,
                f"retry {state.retries} in {state.delay_ms} ms",
                attempt=state.attempts + 1,
            )
            if config.delay_seconds > 0:
                await asyncio.sleep(config.delay_seconds)


async def with_retry(
    config: RetryConfig | None,
    operation: Callable[[], Awaitable[T]],
    *,
    events: EventHub | None = None,
) -> T:
    """Run ``operation`` under a :class:`RetryPolicy` built from ``config``."""

    return await RetryPolicy(config, events=events).run(operation)


__all__ = ["RetryPolicy", "RetryState", "with_retry"]
