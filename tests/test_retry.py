"""Tests for the retry loop."""

from __future__ import annotations

import asyncio
import time

import pytest

from psqlwatch.config import RetryConfig
from psqlwatch.events import EventHub, EventKind, LifecycleEvent
from psqlwatch.retry import RetryPolicy, RetryState, with_retry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _Flaky:
    """Fails ``failures`` times (with numbered errors), then returns ``value``."""

    def __init__(self, failures: int | None, value: str = "ok") -> None:
        self._failures = failures
        self._value = value
        self.calls = 0
        self.started_at: list[float] = []
        self.failed_at: list[float] = []

    async def __call__(self) -> str:
        self.calls += 1
        self.started_at.append(time.monotonic())
        if self._failures is None or self.calls <= self._failures:
            self.failed_at.append(time.monotonic())
            raise RuntimeError(f"failure {self.calls}")
        return self._value


@pytest.mark.anyio
async def test_always_failing_operation_runs_max_retries_plus_one_times() -> None:
    operation = _Flaky(failures=None)

    with pytest.raises(RuntimeError, match="failure 3"):
        await with_retry(RetryConfig(max_retries=2, retry_timeout_ms=0), operation)

    assert operation.calls == 3


@pytest.mark.anyio
@pytest.mark.parametrize("max_retries", [0, 1, 4, 10])
async def test_retry_budget_allows_exactly_n_plus_one_attempts(max_retries: int) -> None:
    operation = _Flaky(failures=None)

    with pytest.raises(RuntimeError) as excinfo:
        await with_retry(RetryConfig(max_retries=max_retries), operation)

    assert operation.calls == max_retries + 1
    assert str(excinfo.value) == f"failure {max_retries + 1}"


@pytest.mark.anyio
async def test_success_on_attempt_k_stops_retrying() -> None:
    operation = _Flaky(failures=3, value="done")

    result = await with_retry(RetryConfig(max_retries=5), operation)

    assert result == "done"
    assert operation.calls == 4


@pytest.mark.anyio
async def test_success_on_boundary_attempt_is_allowed() -> None:
    operation = _Flaky(failures=10, value="eleventh")

    result = await with_retry(RetryConfig(max_retries=10), operation)

    assert result == "eleventh"
    assert operation.calls == 11


@pytest.mark.anyio
async def test_default_config_returns_immediately_without_delay() -> None:
    operation = _Flaky(failures=0, value="value")
    started = time.monotonic()

    result = await with_retry(RetryConfig(), operation)

    assert result == "value"
    assert operation.calls == 1
    assert time.monotonic() - started < 0.5


@pytest.mark.anyio
async def test_unlimited_retries_keep_going_until_success() -> None:
    operation = _Flaky(failures=25)

    result = await with_retry(None, operation)

    assert result == "ok"
    assert operation.calls == 26


@pytest.mark.anyio
async def test_delay_is_honored_between_attempts() -> None:
    operation = _Flaky(failures=2)

    await with_retry(RetryConfig(retry_timeout_ms=50), operation)

    assert operation.calls == 3
    for failed, next_start in zip(operation.failed_at, operation.started_at[1:]):
        # Small tolerance for timer granularity.
        assert next_start - failed >= 0.045


@pytest.mark.anyio
async def test_delay_uses_configured_seconds(monkeypatch: pytest.MonkeyPatch) -> None:
    real_sleep = asyncio.sleep
    delays: list[float] = []

    async def _sleep(delay: float, *args: object, **kwargs: object) -> None:
        delays.append(delay)
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    config = RetryConfig(retry_timeout_ms=250, max_retries=5)

    await with_retry(config, _Flaky(failures=2))

    assert delays == [config.delay_seconds, config.delay_seconds] == [0.25, 0.25]


@pytest.mark.anyio
async def test_cancellation_is_not_retried() -> None:
    calls = 0

    async def _operation() -> None:
        nonlocal calls
        calls += 1
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await with_retry(RetryConfig(max_retries=5), _operation)

    assert calls == 1


@pytest.mark.anyio
async def test_retry_policy_emits_diagnostic_events() -> None:
    hub = EventHub()
    seen: list[LifecycleEvent] = []
    hub.subscribe(seen.append)
    policy = RetryPolicy(RetryConfig(max_retries=1), events=hub)

    with pytest.raises(RuntimeError, match="failure 2"):
        await policy.run(_Flaky(failures=None))

    kinds = [event.kind for event in seen]
    assert kinds == [EventKind.ATTEMPT_FAILED, EventKind.RETRY_SCHEDULED, EventKind.GAVE_UP]
    assert seen[0].detail == "first run"
    assert seen[1].attempt == 2
    assert str(seen[-1].error) == "failure 2"


def test_retry_state_describes_attempts() -> None:
    state = RetryState(max_retries=2, delay_ms=0)

    assert state.first_attempt is True
    assert state.describe() == "first run"
    assert not state.exhausted()

    state.retries = 2
    assert state.describe() == "retry 2"
    assert state.exhausted()
    assert not RetryState(max_retries=None, delay_ms=0, retries=1000).exhausted()
