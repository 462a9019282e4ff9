"""
Unit tests for retry with exponential backoff.
"""
from unittest.mock import AsyncMock

import httpx
import pytest

from ai_orchestrator.core.config import RetrySettings
from ai_orchestrator.core.errors import (
    ConfigError,
    ProviderError,
    TransportError,
    ValidationError,
)
from ai_orchestrator.core.retry import RetryHandler


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def test_backoff_formula():
    """base 1000ms, factor 2, max 8000ms → 1000, 2000, 4000, 8000, 8000."""
    handler = RetryHandler(initial_delay=1000, max_delay=8000, backoff_factor=2)

    assert [handler.compute_delay(n) for n in range(1, 6)] == [1000, 2000, 4000, 8000, 8000]


def test_jitter_is_seeded_and_bounded():
    a = RetryHandler(jitter=0.5, seed=42)
    b = RetryHandler(jitter=0.5, seed=42)

    delays_a = [a.compute_delay(n) for n in range(1, 4)]
    delays_b = [b.compute_delay(n) for n in range(1, 4)]

    assert delays_a == delays_b
    for n, delay in enumerate(delays_a, start=1):
        base = min(1000 * 2 ** (n - 1), 8000)
        assert base <= delay <= base * 1.5


@pytest.mark.asyncio
async def test_sleeps_between_attempts_follow_formula():
    """Delays precede attempts 2..6 and never follow the last attempt."""
    sleep = RecordingSleep()
    handler = RetryHandler(max_attempts=6, sleep=sleep)
    operation = AsyncMock(side_effect=TransportError("reset"))

    with pytest.raises(TransportError) as exc_info:
        await handler.execute(operation)

    assert operation.await_count == 6
    assert sleep.calls == [1.0, 2.0, 4.0, 8.0, 8.0]
    assert exc_info.value.attempts == 6


@pytest.mark.asyncio
async def test_http_429_is_retried_up_to_max_attempts():
    sleep = RecordingSleep()
    handler = RetryHandler(max_attempts=3, sleep=sleep)
    operation = AsyncMock(side_effect=ProviderError("slow down", status_code=429))

    with pytest.raises(ProviderError) as exc_info:
        await handler.execute(operation)

    assert operation.await_count == 3
    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_http_400_fails_immediately():
    sleep = RecordingSleep()
    handler = RetryHandler(max_attempts=3, sleep=sleep)
    operation = AsyncMock(side_effect=ProviderError("bad request", status_code=400))

    with pytest.raises(ProviderError) as exc_info:
        await handler.execute(operation)

    assert operation.await_count == 1
    assert sleep.calls == []
    assert exc_info.value.attempts == 1


@pytest.mark.asyncio
async def test_recovers_after_transient_5xx():
    sleep = RecordingSleep()
    handler = RetryHandler(max_attempts=3, sleep=sleep)
    operation = AsyncMock(side_effect=[ProviderError("oops", status_code=503), {"data": "ok"}])

    result = await handler.execute(operation)

    assert result == {"data": "ok"}
    assert operation.await_count == 2
    assert sleep.calls == [1.0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [ValidationError("bad json"), ConfigError("no key"), ProviderError("error payload", status_code=200)],
)
async def test_terminal_errors_are_not_retried(error):
    handler = RetryHandler(max_attempts=5, sleep=RecordingSleep())
    operation = AsyncMock(side_effect=error)

    with pytest.raises(type(error)):
        await handler.execute(operation)

    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_raw_httpx_transport_error_is_wrapped_after_exhaustion():
    handler = RetryHandler(max_attempts=2, sleep=RecordingSleep())
    operation = AsyncMock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(TransportError) as exc_info:
        await handler.execute(operation)

    assert operation.await_count == 2
    assert exc_info.value.attempts == 2


@pytest.mark.asyncio
async def test_on_retry_callback_receives_context():
    seen = []
    handler = RetryHandler(max_attempts=3, sleep=RecordingSleep(), on_retry=seen.append)
    operation = AsyncMock(side_effect=[TransportError("x"), TransportError("y"), "done"])

    assert await handler.execute(operation) == "done"
    assert [(c.attempt, c.delay_ms) for c in seen] == [(1, 1000), (2, 2000)]
    assert all(c.max_attempts == 3 for c in seen)


def test_from_settings():
    handler = RetryHandler.from_settings(RetrySettings(max_attempts=4, initial_delay=500, max_delay=2000))

    assert handler.max_attempts == 4
    assert [handler.compute_delay(n) for n in range(1, 5)] == [500, 1000, 2000, 2000]


def test_invalid_max_attempts():
    with pytest.raises(ValueError):
        RetryHandler(max_attempts=0)
