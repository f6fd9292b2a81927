"""Tests for the backoff schedule and the retry executor."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from app.core.errors import (
    BackendCorruptResponseError,
    BackendTimeoutError,
    InvalidRateLimitConfigError,
)
from app.services.retry import RetryPolicy, run_with_retry


def test_delays_grow_exponentially_up_to_cap() -> None:
    policy = RetryPolicy(max_retries=5, base_delay=0.025, max_delay=0.1)

    assert [policy.calculate_delay(n) for n in range(4)] == [0.025, 0.05, 0.1, 0.1]


def test_only_retryable_backend_errors_are_retried() -> None:
    policy = RetryPolicy()

    assert policy.is_retryable(BackendTimeoutError(code="t", message="t")) is True
    assert policy.is_retryable(BackendCorruptResponseError(code="c", message="c")) is False
    assert policy.is_retryable(InvalidRateLimitConfigError(code="i", message="i")) is False
    assert policy.is_retryable(RuntimeError("boom")) is False


@pytest.mark.asyncio
async def test_returns_first_success_without_sleeping() -> None:
    operation = AsyncMock(return_value="ok")
    sleep = AsyncMock()

    assert await run_with_retry(operation, RetryPolicy(), sleep=sleep) == "ok"
    operation.assert_awaited_once()
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_retries_then_succeeds() -> None:
    operation = AsyncMock(
        side_effect=[BackendTimeoutError(code="t", message="t"), "ok"]
    )
    sleep = AsyncMock()

    result = await run_with_retry(operation, RetryPolicy(base_delay=0.01), sleep=sleep)

    assert result == "ok"
    assert operation.await_count == 2
    sleep.assert_awaited_once_with(0.01)


@pytest.mark.asyncio
async def test_zero_retries_fails_fast() -> None:
    operation = AsyncMock(side_effect=BackendTimeoutError(code="t", message="t"))
    sleep = AsyncMock()

    with pytest.raises(BackendTimeoutError):
        await run_with_retry(operation, RetryPolicy(max_retries=0), sleep=sleep)

    operation.assert_awaited_once()
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_non_retryable_error_is_raised_immediately() -> None:
    operation = AsyncMock(side_effect=ValueError("bad input"))

    with pytest.raises(ValueError):
        await run_with_retry(operation, RetryPolicy(max_retries=3), sleep=AsyncMock())

    operation.assert_awaited_once()
