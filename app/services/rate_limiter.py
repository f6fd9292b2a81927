"""Sliding-window rate limiter facade.

The facade owns the window arithmetic (remaining quota, reset and retry times)
and delegates the atomic prune/count/record step to an ``AbstractWindowStore``.
Every store call is bounded by a per-call timeout and retried on transient
backend errors; backend errors that survive the retry budget propagate to the
degradation layer (``app.services.degradation``).

Algorithm, for key ``k``, limit ``L``, window ``W`` and current time ``t``:

1. Drop entries of ``k`` older than ``t - W``.
2. Count the survivors, ``c``.
3. ``c < L``: record ``t``; allowed with ``L - c - 1`` remaining, reset at ``t + W``.
4. Otherwise: denied; retry when the oldest survivor ``o`` leaves the window,
   ``ceil((o + W - t) / 1000)`` seconds from now.

Steps 1-3 run as a single atomic store operation per key.
"""

from __future__ import annotations

import asyncio
import math
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from app.adapters.rate_limit.base import AbstractWindowStore, WindowSnapshot
from app.core.config import FailurePolicy
from app.core.errors import BackendTimeoutError, InvalidRateLimitConfigError
from app.services.keys import KEY_SEPARATOR, validate_scope
from app.services.retry import RetryPolicy, run_with_retry

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        remaining: Requests left in the window (0 when blocked).
        reset_at_ms: Epoch milliseconds when the window frees up.
        retry_after_seconds: Wait time when blocked; None when allowed.
        degraded: True when the answer comes from the failure policy rather
            than from the backing store.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_seconds: int | None
    degraded: bool = False

    def __post_init__(self) -> None:
        if self.remaining < 0:
            raise ValueError("remaining must be >= 0")
        if self.allowed == (self.retry_after_seconds is not None):
            raise ValueError("retry_after_seconds must be set exactly when the request is blocked")


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of a window (no request recorded)."""

    count: int
    remaining: int
    reset_at_ms: int | None


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable configuration of one limiter scope.

    Attributes:
        scope: Key prefix namespacing this limiter (e.g. ``login_ip``).
        limit: Max requests per window.
        window_ms: Sliding window length in milliseconds.
        failure_policy: Answer given when the backing store fails.
    """

    scope: str
    limit: int
    window_ms: int
    failure_policy: FailurePolicy = FailurePolicy.FAIL_CLOSED

    def __post_init__(self) -> None:
        validate_scope(self.scope)
        _validate_limit_and_window(self.limit, self.window_ms)


def _validate_limit_and_window(limit: int, window_ms: int) -> None:
    if limit < 1:
        raise InvalidRateLimitConfigError(
            code="rate_limit_invalid_limit",
            message="limit must be >= 1",
            details={"field": "limit", "min_value": 1, "actual_value": limit},
        )
    if window_ms < 1:
        raise InvalidRateLimitConfigError(
            code="rate_limit_invalid_window",
            message="window_ms must be >= 1",
            details={"field": "window_ms", "min_value": 1, "actual_value": window_ms},
        )


def _validate_identifier(identifier: str) -> None:
    if not identifier:
        raise InvalidRateLimitConfigError(
            code="rate_limit_empty_identifier",
            message="identifier must be a non-empty string",
            details={"field": "identifier"},
        )


def result_from_snapshot(
    snapshot: WindowSnapshot,
    *,
    now_ms: int,
    limit: int,
    window_ms: int,
) -> RateLimitResult:
    """Turn a store snapshot into the public result.

    Denials advertise at least one second of Retry-After, so a request landing
    exactly on the window edge is never told to retry immediately.
    """

    if snapshot.recorded:
        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - snapshot.count - 1),
            reset_at_ms=now_ms + window_ms,
            retry_after_seconds=None,
        )

    oldest_ms = snapshot.oldest_ms if snapshot.oldest_ms is not None else now_ms
    frees_at_ms = oldest_ms + window_ms
    retry_after = max(1, math.ceil((frees_at_ms - now_ms) / 1000))
    return RateLimitResult(
        allowed=False,
        limit=limit,
        remaining=0,
        reset_at_ms=frees_at_ms,
        retry_after_seconds=retry_after,
    )


class SlidingWindowRateLimiter:
    """Public rate limiting contract used by request handlers.

    Instances own their store: create one per application (or per test) and
    ``close()`` it on shutdown. Nothing here is process-global.
    """

    def __init__(
        self,
        store: AbstractWindowStore,
        *,
        key_prefix: str = "ratelimit",
        clock: Callable[[], float] = time.time,
        call_timeout_seconds: float = 0.25,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Backing store performing the atomic window operations.
            key_prefix: Namespace prepended to every store key.
            clock: Time source returning UNIX time in seconds.
            call_timeout_seconds: Upper bound for one store call.
            retry_policy: Backoff schedule for transient backend errors.
            sleep: Awaitable sleep used between retries.

        Raises:
            InvalidRateLimitConfigError: If the prefix or timeout are invalid.
        """
        if not key_prefix:
            raise InvalidRateLimitConfigError(
                code="rate_limit_invalid_prefix",
                message="key_prefix must be a non-empty string",
                details={"field": "key_prefix"},
            )
        if call_timeout_seconds <= 0:
            raise InvalidRateLimitConfigError(
                code="rate_limit_invalid_timeout",
                message="call_timeout_seconds must be > 0",
                details={"field": "call_timeout_seconds"},
            )

        self._store = store
        self._key_prefix = key_prefix
        self._clock = clock
        self._call_timeout = call_timeout_seconds
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def store(self) -> AbstractWindowStore:
        return self._store

    @property
    def backend_name(self) -> str:
        return self._store.name

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _store_key(self, identifier: str) -> str:
        return f"{self._key_prefix}{KEY_SEPARATOR}{identifier}"

    async def _bounded(self, operation: Callable[[], Awaitable[T]], operation_name: str) -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=self._call_timeout)
        except asyncio.TimeoutError as exc:
            raise BackendTimeoutError(
                code="rate_limit_backend_timeout",
                message=f"{self._store.name} {operation_name} exceeded {self._call_timeout:.3f}s",
                details={
                    "backend": self._store.name,
                    "timeout_ms": int(self._call_timeout * 1000),
                    "context": {"operation": operation_name},
                },
            ) from exc

    async def _call_store(self, operation: Callable[[], Awaitable[T]], operation_name: str) -> T:
        return await run_with_retry(
            lambda: self._bounded(operation, operation_name),
            self._retry_policy,
            sleep=self._sleep,
            operation_name=operation_name,
        )

    async def check_limit(self, identifier: str, limit: int, window_ms: int) -> RateLimitResult:
        """Check and, if allowed, record one request for ``identifier``.

        Args:
            identifier: Scoped key (see ``app.services.keys``).
            limit: Max requests per window (> 0).
            window_ms: Sliding window length in milliseconds (> 0).

        Returns:
            RateLimitResult with the decision and quota metadata.

        Raises:
            InvalidRateLimitConfigError: On an empty identifier or a
                non-positive limit/window.
            BackendError: When the store keeps failing after retries.
        """
        _validate_identifier(identifier)
        _validate_limit_and_window(limit, window_ms)

        key = self._store_key(identifier)
        now_ms = self._now_ms()
        # One member per logical request so a retried script cannot record twice.
        member = f"{now_ms}-{uuid.uuid4().hex}"

        snapshot = await self._call_store(
            lambda: self._store.slide_and_count(
                key, now_ms=now_ms, window_ms=window_ms, limit=limit, member=member
            ),
            "slide_and_count",
        )
        return result_from_snapshot(snapshot, now_ms=now_ms, limit=limit, window_ms=window_ms)

    async def get_status(self, identifier: str, limit: int, window_ms: int) -> RateLimitStatus:
        """Report current usage for ``identifier`` without recording a request."""

        _validate_identifier(identifier)
        _validate_limit_and_window(limit, window_ms)

        key = self._store_key(identifier)
        now_ms = self._now_ms()
        snapshot = await self._call_store(
            lambda: self._store.peek(key, now_ms=now_ms, window_ms=window_ms),
            "peek",
        )
        reset_at = snapshot.oldest_ms + window_ms if snapshot.oldest_ms is not None else None
        return RateLimitStatus(
            count=snapshot.count,
            remaining=max(0, limit - snapshot.count),
            reset_at_ms=reset_at,
        )

    async def reset(self, identifier: str) -> None:
        """Forget every recorded request for ``identifier`` (idempotent)."""

        _validate_identifier(identifier)
        key = self._store_key(identifier)
        await self._call_store(lambda: self._store.delete(key), "delete")

    async def cleanup(self) -> int:
        """Reclaim expired entries; affects memory only, never decisions."""

        now_ms = self._now_ms()
        return await self._bounded(lambda: self._store.cleanup(now_ms=now_ms), "cleanup")

    async def ping(self) -> bool:
        try:
            return await self._bounded(self._store.ping, "ping")
        except BackendTimeoutError:
            return False

    async def close(self) -> None:
        await self._store.close()
