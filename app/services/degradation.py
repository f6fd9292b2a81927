"""Per-scope limiters with an explicit backend failure policy.

``GuardedRateLimiter`` wraps the facade for one ``RateLimitConfig``. Backend
failures (timeouts, unreachable store, corrupt replies) never reach the
caller: they are logged, reported to the metrics emitter and converted into a
deterministic result according to the scope's failure policy:

- fail-open: allow the request. Keeps legitimate users moving during an
  outage but disables abuse protection, so every activation is alert-worthy.
- fail-closed: deny the request with a short Retry-After.

Configuration errors (empty identifier, bad scope) are not backend failures
and propagate unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from app.core.config import FailurePolicy
from app.core.errors import BackendError
from app.services.keys import build_rate_limit_key, hash_identifier
from app.services.metrics import CheckEvent, FallbackEvent, LoggingMetricsEmitter, MetricsEmitter
from app.services.rate_limiter import (
    RateLimitConfig,
    RateLimitResult,
    RateLimitStatus,
    SlidingWindowRateLimiter,
)

logger = logging.getLogger(__name__)


class GuardedRateLimiter:
    """One scope's limiter, wrapped by the failure policy."""

    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        config: RateLimitConfig,
        *,
        metrics: MetricsEmitter | None = None,
        check_timeout_seconds: float = 1.0,
        degraded_retry_after_seconds: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._limiter = limiter
        self._config = config
        self._metrics = metrics or LoggingMetricsEmitter()
        self._check_timeout = check_timeout_seconds
        self._degraded_retry_after = degraded_retry_after_seconds
        self._clock = clock

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def scope(self) -> str:
        return self._config.scope

    def _fallback_result(self) -> RateLimitResult:
        now_ms = int(self._clock() * 1000)
        if self._config.failure_policy is FailurePolicy.FAIL_OPEN:
            return RateLimitResult(
                allowed=True,
                limit=self._config.limit,
                remaining=self._config.limit,
                reset_at_ms=now_ms + self._config.window_ms,
                retry_after_seconds=None,
                degraded=True,
            )
        return RateLimitResult(
            allowed=False,
            limit=self._config.limit,
            remaining=0,
            reset_at_ms=now_ms + self._degraded_retry_after * 1000,
            retry_after_seconds=self._degraded_retry_after,
            degraded=True,
        )

    def _activate_fallback(self, key: str, error_code: str, error_detail: str) -> RateLimitResult:
        logger.error(
            "rate_limit.backend_error",
            extra={
                "scope": self.scope,
                "key_hash": hash_identifier(key),
                "backend": self._limiter.backend_name,
                "error_code": error_code,
                "error_detail": error_detail,
                "failure_policy": self._config.failure_policy.value,
            },
        )
        self._metrics.record_fallback(
            FallbackEvent(
                scope=self.scope,
                policy=self._config.failure_policy,
                error_code=error_code,
            )
        )
        return self._fallback_result()

    async def check(self, identifier: str) -> RateLimitResult:
        """Check and record one request for ``identifier`` in this scope.

        Never raises backend errors; returns within the check timeout.

        Raises:
            InvalidRateLimitConfigError: If ``identifier`` is empty.
        """
        key = build_rate_limit_key(self.scope, identifier)
        try:
            result = await asyncio.wait_for(
                self._limiter.check_limit(key, self._config.limit, self._config.window_ms),
                timeout=self._check_timeout,
            )
        except asyncio.TimeoutError:
            result = self._activate_fallback(
                key,
                "rate_limit_check_timeout",
                f"check exceeded {self._check_timeout:.3f}s",
            )
        except BackendError as exc:
            result = self._activate_fallback(key, exc.code, exc.message)

        self._metrics.record_check(
            CheckEvent(
                scope=self.scope,
                allowed=result.allowed,
                remaining=result.remaining,
                degraded=result.degraded,
            )
        )

        if result.allowed:
            logger.info(
                "rate_limit.allowed",
                extra={
                    "scope": self.scope,
                    "key_hash": hash_identifier(key),
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_ms": self._config.window_ms,
                },
            )
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "scope": self.scope,
                    "key_hash": hash_identifier(key),
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_ms": self._config.window_ms,
                    "retry_after_s": result.retry_after_seconds,
                },
            )
        return result

    async def status(self, identifier: str) -> RateLimitStatus:
        """Current usage without recording a request.

        Raises:
            BackendError: If the store cannot be read; status is informational
                so there is no policy answer to substitute.
        """
        key = build_rate_limit_key(self.scope, identifier)
        return await self._limiter.get_status(key, self._config.limit, self._config.window_ms)

    async def reset(self, identifier: str) -> bool:
        """Clear this scope's window for ``identifier``.

        Returns:
            True when the store confirmed the reset, False when it failed
            (the failure is logged; entries then expire on their own).
        """
        key = build_rate_limit_key(self.scope, identifier)
        try:
            await self._limiter.reset(key)
        except BackendError as exc:
            logger.error(
                "rate_limit.reset_failed",
                extra={
                    "scope": self.scope,
                    "key_hash": hash_identifier(key),
                    "error_code": exc.code,
                },
            )
            return False

        logger.info(
            "rate_limit.reset",
            extra={"scope": self.scope, "key_hash": hash_identifier(key)},
        )
        return True


@dataclass(frozen=True)
class ScopedResult:
    """Outcome of one ``(limiter, identifier)`` pair inside a combined check."""

    scope: str
    identifier: str
    result: RateLimitResult


@dataclass(frozen=True)
class CombinedRateLimitResult:
    """AND-combination of several scoped checks for one action.

    The same scope may appear more than once (for example one login checked
    against two candidate addresses); every pair is kept.

    Attributes:
        allowed: True only if every limiter allowed the request.
        binding: The most restrictive individual result (longest retry among
            denials, otherwise fewest remaining).
        binding_scope: Scope that produced ``binding``.
        results: One entry per evaluated pair, in evaluation order.
    """

    allowed: bool
    binding: RateLimitResult
    binding_scope: str
    results: list[ScopedResult] = field(default_factory=list)

    def denied_scopes(self) -> list[str]:
        scopes: list[str] = []
        for entry in self.results:
            if not entry.result.allowed and entry.scope not in scopes:
                scopes.append(entry.scope)
        return scopes

    def result_for(self, scope: str) -> RateLimitResult:
        """Return the most restrictive result recorded for ``scope``.

        Raises:
            KeyError: If no check for ``scope`` was evaluated.
        """
        matches = [entry.result for entry in self.results if entry.scope == scope]
        if not matches:
            raise KeyError(scope)
        return _most_restrictive(matches)


def _most_restrictive(results: Sequence[RateLimitResult]) -> RateLimitResult:
    denied = [r for r in results if not r.allowed]
    if denied:
        return max(denied, key=lambda r: r.retry_after_seconds or 0)
    return min(results, key=lambda r: r.remaining)


async def evaluate_limits(
    checks: Sequence[tuple[GuardedRateLimiter, str]],
) -> CombinedRateLimitResult:
    """Evaluate every ``(limiter, identifier)`` pair and AND the outcomes.

    All limiters are evaluated, so each scope sees the request even when
    another scope already denies it.

    Raises:
        ValueError: If ``checks`` is empty.
    """
    if not checks:
        raise ValueError("evaluate_limits requires at least one check")

    results: list[ScopedResult] = []
    for limiter, identifier in checks:
        result = await limiter.check(identifier)
        results.append(ScopedResult(scope=limiter.scope, identifier=identifier, result=result))

    binding = _most_restrictive([entry.result for entry in results])
    binding_scope = next(entry.scope for entry in results if entry.result is binding)

    return CombinedRateLimitResult(
        allowed=all(entry.result.allowed for entry in results),
        binding=binding,
        binding_scope=binding_scope,
        results=results,
    )
