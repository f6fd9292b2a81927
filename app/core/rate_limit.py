"""Rate limiting wiring for FastAPI routes.

This module wires the sliding-window limiter into the HTTP layer.

Design goals:
- No process-wide singleton: the registry is built in the app lifespan, kept
  on ``app.state`` and closed on shutdown, so tests get isolated instances.
- Swap-friendly: the backing store is chosen once from settings.
- One limiter per scope, each with its own limit, window and failure policy;
  routes evaluate the scopes that apply to them with AND semantics.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable

from fastapi import HTTPException, Request, status

from app.adapters.rate_limit.base import AbstractWindowStore
from app.adapters.rate_limit.factory import create_window_store
from app.core.config import Settings
from app.core.errors import NotFoundAppError
from app.services.degradation import GuardedRateLimiter
from app.services.metrics import LoggingMetricsEmitter, MetricsEmitter
from app.services.rate_limiter import RateLimitConfig, RateLimitResult, SlidingWindowRateLimiter
from app.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_IP = "127.0.0.1"


class RateLimiterRegistry:
    """Facade plus the guarded limiter of every configured scope."""

    def __init__(
        self,
        limiter: SlidingWindowRateLimiter,
        scopes: dict[str, GuardedRateLimiter],
        *,
        enabled: bool = True,
        include_headers: bool = True,
        cleanup_interval_seconds: int = 0,
    ) -> None:
        self.limiter = limiter
        self._scopes = scopes
        self.enabled = enabled
        self.include_headers = include_headers
        self._cleanup_interval = cleanup_interval_seconds
        self._cleanup_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def scopes(self) -> dict[str, GuardedRateLimiter]:
        return dict(self._scopes)

    def get(self, scope: str) -> GuardedRateLimiter:
        """Return the limiter for ``scope``.

        Raises:
            NotFoundAppError: If no limiter is configured for the scope.
        """
        try:
            return self._scopes[scope]
        except KeyError:
            raise NotFoundAppError(
                code="rate_limit_unknown_scope",
                message=f"No rate limiter configured for scope '{scope}'",
                details={"scope": scope},
            ) from None

    async def start_cleanup_task(self) -> None:
        """Start periodic cleanup (only useful for stores without native TTL)."""
        if self._cleanup_interval <= 0 or self._cleanup_task is not None:
            return
        if self.limiter.backend_name != "memory":
            return
        self._shutdown_event.clear()
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            "rate_limit.cleanup_task_started",
            extra={"interval_s": self._cleanup_interval},
        )

    async def stop_cleanup_task(self) -> None:
        if self._cleanup_task is None:
            return
        self._shutdown_event.set()
        try:
            await asyncio.wait_for(self._cleanup_task, timeout=5.0)
        except asyncio.TimeoutError:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
        self._cleanup_task = None
        logger.info("rate_limit.cleanup_task_stopped")

    async def _cleanup_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._cleanup_interval,
                )
            except asyncio.TimeoutError:
                pass
            if self._shutdown_event.is_set():
                break
            try:
                await self.limiter.cleanup()
            except Exception as exc:
                logger.error(
                    "rate_limit.cleanup_failed",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )

    async def close(self) -> None:
        await self.stop_cleanup_task()
        await self.limiter.close()


def build_rate_limiter_registry(
    settings: Settings,
    *,
    store: AbstractWindowStore | None = None,
    metrics: MetricsEmitter | None = None,
    clock: Callable[[], float] = time.time,
) -> RateLimiterRegistry:
    """Build the store, the facade and one guarded limiter per configured scope.

    Raises:
        InvalidRateLimitConfigError: If a scope or the backend is misconfigured.
    """
    cfg = settings.rate_limit
    store = store or create_window_store(cfg)
    limiter = SlidingWindowRateLimiter(
        store,
        key_prefix=cfg.key_prefix,
        clock=clock,
        call_timeout_seconds=cfg.call_timeout_ms / 1000,
        retry_policy=RetryPolicy(
            max_retries=cfg.max_retries,
            base_delay=cfg.retry_base_delay_ms / 1000,
            max_delay=cfg.retry_max_delay_ms / 1000,
        ),
    )

    emitter = metrics or LoggingMetricsEmitter()
    scopes: dict[str, GuardedRateLimiter] = {}
    for scope, scope_cfg in cfg.scopes.items():
        config = RateLimitConfig(
            scope=scope,
            limit=scope_cfg.limit,
            window_ms=scope_cfg.window_ms,
            failure_policy=scope_cfg.failure_policy,
        )
        scopes[scope] = GuardedRateLimiter(
            limiter,
            config,
            metrics=emitter,
            check_timeout_seconds=cfg.check_timeout_ms / 1000,
            degraded_retry_after_seconds=cfg.degraded_retry_after_seconds,
            clock=clock,
        )

    logger.info(
        "rate_limit.configured",
        extra={
            "backend": store.name,
            "enabled": cfg.enabled,
            "scopes": sorted(scopes),
        },
    )
    return RateLimiterRegistry(
        limiter,
        scopes,
        enabled=cfg.enabled,
        include_headers=cfg.include_headers,
        cleanup_interval_seconds=cfg.cleanup_interval_seconds,
    )


def get_rate_limiters(request: Request) -> RateLimiterRegistry:
    """FastAPI dependency returning the application's limiter registry."""
    return request.app.state.rate_limiters


def get_client_ip(request: Request, *, trust_proxy_headers: bool = False) -> str:
    """Resolve the client IP used for per-IP limits.

    With ``trust_proxy_headers`` set, proxy headers are checked in order
    ``X-Forwarded-For`` (first hop), ``X-Real-IP``, ``CF-Connecting-IP``.
    Otherwise, and when none is present, the socket peer is used: a client
    talking to the app directly can write any header it likes.
    """
    if trust_proxy_headers:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for and forwarded_for.split(",")[0].strip():
            return forwarded_for.split(",")[0].strip()

        for header in ("x-real-ip", "cf-connecting-ip"):
            value = request.headers.get(header)
            if value and value.strip():
                return value.strip()

    if request.client and request.client.host:
        return request.client.host
    return DEFAULT_CLIENT_IP


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Telemetry headers mirroring a RateLimitResult."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at_ms / 1000)),
    }
    if result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return headers


def raise_rate_limited(result: RateLimitResult, message: str, *, include_headers: bool = True) -> None:
    """Raise the 429 response for a blocked request.

    Raises:
        HTTPException: Always (429 Too Many Requests).
    """
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=message,
        headers=rate_limit_headers(result) if include_headers else None,
    )
