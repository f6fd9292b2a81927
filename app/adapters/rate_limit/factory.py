"""Factory pattern for creating sliding-window store instances."""

from __future__ import annotations

from app.adapters.rate_limit.base import AbstractWindowStore
from app.adapters.rate_limit.in_memory import InMemoryWindowStore
from app.adapters.rate_limit.redis_store import RedisWindowStore
from app.core.config import RateLimitSettings
from app.core.errors import InvalidRateLimitConfigError


def create_window_store(rate_limit_settings: RateLimitSettings) -> AbstractWindowStore:
    """Instantiate the backing store selected by configuration.

    Selection happens once, at construction time; request handling never
    branches on the backend.

    Args:
        rate_limit_settings: Resolved ``RATE_LIMIT_*`` settings.

    Returns:
        AbstractWindowStore: Configured store instance.

    Raises:
        InvalidRateLimitConfigError: If backend-specific requirements are not met.
    """
    backend = rate_limit_settings.backend.lower()

    if backend == "memory":
        return InMemoryWindowStore()

    if backend == "redis":
        if not rate_limit_settings.redis_url:
            raise InvalidRateLimitConfigError(
                code="rate_limit_missing_redis_url",
                message="Redis backend requires RATE_LIMIT_REDIS_URL",
                details={"field": "redis_url"},
            )
        return RedisWindowStore.from_url(
            rate_limit_settings.redis_url,
            socket_timeout_seconds=rate_limit_settings.call_timeout_ms / 1000,
        )

    raise InvalidRateLimitConfigError(
        code="rate_limit_unknown_backend",
        message=f"Unknown rate limit backend: '{backend}'. Supported backends: memory, redis",
        details={"field": "backend"},
    )
