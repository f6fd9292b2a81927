"""Redis-backed sliding-window store for multi-instance deployments.

All window mutations run as Lua scripts inside Redis (see ``scripts``), so the
limit holds across every process sharing the Redis instance. Redis client
errors are translated into the backend error taxonomy; the facade decides
whether to retry and the degradation policy decides what to answer.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from app.adapters.rate_limit.base import AbstractWindowStore, WindowSnapshot
from app.adapters.rate_limit.scripts import PEEK_SCRIPT, SLIDE_AND_COUNT_SCRIPT
from app.core.errors import (
    BackendCorruptResponseError,
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    ErrorDetails,
)

logger = logging.getLogger(__name__)


def _translate_redis_error(exc: Exception, operation: str) -> BackendError:
    """Map a redis-py exception to the backend error taxonomy."""

    details: ErrorDetails = {
        "backend": "redis",
        "error_type": type(exc).__name__,
        "context": {"operation": operation},
    }
    if isinstance(exc, (RedisTimeoutError, TimeoutError)):
        return BackendTimeoutError(
            code="rate_limit_backend_timeout",
            message=f"Redis {operation} timed out",
            details=details,
        )
    if isinstance(exc, (RedisConnectionError, OSError)):
        return BackendUnavailableError(
            code="rate_limit_backend_unavailable",
            message=f"Redis unreachable during {operation}",
            details=details,
        )
    return BackendUnavailableError(
        code="rate_limit_backend_error",
        message=f"Redis rejected {operation}: {exc}",
        details=details,
    )


def parse_window_reply(reply: Any) -> WindowSnapshot:
    """Validate a ``{count, oldest, recorded}`` script reply.

    Raises:
        BackendCorruptResponseError: If the reply does not have the expected
            shape or carries impossible values. Partial replies are never
            trusted.
    """

    if not isinstance(reply, (list, tuple)) or len(reply) != 3:
        raise BackendCorruptResponseError(
            code="rate_limit_backend_corrupt",
            message="Unexpected reply shape from rate limit script",
            details={"backend": "redis", "context": {"reply_type": type(reply).__name__}},
        )
    try:
        count, oldest, recorded = (int(value) for value in reply)
    except (TypeError, ValueError) as exc:
        raise BackendCorruptResponseError(
            code="rate_limit_backend_corrupt",
            message="Non-integer value in rate limit script reply",
            details={"backend": "redis"},
        ) from exc

    if count < 0 or recorded not in (0, 1) or (count > 0 and oldest < 0):
        raise BackendCorruptResponseError(
            code="rate_limit_backend_corrupt",
            message="Inconsistent values in rate limit script reply",
            details={"backend": "redis", "context": {"count": count, "recorded": recorded}},
        )

    return WindowSnapshot(
        count=count,
        oldest_ms=oldest if oldest >= 0 else None,
        recorded=bool(recorded),
    )


class RedisWindowStore(AbstractWindowStore):
    """Sliding-window store on Redis sorted sets.

    Key layout: one sorted set per rate limit key, member = request id,
    score = arrival time in milliseconds. Keys expire ``window_ms`` after their
    last recorded entry, so idle keys need no cleanup.
    """

    name = "redis"

    def __init__(self, client: Any) -> None:
        """Initialize the store around an existing ``redis.asyncio`` client.

        Args:
            client: ``redis.asyncio.Redis`` instance (or a test double).
        """
        self._redis = client
        self._slide_script = client.register_script(SLIDE_AND_COUNT_SCRIPT)
        self._peek_script = client.register_script(PEEK_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout_seconds: float,
        connect_timeout_seconds: float | None = None,
    ) -> "RedisWindowStore":
        """Create a store with a new connection pool.

        Args:
            url: Redis connection URL.
            socket_timeout_seconds: Hard read/write timeout per command.
            connect_timeout_seconds: Connection timeout (defaults to socket timeout).

        Returns:
            Configured RedisWindowStore.
        """
        client = aioredis.from_url(
            url,
            socket_timeout=socket_timeout_seconds,
            socket_connect_timeout=connect_timeout_seconds or socket_timeout_seconds,
            # Retries are owned by the limiter's retry policy.
            retry_on_timeout=False,
        )
        return cls(client)

    async def _run_script(self, script: Any, operation: str, key: str, args: Sequence[Any]) -> Any:
        try:
            return await script(keys=[key], args=list(args))
        except (RedisError, OSError) as exc:
            raise _translate_redis_error(exc, operation) from exc

    async def slide_and_count(
        self,
        key: str,
        *,
        now_ms: int,
        window_ms: int,
        limit: int,
        member: str,
    ) -> WindowSnapshot:
        reply = await self._run_script(
            self._slide_script,
            "slide_and_count",
            key,
            (now_ms, window_ms, limit, member),
        )
        return parse_window_reply(reply)

    async def peek(self, key: str, *, now_ms: int, window_ms: int) -> WindowSnapshot:
        reply = await self._run_script(self._peek_script, "peek", key, (now_ms, window_ms))
        return parse_window_reply(reply)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except (RedisError, OSError) as exc:
            raise _translate_redis_error(exc, "delete") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except (RedisError, OSError) as exc:
            logger.warning(
                "rate_limit.backend_ping_failed",
                extra={"backend": self.name, "error_type": type(exc).__name__},
            )
            return False

    async def close(self) -> None:
        await self._redis.aclose()
