"""Retry policy with exponential backoff for backing store calls.

The policy is a pure function from attempt number to delay; ``run_with_retry``
is the small executor that applies it. Keeping them apart makes the backoff
schedule testable without sleeping.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from app.core.errors import BackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying).
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any single delay, in seconds.
        exponential_base: Growth factor between consecutive delays.

    Example:
        >>> policy = RetryPolicy(max_retries=2, base_delay=0.025, max_delay=0.1)
        >>> policy.calculate_delay(1)
        0.05
    """

    max_retries: int = 2
    base_delay: float = 0.025
    max_delay: float = 0.1
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (attempt is 0-indexed).

        delay = min(base_delay * exponential_base ** attempt, max_delay)
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)

    def is_retryable(self, exception: BaseException) -> bool:
        """Only transient backend failures are retried."""
        return isinstance(exception, BackendError) and exception.retryable


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` and retry it according to ``policy``.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Backoff schedule and retry budget.
        sleep: Awaitable sleep (injectable for tests).
        operation_name: Label used in log events.

    Returns:
        The operation's result.

    Raises:
        The last exception once it is non-retryable or the budget is spent.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not policy.is_retryable(exc) or attempt >= policy.max_retries:
                raise

            delay = policy.calculate_delay(attempt)
            logger.warning(
                "rate_limit.retry",
                extra={
                    "operation": operation_name,
                    "attempt": attempt + 1,
                    "max_retries": policy.max_retries,
                    "error_type": type(exc).__name__,
                    "delay_ms": round(delay * 1000, 1),
                },
            )
            await sleep(delay)
            attempt += 1
