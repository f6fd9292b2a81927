"""Rate limiter metrics interface.

The limiter does not own metric storage or analysis; it hands one event per
check, and one alert-worthy event per fallback activation, to whatever
emitter the application wires in. The default emitter writes structured log
events that a log-based alerting pipeline can pick up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from app.core.config import FailurePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckEvent:
    """Outcome of one rate limit check."""

    scope: str
    allowed: bool
    remaining: int
    degraded: bool = False


@dataclass(frozen=True)
class FallbackEvent:
    """The failure policy answered instead of the backing store."""

    scope: str
    policy: FailurePolicy
    error_code: str


class MetricsEmitter(Protocol):
    """Sink for rate limiter telemetry."""

    def record_check(self, event: CheckEvent) -> None: ...

    def record_fallback(self, event: FallbackEvent) -> None: ...


class LoggingMetricsEmitter:
    """Emit rate limiter telemetry as structured log events."""

    def record_check(self, event: CheckEvent) -> None:
        logger.info(
            "rate_limit.check",
            extra={
                "scope": event.scope,
                "allowed": event.allowed,
                "remaining": event.remaining,
                "degraded": event.degraded,
            },
        )

    def record_fallback(self, event: FallbackEvent) -> None:
        # Error level: a fail-open fallback means abuse protection is off.
        logger.error(
            "rate_limit.fallback_activated",
            extra={
                "scope": event.scope,
                "policy": event.policy.value,
                "error_code": event.error_code,
                "alert": True,
            },
        )
