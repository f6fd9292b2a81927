"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    field: str
    min_value: int
    actual_value: int
    scope: str
    backend: str
    timeout_ms: int
    error_type: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class InvalidRateLimitConfigError(ValidationAppError):
    """Raised for non-positive limits/windows, empty identifiers or bad scopes.

    This is a programming error: it is surfaced immediately and never retried
    or absorbed by the degradation policy.
    """


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class NotFoundAppError(AppError):
    """Raised when a referenced resource (e.g. a limiter scope) does not exist."""


class BackendError(AppError):
    """Raised when the rate limit backing store fails."""

    retryable: bool = True


class BackendTimeoutError(BackendError):
    """The backing store did not answer within the call timeout."""


class BackendUnavailableError(BackendError):
    """The backing store could not be reached or rejected the command."""


class BackendCorruptResponseError(BackendError):
    """The backing store answered with data that cannot be trusted."""

    retryable = False


class AuthProviderAppError(AppError):
    """Raised when the hosted auth platform rejects or fails a request."""
