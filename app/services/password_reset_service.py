"""Password reset request orchestration.

Applies the per-IP and per-email limiters to a reset request and delegates
delivery to the hosted auth platform. The outcome seen by the caller is the
same whether or not the account exists, whether the per-email quota is spent
and whether delivery failed, so the endpoint cannot be used to enumerate
accounts. Only the per-IP limit is surfaced as a throttling response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.adapters.auth_provider.base import AbstractPasswordResetProvider
from app.core.errors import AuthProviderAppError, ValidationAppError
from app.services.degradation import GuardedRateLimiter, evaluate_limits
from app.services.keys import hash_identifier, normalize_email
from app.services.rate_limiter import RateLimitResult
from app.utils.email import is_valid_email

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PasswordResetOutcome:
    """Result of a reset request.

    Attributes:
        throttled: True when the caller must receive a 429.
        rate_limit: The binding limiter result (None when limits are off).
        sent: Whether the provider was asked to send an email. Internal only:
            never exposed to the HTTP client.
    """

    throttled: bool
    rate_limit: RateLimitResult | None
    sent: bool = False


class PasswordResetService:
    """Rate-limited password reset requests."""

    def __init__(
        self,
        *,
        provider: AbstractPasswordResetProvider,
        ip_limiter: GuardedRateLimiter,
        email_limiter: GuardedRateLimiter,
        redirect_to: str,
        enforce_limits: bool = True,
    ) -> None:
        self._provider = provider
        self._ip_limiter = ip_limiter
        self._email_limiter = email_limiter
        self._redirect_to = redirect_to
        self._enforce_limits = enforce_limits

    async def request_reset(self, email: str, *, client_ip: str) -> PasswordResetOutcome:
        """Handle one reset request.

        Args:
            email: Address typed by the user.
            client_ip: Resolved client IP address.

        Returns:
            PasswordResetOutcome describing what the route should answer.

        Raises:
            ValidationAppError: If the email is malformed.
        """
        if not is_valid_email(email):
            raise ValidationAppError(
                code="invalid_email",
                message="Please provide a valid email address",
                details={"field": "email"},
            )

        normalized = normalize_email(email)
        binding: RateLimitResult | None = None

        if self._enforce_limits:
            combined = await evaluate_limits(
                [
                    (self._ip_limiter, client_ip),
                    (self._email_limiter, normalized),
                ]
            )
            binding = combined.binding

            ip_result = combined.result_for(self._ip_limiter.scope)
            if not ip_result.allowed:
                return PasswordResetOutcome(throttled=True, rate_limit=ip_result)

            if not combined.allowed:
                # Email quota spent: answer as if the email was sent.
                logger.info(
                    "password_reset.suppressed",
                    extra={
                        "email_hash": hash_identifier(normalized),
                        "denied_scopes": combined.denied_scopes(),
                    },
                )
                return PasswordResetOutcome(throttled=False, rate_limit=binding)

        try:
            await self._provider.send_reset(normalized, redirect_to=self._redirect_to)
        except AuthProviderAppError as exc:
            logger.error(
                "password_reset.delivery_failed",
                extra={
                    "email_hash": hash_identifier(normalized),
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )
            return PasswordResetOutcome(throttled=False, rate_limit=binding)

        logger.info(
            "password_reset.requested",
            extra={"email_hash": hash_identifier(normalized)},
        )
        return PasswordResetOutcome(throttled=False, rate_limit=binding, sent=True)
