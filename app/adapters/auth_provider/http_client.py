"""Hosted auth platform client for password reset emails."""

from __future__ import annotations

import logging

import httpx

from app.adapters.auth_provider.base import AbstractPasswordResetProvider
from app.core.errors import AuthProviderAppError
from app.services.keys import hash_identifier

logger = logging.getLogger(__name__)

RECOVER_PATH = "/auth/v1/recover"


class HttpPasswordResetProvider(AbstractPasswordResetProvider):
    """Calls the platform's ``recover`` endpoint over HTTP.

    Uses a shared ``httpx.AsyncClient`` with a bounded timeout.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            base_url: Base URL of the hosted auth service.
            api_key: Public API key sent as ``apikey`` header.
            timeout_seconds: Timeout for requests in seconds.
            client: Optional preconfigured client (tests inject a mock transport).
        """
        headers = {"apikey": api_key} if api_key else {}
        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
        )

    async def send_reset(self, email: str, *, redirect_to: str) -> None:
        """Request a reset email.

        Raises:
            AuthProviderAppError: On transport errors or non-2xx responses.
        """
        try:
            response = await self.client.post(
                RECOVER_PATH,
                params={"redirect_to": redirect_to},
                json={"email": email},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AuthProviderAppError(
                code="auth_provider_rejected",
                message=f"Auth provider returned HTTP {exc.response.status_code}",
                details={"context": {"status_code": exc.response.status_code}},
            ) from exc
        except httpx.HTTPError as exc:
            raise AuthProviderAppError(
                code="auth_provider_unreachable",
                message=f"Auth provider request failed: {type(exc).__name__}",
            ) from exc

    async def close(self) -> None:
        await self.client.aclose()


class LoggingPasswordResetProvider(AbstractPasswordResetProvider):
    """Development provider: logs the request instead of sending an email."""

    async def send_reset(self, email: str, *, redirect_to: str) -> None:
        logger.info(
            "password_reset.delivery_skipped",
            extra={
                "email_hash": hash_identifier(email),
                "redirect_to": redirect_to,
                "reason": "auth_provider_url_not_configured",
            },
        )
