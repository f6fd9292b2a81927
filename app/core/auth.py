"""API key authentication for internal endpoints.

Login-attempt bookkeeping and rate limit administration are called by the
product's own web server, not by browsers, so they require a shared API key.
Resetting a login window without authentication would let anyone undo the
brute-force protection of an account.

Keys are validated against a comma-separated list from environment variables,
using constant-time comparison.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header

from app.core.config import settings
from app.core.errors import AuthenticationAppError
from app.services.keys import hash_identifier

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> sorted(parse_api_keys("key1, key2 , key1"))
        ['key1', 'key2']
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _matches_any(provided_key: str, valid_keys: set[str]) -> bool:
    provided = provided_key.encode()
    # Compare against every key so timing does not reveal which one matched.
    matched = False
    for key in valid_keys:
        matched |= hmac.compare_digest(provided, key.encode())
    return matched


def validate_api_key(provided_key: str | None) -> None:
    """Validate the provided key against configured keys.

    Pure validation logic without FastAPI dependencies for easy testing.

    Raises:
        AuthenticationAppError: If the key is missing or invalid, or if
            authentication is required but no keys are configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)
    if not valid_keys:
        logger.error(
            "auth.keys_not_configured",
            extra={"auth_required": True},
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("auth.missing_key", extra={"api_key_present": False})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if not _matches_any(provided_key, valid_keys):
        logger.warning(
            "auth.invalid_key",
            extra={"api_key_hash": hash_identifier(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency for API key authentication.

    Usage:
        @router.post("/internal", dependencies=[Depends(verify_api_key)])

    Raises:
        AuthenticationAppError: Rendered as 403 by the exception handlers.
    """
    validate_api_key(x_api_key)
