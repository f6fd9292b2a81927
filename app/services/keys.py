"""Rate limit key construction.

Keys are ``"{scope}:{identifier}"``. Scopes may not contain ``:``, so the first
separator always delimits the scope and keys from different scopes can never
collide, whatever the identifier contains.
"""

from __future__ import annotations

import hashlib
import re

from app.core.errors import InvalidRateLimitConfigError

KEY_SEPARATOR = ":"

_SCOPE_PATTERN = re.compile(r"^[a-z0-9_\-]+$")


def validate_scope(scope: str) -> str:
    """Return ``scope`` if it is a valid key namespace.

    Raises:
        InvalidRateLimitConfigError: If the scope is empty or contains
            characters outside ``[a-z0-9_-]``.
    """
    if not scope or not _SCOPE_PATTERN.match(scope):
        raise InvalidRateLimitConfigError(
            code="rate_limit_invalid_scope",
            message=f"Invalid rate limit scope: {scope!r}",
            details={"field": "scope", "hint": "Use lowercase letters, digits, '_' or '-'"},
        )
    return scope


def build_rate_limit_key(scope: str, identifier: str) -> str:
    """Build the namespaced key for ``identifier`` within ``scope``.

    Examples:
        >>> build_rate_limit_key("login_ip", "203.0.113.7")
        'login_ip:203.0.113.7'
    """
    validate_scope(scope)
    if not identifier:
        raise InvalidRateLimitConfigError(
            code="rate_limit_empty_identifier",
            message="Rate limit identifier must be a non-empty string",
            details={"field": "identifier", "scope": scope},
        )
    return f"{scope}{KEY_SEPARATOR}{identifier}"


def normalize_email(email: str) -> str:
    """Canonical form used for per-email keys (trimmed, lower-cased)."""
    return email.strip().lower()


def hash_identifier(value: str) -> str:
    """Hash a key or identifier for logging without exposing PII."""
    return hashlib.sha256(value.encode()).hexdigest()[:16]
