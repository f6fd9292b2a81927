"""Email address validation."""

from __future__ import annotations

import re

# Pragmatic shape check: local@domain.tld, no whitespace, single '@'.
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_EMAIL_LENGTH = 254


def is_valid_email(value: str | None) -> bool:
    """Return True if ``value`` looks like a deliverable email address.

    Examples:
        >>> is_valid_email("ada@example.com")
        True
        >>> is_valid_email("ada@example")
        False
    """
    if not value or len(value) > MAX_EMAIL_LENGTH:
        return False
    return bool(_EMAIL_PATTERN.match(value.strip()))
