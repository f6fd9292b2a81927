"""Human-readable retry times for throttled users."""

from __future__ import annotations

import math


def format_remaining_time(seconds: int | float) -> str:
    """Format a wait time as whole minutes or hours, rounded up.

    Examples:
        >>> format_remaining_time(45)
        '1 minute'
        >>> format_remaining_time(900)
        '15 minutes'
        >>> format_remaining_time(3601)
        '2 hours'
    """
    minutes = max(1, math.ceil(seconds / 60))
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = math.ceil(minutes / 60)
    return f"{hours} hour{'s' if hours != 1 else ''}"
