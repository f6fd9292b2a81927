"""Rate limit administration endpoints (support tooling)."""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Response, status

from app.core.auth import verify_api_key
from app.core.errors import BackendUnavailableError
from app.core.rate_limit import RateLimiterRegistry, get_rate_limiters
from app.schemas.rate_limit import CleanupResponse, RateLimitStatusResponse
from app.services.keys import normalize_email

router = APIRouter(
    prefix="/admin/rate-limits",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key)],
)


def _canonical_identifier(scope: str, identifier: str) -> str:
    # Per-email scopes are keyed on the normalized address.
    return normalize_email(identifier) if scope.endswith("_email") else identifier


@router.get("/{scope}/{identifier}", response_model=RateLimitStatusResponse)
async def get_rate_limit_status(
    scope: str,
    identifier: str,
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> RateLimitStatusResponse:
    """Show how much of the window an identifier has used, without consuming it.

    Raises:
        NotFoundAppError: 404 for an unknown scope.
        BackendError: 503 when the store cannot be read.
    """
    limiter = limiters.get(scope)
    current = await limiter.status(_canonical_identifier(scope, identifier))
    config = limiter.config
    return RateLimitStatusResponse(
        scope=scope,
        limit=config.limit,
        window_ms=config.window_ms,
        failure_policy=config.failure_policy,
        count=current.count,
        remaining=current.remaining,
        reset_at=math.ceil(current.reset_at_ms / 1000) if current.reset_at_ms is not None else None,
    )


@router.delete("/{scope}/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
async def reset_rate_limit(
    scope: str,
    identifier: str,
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> Response:
    """Clear an identifier's window in one scope (idempotent).

    Raises:
        NotFoundAppError: 404 for an unknown scope.
        BackendUnavailableError: 503 when the store did not confirm the reset.
    """
    if not await limiters.get(scope).reset(_canonical_identifier(scope, identifier)):
        raise BackendUnavailableError(
            code="rate_limit_reset_failed",
            message="Rate limit store did not confirm the reset. Try again later.",
            details={"scope": scope},
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_rate_limits(
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> CleanupResponse:
    """Reclaim expired entries now instead of waiting for the periodic task."""
    removed = await limiters.limiter.cleanup()
    return CleanupResponse(backend=limiters.limiter.backend_name, removed_keys=removed)
