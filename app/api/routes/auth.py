"""Rate-limited authentication endpoints.

The hosted auth platform performs the actual login and password reset; these
endpoints put the abuse-protection limiters in front of it.
"""

from __future__ import annotations

import math

from fastapi import APIRouter, Depends, Request, Response, status

from app.core.auth import verify_api_key
from app.core.config import settings
from app.core.errors import ValidationAppError
from app.core.rate_limit import (
    RateLimiterRegistry,
    get_client_ip,
    get_rate_limiters,
    raise_rate_limited,
    rate_limit_headers,
)
from app.schemas.auth import (
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginAttemptRequest,
    LoginAttemptResponse,
    LoginResetRequest,
)
from app.services.degradation import evaluate_limits
from app.services.keys import normalize_email
from app.services.password_reset_service import PasswordResetService
from app.utils.email import is_valid_email
from app.utils.time_format import format_remaining_time

router = APIRouter(prefix="/auth", tags=["Auth"])

PASSWORD_RESET_IP_SCOPE = "password_reset_ip"
PASSWORD_RESET_EMAIL_SCOPE = "password_reset_email"
LOGIN_IP_SCOPE = "login_ip"
LOGIN_EMAIL_SCOPE = "login_email"


def get_password_reset_service(
    request: Request,
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> PasswordResetService:
    """Build the reset service from the application's limiters and provider."""
    return PasswordResetService(
        provider=request.app.state.password_reset_provider,
        ip_limiter=limiters.get(PASSWORD_RESET_IP_SCOPE),
        email_limiter=limiters.get(PASSWORD_RESET_EMAIL_SCOPE),
        redirect_to=settings.app.password_reset_redirect_url,
        enforce_limits=limiters.enabled,
    )


@router.post("/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    service: PasswordResetService = Depends(get_password_reset_service),
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> ForgotPasswordResponse:
    """Request a password reset email.

    Always answers with the same generic message, whether or not the account
    exists or an email was actually sent. Only too many requests from one IP
    produce a 429.

    Raises:
        ValidationAppError: 400 if the email is malformed.
        HTTPException: 429 when the per-IP limit is exceeded.
    """
    client_ip = get_client_ip(request, trust_proxy_headers=settings.app.trust_proxy_headers)
    outcome = await service.request_reset(payload.email, client_ip=client_ip)

    if outcome.throttled and outcome.rate_limit is not None:
        wait = format_remaining_time(outcome.rate_limit.retry_after_seconds or 0)
        raise_rate_limited(
            outcome.rate_limit,
            f"Too many password reset requests from this location. Please try again in {wait}.",
            include_headers=limiters.include_headers,
        )

    return ForgotPasswordResponse()


@router.post(
    "/login-attempts",
    response_model=LoginAttemptResponse,
    dependencies=[Depends(verify_api_key)],
)
async def record_login_attempt(
    payload: LoginAttemptRequest,
    request: Request,
    response: Response,
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> LoginAttemptResponse:
    """Record a login attempt and decide whether it may proceed.

    Both the per-IP and the per-email limiter must allow the attempt.

    Raises:
        HTTPException: 429 with Retry-After when either limiter blocks.
    """
    if not is_valid_email(payload.email):
        raise ValidationAppError(
            code="invalid_email",
            message="Please provide a valid email address",
            details={"field": "email"},
        )

    if not limiters.enabled:
        # Nothing is counted, so the full quota of the tighter scope is left.
        remaining = min(
            limiters.get(LOGIN_IP_SCOPE).config.limit,
            limiters.get(LOGIN_EMAIL_SCOPE).config.limit,
        )
        return LoginAttemptResponse(allowed=True, remaining=remaining, reset_at=None)

    client_ip = payload.client_ip or get_client_ip(
        request, trust_proxy_headers=settings.app.trust_proxy_headers
    )
    combined = await evaluate_limits(
        [
            (limiters.get(LOGIN_IP_SCOPE), client_ip),
            (limiters.get(LOGIN_EMAIL_SCOPE), normalize_email(payload.email)),
        ]
    )
    binding = combined.binding

    if not combined.allowed:
        wait = format_remaining_time(binding.retry_after_seconds or 0)
        raise_rate_limited(
            binding,
            f"Too many login attempts. Please try again in {wait}.",
            include_headers=limiters.include_headers,
        )

    if limiters.include_headers:
        response.headers.update(rate_limit_headers(binding))

    return LoginAttemptResponse(
        allowed=True,
        remaining=binding.remaining,
        reset_at=math.ceil(binding.reset_at_ms / 1000),
        degraded=binding.degraded,
    )


@router.post(
    "/login-attempts/reset",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(verify_api_key)],
)
async def reset_login_attempts(
    payload: LoginResetRequest,
    limiters: RateLimiterRegistry = Depends(get_rate_limiters),
) -> Response:
    """Clear the per-email login window after a successful login.

    The per-IP window is left alone: one successful account must not unlock
    an address that is probing others.
    """
    await limiters.get(LOGIN_EMAIL_SCOPE).reset(normalize_email(payload.email))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
