"""Pydantic schemas for guarded authentication endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

GENERIC_RESET_MESSAGE = (
    "If an account with that email exists, we have sent a password reset link."
)


class ForgotPasswordRequest(BaseModel):
    """Password reset request body."""

    email: str = Field(
        ..., description="Account email address.", max_length=320
    )


class ForgotPasswordResponse(BaseModel):
    """Identical response for every non-throttled reset request."""

    success: bool = Field(True, description="Always true; see message.")
    message: str = Field(
        GENERIC_RESET_MESSAGE,
        description="Generic confirmation that does not reveal whether the account exists.",
    )


class LoginAttemptRequest(BaseModel):
    """Login attempt about to be forwarded to the auth platform."""

    email: str = Field(..., min_length=1, max_length=320, description="Email used to log in.")
    client_ip: str | None = Field(
        None,
        description=(
            "End-user IP as seen by the calling web server. Defaults to the "
            "resolved IP of this request."
        ),
    )


class LoginAttemptResponse(BaseModel):
    """Allowance for a login attempt (429 is returned instead when blocked)."""

    allowed: bool = Field(..., description="Whether the attempt may proceed.")
    remaining: int = Field(..., ge=0, description="Attempts left in the tightest window.")
    reset_at: int | None = Field(
        None,
        description="UNIX epoch seconds when the tightest window frees up; null when limiting is disabled.",
    )
    degraded: bool = Field(
        False,
        description="True when the answer came from the failure policy during a backend outage.",
    )


class LoginResetRequest(BaseModel):
    """Clear the per-email login window after a successful login."""

    email: str = Field(..., min_length=1, max_length=320)
