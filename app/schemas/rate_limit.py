"""Pydantic schemas for rate limit administration."""

from __future__ import annotations

from pydantic import BaseModel, Field

from app.core.config import FailurePolicy


class RateLimitStatusResponse(BaseModel):
    """Current window usage for one scoped identifier."""

    scope: str = Field(..., description="Limiter scope, e.g. 'login_email'.")
    limit: int = Field(..., description="Max requests per window.")
    window_ms: int = Field(..., description="Sliding window length in milliseconds.")
    failure_policy: FailurePolicy = Field(..., description="Answer given when the store fails.")
    count: int = Field(..., ge=0, description="Requests recorded inside the current window.")
    remaining: int = Field(..., ge=0, description="Requests left before throttling.")
    reset_at: int | None = Field(
        None,
        description="UNIX epoch seconds when the oldest entry leaves the window (null when empty).",
    )


class CleanupResponse(BaseModel):
    """Outcome of a manual cleanup pass."""

    backend: str = Field(..., description="Backing store name.")
    removed_keys: int = Field(..., ge=0, description="Keys reclaimed by the pass.")
