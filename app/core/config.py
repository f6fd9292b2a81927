"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


ONE_HOUR_MS = 60 * 60 * 1000
FIFTEEN_MINUTES_MS = 15 * 60 * 1000


class FailurePolicy(str, Enum):
    """What a limiter answers when its backing store cannot be reached."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class ScopeLimitSettings(BaseModel):
    """Limit, window and failure policy for one limiter scope."""

    limit: int = Field(..., ge=1, description="Maximum requests per window")
    window_ms: int = Field(..., ge=1, description="Sliding window length in milliseconds")
    failure_policy: FailurePolicy = Field(
        FailurePolicy.FAIL_CLOSED,
        description="Answer given when the backing store fails",
    )


def _default_scopes() -> dict[str, ScopeLimitSettings]:
    # Password reset is already throttled by email-sending cost, so an outage
    # keeps it available; login protects against credential stuffing.
    return {
        "password_reset_email": ScopeLimitSettings(
            limit=5, window_ms=ONE_HOUR_MS, failure_policy=FailurePolicy.FAIL_OPEN
        ),
        "password_reset_ip": ScopeLimitSettings(
            limit=20, window_ms=ONE_HOUR_MS, failure_policy=FailurePolicy.FAIL_OPEN
        ),
        "login_email": ScopeLimitSettings(
            limit=5, window_ms=FIFTEEN_MINUTES_MS, failure_policy=FailurePolicy.FAIL_CLOSED
        ),
        "login_ip": ScopeLimitSettings(
            limit=50, window_ms=FIFTEEN_MINUTES_MS, failure_policy=FailurePolicy.FAIL_CLOSED
        ),
    }


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment (see _build_app_settings)."""

    return RateLimitSettings()  # type: ignore[call-arg]


def _build_auth_provider_settings() -> "AuthProviderSettings":
    return AuthProviderSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on internal endpoints",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )
    trust_proxy_headers: bool = Field(
        False,
        description=(
            "Resolve client IP from X-Forwarded-For / X-Real-IP / CF-Connecting-IP. "
            "Enable only behind a proxy that overwrites these headers"
        ),
    )
    password_reset_redirect_url: str = Field(
        "http://localhost:3000/auth/confirm?next=/reset-password",
        description="Where the password reset email should send the user",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Abuse-protection rate limiter configuration."""

    enabled: bool = Field(
        True,
        description="Enable rate limiting on guarded endpoints",
    )
    backend: Literal["memory", "redis"] = Field(
        "memory",
        description="Backing store for sliding-window entries",
    )
    redis_url: str | None = Field(
        None,
        description="Redis connection URL (required when backend=redis)",
    )
    key_prefix: str = Field(
        "ratelimit",
        description="Namespace prepended to every key in the backing store",
    )
    call_timeout_ms: int = Field(
        250,
        ge=1,
        description="Upper bound for a single backing store call",
    )
    check_timeout_ms: int = Field(
        1000,
        ge=1,
        description="Upper bound for a whole check, retries included",
    )
    max_retries: int = Field(
        2,
        ge=0,
        description="Retries on transient backing store errors",
    )
    retry_base_delay_ms: int = Field(
        25,
        ge=0,
        description="Initial backoff delay between retries",
    )
    retry_max_delay_ms: int = Field(
        100,
        ge=0,
        description="Backoff delay cap",
    )
    cleanup_interval_seconds: int = Field(
        300,
        ge=0,
        description="Periodic cleanup of the in-memory store (0 disables)",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )
    degraded_retry_after_seconds: int = Field(
        30,
        ge=1,
        description="Retry-After advertised by fail-closed limiters during an outage",
    )
    scopes: dict[str, ScopeLimitSettings] = Field(
        default_factory=_default_scopes,
        description="Per-scope limit/window/failure policy (JSON in RATE_LIMIT_SCOPES)",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class AuthProviderSettings(BaseSettings):
    """Hosted auth platform used to deliver password reset emails."""

    url: str | None = Field(
        None,
        description="Base URL of the hosted auth service (unset logs instead of sending)",
    )
    api_key: str | None = Field(
        None,
        description="Public API key sent with auth service requests",
    )
    timeout_seconds: float = Field(
        5.0,
        description="Request timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_PROVIDER_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    auth_provider: AuthProviderSettings = Field(default_factory=_build_auth_provider_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
