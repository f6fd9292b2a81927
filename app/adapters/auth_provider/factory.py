"""Factory pattern for creating password reset provider instances."""

from app.adapters.auth_provider.base import AbstractPasswordResetProvider
from app.adapters.auth_provider.http_client import (
    HttpPasswordResetProvider,
    LoggingPasswordResetProvider,
)
from app.core.config import AuthProviderSettings


def create_password_reset_provider(
    provider_settings: AuthProviderSettings,
) -> AbstractPasswordResetProvider:
    """Instantiate the password reset provider from configuration.

    Without ``AUTH_PROVIDER_URL`` (local development) resets are logged
    instead of sent.

    Returns:
        AbstractPasswordResetProvider: Configured provider instance.
    """
    if not provider_settings.url:
        return LoggingPasswordResetProvider()

    return HttpPasswordResetProvider(
        base_url=provider_settings.url,
        api_key=provider_settings.api_key,
        timeout_seconds=provider_settings.timeout_seconds,
    )
