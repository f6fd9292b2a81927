"""Auth provider adapter layer - abstracts over the hosted auth platform."""

from app.adapters.auth_provider.base import AbstractPasswordResetProvider
from app.adapters.auth_provider.factory import create_password_reset_provider
from app.adapters.auth_provider.http_client import (
    HttpPasswordResetProvider,
    LoggingPasswordResetProvider,
)

__all__ = [
    "AbstractPasswordResetProvider",
    "HttpPasswordResetProvider",
    "LoggingPasswordResetProvider",
    "create_password_reset_provider",
]
