"""Application factory for the FastAPI app.

Builds the app (metadata, middleware, handlers, routers) and owns the
lifecycle of the rate limit store and the password reset provider through a
lifespan, so each app instance gets its own limiter state.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.auth_provider import AbstractPasswordResetProvider, create_password_reset_provider
from app.api.routes import admin_router, auth_router, health_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import RateLimiterRegistry, build_rate_limiter_registry

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    *,
    rate_limiters: RateLimiterRegistry | None = None,
    password_reset_provider: AbstractPasswordResetProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings to build from; defaults to the global settings.
        rate_limiters: Prebuilt limiter registry (tests inject one with a fake
            clock or a failing store). Built from settings when omitted.
        password_reset_provider: Prebuilt provider; built from settings when
            omitted.

    Returns:
        Configured FastAPI app. State is created when the lifespan starts.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        registry = rate_limiters or build_rate_limiter_registry(cfg)
        provider = password_reset_provider or create_password_reset_provider(cfg.auth_provider)
        app.state.rate_limiters = registry
        app.state.password_reset_provider = provider
        await registry.start_cleanup_task()
        logger.info(
            "app.started",
            extra={
                "app_env": cfg.app_env,
                "rate_limit_backend": registry.limiter.backend_name,
                "rate_limit_enabled": registry.enabled,
            },
        )
        try:
            yield
        finally:
            await registry.close()
            await provider.close()
            logger.info("app.stopped")

    app = FastAPI(
        title="Auth Guard API",
        description=(
            "Abuse protection for the resume builder's authentication flows: "
            "sliding-window rate limits on password reset and login attempts, "
            "backed by Redis or an in-process store, with per-scope fail-open "
            "or fail-closed behaviour when the store is unavailable."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=lifespan,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(auth_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
