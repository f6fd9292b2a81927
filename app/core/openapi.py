"""OpenAPI customization: API key security scheme and tag metadata.

Operations require ``X-API-Key`` by default in the generated schema; public
endpoints (health checks and the forgot-password form) are marked with an
empty security list.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

PUBLIC_PATH_SUFFIXES: tuple[str, ...] = ("/health", "/health/ready", "/auth/forgot-password")

TAGS_METADATA = [
    {
        "name": "Auth",
        "description": "Rate-limited password reset and login attempt endpoints.",
    },
    {
        "name": "Admin",
        "description": "Inspect, reset and clean up rate limit windows.",
    },
    {
        "name": "Health",
        "description": "Liveness and readiness checks.",
    },
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Wrap ``app.openapi`` to add the API key scheme and tag descriptions."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Service API key for login-attempt and admin endpoints.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        known = {t.get("name") for t in tags}
        tags.extend(t for t in TAGS_METADATA if t["name"] not in known)

        for path, methods in schema.get("paths", {}).items():
            if not path.endswith(PUBLIC_PATH_SUFFIXES):
                continue
            for operation in methods.values():
                if isinstance(operation, dict):
                    operation["security"] = []

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
