"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- Session cookie security scheme, required only on admin operations
- A documented 429 response on every rate-limited operation

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from app.core.config import settings

RATE_LIMITED_PREFIXES = ("/v1/auth/", "/v1/admin/", "/v1/onboarding/")

TOO_MANY_REQUESTS_RESPONSE = {
    "description": "Rate limit exceeded. Retry after the number of seconds in the Retry-After header.",
    "headers": {
        "Retry-After": {
            "description": "Seconds until the current rate limit window resets.",
            "schema": {"type": "integer"},
        }
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "SessionCookie",
            {
                "type": "apiKey",
                "in": "cookie",
                "name": settings.app.session_cookie_name,
                "description": "Opaque session token issued by login/signup.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Auth", "description": "Login, signup and company selection."},
            {"name": "Admin", "description": "Company administration (ADMIN/OWNER only)."},
            {"name": "Onboarding", "description": "Invite validation and activation."},
            {"name": "Health", "description": "Liveness and readiness checks."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.startswith(RATE_LIMITED_PREFIXES):
                    method_obj.setdefault("responses", {}).setdefault("429", TOO_MANY_REQUESTS_RESPONSE)
                if path.startswith("/v1/admin/"):
                    method_obj["security"] = [{"SessionCookie": []}]

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
