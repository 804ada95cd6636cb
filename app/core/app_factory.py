from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers,
database lifecycle) to improve testability compared to a monolithic main.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import admin_router, auth_router, health_router, onboarding_router
from app.core.config import settings
from app.core.database import create_schema, dispose_engine, get_engine
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Prepare the shared counter store on startup and release it on shutdown."""

    uses_sql = settings.rate_limit.backend.lower() == "sql"
    if uses_sql and settings.database.create_schema:
        create_schema(get_engine())
    logger.info(
        "app.startup",
        extra={
            "app_env": settings.app_env,
            "rate_limit_enabled": settings.rate_limit.enabled,
            "rate_limit_backend": settings.rate_limit.backend,
        },
    )
    try:
        yield
    finally:
        if uses_sql:
            dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Work Hours API",
        description=(
            "Multi-tenant work-hour registration backend. Security-sensitive "
            "endpoints (login, signup, company selection, invites, onboarding) "
            "are protected by a shared fixed-window rate limiter backed by the "
            "database, so limits hold across all workers."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(auth_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(onboarding_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
