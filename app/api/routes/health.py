from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.errors import StoreUnavailableError
from app.core.rate_limit import get_rate_limiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns a simple status response to verify the API process is up.
    Used by load balancers and monitoring systems to determine service health.
    """

    return {"status": "ok"}


@router.get("/health/ready")
def readiness_check():
    """Readiness check: the shared rate limit store must be reachable.

    Guarded endpoints fail closed without the store, so an instance that
    cannot reach it should be taken out of rotation.
    """

    try:
        get_rate_limiter().store.ping()
    except StoreUnavailableError as exc:
        logger.warning("health.not_ready", extra={"error_code": exc.code})
        return JSONResponse(status_code=503, content={"status": "unavailable"})

    return {"status": "ok"}
