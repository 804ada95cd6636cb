"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → appropriate HTTP status (400, 401, 403, 429, 500, 503)
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    AuthenticationRequiredError,
    IdentityUnavailableError,
    RateLimitAppError,
    StoreUnavailableError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)

INTERNAL_ERROR_CODE = "internal_server_error"
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    error_content = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }

    # Include details only if present (optional structured context)
    if details:
        error_content["details"] = details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def rate_limit_error_handler(request: Request, exc: RateLimitAppError) -> JSONResponse:
    """Translate an exhausted quota into HTTP 429 with a Retry-After hint.

    The guard already logged which dimension tripped; the response stays
    identical across dimensions.
    """
    retry_after = int((exc.details or {}).get("retry_after", 0))
    return _error_response(
        429,
        exc.code,
        exc.message,
        details={"retry_after": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    """Fail closed when the counter store is down.

    The guarded operation has not run. Store internals are logged but never
    echoed to the client.
    """
    logger.error(
        "rate_limit.fail_closed",
        extra={
            "error_code": exc.code,
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )
    return _error_response(500, INTERNAL_ERROR_CODE, INTERNAL_ERROR_MESSAGE)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError → 400 Bad Request (client fault)
    - AuthenticationRequiredError → 401 Unauthorized (no caller identity)
    - AuthenticationAppError → 403 Forbidden (authorization fault)
    - IdentityUnavailableError → 503 Service Unavailable (collaborator missing)

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400  # Default: client error
    if isinstance(exc, AuthenticationRequiredError):
        status_code = 401
    elif isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, IdentityUnavailableError):
        status_code = 503

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    return _error_response(status_code, exc.code, exc.message, details=exc.details)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Catches any exception not handled by specific handlers.
    Logs detailed information for debugging while returning generic message.
    Prevents information leakage (no stack traces to client).

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with generic error (no implementation details leaked).
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return _error_response(500, INTERNAL_ERROR_CODE, INTERNAL_ERROR_MESSAGE)


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Must be called during app initialization, before route registration.
    Starlette resolves handlers by the exception's MRO, so the specific
    subclasses win over the AppError and Exception fallbacks.

    Args:
        app: FastAPI application instance.

    Example:
        >>> from fastapi import FastAPI
        >>> from app.core.exception_handlers import setup_exception_handlers
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(RateLimitAppError)(rate_limit_error_handler)
    app.exception_handler(StoreUnavailableError)(store_unavailable_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
