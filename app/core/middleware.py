"""HTTP middleware for request ID propagation and correlation.

The middleware:
- Accepts an upstream id (configured header, then ``X-Correlation-ID``, then
  ``X-Amzn-Trace-Id``) or generates a UUID
- Stores request_id in contextvars for access throughout the request lifecycle
- Injects request_id into response headers for client-side tracking
- Measures total request duration and includes it in response headers
- Clears context after request completion to prevent context leaks

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import clear_request_id, set_request_id

FALLBACK_REQUEST_ID_HEADERS = ("X-Correlation-ID", "X-Amzn-Trace-Id")


def resolve_request_id(request: Request) -> str:
    """Return the upstream-provided request id, or a fresh UUID4."""

    for header in (settings.log.request_id_header, *FALLBACK_REQUEST_ID_HEADERS):
        incoming = (request.headers.get(header) or "").strip()
        if incoming:
            return incoming
    return str(uuid.uuid4())


async def request_id_middleware(request: Request, call_next) -> Response:
    """HTTP middleware for request ID generation and propagation.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request_id and
            duration headers added.
    """

    header_name = settings.log.request_id_header
    request_id = resolve_request_id(request)
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
