"""Caller identity resolution for authenticated routes.

The session itself is opaque here: a raw token arrives in the session cookie
(or an ``Authorization: Bearer`` header) and the identity backend turns it
into an ``Actor``.

Design principles:
- Single Responsibility: only extracts the token and checks roles
- Dependency Injection: used via FastAPI Depends() for loose coupling
- Testable: pure token extraction with minimal dependencies
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

from fastapi import Depends, Header, Request

from app.core.config import settings
from app.core.errors import AuthenticationAppError, AuthenticationRequiredError
from app.services.identity import AbstractIdentityBackend, Actor, get_identity_backend

logger = logging.getLogger(__name__)


def extract_session_token(cookie_value: str | None, authorization: str | None) -> str | None:
    """Pick the session token from the cookie, falling back to a bearer header.

    Examples:
        >>> extract_session_token("abc", None)
        'abc'
        >>> extract_session_token(None, "Bearer xyz")
        'xyz'
        >>> extract_session_token(None, "Basic xyz") is None
        True
    """
    if cookie_value and cookie_value.strip():
        return cookie_value.strip()

    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()

    return None


def get_current_actor(
    request: Request,
    backend: Annotated[AbstractIdentityBackend, Depends(get_identity_backend)],
    authorization: Annotated[str | None, Header()] = None,
) -> Actor:
    """FastAPI dependency resolving the authenticated actor.

    Raises:
        AuthenticationRequiredError: 401 when no live session accompanies the request.
    """
    token = extract_session_token(
        request.cookies.get(settings.app.session_cookie_name),
        authorization,
    )
    if not token:
        logger.warning("auth.missing_session", extra={"session_present": False})
        raise AuthenticationRequiredError(code="auth_required", message="Unauthorized")

    actor = backend.resolve_session(token)
    if actor is None:
        logger.warning(
            "auth.invalid_session",
            extra={"session_hash": hashlib.sha256(token.encode()).hexdigest()[:16]},
        )
        raise AuthenticationRequiredError(code="auth_required", message="Unauthorized")

    return actor


def require_admin(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
    """FastAPI dependency allowing only ADMIN and OWNER actors.

    Raises:
        AuthenticationAppError: 403 for authenticated non-privileged actors.
    """
    if not actor.is_privileged:
        logger.warning(
            "auth.forbidden",
            extra={"role": actor.role, "employee_id": actor.employee_id},
        )
        raise AuthenticationAppError(code="forbidden", message="Forbidden")
    return actor
