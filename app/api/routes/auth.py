"""Login, signup and company-selection endpoints.

Every handler charges its rate limit dimensions before touching the identity
backend, so a rejected request never reaches password checks or account
creation.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response

from app.core.config import settings
from app.core.errors import AuthenticationRequiredError, ValidationAppError
from app.core.rate_limit import (
    RateLimitDimension,
    RateLimiter,
    client_ip,
    enforce_rate_limits,
    get_rate_limiter,
    hash_key_part,
)
from app.schemas.auth import (
    ChooseCompanyRequest,
    LoginRequest,
    LoginResponse,
    SessionResponse,
    SignupRequest,
)
from app.services.identity import AbstractIdentityBackend, get_identity_backend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

LimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
BackendDep = Annotated[AbstractIdentityBackend, Depends(get_identity_backend)]


def set_session_cookie(response: Response, session_token: str) -> None:
    """Attach the opaque session token as an HttpOnly cookie."""

    response.set_cookie(
        settings.app.session_cookie_name,
        session_token,
        httponly=True,
        secure=settings.app.secure_cookies,
        samesite="lax",
        path="/",
        max_age=settings.app.session_days * 24 * 60 * 60,
    )


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    limiter: LimiterDep,
    backend: BackendDep,
) -> LoginResponse:
    """Verify credentials and open a session, or ask for a company pick.

    Throttled per client IP and per (hashed) email.
    """
    policies = settings.rate_limit
    enforce_rate_limits(
        limiter,
        [
            RateLimitDimension("ip", f"auth:login:ip:{hash_key_part(client_ip(request))}", policies.login_ip),
            RateLimitDimension("email", f"auth:login:email:{hash_key_part(body.email)}", policies.login_email),
        ],
        scope="auth.login",
        message="Too many login attempts. Try again later.",
    )

    outcome = backend.login(body.email, body.password)
    if outcome is None:
        logger.warning("auth.login_failed", extra={"reason": "invalid_credentials"})
        raise AuthenticationRequiredError(code="invalid_credentials", message="Invalid credentials")

    if outcome.session_token:
        set_session_cookie(response, outcome.session_token)

    logger.info(
        "auth.login_ok",
        extra={"needs_company_pick": outcome.response.needs_company_pick},
    )
    return outcome.response


SIGNUP_LIMIT_MESSAGE = "Too many signups. Try again later."


def charge_signup_ip(request: Request, limiter: LimiterDep) -> None:
    """Charge the signup IP dimension before the body is validated.

    Route-level dependencies resolve ahead of body parsing, so malformed
    signups still spend the caller's IP budget.
    """
    enforce_rate_limits(
        limiter,
        [
            RateLimitDimension(
                "ip",
                f"auth:signup:ip:{client_ip(request)}",
                settings.rate_limit.signup_ip,
            ),
        ],
        scope="auth.signup",
        message=SIGNUP_LIMIT_MESSAGE,
    )


@router.post(
    "/signup",
    response_model=SessionResponse,
    dependencies=[Depends(charge_signup_ip)],
)
def signup(
    body: SignupRequest,
    response: Response,
    limiter: LimiterDep,
    backend: BackendDep,
) -> SessionResponse:
    """Create a company with its owner account and open a session.

    Throttled per client IP (see ``charge_signup_ip``) and per (hashed) email.
    """
    enforce_rate_limits(
        limiter,
        [
            RateLimitDimension(
                "email",
                f"auth:signup:email:{hash_key_part(body.email)}",
                settings.rate_limit.signup_email,
            ),
        ],
        scope="auth.signup",
        message=SIGNUP_LIMIT_MESSAGE,
    )

    grant = backend.signup(body)
    set_session_cookie(response, grant.session_token)

    logger.info(
        "auth.signup_ok",
        extra={"employee_id": grant.user.employee_id, "company_id": grant.user.company_id},
    )
    return SessionResponse(user=grant.user)


@router.post("/login/choose-company", response_model=SessionResponse)
def choose_company(
    body: ChooseCompanyRequest,
    request: Request,
    response: Response,
    limiter: LimiterDep,
    backend: BackendDep,
) -> SessionResponse:
    """Finish a multi-company login by picking one company.

    Throttled per (hashed) client IP combined with a prefix of the challenge
    token hash.
    """
    ip_part = hash_key_part(client_ip(request))
    token_part = hash_key_part(body.challenge_token, 16)
    enforce_rate_limits(
        limiter,
        [
            RateLimitDimension(
                "ip",
                f"auth:choose-company:ip:{ip_part}:t:{token_part}",
                settings.rate_limit.choose_company_ip,
            ),
        ],
        scope="auth.choose_company",
        message="Too many attempts. Try again later.",
    )

    grant = backend.choose_company(body.challenge_token, body.company_id)
    if grant is None:
        logger.warning("auth.choose_company_invalid")
        raise ValidationAppError(code="invalid_company_selection", message="Invalid company selection")

    set_session_cookie(response, grant.session_token)

    logger.info(
        "auth.choose_company_ok",
        extra={"employee_id": grant.user.employee_id, "company_id": grant.user.company_id},
    )
    return SessionResponse(user=grant.user)
