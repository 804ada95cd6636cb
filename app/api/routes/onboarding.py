"""Invite validation and onboarding completion.

Invite tokens are bearer secrets, so both endpoints are throttled per client
IP, and completion is additionally throttled per (hashed) token.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request

from app.core.config import settings
from app.core.errors import ValidationAppError
from app.core.rate_limit import (
    RateLimitDimension,
    RateLimiter,
    client_ip,
    enforce_rate_limits,
    get_rate_limiter,
    hash_key_part,
)
from app.schemas.auth import InvitePreview, OnboardingCompleteRequest, OnboardingCompleteResponse
from app.services.identity import AbstractIdentityBackend, get_identity_backend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["Onboarding"])

LimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
BackendDep = Annotated[AbstractIdentityBackend, Depends(get_identity_backend)]


@router.get("/validate", response_model=InvitePreview)
def validate_invite(
    request: Request,
    limiter: LimiterDep,
    backend: BackendDep,
    token: Annotated[str, Query(min_length=1)],
) -> InvitePreview:
    """Check an invite link before showing the onboarding form."""
    enforce_rate_limits(
        limiter,
        [
            RateLimitDimension(
                "ip",
                f"onboarding:validate:ip:{hash_key_part(client_ip(request))}",
                settings.rate_limit.onboarding_validate_ip,
            ),
        ],
        scope="onboarding.validate",
    )

    preview = backend.validate_invite(token)
    if preview is None:
        raise ValidationAppError(code="invalid_invite", message="Invite link is invalid or has expired")
    return preview


@router.post("/complete", response_model=OnboardingCompleteResponse)
def complete_onboarding(
    body: OnboardingCompleteRequest,
    request: Request,
    limiter: LimiterDep,
    backend: BackendDep,
) -> OnboardingCompleteResponse:
    """Activate an invited employee (single-use token)."""
    policies = settings.rate_limit
    enforce_rate_limits(
        limiter,
        [
            RateLimitDimension(
                "ip",
                f"onboarding:complete:ip:{hash_key_part(client_ip(request))}",
                policies.onboarding_complete_ip,
            ),
            RateLimitDimension(
                "token",
                f"onboarding:complete:token:{hash_key_part(body.token)}",
                policies.onboarding_complete_token,
            ),
        ],
        scope="onboarding.complete",
    )

    completed = backend.complete_onboarding(body)
    if completed is None:
        raise ValidationAppError(code="invalid_invite", message="Invite link is invalid or has expired")

    logger.info("onboarding.complete_ok", extra={"employee_id": completed.employee_id})
    return completed
