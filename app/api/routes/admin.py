from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from app.core.auth import require_admin
from app.core.config import settings
from app.core.rate_limit import (
    RateLimitDimension,
    RateLimiter,
    client_ip,
    enforce_rate_limits,
    get_rate_limiter,
)
from app.schemas.auth import InviteRequest, InviteResponse
from app.services.identity import AbstractIdentityBackend, Actor, get_identity_backend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/invite", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
def invite_employee(
    body: InviteRequest,
    request: Request,
    actor: Annotated[Actor, Depends(require_admin)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    backend: Annotated[AbstractIdentityBackend, Depends(get_identity_backend)],
) -> InviteResponse:
    """Invite an employee into the actor's company.

    Throttled per client IP and per inviting actor.
    """
    policies = settings.rate_limit
    enforce_rate_limits(
        limiter,
        [
            RateLimitDimension("ip", f"admin:invite:ip:{client_ip(request)}", policies.invite_ip),
            RateLimitDimension(
                "actor",
                f"admin:invite:actor:{actor.company_id}:{actor.employee_id}",
                policies.invite_actor,
            ),
        ],
        scope="admin.invite",
        message="Too many invites. Try again later.",
    )

    invite = backend.invite(actor, body)
    logger.info(
        "admin.invite_ok",
        extra={
            "company_id": actor.company_id,
            "actor_id": actor.employee_id,
            "employee_id": invite.employee_id,
        },
    )
    return invite
