"""Identity backend port.

Password checking, sessions, invites and onboarding live outside this
service. Routes talk to them only through ``AbstractIdentityBackend`` so the
rate limit guards can run before any of those side effects happen.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.core.errors import IdentityUnavailableError
from app.schemas.auth import (
    InvitePreview,
    InviteRequest,
    InviteResponse,
    LoginResponse,
    OnboardingCompleteRequest,
    OnboardingCompleteResponse,
    SessionUser,
    SignupRequest,
)

logger = logging.getLogger(__name__)

PRIVILEGED_ROLES = frozenset({"ADMIN", "OWNER"})


@dataclass(frozen=True)
class Actor:
    """Authenticated caller resolved from a session token."""

    employee_id: int
    company_id: int
    role: str
    name: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


@dataclass(frozen=True)
class SessionGrant:
    """A freshly opened session: who it is for and the raw cookie token."""

    user: SessionUser
    session_token: str


@dataclass(frozen=True)
class LoginOutcome:
    """Login either opens a session or asks the caller to pick a company."""

    response: LoginResponse
    session_token: str | None = None


class AbstractIdentityBackend(ABC):
    """Interface for the account, session and invite collaborator."""

    @abstractmethod
    def resolve_session(self, session_token: str) -> Actor | None:
        """Return the actor for a live session token, or None."""
        ...

    @abstractmethod
    def login(self, email: str, password: str) -> LoginOutcome | None:
        """Verify credentials. Returns None when they do not match."""
        ...

    @abstractmethod
    def signup(self, request: SignupRequest) -> SessionGrant:
        """Create user, company and owner employee, then open a session.

        Raises:
            ValidationAppError: If the email is already registered.
        """
        ...

    @abstractmethod
    def choose_company(self, challenge_token: str, company_id: int) -> SessionGrant | None:
        """Open a session for the company picked after a multi-company login."""
        ...

    @abstractmethod
    def invite(self, actor: Actor, request: InviteRequest) -> InviteResponse:
        """Create an invited employee in the actor's company."""
        ...

    @abstractmethod
    def validate_invite(self, token: str) -> InvitePreview | None:
        """Return invite details when the token is live, else None."""
        ...

    @abstractmethod
    def complete_onboarding(self, request: OnboardingCompleteRequest) -> OnboardingCompleteResponse | None:
        """Activate an invited employee. Returns None for an unusable token."""
        ...


class UnconfiguredIdentityBackend(AbstractIdentityBackend):
    """Default backend used until a deployment wires a real one in."""

    def _unavailable(self) -> IdentityUnavailableError:
        logger.error("identity.backend_not_configured")
        return IdentityUnavailableError(
            code="identity_backend_unavailable",
            message="Identity backend is not configured",
        )

    def resolve_session(self, session_token: str) -> Actor | None:
        raise self._unavailable()

    def login(self, email: str, password: str) -> LoginOutcome | None:
        raise self._unavailable()

    def signup(self, request: SignupRequest) -> SessionGrant:
        raise self._unavailable()

    def choose_company(self, challenge_token: str, company_id: int) -> SessionGrant | None:
        raise self._unavailable()

    def invite(self, actor: Actor, request: InviteRequest) -> InviteResponse:
        raise self._unavailable()

    def validate_invite(self, token: str) -> InvitePreview | None:
        raise self._unavailable()

    def complete_onboarding(self, request: OnboardingCompleteRequest) -> OnboardingCompleteResponse | None:
        raise self._unavailable()


_backend: AbstractIdentityBackend = UnconfiguredIdentityBackend()


def set_identity_backend(backend: AbstractIdentityBackend) -> None:
    """Install the identity backend used by all routes."""

    global _backend
    _backend = backend


def get_identity_backend() -> AbstractIdentityBackend:
    """FastAPI dependency returning the installed identity backend."""

    return _backend
