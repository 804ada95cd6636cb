"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before any app import so the global settings
object is built for tests: in-memory counter store, in-memory SQLite.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DATABASE_CREATE_SCHEMA", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore  # noqa: E402
from app.core.app_factory import create_app  # noqa: E402
from app.core.rate_limit import RateLimiter, get_rate_limiter  # noqa: E402
from app.schemas.auth import (  # noqa: E402
    CompanyChoice,
    InvitePreview,
    InviteResponse,
    LoginResponse,
    OnboardingCompleteResponse,
    SessionUser,
)
from app.services.identity import (  # noqa: E402
    AbstractIdentityBackend,
    Actor,
    LoginOutcome,
    SessionGrant,
    get_identity_backend,
)

FIXED_NOW = 1_000_000.0


class FakeIdentityBackend(AbstractIdentityBackend):
    """Identity backend recording calls, with a few canned accounts."""

    PASSWORD = "correct-horse"
    ADMIN_TOKEN = "admin-session"
    EMPLOYEE_TOKEN = "employee-session"
    INVITE_TOKEN = "invite-token"

    def __init__(self) -> None:
        self.calls: list[str] = []

    def resolve_session(self, session_token: str) -> Actor | None:
        if session_token == self.ADMIN_TOKEN:
            return Actor(employee_id=1, company_id=10, role="ADMIN", name="Ada")
        if session_token == self.EMPLOYEE_TOKEN:
            return Actor(employee_id=2, company_id=10, role="EMPLOYEE", name="Eve")
        return None

    def login(self, email: str, password: str) -> LoginOutcome | None:
        self.calls.append("login")
        if password != self.PASSWORD:
            return None
        if email.startswith("multi"):
            return LoginOutcome(
                response=LoginResponse(
                    needs_company_pick=True,
                    companies=[
                        CompanyChoice(company_id=10, company_name="Acme"),
                        CompanyChoice(company_id=20, company_name="Globex"),
                    ],
                    challenge_token="challenge-abc",
                )
            )
        user = SessionUser(employee_id=1, company_id=10, role="OWNER", name="Ada", company_name="Acme")
        return LoginOutcome(response=LoginResponse(user=user), session_token="new-session")

    def signup(self, request) -> SessionGrant:
        self.calls.append("signup")
        user = SessionUser(
            employee_id=5,
            company_id=50,
            role="OWNER",
            name=request.name,
            company_name=request.company_name,
        )
        return SessionGrant(user=user, session_token="signup-session")

    def choose_company(self, challenge_token: str, company_id: int) -> SessionGrant | None:
        self.calls.append("choose_company")
        if challenge_token != "challenge-abc" or company_id not in (10, 20):
            return None
        user = SessionUser(employee_id=1, company_id=company_id, role="EMPLOYEE")
        return SessionGrant(user=user, session_token="picked-session")

    def invite(self, actor: Actor, request) -> InviteResponse:
        self.calls.append("invite")
        return InviteResponse(
            employee_id=99,
            email=request.email,
            role=request.role,
            invite_url="http://localhost:3000/onboarding?token=xyz",
            expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )

    def validate_invite(self, token: str) -> InvitePreview | None:
        self.calls.append("validate_invite")
        if token != self.INVITE_TOKEN:
            return None
        return InvitePreview(email="new@example.com", name="New", company_name="Acme")

    def complete_onboarding(self, request) -> OnboardingCompleteResponse | None:
        self.calls.append("complete_onboarding")
        if request.token != self.INVITE_TOKEN:
            return None
        return OnboardingCompleteResponse(employee_id=99, name=request.name, email="new@example.com")


@pytest.fixture
def clock() -> Mock:
    """Controllable time source returning FIXED_NOW until changed."""
    return Mock(return_value=FIXED_NOW)


@pytest.fixture
def store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture
def limiter(store: InMemoryRateLimitStore, clock: Mock) -> RateLimiter:
    return RateLimiter(store, clock=clock)


@pytest.fixture
def identity_backend() -> FakeIdentityBackend:
    return FakeIdentityBackend()


@pytest.fixture
def app(limiter: RateLimiter, identity_backend: FakeIdentityBackend) -> FastAPI:
    application = create_app()
    application.dependency_overrides[get_rate_limiter] = lambda: limiter
    application.dependency_overrides[get_identity_backend] = lambda: identity_backend
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
