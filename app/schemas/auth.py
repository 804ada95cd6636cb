"""Pydantic schemas for the guarded auth, invite and onboarding endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _normalize_email(value: str) -> str:
    email = value.strip().lower()
    if "@" not in email:
        raise ValueError("a valid email is required")
    return email


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class SignupRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=80)
    company_name: str = Field(..., min_length=2, max_length=120)
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=8)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("name", "company_name")
    @classmethod
    def strip_names(cls, value: str) -> str:
        return value.strip()


class ChooseCompanyRequest(BaseModel):
    challenge_token: str = Field(..., min_length=1)
    company_id: int


class InviteRequest(BaseModel):
    """Invite body; unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., max_length=320)
    role: Literal["EMPLOYEE", "ADMIN"]
    name: str | None = Field(default=None, min_length=1, max_length=80)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class OnboardingCompleteRequest(BaseModel):
    token: str = Field(..., min_length=1)
    name: str | None = Field(default=None, max_length=80)
    password: str | None = Field(default=None, min_length=8)


class SessionUser(BaseModel):
    """Identity of the employee a session was opened for."""

    employee_id: int
    company_id: int
    role: str
    name: str | None = None
    company_name: str | None = None


class CompanyChoice(BaseModel):
    company_id: int
    company_name: str


class LoginResponse(BaseModel):
    """Either a session user, or a list of companies to pick from."""

    needs_company_pick: bool = False
    user: SessionUser | None = None
    companies: List[CompanyChoice] = Field(default_factory=list)
    challenge_token: str | None = Field(
        default=None,
        description="Short-lived token to submit to /auth/login/choose-company.",
    )


class SessionResponse(BaseModel):
    user: SessionUser


class InviteResponse(BaseModel):
    employee_id: int
    email: str
    role: str
    invite_url: str
    expires_at: datetime


class InvitePreview(BaseModel):
    email: str
    name: str | None = None
    company_name: str | None = None
    expires_at: datetime | None = None


class OnboardingCompleteResponse(BaseModel):
    employee_id: int
    name: str | None = None
    email: str
