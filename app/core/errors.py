"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationRequiredError(AppError):
    """Raised when no valid caller identity accompanies the request."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class RateLimitAppError(AppError):
    """Raised by guarded endpoints when a quota dimension is exhausted.

    ``details["retry_after"]`` carries the seconds until the window resets.
    """


class StoreUnavailableError(AppError):
    """Raised when the shared counter store cannot be reached or times out."""


class IdentityUnavailableError(AppError):
    """Raised when no identity backend is wired into the application."""
