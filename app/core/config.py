"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_database_settings() -> "DatabaseSettings":
    return DatabaseSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    session_cookie_name: str = Field(
        "cph_session",
        description="Cookie carrying the opaque session token",
    )
    session_days: int = Field(
        30,
        description="Session cookie lifetime in days",
        ge=1,
    )
    secure_cookies: bool = Field(
        False,
        description="Set the Secure flag on session cookies (enable in production)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class DatabaseSettings(BaseSettings):
    """Relational store used for the shared rate limit counters."""

    url: str = Field(
        "sqlite:///./work_hours.db",
        description="SQLAlchemy database URL (PostgreSQL or SQLite)",
    )
    echo: bool = Field(
        False,
        description="Log every SQL statement emitted by SQLAlchemy",
    )
    connect_timeout_seconds: int = Field(
        5,
        description="Driver connect/busy timeout; expiry surfaces as store unavailable",
        ge=1,
    )
    statement_timeout_ms: int = Field(
        5000,
        description="PostgreSQL statement_timeout per connection; 0 disables",
        ge=0,
    )
    create_schema: bool = Field(
        True,
        description="Create missing tables on startup",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        case_sensitive=False,
    )


class RateLimitPolicy(BaseModel):
    """Fixed-window quota for one throttled dimension."""

    limit: int = Field(..., ge=1)
    window_seconds: int = Field(..., ge=1)


class RateLimitSettings(BaseSettings):
    """Rate limiting switches and per-dimension policies.

    Policies can be overridden with JSON, e.g.
    ``RATE_LIMIT_LOGIN_EMAIL='{"limit": 5, "window_seconds": 60}'``.
    """

    enabled: bool = Field(
        True,
        description="Enable rate limiting on guarded endpoints",
    )
    backend: str = Field(
        "sql",
        description="Counter store backend: 'sql' (shared) or 'memory' (single process)",
    )

    login_ip: RateLimitPolicy = RateLimitPolicy(limit=20, window_seconds=300)
    login_email: RateLimitPolicy = RateLimitPolicy(limit=10, window_seconds=300)
    signup_ip: RateLimitPolicy = RateLimitPolicy(limit=10, window_seconds=900)
    signup_email: RateLimitPolicy = RateLimitPolicy(limit=3, window_seconds=86400)
    choose_company_ip: RateLimitPolicy = RateLimitPolicy(limit=20, window_seconds=300)
    invite_ip: RateLimitPolicy = RateLimitPolicy(limit=30, window_seconds=600)
    invite_actor: RateLimitPolicy = RateLimitPolicy(limit=20, window_seconds=600)
    onboarding_validate_ip: RateLimitPolicy = RateLimitPolicy(limit=30, window_seconds=600)
    onboarding_complete_ip: RateLimitPolicy = RateLimitPolicy(limit=10, window_seconds=600)
    onboarding_complete_token: RateLimitPolicy = RateLimitPolicy(limit=5, window_seconds=600)

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="'json' or 'plain'")
    output: str = Field("stdout", description="'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, description="Rotate file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    database: DatabaseSettings = Field(default_factory=_build_database_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
