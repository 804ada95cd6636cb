"""SQLAlchemy engine and session wiring.

The relational database is the shared store behind the rate limit counters.
PostgreSQL is the production target; SQLite is supported for local runs and
tests (it has the same ``ON CONFLICT`` upsert semantics).
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import DatabaseSettings, settings
from app.core.errors import StoreUnavailableError
from app.models.base import Base

# Registers the table on Base.metadata
from app.models import rate_limit_bucket  # noqa: F401

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def build_engine(db_settings: DatabaseSettings) -> Engine:
    """Create an engine with driver timeouts taken from configuration.

    Args:
        db_settings: Database settings (URL, echo, timeouts).

    Returns:
        Configured SQLAlchemy engine.
    """

    url = db_settings.url
    connect_args: dict[str, Any] = {}
    engine_kwargs: dict[str, Any] = {"echo": db_settings.echo}

    if url.startswith("sqlite"):
        # Busy timeout: concurrent writers wait for the lock instead of failing fast
        connect_args["timeout"] = db_settings.connect_timeout_seconds
        connect_args["check_same_thread"] = False
        if url in ("sqlite://", "sqlite:///:memory:"):
            engine_kwargs["poolclass"] = StaticPool
    else:
        connect_args["connect_timeout"] = db_settings.connect_timeout_seconds
        if db_settings.statement_timeout_ms:
            connect_args["options"] = f"-c statement_timeout={db_settings.statement_timeout_ms}"
        engine_kwargs["pool_pre_ping"] = True

    engine = create_engine(url, connect_args=connect_args, **engine_kwargs)
    if engine.dialect.name == "sqlite":
        _use_immediate_transactions(engine)
    return engine


def _use_immediate_transactions(engine: Engine) -> None:
    """Make SQLite take the write lock at BEGIN.

    A deferred transaction that reads before writing can hit SQLITE_BUSY
    without the busy timeout being honoured when another writer is
    committing; BEGIN IMMEDIATE queues writers on the timeout instead.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_schema(engine: Engine) -> None:
    """Create any missing tables.

    Raises:
        StoreUnavailableError: If the database cannot be reached.
    """

    try:
        Base.metadata.create_all(engine)
    except SQLAlchemyError as exc:
        logger.error(
            "database.schema_failed",
            extra={"dialect": engine.dialect.name, "error_type": type(exc).__name__},
        )
        raise StoreUnavailableError(
            code="rate_limit_store_unavailable",
            message="Rate limit store is unavailable",
        ) from exc
    logger.info("database.schema_ready", extra={"dialect": engine.dialect.name})


def get_engine() -> Engine:
    """Return the process-wide engine, creating it on first use."""

    global _engine
    if _engine is None:
        _engine = build_engine(settings.database)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Return the process-wide session factory bound to the engine."""

    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


def dispose_engine() -> None:
    """Dispose pooled connections and forget the cached engine."""

    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
