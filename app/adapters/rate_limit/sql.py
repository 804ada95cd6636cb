"""SQL-backed counter store (shared across processes).

Atomic increments via INSERT ... ON CONFLICT DO UPDATE ... RETURNING ensure
correctness under concurrent requests without application-level locks or
read-modify-write. The unique constraint on ``(key, window_start_ms)`` is
what prevents duplicate rows on concurrent first-touch of a window.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, delete, func, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.adapters.rate_limit.base import RateLimitStore
from app.core.errors import StoreUnavailableError
from app.models.rate_limit_bucket import RateLimitBucket

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SqlRateLimitStore(RateLimitStore):
    """Counter store persisting buckets in the ``rate_limit_buckets`` table."""

    def __init__(self, engine: Engine, session_factory: sessionmaker[Session] | None = None) -> None:
        """Initialize the store.

        Args:
            engine: Engine for a PostgreSQL or SQLite database.
            session_factory: Optional session factory bound to ``engine``.

        Raises:
            ValueError: If the dialect has no native upsert support here.
        """
        dialect = engine.dialect.name
        if dialect not in _INSERT_BY_DIALECT:
            raise ValueError(f"unsupported dialect for atomic upsert: {dialect}")

        self._engine = engine
        self._insert = _INSERT_BY_DIALECT[dialect]
        self._session_factory = session_factory or sessionmaker(bind=engine, expire_on_commit=False)

    def upsert_and_increment(self, key: str, window_start_ms: int) -> int:
        stmt = self._insert(RateLimitBucket).values(
            key=key,
            window_start_ms=window_start_ms,
            count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimitBucket.key, RateLimitBucket.window_start_ms],
            set_={
                "count": RateLimitBucket.count + 1,
                "updated_at": func.now(),
            },
        ).returning(RateLimitBucket.count)

        try:
            with self._session_factory.begin() as session:
                return int(session.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise self._unavailable("upsert_and_increment", exc) from exc

    def delete_before(self, window_start_ms: int) -> int:
        stmt = delete(RateLimitBucket).where(RateLimitBucket.window_start_ms < window_start_ms)
        try:
            with self._session_factory.begin() as session:
                result = session.execute(stmt)
                return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise self._unavailable("delete_before", exc) from exc

    def ping(self) -> None:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise self._unavailable("ping", exc) from exc

    def _unavailable(self, operation: str, exc: SQLAlchemyError) -> StoreUnavailableError:
        logger.error(
            "rate_limit.store_unavailable",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "dialect": self._engine.dialect.name,
            },
        )
        return StoreUnavailableError(
            code="rate_limit_store_unavailable",
            message="Rate limit store is unavailable",
            details={"context": {"operation": operation, "error_type": type(exc).__name__}},
        )
