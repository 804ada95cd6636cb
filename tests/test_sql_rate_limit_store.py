"""Tests for the SQL-backed counter store against SQLite."""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import Engine, func, select, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.schema import CreateTable

from app.adapters.rate_limit.sql import SqlRateLimitStore
from app.core.config import DatabaseSettings
from app.core.database import build_engine, create_schema
from app.core.errors import StoreUnavailableError
from app.core.rate_limit import RateLimiter
from app.models.rate_limit_bucket import RateLimitBucket


@pytest.fixture
def memory_engine() -> Engine:
    engine = build_engine(DatabaseSettings(url="sqlite:///:memory:"))
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path: Path) -> Engine:
    engine = build_engine(
        DatabaseSettings(url=f"sqlite:///{tmp_path / 'buckets.db'}", connect_timeout_seconds=30)
    )
    create_schema(engine)
    yield engine
    engine.dispose()


def _rows(engine: Engine) -> list[tuple[str, int, int]]:
    with Session(engine) as session:
        stmt = select(RateLimitBucket.key, RateLimitBucket.window_start_ms, RateLimitBucket.count)
        return [tuple(row) for row in session.execute(stmt.order_by(RateLimitBucket.key))]


def test_first_touch_creates_row_with_count_one(memory_engine: Engine) -> None:
    store = SqlRateLimitStore(memory_engine)

    assert store.upsert_and_increment("k", 60_000) == 1
    assert _rows(memory_engine) == [("k", 60_000, 1)]


def test_repeated_touch_increments_single_row(memory_engine: Engine) -> None:
    store = SqlRateLimitStore(memory_engine)

    counts = [store.upsert_and_increment("k", 60_000) for _ in range(4)]

    assert counts == [1, 2, 3, 4]
    assert _rows(memory_engine) == [("k", 60_000, 4)]


def test_windows_and_keys_get_separate_rows(memory_engine: Engine) -> None:
    store = SqlRateLimitStore(memory_engine)

    store.upsert_and_increment("a", 60_000)
    store.upsert_and_increment("a", 120_000)
    store.upsert_and_increment("b", 60_000)

    assert sorted(_rows(memory_engine)) == [("a", 60_000, 1), ("a", 120_000, 1), ("b", 60_000, 1)]


def test_unique_constraint_on_key_and_window(memory_engine: Engine) -> None:
    with Session(memory_engine) as session:
        session.add(RateLimitBucket(key="k", window_start_ms=0, count=1))
        session.commit()
        session.add(RateLimitBucket(key="k", window_start_ms=0, count=1))
        with pytest.raises(IntegrityError):
            session.commit()


def test_delete_before_prunes_only_elapsed_windows(memory_engine: Engine) -> None:
    store = SqlRateLimitStore(memory_engine)
    store.upsert_and_increment("k", 1_000)
    store.upsert_and_increment("k", 2_000)
    store.upsert_and_increment("k", 3_000)

    assert store.delete_before(3_000) == 2
    assert _rows(memory_engine) == [("k", 3_000, 1)]


def test_ping_succeeds_on_reachable_store(memory_engine: Engine) -> None:
    SqlRateLimitStore(memory_engine).ping()


def test_missing_table_surfaces_as_store_unavailable(memory_engine: Engine) -> None:
    store = SqlRateLimitStore(memory_engine)
    with memory_engine.begin() as conn:
        conn.execute(text("DROP TABLE rate_limit_buckets"))

    with pytest.raises(StoreUnavailableError) as exc_info:
        store.upsert_and_increment("k", 0)

    assert exc_info.value.code == "rate_limit_store_unavailable"


def test_unreachable_database_surfaces_as_store_unavailable(tmp_path: Path) -> None:
    engine = build_engine(DatabaseSettings(url=f"sqlite:///{tmp_path / 'missing' / 'nope.db'}"))
    store = SqlRateLimitStore(engine)

    with pytest.raises(StoreUnavailableError):
        store.ping()
    with pytest.raises(StoreUnavailableError):
        store.upsert_and_increment("k", 0)


def test_key_column_has_no_length_cap_on_postgresql() -> None:
    ddl = str(CreateTable(RateLimitBucket.__table__).compile(dialect=postgresql.dialect()))

    assert "key TEXT NOT NULL" in ddl


def test_long_keys_are_counted_like_short_ones(memory_engine: Engine) -> None:
    limiter = RateLimiter(SqlRateLimitStore(memory_engine), clock=lambda: 1_000_000.0)
    key = "admin:invite:actor:" + "k" * 300

    results = [limiter.check(key, 60, 1) for _ in range(2)]

    assert [r.ok for r in results] == [True, False]
    assert _rows(memory_engine) == [(key, 999_960_000, 2)]


def test_unsupported_dialect_is_rejected() -> None:
    engine = SimpleNamespace(dialect=SimpleNamespace(name="oracle"))

    with pytest.raises(ValueError):
        SqlRateLimitStore(engine)  # type: ignore[arg-type]


def test_limiter_over_sql_store_enforces_limit(memory_engine: Engine) -> None:
    limiter = RateLimiter(SqlRateLimitStore(memory_engine), clock=lambda: 1_000_000.0)

    results = [limiter.check("auth:login:email:abc", 300, 3) for _ in range(5)]

    assert [r.ok for r in results] == [True, True, True, False, False]
    assert [r.count for r in results] == [1, 2, 3, 4, 5]


def test_concurrent_increments_are_all_applied(file_engine: Engine) -> None:
    store = SqlRateLimitStore(file_engine)
    calls = 60

    with ThreadPoolExecutor(max_workers=8) as pool:
        counts = list(pool.map(lambda _: store.upsert_and_increment("hot", 0), range(calls)))

    assert sorted(counts) == list(range(1, calls + 1))
    with Session(file_engine) as session:
        assert session.scalar(select(func.count()).select_from(RateLimitBucket)) == 1
        assert session.scalar(select(RateLimitBucket.count)) == calls
