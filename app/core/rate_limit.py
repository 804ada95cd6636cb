"""Fixed-window rate limiting for guarded endpoints.

This module wires the counter store adapters into the HTTP layer.

Design goals:
- Opaque keys: callers encode route and dimension (ip, email, actor) into
  the key; the limiter knows nothing about login vs. signup vs. invite.
- Stateless limiter: every count lives in the store, so any number of
  workers can share one quota.
- Fail closed: store errors propagate and the guarded operation is aborted.

Rate limiting strategy:
- Windows are epoch-aligned, ``floor(now / window) * window``, so every
  caller in the same interval shares a bucket regardless of arrival time.
- Every call is charged, including rejected ones.
- Boundary bursts of up to ``2 * limit`` across a window edge are accepted.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

from fastapi import Request

from app.adapters.rate_limit.base import RateLimitResult, RateLimitStore
from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.adapters.rate_limit.sql import SqlRateLimitStore
from app.core.config import RateLimitPolicy, settings
from app.core.database import get_engine, get_session_factory
from app.core.errors import RateLimitAppError

logger = logging.getLogger(__name__)

MAX_IP_LENGTH = 64


def window_start_ms(now_ms: int, window_seconds: int) -> int:
    """Align a timestamp to the start of its fixed window.

    Args:
        now_ms: Epoch milliseconds.
        window_seconds: Window size in seconds.

    Returns:
        Epoch milliseconds of the window start.
    """

    size_ms = window_seconds * 1000
    return (now_ms // size_ms) * size_ms


def _ms_to_datetime(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)


class RateLimiter:
    """Fixed-window limiter over a shared counter store.

    The limiter holds no locks and caches nothing between calls; the store's
    atomic upsert is the only concurrency mechanism.
    """

    def __init__(
        self,
        store: RateLimitStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Counter store with an atomic increment-or-create primitive.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._clock = clock

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def check(self, key: str, window_seconds: int, limit: int) -> RateLimitResult:
        """Charge one event against ``key`` and report whether it is in budget.

        The charge happens unconditionally, so calls past the limit keep
        counting within the window. The limit is inclusive: the ``limit``-th
        call is allowed, the next one is not.

        Args:
            key: Opaque caller-built key (already hashed/truncated).
            window_seconds: Fixed window size in seconds.
            limit: Maximum chargeable events per window.

        Returns:
            RateLimitResult for the current window.

        Raises:
            ValueError: If arguments are invalid (nothing is charged).
            StoreUnavailableError: If the counter store cannot be reached.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")
        if limit < 1:
            raise ValueError("limit must be >= 1")

        now_ms = int(self._clock() * 1000)
        start_ms = window_start_ms(now_ms, window_seconds)
        count = self._store.upsert_and_increment(key, start_ms)

        return RateLimitResult(
            ok=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=_ms_to_datetime(start_ms + window_seconds * 1000),
            count=count,
        )

    def now(self) -> datetime:
        """Current time according to the limiter's clock (UTC)."""
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)


_limiter: RateLimiter | None = None
_limiter_backend: str | None = None


def build_rate_limit_store(backend: str) -> RateLimitStore:
    """Construct the configured counter store.

    Args:
        backend: ``"sql"`` or ``"memory"``.

    Raises:
        ValueError: For an unknown backend name.
    """

    if backend == "sql":
        return SqlRateLimitStore(get_engine(), get_session_factory())
    if backend == "memory":
        return InMemoryRateLimitStore()
    raise ValueError(f"unknown rate limit backend: {backend}")


def get_rate_limiter() -> RateLimiter:
    """Return a process-wide rate limiter instance.

    The limiter itself is stateless, but the in-memory store is not, so the
    instance is cached in-module. If the backend setting changes (primarily
    in tests), the limiter is rebuilt.

    Returns:
        RateLimiter: Configured limiter instance.
    """

    global _limiter, _limiter_backend

    backend = settings.rate_limit.backend.lower()
    if _limiter is None or _limiter_backend != backend:
        _limiter = RateLimiter(build_rate_limit_store(backend))
        _limiter_backend = backend

    return _limiter


def reset_rate_limiter() -> None:
    """Forget the cached limiter so the next call rebuilds it."""

    global _limiter, _limiter_backend
    _limiter = None
    _limiter_backend = None


def hash_key_part(value: str, length: int = 32) -> str:
    """Hash and truncate a free-form key component.

    Keeps key cardinality bounded and keeps raw emails, IPs and tokens out of
    the counter table.
    """

    return hashlib.sha256(value.encode()).hexdigest()[:length]


def client_ip(request: Request) -> str:
    """Best-effort client IP, truncated to a bounded length.

    Prefers the first ``X-Forwarded-For`` hop, then ``X-Real-IP``, then the
    socket peer.
    """

    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else ""
    if not ip:
        ip = (request.headers.get("x-real-ip") or "").strip()
    if not ip and request.client:
        ip = request.client.host
    return (ip or "unknown")[:MAX_IP_LENGTH]


def retry_after_seconds(reset_at: datetime, now: datetime) -> int:
    """Whole seconds until ``reset_at``, rounded up and never negative."""

    return max(0, math.ceil((reset_at - now).total_seconds()))


@dataclass(frozen=True)
class RateLimitDimension:
    """One independently throttled dimension of a guarded operation.

    Attributes:
        name: Dimension label for logs (e.g., ``"ip"``, ``"email"``).
        key: Opaque limiter key, already hashed/truncated by the caller.
        policy: Quota applied to this key.
    """

    name: str
    key: str
    policy: RateLimitPolicy


def enforce_rate_limits(
    limiter: RateLimiter,
    dimensions: Sequence[RateLimitDimension],
    *,
    scope: str,
    message: str = "Too many requests. Try again later.",
) -> None:
    """Check each dimension in order and reject on the first exhausted one.

    Dimensions after a failing one are not charged. The rejection does not
    reveal which dimension tripped; the log record does.

    Args:
        limiter: Rate limiter to charge.
        dimensions: Dimensions to check, in order.
        scope: Operation name used in log records.
        message: User-facing rejection message.

    Raises:
        RateLimitAppError: When any dimension is over its limit.
        StoreUnavailableError: If the counter store cannot be reached.
    """

    if not settings.rate_limit.enabled:
        return

    for dimension in dimensions:
        policy = dimension.policy
        result = limiter.check(dimension.key, policy.window_seconds, policy.limit)
        key_hash = hash_key_part(dimension.key, 16)

        if result.ok:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "scope": scope,
                    "dimension": dimension.name,
                    "key_hash": key_hash,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "window_s": policy.window_seconds,
                },
            )
            continue

        retry_after = retry_after_seconds(result.reset_at, limiter.now())
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "scope": scope,
                "dimension": dimension.name,
                "key_hash": key_hash,
                "limit": result.limit,
                "count": result.count,
                "window_s": policy.window_seconds,
                "retry_after_s": retry_after,
            },
        )
        raise RateLimitAppError(
            code="rate_limit",
            message=message,
            details={"retry_after": retry_after},
        )
