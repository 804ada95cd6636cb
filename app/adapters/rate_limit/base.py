"""Rate limit counter store interfaces.

The limiter depends on this abstraction (not the concrete implementation)
so storage backends can be swapped (SQL, in-memory) without touching the
HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        ok: Whether the caller is still within budget for this window.
        limit: Max chargeable events per window.
        remaining: Remaining events in the current window (0 when exhausted).
        reset_at: UTC instant at which the current window ends.
        count: Counter value after this call was charged.
    """

    ok: bool
    limit: int
    remaining: int
    reset_at: datetime
    count: int


class RateLimitStore(ABC):
    """Interface for shared per-key, per-window counters."""

    @abstractmethod
    def upsert_and_increment(self, key: str, window_start_ms: int) -> int:
        """Atomically create or increment the ``(key, window_start_ms)`` counter.

        Args:
            key: Opaque caller-built key.
            window_start_ms: Epoch milliseconds of the fixed window start.

        Returns:
            The counter value including this increment.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def delete_before(self, window_start_ms: int) -> int:
        """Delete counters whose window started before ``window_start_ms``.

        Returns:
            Number of counters removed.
        """
        raise NotImplementedError

    def ping(self) -> None:
        """Verify the store is reachable. Raises StoreUnavailableError if not."""
        return None
