"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading

from app.adapters.rate_limit.base import RateLimitStore


class InMemoryRateLimitStore(RateLimitStore):
    """Counter store keeping ``(key, window_start_ms)`` counts in a dict.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will keep its
        own independent counters. Use the SQL store for shared deployments.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[tuple[str, int], int] = {}

    def upsert_and_increment(self, key: str, window_start_ms: int) -> int:
        bucket = (key, window_start_ms)
        with self._lock:
            count = self._counts.get(bucket, 0) + 1
            self._counts[bucket] = count
        return count

    def delete_before(self, window_start_ms: int) -> int:
        with self._lock:
            expired = [b for b in self._counts if b[1] < window_start_ms]
            for bucket in expired:
                del self._counts[bucket]
        return len(expired)

    def get_count(self, key: str, window_start_ms: int) -> int:
        """Return the stored count for a bucket (0 when absent)."""
        with self._lock:
            return self._counts.get((key, window_start_ms), 0)
