"""Operational maintenance commands.

Rows for elapsed rate limit windows are inert; the limiter never deletes
them. Run this periodically (cron, scheduled job) to keep the table small:

    python -m app.maintenance prune --older-than-seconds 172800
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Sequence

from app.adapters.rate_limit.base import RateLimitStore
from app.core.config import RateLimitPolicy, settings
from app.core.database import create_schema, dispose_engine, get_engine
from app.core.errors import StoreUnavailableError
from app.core.logging import configure_logging
from app.core.rate_limit import build_rate_limit_store

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 2 * 24 * 60 * 60


def prune_expired_buckets(store: RateLimitStore, older_than_seconds: int, now: float | None = None) -> int:
    """Delete counters whose window started more than ``older_than_seconds`` ago.

    The retention must exceed the longest configured window, otherwise live
    counters would be dropped and callers would get a fresh budget early.

    Returns:
        Number of counters removed.
    """
    if older_than_seconds < 1:
        raise ValueError("older_than_seconds must be >= 1")

    current = time.time() if now is None else now
    cutoff_ms = int((current - older_than_seconds) * 1000)
    removed = store.delete_before(cutoff_ms)
    logger.info(
        "rate_limit.pruned",
        extra={"removed": removed, "cutoff_ms": cutoff_ms, "older_than_s": older_than_seconds},
    )
    return removed


def _longest_window_seconds() -> int:
    policies = [
        getattr(settings.rate_limit, name)
        for name in type(settings.rate_limit).model_fields
        if isinstance(getattr(settings.rate_limit, name), RateLimitPolicy)
    ]
    return max((p.window_seconds for p in policies), default=0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m app.maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    prune = sub.add_parser("prune", help="Delete rate limit counters for long-elapsed windows")
    prune.add_argument(
        "--older-than-seconds",
        type=int,
        default=DEFAULT_RETENTION_SECONDS,
        help="Retention; must exceed the longest configured window (default: 2 days)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.log)

    if args.command == "prune":
        longest = _longest_window_seconds()
        if args.older_than_seconds <= longest:
            logger.error(
                "rate_limit.prune_retention_too_short",
                extra={"older_than_s": args.older_than_seconds, "longest_window_s": longest},
            )
            return 2

        backend = settings.rate_limit.backend.lower()
        if backend != "sql":
            # In-memory counters exist only inside the API process
            logger.error("rate_limit.prune_unsupported_backend", extra={"backend": backend})
            return 2

        try:
            if settings.database.create_schema:
                create_schema(get_engine())
            prune_expired_buckets(build_rate_limit_store(backend), args.older_than_seconds)
        except StoreUnavailableError:
            return 1
        finally:
            dispose_engine()

    return 0


if __name__ == "__main__":
    sys.exit(main())
