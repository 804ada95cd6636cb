"""Rate limit counter table.

Each row is the number of chargeable events for one caller-built key in one
fixed window. ``(key, window_start_ms)`` is unique, which is what lets the
store use a single ``INSERT ... ON CONFLICT DO UPDATE`` for atomic increments
under concurrent first-touch of a new window.

Rows for elapsed windows are never updated again; they are pruned by the
maintenance command, not by the limiter.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class RateLimitBucket(Base):
    __tablename__ = "rate_limit_buckets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    window_start_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("key", "window_start_ms", name="uq_rate_limit_buckets_key_window"),
        Index("ix_rate_limit_buckets_window_start_ms", "window_start_ms"),
    )

    def __repr__(self) -> str:
        return (
            f"<RateLimitBucket key={self.key!s:.24} "
            f"window_start_ms={self.window_start_ms} count={self.count}>"
        )
