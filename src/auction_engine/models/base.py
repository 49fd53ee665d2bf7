"""Shared column helpers for ORM models.

All timestamps are stored as TIMESTAMP WITHOUT TIME ZONE holding UTC. Values
go in through ``to_db_time`` and come back out through ``ensure_utc``.
"""

from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from auction_engine.core.clock import ensure_utc


def to_db_time(value: datetime) -> datetime:
    """Convert an aware instant to the naive UTC form the columns store."""
    return ensure_utc(value).replace(tzinfo=None)


class TimestampMixin:
    """Row bookkeeping set by the database, never by the engine."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
