"""Auction model for timed item sales."""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auction_engine.core.database import Base
from auction_engine.models.base import TimestampMixin

if TYPE_CHECKING:
    from auction_engine.models.bid import Bid


class AuctionStatus(str, Enum):
    """Lifecycle states of an auction."""

    SCHEDULED = "scheduled"
    OPEN = "open"
    CLOSED = "closed"
    SETTLED = "settled"
    CANCELLED = "cancelled"


class Auction(Base, TimestampMixin):
    """Auction row. ``current_high_bid`` and ``current_high_bidder_id`` cache the ledger head."""

    __tablename__ = "auctions"

    auction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )
    # Reference into the item listing service, not a local foreign key
    item_ref: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )
    starting_price: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    current_high_bid: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    current_high_bidder_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    min_increment: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
    )
    start_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    end_time: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AuctionStatus.SCHEDULED.value,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Relationships
    bids: Mapped[List["Bid"]] = relationship(
        "Bid", back_populates="auction", order_by="Bid.sequence_number"
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="chk_auction_time"),
        CheckConstraint("starting_price > 0", name="chk_auction_starting_price_positive"),
        CheckConstraint("current_high_bid >= starting_price", name="chk_auction_high_bid_floor"),
        CheckConstraint("min_increment IS NULL OR min_increment > 0", name="chk_auction_min_increment"),
        Index("idx_auctions_status", "status"),
        Index("idx_auctions_time", "start_time", "end_time"),
    )
