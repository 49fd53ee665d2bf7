"""Bid model: one row per accepted bid, append-only."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from auction_engine.core.database import Base

if TYPE_CHECKING:
    from auction_engine.models.auction import Auction


class Bid(Base):
    """Accepted bid in an auction's ledger. Never updated or deleted."""

    __tablename__ = "bids"

    bid_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    auction_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("auctions.auction_id"),
        nullable=False,
    )
    bidder_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
    )
    sequence_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Relationships
    auction: Mapped["Auction"] = relationship("Auction", back_populates="bids")

    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_bid_amount_positive"),
        CheckConstraint("sequence_number > 0", name="chk_bid_sequence_positive"),
        # Ledger order is unique per auction; a racing duplicate append fails here
        Index("uq_bids_auction_sequence", "auction_id", "sequence_number", unique=True),
    )
