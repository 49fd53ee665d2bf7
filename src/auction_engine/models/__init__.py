"""SQLAlchemy ORM models."""

from auction_engine.models.auction import Auction, AuctionStatus
from auction_engine.models.base import TimestampMixin
from auction_engine.models.bid import Bid

__all__ = [
    "TimestampMixin",
    "Auction",
    "AuctionStatus",
    "Bid",
]
