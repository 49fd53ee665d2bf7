"""WebSocket event schemas for real-time auction updates."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class OutbidData(BaseModel):
    """Data payload for outbid event."""

    auction_id: str
    new_amount: int
    timestamp: datetime


class OutbidEvent(BaseModel):
    """Outbid event pushed to the bidder who just lost the lead."""

    event: Literal["outbid"] = "outbid"
    data: OutbidData


class BidAcceptedData(BaseModel):
    """Data payload for bid accepted event."""

    bid_id: str
    auction_id: str
    bidder_id: str
    amount: int
    sequence_number: int
    timestamp: datetime


class BidAcceptedEvent(BaseModel):
    """Bid accepted event broadcast to everyone watching the auction."""

    event: Literal["bid_accepted"] = "bid_accepted"
    data: BidAcceptedData


class AuctionStatusData(BaseModel):
    """Data payload for auction status change events."""

    auction_id: str
    status: str
    current_high_bid: int
    current_high_bidder_id: str | None = None
    timestamp: datetime


class AuctionStatusEvent(BaseModel):
    """Status change event broadcast when the lifecycle moves."""

    event: Literal[
        "auction_opened", "auction_closed", "auction_cancelled", "auction_settled"
    ]
    data: AuctionStatusData


# Type alias for all WebSocket events
WSEvent = OutbidEvent | BidAcceptedEvent | AuctionStatusEvent
