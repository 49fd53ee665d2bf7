"""Pydantic schemas for request/response validation."""

from auction_engine.schemas.auction import (
    AuctionCreate,
    AuctionListResponse,
    AuctionState,
    LedgerVerification,
    SettlementResponse,
)
from auction_engine.schemas.bid import (
    BidCreate,
    BidLedgerResponse,
    BidRecord,
    BidResult,
    CandidateBid,
)
from auction_engine.schemas.identity import Identity

__all__ = [
    "AuctionCreate",
    "AuctionState",
    "AuctionListResponse",
    "SettlementResponse",
    "LedgerVerification",
    "BidCreate",
    "CandidateBid",
    "BidRecord",
    "BidResult",
    "BidLedgerResponse",
    "Identity",
]
