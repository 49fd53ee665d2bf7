"""Bid schemas for request/response validation."""

import uuid
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auction_engine.core.clock import ensure_utc
from auction_engine.core.exceptions import RejectionReason
from auction_engine.schemas.auction import AuctionState


class BidCreate(BaseModel):
    """Schema for bid submission request."""

    amount: int = Field(..., gt=0)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=128)


class CandidateBid(BaseModel):
    """A bid under evaluation. ``submitted_at`` is always assigned by the server."""

    model_config = ConfigDict(frozen=True)

    bid_id: UUID = Field(default_factory=uuid.uuid4)
    auction_id: UUID
    bidder_id: UUID
    amount: int
    submitted_at: datetime


class BidRecord(BaseModel):
    """A bid as recorded in the ledger."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    bid_id: UUID
    auction_id: UUID
    bidder_id: UUID
    amount: int
    submitted_at: datetime
    sequence_number: int

    @field_validator("submitted_at")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class BidResult(BaseModel):
    """Outcome of one bid submission."""

    accepted: bool
    reason: RejectionReason | None = None
    auction: AuctionState
    bid: BidRecord | None = None
    attempts: int = 1


class BidLedgerResponse(BaseModel):
    """Schema for ledger listing response."""

    bids: list[BidRecord]
    total: int
