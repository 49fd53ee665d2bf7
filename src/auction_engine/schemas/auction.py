"""Auction schemas for request/response validation."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auction_engine.core.clock import ensure_utc
from auction_engine.models.auction import AuctionStatus


class AuctionCreate(BaseModel):
    """Schema for auction creation request. Amounts are integer minor units."""

    item_ref: UUID
    starting_price: int = Field(..., gt=0)
    start_time: datetime
    end_time: datetime
    min_increment: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def check_window(self) -> "AuctionCreate":
        if ensure_utc(self.end_time) <= ensure_utc(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self


class AuctionState(BaseModel):
    """Immutable snapshot of an auction as read from the store.

    The bidding path and the scheduler never mutate a snapshot; they derive a
    new one with ``model_copy`` and hand both to the store's conditional update.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    auction_id: UUID
    owner_id: UUID
    item_ref: UUID
    starting_price: int
    current_high_bid: int
    current_high_bidder_id: UUID | None = None
    min_increment: int | None = None
    start_time: datetime
    end_time: datetime
    status: AuctionStatus
    version: int = 0

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class AuctionListResponse(BaseModel):
    """Schema for auction list response."""

    auctions: list[AuctionState]
    total: int


class SettlementResponse(BaseModel):
    """Outcome of settling a closed auction."""

    auction: AuctionState
    winner_id: UUID | None
    final_amount: int | None


class LedgerVerification(BaseModel):
    """Comparison between the cached high bid and a full ledger replay."""

    auction_id: UUID
    cached_high_bid: int
    cached_high_bidder_id: UUID | None
    ledger_high_bid: int
    ledger_high_bidder_id: UUID | None
    bid_count: int
    consistent: bool
