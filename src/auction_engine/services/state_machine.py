"""Auction state machine: bid acceptance and lifecycle transitions.

Everything here is pure. The caller supplies ``now``; nothing reads a clock,
touches the store, or mutates the snapshot it was given.
"""

from dataclasses import dataclass
from datetime import datetime

from auction_engine.core.clock import ensure_utc
from auction_engine.core.config import settings
from auction_engine.core.exceptions import InvalidTransition, RejectionReason
from auction_engine.models.auction import AuctionStatus
from auction_engine.schemas.auction import AuctionState
from auction_engine.schemas.bid import CandidateBid

# target -> statuses it may be reached from
ALLOWED_TRANSITIONS: dict[AuctionStatus, frozenset[AuctionStatus]] = {
    AuctionStatus.OPEN: frozenset({AuctionStatus.SCHEDULED}),
    AuctionStatus.CLOSED: frozenset({AuctionStatus.OPEN}),
    AuctionStatus.SETTLED: frozenset({AuctionStatus.CLOSED}),
    AuctionStatus.CANCELLED: frozenset({AuctionStatus.SCHEDULED, AuctionStatus.OPEN}),
}


@dataclass(frozen=True)
class BiddingPolicy:
    """Tunable bid acceptance rules."""

    min_increment: int = 1
    allow_self_outbid: bool = False

    @classmethod
    def from_settings(cls) -> "BiddingPolicy":
        return cls(
            min_increment=settings.MIN_BID_INCREMENT,
            allow_self_outbid=settings.ALLOW_SELF_OUTBID,
        )


@dataclass(frozen=True)
class Accepted:
    new_state: AuctionState


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason


Decision = Accepted | Rejected


class AuctionStateMachine:
    """Decides bid acceptance and computes successor auction states."""

    def __init__(self, policy: BiddingPolicy | None = None):
        self.policy = policy or BiddingPolicy.from_settings()

    def min_increment_for(self, auction: AuctionState) -> int:
        if auction.min_increment is not None:
            return auction.min_increment
        return self.policy.min_increment

    def evaluate(
        self, auction: AuctionState, bid: CandidateBid, now: datetime
    ) -> Decision:
        """Accept or reject ``bid`` against ``auction`` at instant ``now``.

        Timing is judged here rather than trusted from ``status``, so an
        auction the scheduler has not closed yet still refuses late bids.
        """
        now = ensure_utc(now)

        if auction.status != AuctionStatus.OPEN or now < auction.start_time:
            return Rejected(RejectionReason.AUCTION_NOT_OPEN)
        if now >= auction.end_time:
            return Rejected(RejectionReason.AUCTION_EXPIRED)
        if bid.bidder_id == auction.owner_id:
            return Rejected(RejectionReason.OWNER_CANNOT_BID)
        if bid.amount <= auction.current_high_bid:
            return Rejected(RejectionReason.BID_TOO_LOW)
        if bid.amount - auction.current_high_bid < self.min_increment_for(auction):
            return Rejected(RejectionReason.INCREMENT_TOO_SMALL)
        if (
            not self.policy.allow_self_outbid
            and auction.current_high_bidder_id is not None
            and bid.bidder_id == auction.current_high_bidder_id
        ):
            return Rejected(RejectionReason.SELF_OUTBID)

        return Accepted(
            auction.model_copy(
                update={
                    "current_high_bid": bid.amount,
                    "current_high_bidder_id": bid.bidder_id,
                    "version": auction.version + 1,
                }
            )
        )

    def transition(
        self, auction: AuctionState, target: AuctionStatus, now: datetime
    ) -> AuctionState:
        """Return the successor state for a lifecycle move.

        Raises:
            InvalidTransition: ``target`` is not reachable from the current
                status, or its time gate has not been reached.
        """
        now = ensure_utc(now)
        current = auction.status

        if current not in ALLOWED_TRANSITIONS.get(target, frozenset()):
            raise InvalidTransition(current.value, target.value)
        if target == AuctionStatus.OPEN and now < auction.start_time:
            raise InvalidTransition(current.value, target.value, "start time not reached")
        if target == AuctionStatus.CLOSED and now < auction.end_time:
            raise InvalidTransition(current.value, target.value, "end time not reached")

        return auction.model_copy(
            update={"status": target, "version": auction.version + 1}
        )

    def due_transition(
        self, auction: AuctionState, now: datetime
    ) -> AuctionStatus | None:
        """Status the scheduler should move ``auction`` to at ``now``, if any."""
        now = ensure_utc(now)
        if auction.status == AuctionStatus.SCHEDULED and now >= auction.start_time:
            return AuctionStatus.OPEN
        if auction.status == AuctionStatus.OPEN and now >= auction.end_time:
            return AuctionStatus.CLOSED
        return None
