"""Error taxonomy for the auction engine."""

from enum import Enum
from uuid import UUID


class RejectionReason(str, Enum):
    """Why a bid was refused. Values double as client-facing error codes."""

    AUCTION_NOT_OPEN = "AUCTION_NOT_OPEN"
    AUCTION_EXPIRED = "AUCTION_EXPIRED"
    BID_TOO_LOW = "BID_TOO_LOW"
    INCREMENT_TOO_SMALL = "INCREMENT_TOO_SMALL"
    SELF_OUTBID = "SELF_OUTBID"
    OWNER_CANNOT_BID = "OWNER_CANNOT_BID"


REJECTION_MESSAGES = {
    RejectionReason.AUCTION_NOT_OPEN: "Auction is not open for bidding",
    RejectionReason.AUCTION_EXPIRED: "Auction has ended",
    RejectionReason.BID_TOO_LOW: "Bid must be higher than the current high bid",
    RejectionReason.INCREMENT_TOO_SMALL: "Bid does not meet the minimum increment",
    RejectionReason.SELF_OUTBID: "You already hold the highest bid",
    RejectionReason.OWNER_CANNOT_BID: "Owners cannot bid on their own auction",
}


class AuctionEngineError(Exception):
    """Base exception for auction engine errors"""

    code = "AUCTION_ENGINE_ERROR"


class AuctionNotFound(AuctionEngineError):
    """Raised when an auction id does not exist."""

    code = "AUCTION_NOT_FOUND"

    def __init__(self, auction_id: UUID):
        super().__init__(f"Auction {auction_id} not found")
        self.auction_id = auction_id


class BidRejected(AuctionEngineError):
    """Raised when a bid fails validation. Never retried."""

    code = "BID_REJECTED"

    def __init__(self, reason: RejectionReason):
        super().__init__(REJECTION_MESSAGES[reason])
        self.reason = reason


class ConcurrentModification(AuctionEngineError):
    """Raised when a conditional update loses the version race."""

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, auction_id: UUID, expected_version: int):
        super().__init__(
            f"Auction {auction_id} was modified concurrently (expected version {expected_version})"
        )
        self.auction_id = auction_id
        self.expected_version = expected_version


class InvalidTransition(AuctionEngineError):
    """Raised when an auction status change is not allowed."""

    code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str, detail: str | None = None):
        message = f"Cannot transition auction from {current} to {target}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.current = current
        self.target = target


class StoreUnavailable(AuctionEngineError):
    """Raised when the backing store keeps failing after retries."""

    code = "STORE_UNAVAILABLE"


class InvalidAuction(AuctionEngineError):
    """Raised when auction creation parameters are inconsistent."""

    code = "INVALID_AUCTION"


class BidInProgress(AuctionEngineError):
    """Raised when a duplicate submission finds its idempotency key still claimed."""

    code = "BID_IN_PROGRESS"

    def __init__(self, auction_id: UUID):
        super().__init__(f"A bid with this idempotency key is still being processed on {auction_id}")
        self.auction_id = auction_id
