"""Auction and bidding API endpoints."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from auction_engine.api.deps import (
    AdminIdentity,
    AuctionServiceDep,
    BiddingServiceDep,
    CurrentIdentity,
)
from auction_engine.core.exceptions import (
    AuctionEngineError,
    AuctionNotFound,
    BidInProgress,
    BidRejected,
    ConcurrentModification,
    InvalidAuction,
    InvalidTransition,
    RejectionReason,
    StoreUnavailable,
)
from auction_engine.models.auction import AuctionStatus
from auction_engine.schemas.auction import (
    AuctionCreate,
    AuctionListResponse,
    AuctionState,
    LedgerVerification,
    SettlementResponse,
)
from auction_engine.schemas.bid import BidCreate, BidLedgerResponse, BidResult

router = APIRouter()

# Rejections the bidder can fix by changing the amount
BAD_REQUEST_REASONS = frozenset({
    RejectionReason.BID_TOO_LOW,
    RejectionReason.INCREMENT_TOO_SMALL,
    RejectionReason.SELF_OUTBID,
})

ERROR_STATUS = {
    AuctionNotFound: status.HTTP_404_NOT_FOUND,
    BidInProgress: status.HTTP_409_CONFLICT,
    ConcurrentModification: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    InvalidAuction: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(error: AuctionEngineError) -> HTTPException:
    if isinstance(error, BidRejected):
        status_code = (
            status.HTTP_400_BAD_REQUEST
            if error.reason in BAD_REQUEST_REASONS
            else status.HTTP_403_FORBIDDEN
        )
        return HTTPException(
            status_code=status_code,
            detail={"code": error.reason.value, "message": str(error)},
        )

    status_code = ERROR_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": str(error)},
    )


@router.post("", response_model=AuctionState, status_code=status.HTTP_201_CREATED)
async def create_auction(
    auction_data: AuctionCreate,
    identity: CurrentIdentity,
    auction_service: AuctionServiceDep,
):
    """Create a new auction owned by the caller. It starts Scheduled."""
    try:
        return await auction_service.create_auction(identity, auction_data)
    except AuctionEngineError as e:
        raise _http_error(e)


@router.get("", response_model=AuctionListResponse)
async def list_auctions(
    identity: CurrentIdentity,
    auction_service: AuctionServiceDep,
    auction_status: AuctionStatus | None = Query(None, alias="status"),
):
    """List auctions, optionally filtered by status."""
    try:
        auctions = await auction_service.list_auctions(auction_status)
    except AuctionEngineError as e:
        raise _http_error(e)
    return AuctionListResponse(auctions=auctions, total=len(auctions))


@router.get("/{auction_id}", response_model=AuctionState)
async def get_auction(
    auction_id: UUID,
    identity: CurrentIdentity,
    bidding_service: BiddingServiceDep,
):
    """Get the latest auction state."""
    try:
        return await bidding_service.get_auction_state(auction_id)
    except AuctionEngineError as e:
        raise _http_error(e)


@router.get("/{auction_id}/bids", response_model=BidLedgerResponse)
async def get_bids(
    auction_id: UUID,
    identity: CurrentIdentity,
    auction_service: AuctionServiceDep,
):
    """Get the accepted bids of an auction in ledger order."""
    try:
        bids = await auction_service.get_bids(auction_id)
    except AuctionEngineError as e:
        raise _http_error(e)
    return BidLedgerResponse(bids=bids, total=len(bids))


@router.post(
    "/{auction_id}/bids",
    response_model=BidResult,
    status_code=status.HTTP_201_CREATED,
)
async def submit_bid(
    auction_id: UUID,
    bid_data: BidCreate,
    identity: CurrentIdentity,
    bidding_service: BiddingServiceDep,
):
    """Submit a bid.

    A 409 means the bid lost every version race; resubmitting is safe.
    """
    try:
        result = await bidding_service.submit_bid(
            auction_id,
            identity,
            bid_data.amount,
            idempotency_key=bid_data.idempotency_key,
        )
    except AuctionEngineError as e:
        raise _http_error(e)

    if not result.accepted:
        raise _http_error(BidRejected(result.reason))
    return result


@router.post("/{auction_id}/cancel", response_model=AuctionState)
async def cancel_auction(
    auction_id: UUID,
    admin: AdminIdentity,
    auction_service: AuctionServiceDep,
):
    """Cancel a Scheduled or Open auction (admin only)."""
    try:
        return await auction_service.cancel_auction(auction_id)
    except AuctionEngineError as e:
        raise _http_error(e)


@router.post("/{auction_id}/settle", response_model=SettlementResponse)
async def settle_auction(
    auction_id: UUID,
    admin: AdminIdentity,
    auction_service: AuctionServiceDep,
):
    """Settle a Closed auction and report the winner (admin only)."""
    try:
        return await auction_service.settle_auction(auction_id)
    except AuctionEngineError as e:
        raise _http_error(e)


@router.get("/{auction_id}/ledger/verify", response_model=LedgerVerification)
async def verify_ledger(
    auction_id: UUID,
    identity: CurrentIdentity,
    auction_service: AuctionServiceDep,
):
    """Compare the stored high bid with a full replay of the ledger."""
    try:
        return await auction_service.verify_ledger(auction_id)
    except AuctionEngineError as e:
        raise _http_error(e)
