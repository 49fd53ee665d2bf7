"""Auction lifecycle operations: creation, listing, cancellation, settlement."""

import logging
from uuid import UUID, uuid4

from auction_engine.core.clock import Clock, SystemClock, ensure_utc
from auction_engine.core.exceptions import (
    AuctionNotFound,
    ConcurrentModification,
    InvalidAuction,
)
from auction_engine.middleware.metrics import record_cas_conflict
from auction_engine.models.auction import AuctionStatus
from auction_engine.schemas.auction import (
    AuctionCreate,
    AuctionState,
    LedgerVerification,
    SettlementResponse,
)
from auction_engine.schemas.bid import BidRecord
from auction_engine.schemas.identity import Identity
from auction_engine.services.auction_store import AuctionStore
from auction_engine.services.bid_ledger import replay_ledger
from auction_engine.services.notification_service import NotificationDispatcher
from auction_engine.services.state_cache import AuctionStateCache
from auction_engine.services.state_machine import AuctionStateMachine
from auction_engine.services.ws_manager import build_status_event

logger = logging.getLogger(__name__)

MAX_ADMIN_ATTEMPTS = 3


class AuctionService:
    """Service class for auction lifecycle operations."""

    def __init__(
        self,
        store: AuctionStore,
        state_machine: AuctionStateMachine | None = None,
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
        state_cache: AuctionStateCache | None = None,
    ):
        self.store = store
        self.state_machine = state_machine or AuctionStateMachine()
        self.clock = clock or SystemClock()
        self.notifier = notifier
        self.state_cache = state_cache

    async def create_auction(self, owner: Identity, data: AuctionCreate) -> AuctionState:
        """Create a Scheduled auction owned by ``owner``.

        Args:
            owner: Caller creating the auction
            data: Validated creation request

        Returns:
            The stored auction at version 0

        Raises:
            InvalidAuction: Price or time window is inconsistent
        """
        start_time = ensure_utc(data.start_time)
        end_time = ensure_utc(data.end_time)
        if end_time <= start_time:
            raise InvalidAuction("end_time must be after start_time")
        if data.starting_price <= 0:
            raise InvalidAuction("starting_price must be positive")

        auction = AuctionState(
            auction_id=uuid4(),
            owner_id=owner.user_id,
            item_ref=data.item_ref,
            starting_price=data.starting_price,
            current_high_bid=data.starting_price,
            current_high_bidder_id=None,
            min_increment=data.min_increment,
            start_time=start_time,
            end_time=end_time,
            status=AuctionStatus.SCHEDULED,
            version=0,
        )
        created = await self.store.create(auction)
        logger.info(
            f"Auction created: starts={start_time.isoformat()} ends={end_time.isoformat()}",
            extra={"auction_id": created.auction_id},
        )
        return created

    async def list_auctions(self, status: AuctionStatus | None = None) -> list[AuctionState]:
        return await self.store.list_auctions(status)

    async def cancel_auction(self, auction_id: UUID) -> AuctionState:
        """Cancel a Scheduled or Open auction. Accepted bids stay in the ledger.

        Raises:
            AuctionNotFound: Auction does not exist
            InvalidTransition: Auction is already Closed, Settled or Cancelled
        """
        return await self._apply(auction_id, AuctionStatus.CANCELLED)

    async def settle_auction(self, auction_id: UUID) -> SettlementResponse:
        """Mark a Closed auction Settled and report its outcome.

        The winner is the current high bidder, or None when nobody bid.

        Raises:
            AuctionNotFound: Auction does not exist
            InvalidTransition: Auction is not Closed
        """
        settled = await self._apply(auction_id, AuctionStatus.SETTLED)
        winner = settled.current_high_bidder_id
        return SettlementResponse(
            auction=settled,
            winner_id=winner,
            final_amount=settled.current_high_bid if winner is not None else None,
        )

    async def get_bids(self, auction_id: UUID) -> list[BidRecord]:
        """Accepted bids for an auction in ledger order."""
        if await self.store.get(auction_id) is None:
            raise AuctionNotFound(auction_id)
        return await self.store.ledger.get_bids(auction_id)

    async def verify_ledger(self, auction_id: UUID) -> LedgerVerification:
        """Rebuild the high bid from the ledger and compare it with the stored one."""
        auction = await self.store.get(auction_id)
        if auction is None:
            raise AuctionNotFound(auction_id)

        bids = await self.store.ledger.get_bids(auction_id)
        ledger_high_bid, ledger_high_bidder = replay_ledger(auction.starting_price, bids)
        consistent = (
            ledger_high_bid == auction.current_high_bid
            and ledger_high_bidder == auction.current_high_bidder_id
        )
        if not consistent:
            logger.error(
                f"Ledger mismatch: cached={auction.current_high_bid} ledger={ledger_high_bid}",
                extra={"auction_id": auction_id},
            )

        return LedgerVerification(
            auction_id=auction_id,
            cached_high_bid=auction.current_high_bid,
            cached_high_bidder_id=auction.current_high_bidder_id,
            ledger_high_bid=ledger_high_bid,
            ledger_high_bidder_id=ledger_high_bidder,
            bid_count=len(bids),
            consistent=consistent,
        )

    async def _apply(self, auction_id: UUID, target: AuctionStatus) -> AuctionState:
        for attempt in range(1, MAX_ADMIN_ATTEMPTS + 1):
            auction = await self.store.get(auction_id)
            if auction is None:
                raise AuctionNotFound(auction_id)

            new_state = self.state_machine.transition(auction, target, self.clock.now())
            try:
                await self.store.compare_and_set(auction.version, new_state)
            except ConcurrentModification:
                record_cas_conflict("admin")
                logger.debug(
                    f"Admin {target.value} lost version race on attempt {attempt}",
                    extra={"auction_id": auction_id},
                )
                continue

            logger.info(
                f"Auction {auction.status.value} -> {new_state.status.value}",
                extra={"auction_id": auction_id},
            )
            if self.state_cache is not None:
                await self.state_cache.put(new_state)
            if self.notifier is not None:
                self.notifier.broadcast(auction_id, build_status_event(new_state))
            return new_state

        raise ConcurrentModification(auction_id, auction.version)
