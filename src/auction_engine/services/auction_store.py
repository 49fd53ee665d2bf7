"""Durable auction storage with compare-and-set updates.

``compare_and_set`` is the single mutation point for auctions. The bidding
path and the scheduler both go through it, and when a bid is attached the
ledger append commits in the same unit as the auction row update.
"""

import asyncio
import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auction_engine.core.clock import ensure_utc
from auction_engine.core.exceptions import AuctionNotFound, ConcurrentModification
from auction_engine.models.auction import Auction, AuctionStatus
from auction_engine.models.base import to_db_time
from auction_engine.schemas.auction import AuctionState
from auction_engine.schemas.bid import BidRecord, CandidateBid
from auction_engine.services.bid_ledger import BidLedger, InMemoryBidLedger, SqlBidLedger
from auction_engine.services.store_retry import with_store_retry

logger = logging.getLogger(__name__)


def _check_successor(expected_version: int, new_state: AuctionState) -> None:
    if new_state.version != expected_version + 1:
        raise ValueError(
            f"New state version {new_state.version} must be {expected_version + 1}"
        )


class AuctionStore:
    """Keyed auction storage. Subclasses provide the backend."""

    ledger: BidLedger

    async def create(self, auction: AuctionState) -> AuctionState:
        raise NotImplementedError

    async def get(self, auction_id: UUID) -> AuctionState | None:
        raise NotImplementedError

    async def list_auctions(self, status: AuctionStatus | None = None) -> list[AuctionState]:
        raise NotImplementedError

    async def find_due(self, now: datetime) -> list[AuctionState]:
        """Auctions the scheduler must open or close at ``now``."""
        raise NotImplementedError

    async def compare_and_set(
        self,
        expected_version: int,
        new_state: AuctionState,
        bid: CandidateBid | None = None,
    ) -> BidRecord | None:
        """Replace the stored auction with ``new_state`` if its version is unchanged.

        Args:
            expected_version: Version the caller read before deciding
            new_state: Successor state, carrying ``expected_version + 1``
            bid: Accepted bid to append to the ledger in the same atomic unit

        Returns:
            The ledger record for ``bid``, or None when no bid was given

        Raises:
            ConcurrentModification: Stored version differs from ``expected_version``
            AuctionNotFound: The auction does not exist
            StoreUnavailable: Persistent infrastructure failure
        """
        raise NotImplementedError


class SqlAuctionStore(AuctionStore):
    """PostgreSQL-backed store using optimistic locking on ``auctions.version``."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ledger: SqlBidLedger | None = None,
    ):
        self.session_maker = session_maker
        self.ledger = ledger or SqlBidLedger(session_maker)

    async def create(self, auction: AuctionState) -> AuctionState:
        async def _insert() -> AuctionState:
            async with self.session_maker() as session:
                row = Auction(
                    auction_id=auction.auction_id,
                    owner_id=auction.owner_id,
                    item_ref=auction.item_ref,
                    starting_price=auction.starting_price,
                    current_high_bid=auction.current_high_bid,
                    current_high_bidder_id=auction.current_high_bidder_id,
                    min_increment=auction.min_increment,
                    start_time=to_db_time(auction.start_time),
                    end_time=to_db_time(auction.end_time),
                    status=auction.status.value,
                    version=auction.version,
                )
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return AuctionState.model_validate(row)

        return await with_store_retry(_insert, name="auction.create")

    async def get(self, auction_id: UUID) -> AuctionState | None:
        async def _load() -> AuctionState | None:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(Auction).where(Auction.auction_id == auction_id)
                )
                row = result.scalar_one_or_none()
                return AuctionState.model_validate(row) if row else None

        return await with_store_retry(_load, name="auction.get")

    async def list_auctions(self, status: AuctionStatus | None = None) -> list[AuctionState]:
        async def _load() -> list[AuctionState]:
            async with self.session_maker() as session:
                query = select(Auction).order_by(Auction.start_time.desc())
                if status is not None:
                    query = query.where(Auction.status == status.value)
                result = await session.execute(query)
                return [AuctionState.model_validate(row) for row in result.scalars().all()]

        return await with_store_retry(_load, name="auction.list")

    async def find_due(self, now: datetime) -> list[AuctionState]:
        cutoff = to_db_time(now)

        async def _load() -> list[AuctionState]:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(Auction).where(
                        or_(
                            and_(
                                Auction.status == AuctionStatus.SCHEDULED.value,
                                Auction.start_time <= cutoff,
                            ),
                            and_(
                                Auction.status == AuctionStatus.OPEN.value,
                                Auction.end_time <= cutoff,
                            ),
                        )
                    )
                )
                return [AuctionState.model_validate(row) for row in result.scalars().all()]

        return await with_store_retry(_load, name="auction.find_due")

    async def compare_and_set(
        self,
        expected_version: int,
        new_state: AuctionState,
        bid: CandidateBid | None = None,
    ) -> BidRecord | None:
        _check_successor(expected_version, new_state)
        auction_id = new_state.auction_id

        async def _apply() -> BidRecord | None:
            async with self.session_maker() as session:
                async with session.begin():
                    # Optimistic lock: only matches if nobody committed since our read
                    result = await session.execute(
                        update(Auction)
                        .where(Auction.auction_id == auction_id)
                        .where(Auction.version == expected_version)
                        .values(
                            status=new_state.status.value,
                            current_high_bid=new_state.current_high_bid,
                            current_high_bidder_id=new_state.current_high_bidder_id,
                            version=new_state.version,
                        )
                    )
                    if result.rowcount != 1:
                        if bid is not None:
                            # A retry after a lost COMMIT acknowledgement finds its own bid
                            committed = await self.ledger.find(session, bid.bid_id)
                            if committed is not None:
                                logger.info(
                                    f"Bid {bid.bid_id} already committed on auction {auction_id}"
                                )
                                return committed
                        exists = await session.execute(
                            select(Auction.version).where(Auction.auction_id == auction_id)
                        )
                        if exists.scalar_one_or_none() is None:
                            raise AuctionNotFound(auction_id)
                        raise ConcurrentModification(auction_id, expected_version)

                    if bid is None:
                        return None
                    return await self.ledger.append(session, bid)

        try:
            return await with_store_retry(_apply, name="auction.compare_and_set")
        except IntegrityError as e:
            # Duplicate ledger sequence: another writer got there first
            logger.warning(f"Ledger append conflict for auction {auction_id}: {e}")
            raise ConcurrentModification(auction_id, expected_version) from e


class InMemoryAuctionStore(AuctionStore):
    """Process-local store for development and tests.

    Reads hand out immutable snapshots and yield to the event loop, so
    concurrent bidders really do interleave between read and write. The lock
    covers only the compare-and-set itself.
    """

    def __init__(self, ledger: InMemoryBidLedger | None = None):
        self.ledger = ledger or InMemoryBidLedger()
        self._auctions: dict[UUID, AuctionState] = {}
        self._lock = asyncio.Lock()

    async def create(self, auction: AuctionState) -> AuctionState:
        async with self._lock:
            self._auctions[auction.auction_id] = auction
        return auction

    async def get(self, auction_id: UUID) -> AuctionState | None:
        snapshot = self._auctions.get(auction_id)
        await asyncio.sleep(0)
        return snapshot

    async def list_auctions(self, status: AuctionStatus | None = None) -> list[AuctionState]:
        auctions = sorted(self._auctions.values(), key=lambda a: a.start_time, reverse=True)
        if status is not None:
            auctions = [a for a in auctions if a.status == status]
        return auctions

    async def find_due(self, now: datetime) -> list[AuctionState]:
        now = ensure_utc(now)
        return [
            a
            for a in self._auctions.values()
            if (a.status == AuctionStatus.SCHEDULED and now >= a.start_time)
            or (a.status == AuctionStatus.OPEN and now >= a.end_time)
        ]

    async def compare_and_set(
        self,
        expected_version: int,
        new_state: AuctionState,
        bid: CandidateBid | None = None,
    ) -> BidRecord | None:
        _check_successor(expected_version, new_state)
        auction_id = new_state.auction_id

        async with self._lock:
            current = self._auctions.get(auction_id)
            if current is None:
                raise AuctionNotFound(auction_id)
            if current.version != expected_version:
                raise ConcurrentModification(auction_id, expected_version)

            record = self.ledger.append_unlocked(bid) if bid is not None else None
            self._auctions[auction_id] = new_state
            return record
