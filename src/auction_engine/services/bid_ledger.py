"""Append-only, per-auction ordered log of accepted bids.

The ledger is authoritative; ``Auction.current_high_bid`` and
``current_high_bidder_id`` are a cache of its head that ``replay_ledger`` can
always rebuild. Appends only happen inside the auction store's conditional
update, so ledger and auction row commit together.
"""

from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auction_engine.models.base import to_db_time
from auction_engine.models.bid import Bid
from auction_engine.schemas.bid import BidRecord, CandidateBid
from auction_engine.services.store_retry import with_store_retry


def replay_ledger(
    starting_price: int, bids: Iterable[BidRecord]
) -> tuple[int, UUID | None]:
    """Rebuild ``(current_high_bid, current_high_bidder_id)`` from ledger entries."""
    high_bid, high_bidder = starting_price, None
    for bid in sorted(bids, key=lambda b: b.sequence_number):
        if bid.amount > high_bid:
            high_bid, high_bidder = bid.amount, bid.bidder_id
    return high_bid, high_bidder


class BidLedger:
    """Read side of the ledger shared by all backends."""

    async def get_bids(self, auction_id: UUID) -> list[BidRecord]:
        raise NotImplementedError

    async def latest(self, auction_id: UUID) -> BidRecord | None:
        bids = await self.get_bids(auction_id)
        return bids[-1] if bids else None


class SqlBidLedger(BidLedger):
    """Ledger backed by the ``bids`` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def append(self, session: AsyncSession, bid: CandidateBid) -> BidRecord:
        """Insert ``bid`` with the next sequence number, inside the caller's transaction.

        The caller has already won the version check on the auction row, which
        holds that row's lock until commit, so ``max + 1`` cannot race here. The
        unique index on ``(auction_id, sequence_number)`` backs this up.
        """
        result = await session.execute(
            select(func.coalesce(func.max(Bid.sequence_number), 0)).where(
                Bid.auction_id == bid.auction_id
            )
        )
        next_sequence = result.scalar_one() + 1

        row = Bid(
            bid_id=bid.bid_id,
            auction_id=bid.auction_id,
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            submitted_at=to_db_time(bid.submitted_at),
            sequence_number=next_sequence,
        )
        session.add(row)
        await session.flush()
        return BidRecord.model_validate(row)

    async def find(self, session: AsyncSession, bid_id: UUID) -> BidRecord | None:
        """Look up one ledger entry by id, inside the caller's transaction."""
        result = await session.execute(select(Bid).where(Bid.bid_id == bid_id))
        row = result.scalar_one_or_none()
        return BidRecord.model_validate(row) if row else None

    async def get_bids(self, auction_id: UUID) -> list[BidRecord]:
        async def _load() -> list[BidRecord]:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(Bid)
                    .where(Bid.auction_id == auction_id)
                    .order_by(Bid.sequence_number)
                )
                return [BidRecord.model_validate(row) for row in result.scalars().all()]

        return await with_store_retry(_load, name="ledger.list")

    async def latest(self, auction_id: UUID) -> BidRecord | None:
        async def _load() -> BidRecord | None:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(Bid)
                    .where(Bid.auction_id == auction_id)
                    .order_by(Bid.sequence_number.desc())
                    .limit(1)
                )
                row = result.scalar_one_or_none()
                return BidRecord.model_validate(row) if row else None

        return await with_store_retry(_load, name="ledger.latest")


class InMemoryBidLedger(BidLedger):
    """Process-local ledger used with ``InMemoryAuctionStore``."""

    def __init__(self):
        self._entries: dict[UUID, list[BidRecord]] = {}

    def append_unlocked(self, bid: CandidateBid) -> BidRecord:
        """Append without awaiting. Only the in-memory store calls this, under its lock."""
        entries = self._entries.setdefault(bid.auction_id, [])
        record = BidRecord(
            bid_id=bid.bid_id,
            auction_id=bid.auction_id,
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            submitted_at=bid.submitted_at,
            sequence_number=len(entries) + 1,
        )
        entries.append(record)
        return record

    async def get_bids(self, auction_id: UUID) -> list[BidRecord]:
        return list(self._entries.get(auction_id, []))
