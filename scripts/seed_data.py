"""Seed demo auctions for development and load testing.

Creates:
- 1 auction already open, closing after AUCTION_DURATION_MINUTES
- 1 auction scheduled to open in 2 minutes
- 1 auction that opens and closes within the first minute

Environment Variables:
    AUCTION_DURATION_MINUTES: Open auction duration in minutes (default: 20)
    STARTING_PRICE: Starting price in minor units (default: 80000)

Usage:
    uv run python -m scripts.reset_db
    uv run python -m scripts.seed_data
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta, timezone

AUCTION_DURATION_MINUTES = int(os.getenv("AUCTION_DURATION_MINUTES", "20"))
STARTING_PRICE = int(os.getenv("STARTING_PRICE", "80000"))

from auction_engine.core.database import async_session_maker, engine
from auction_engine.models.auction import AuctionStatus
from auction_engine.schemas.auction import AuctionCreate
from auction_engine.schemas.identity import Identity
from auction_engine.services.auction_scheduler import AuctionScheduler
from auction_engine.services.auction_service import AuctionService
from auction_engine.services.auction_store import SqlAuctionStore


async def main():
    store = SqlAuctionStore(async_session_maker)
    service = AuctionService(store)
    owner = Identity(user_id=uuid.uuid4())
    now = datetime.now(timezone.utc)

    plans = [
        ("open", now - timedelta(seconds=1), now + timedelta(minutes=AUCTION_DURATION_MINUTES)),
        ("scheduled", now + timedelta(minutes=2), now + timedelta(minutes=2 + AUCTION_DURATION_MINUTES)),
        ("short", now + timedelta(seconds=10), now + timedelta(seconds=60)),
    ]

    print("=" * 60)
    print(f"Seeding auctions owned by {owner.user_id}")
    print("=" * 60)

    for label, start_time, end_time in plans:
        auction = await service.create_auction(
            owner,
            AuctionCreate(
                item_ref=uuid.uuid4(),
                starting_price=STARTING_PRICE,
                start_time=start_time,
                end_time=end_time,
            ),
        )
        print(f"  {label:<10} {auction.auction_id}  {start_time:%H:%M:%S} -> {end_time:%H:%M:%S}")

    # Open whatever is already due instead of waiting for the first scheduler tick
    applied = await AuctionScheduler(store).run_once()
    opened = await store.list_auctions(AuctionStatus.OPEN)
    print(f"\nScheduler applied {applied} transitions; {len(opened)} auction(s) open")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
