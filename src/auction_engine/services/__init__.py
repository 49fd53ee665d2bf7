"""Business logic services."""

from auction_engine.services.auction_scheduler import AuctionScheduler
from auction_engine.services.auction_service import AuctionService
from auction_engine.services.auction_store import (
    AuctionStore,
    InMemoryAuctionStore,
    SqlAuctionStore,
)
from auction_engine.services.bidding_service import BiddingService
from auction_engine.services.redis_service import RedisService

__all__ = [
    "AuctionScheduler",
    "AuctionService",
    "AuctionStore",
    "BiddingService",
    "InMemoryAuctionStore",
    "RedisService",
    "SqlAuctionStore",
]
