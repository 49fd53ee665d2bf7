"""Pytest configuration and fixtures for testing."""

import json
from datetime import datetime, timedelta, timezone
from typing import Callable
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from auction_engine.core.clock import ManualClock
from auction_engine.models.auction import AuctionStatus
from auction_engine.schemas.auction import AuctionState
from auction_engine.schemas.identity import Identity
from auction_engine.services.auction_store import InMemoryAuctionStore
from auction_engine.services.bidding_service import BiddingService
from auction_engine.services.state_machine import AuctionStateMachine, BiddingPolicy

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


# Mock Redis client fixture
@pytest.fixture
def mock_redis() -> AsyncMock:
    """Create a mock Redis client."""
    redis = AsyncMock()

    # Mock common Redis operations
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.publish = AsyncMock(return_value=1)
    redis.register_script = MagicMock(return_value=AsyncMock(return_value=1))

    return redis


@pytest.fixture
def clock() -> ManualClock:
    """Clock pinned at T0; tests move it explicitly."""
    return ManualClock(T0)


@pytest.fixture
def store() -> InMemoryAuctionStore:
    return InMemoryAuctionStore()


@pytest.fixture
def state_machine() -> AuctionStateMachine:
    return AuctionStateMachine(BiddingPolicy(min_increment=1, allow_self_outbid=False))


@pytest.fixture
def owner() -> Identity:
    return Identity(user_id=uuid4())


@pytest.fixture
def admin() -> Identity:
    return Identity(user_id=uuid4(), role="admin")


@pytest.fixture
def make_auction(owner: Identity) -> Callable[..., AuctionState]:
    """Factory for auction snapshots open from T0 to T0 + 1h by default."""

    def _make(**overrides) -> AuctionState:
        fields = {
            "auction_id": uuid4(),
            "owner_id": owner.user_id,
            "item_ref": uuid4(),
            "starting_price": 100,
            "current_high_bid": 100,
            "current_high_bidder_id": None,
            "min_increment": None,
            "start_time": T0,
            "end_time": T0 + timedelta(hours=1),
            "status": AuctionStatus.OPEN,
            "version": 0,
        }
        fields.update(overrides)
        return AuctionState(**fields)

    return _make


@pytest.fixture
def bidding_service(
    store: InMemoryAuctionStore,
    state_machine: AuctionStateMachine,
    clock: ManualClock,
) -> BiddingService:
    """Bidding service without cache, notifier or Redis; zero retry backoff."""
    return BiddingService(
        store,
        state_machine=state_machine,
        clock=clock,
        max_retries=50,
        retry_backoff=0,
    )


@pytest.fixture
def versioned_redis(mock_redis: AsyncMock) -> AsyncMock:
    """Dict-backed Redis mock whose state cache script keeps the highest version."""
    data: dict[str, str] = {}

    async def _get(key):
        return data.get(key)

    async def _cache_state(keys, args):
        current = data.get(keys[0])
        if current is not None and json.loads(current)["version"] > int(args[1]):
            return 0
        data[keys[0]] = args[0]
        return 1

    def _register(script):
        if "cjson" in script:
            return AsyncMock(side_effect=_cache_state)
        return AsyncMock(return_value=1)

    mock_redis.get = AsyncMock(side_effect=_get)
    mock_redis.register_script = MagicMock(side_effect=_register)
    return mock_redis


@pytest.fixture
def kv_redis(mock_redis: AsyncMock) -> AsyncMock:
    """Dict-backed Redis mock for plain GET, SET (with NX) and DEL; contents on ``.data``."""
    data: dict[str, str] = {}

    async def _set(key, value, nx=False, ex=None):
        if nx and key in data:
            return None
        data[key] = value
        return True

    async def _get(key):
        return data.get(key)

    async def _delete(key):
        return 1 if data.pop(key, None) is not None else 0

    mock_redis.set = AsyncMock(side_effect=_set)
    mock_redis.get = AsyncMock(side_effect=_get)
    mock_redis.delete = AsyncMock(side_effect=_delete)
    mock_redis.data = data
    return mock_redis
