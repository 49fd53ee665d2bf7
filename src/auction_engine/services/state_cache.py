"""Read-through cache for auction snapshots.

Two tiers: a bounded in-process TTLCache, then Redis. Only read endpoints use
it; bid evaluation and scheduler transitions always read the store.
"""

import logging
from uuid import UUID

from cachetools import TTLCache
from redis.exceptions import RedisError

from auction_engine.core.config import settings
from auction_engine.schemas.auction import AuctionState
from auction_engine.services.redis_service import RedisService

logger = logging.getLogger(__name__)


class AuctionStateCache:
    """Write-through cache of the latest committed auction snapshots."""

    def __init__(
        self,
        redis_service: RedisService | None = None,
        local_ttl: int | None = None,
        redis_ttl: int | None = None,
        maxsize: int = 1000,
    ):
        self.redis_service = redis_service
        self.redis_ttl = redis_ttl if redis_ttl is not None else settings.AUCTION_STATE_REDIS_TTL
        self._local: TTLCache = TTLCache(
            maxsize=maxsize,
            ttl=local_ttl if local_ttl is not None else settings.AUCTION_STATE_LOCAL_TTL,
        )

    async def get(self, auction_id: UUID) -> AuctionState | None:
        key = str(auction_id)

        cached = self._local.get(key)
        if cached is not None:
            return cached

        if self.redis_service is None:
            return None

        try:
            data = await self.redis_service.get_cached_auction_state(key)
        except RedisError as e:
            logger.warning(f"Auction state cache read failed for {key}: {e}")
            return None
        if data is None:
            return None

        state = AuctionState.model_validate(data)
        self._store_local(state)
        return state

    async def put(self, state: AuctionState) -> None:
        self._store_local(state)
        if self.redis_service is None:
            return
        try:
            written = await self.redis_service.cache_auction_state(
                str(state.auction_id), state.model_dump(mode="json"), ttl=self.redis_ttl
            )
        except RedisError as e:
            logger.warning(f"Auction state cache write failed for {state.auction_id}: {e}")
            return
        if not written:
            # Redis holds a newer version; the next read fetches it from there
            logger.debug(f"Skipped stale snapshot v{state.version} for {state.auction_id}")
            self._drop_local(state)

    def _store_local(self, state: AuctionState) -> None:
        key = str(state.auction_id)
        current = self._local.get(key)
        # Never let a late writer replace a newer snapshot
        if current is None or current.version <= state.version:
            self._local[key] = state

    def _drop_local(self, state: AuctionState) -> None:
        key = str(state.auction_id)
        current = self._local.get(key)
        if current is not None and current.version <= state.version:
            self._local.pop(key, None)
