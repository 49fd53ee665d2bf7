"""Redis service for auction state cache, idempotency records, locks, and event fan-out."""

import json
import uuid
from typing import Any

from redis.asyncio import Redis


class RedisService:
    """Service class for Redis operations."""

    # Lua script for safe lock release (only delete own lock)
    RELEASE_LOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("DEL", KEYS[1])
    else
        return 0
    end
    """

    # Placeholder value of a claimed idempotency key whose bid is still running
    IDEMPOTENCY_PENDING = "pending"

    # Lua script for version-guarded snapshot write (an older snapshot never replaces a newer one)
    CACHE_STATE_SCRIPT = """
    local current = redis.call("GET", KEYS[1])
    if current then
        local stored = cjson.decode(current)
        if tonumber(stored["version"]) > tonumber(ARGV[2]) then
            return 0
        end
    end
    redis.call("SET", KEYS[1], ARGV[1], "EX", ARGV[3])
    return 1
    """

    def __init__(self, redis: Redis):
        """Initialize Redis service with a Redis client.

        Args:
            redis: Async Redis client instance
        """
        self.redis = redis
        self._release_lock_script = None
        self._cache_state_script = None

    async def _get_release_lock_script(self):
        """Get or register the release lock Lua script."""
        if self._release_lock_script is None:
            self._release_lock_script = self.redis.register_script(self.RELEASE_LOCK_SCRIPT)
        return self._release_lock_script

    async def _get_cache_state_script(self):
        """Get or register the version-guarded cache write Lua script."""
        if self._cache_state_script is None:
            self._cache_state_script = self.redis.register_script(self.CACHE_STATE_SCRIPT)
        return self._cache_state_script

    # ==================== Auction State Cache ====================

    async def cache_auction_state(
        self, auction_id: str, state: dict[str, Any], ttl: int
    ) -> bool:
        """Cache a serialized auction snapshot unless a newer version is cached.

        Key pattern: auction:{auction_id}:state
        Uses a Lua script so the version check and the write are atomic.

        Args:
            auction_id: Auction UUID string
            state: JSON-compatible snapshot (``model_dump(mode="json")``)
            ttl: TTL in seconds

        Returns:
            True if written, False if the cached snapshot has a higher version
        """
        key = f"auction:{auction_id}:state"
        script = await self._get_cache_state_script()
        result = await script(keys=[key], args=[json.dumps(state), state["version"], ttl])
        return int(result) == 1

    async def get_cached_auction_state(self, auction_id: str) -> dict[str, Any] | None:
        """Get a cached auction snapshot, or None if absent/expired."""
        key = f"auction:{auction_id}:state"
        data = await self.redis.get(key)
        if data:
            return json.loads(data)
        return None

    # ==================== Idempotency Records ====================

    async def reserve_idempotency_key(self, key: str, ttl: int) -> bool:
        """Claim an idempotency key before the bid is evaluated.

        Key pattern: idempotency:bid:{key}
        Uses SET NX with a placeholder so only one of several concurrent
        duplicates goes on to evaluate the bid.

        Returns:
            True if this caller owns the key, False if it was already claimed
        """
        reserved = await self.redis.set(
            f"idempotency:bid:{key}", self.IDEMPOTENCY_PENDING, nx=True, ex=ttl
        )
        return reserved is not None

    async def get_idempotent_result(self, key: str) -> dict[str, Any] | None:
        """Return the stored result for an idempotency key.

        None while the key is absent or still reserved by an in-flight bid.
        """
        data = await self.redis.get(f"idempotency:bid:{key}")
        if not data or data == self.IDEMPOTENCY_PENDING:
            return None
        return json.loads(data)

    async def store_idempotent_result(
        self, key: str, result: dict[str, Any], ttl: int
    ) -> None:
        """Replace the reservation placeholder with the final result."""
        await self.redis.set(f"idempotency:bid:{key}", json.dumps(result), ex=ttl)

    async def release_idempotency_key(self, key: str) -> None:
        """Drop a reservation whose bid failed, so a resubmission can claim it."""
        await self.redis.delete(f"idempotency:bid:{key}")

    # ==================== Distributed Lock ====================

    async def acquire_lock(
        self, name: str, owner_id: str | None = None, ttl: int = 2
    ) -> tuple[bool, str]:
        """Acquire a named distributed lock.

        Key pattern: lock:{name}
        Uses SET NX EX for atomic lock acquisition.

        Args:
            name: Lock name (e.g. ``scheduler``)
            owner_id: Unique identifier for lock owner (auto-generated if None)
            ttl: Lock timeout in seconds

        Returns:
            Tuple of (success, owner_id)
        """
        key = f"lock:{name}"
        if owner_id is None:
            owner_id = str(uuid.uuid4())

        acquired = await self.redis.set(key, owner_id, nx=True, ex=ttl)
        return (acquired is not None, owner_id)

    async def release_lock(self, name: str, owner_id: str) -> bool:
        """Release a distributed lock (only if owner matches).

        Returns:
            True if lock was released, False if not owner or not locked
        """
        key = f"lock:{name}"
        script = await self._get_release_lock_script()
        result = await script(keys=[key], args=[owner_id])
        return int(result) == 1

    # ==================== Event Fan-out ====================

    async def publish_auction_event(self, auction_id: str, event: dict[str, Any]) -> int:
        """Publish an event on the auction's pub/sub channel.

        Channel pattern: auction:{auction_id}:events

        Returns:
            Number of subscribers that received the message
        """
        channel = f"auction:{auction_id}:events"
        return await self.redis.publish(channel, json.dumps(event, default=str))
