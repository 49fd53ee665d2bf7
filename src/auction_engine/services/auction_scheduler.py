"""
Background scheduler that opens and closes auctions on time.

The scheduler keeps no auction state of its own. Every tick it asks the store
which auctions are due and applies each move through the same versioned
compare-and-set the bidding path uses. A bid racing the close either commits
first (and was valid at its own server time) or loses the race, re-reads, and
sees the auction closed.
"""
import asyncio
import logging
from uuid import UUID

from redis.exceptions import RedisError

from auction_engine.core.clock import Clock, SystemClock
from auction_engine.core.config import settings
from auction_engine.core.exceptions import ConcurrentModification, InvalidTransition
from auction_engine.middleware.metrics import record_cas_conflict, record_transition
from auction_engine.schemas.auction import AuctionState
from auction_engine.services.auction_store import AuctionStore
from auction_engine.services.notification_service import NotificationDispatcher
from auction_engine.services.redis_service import RedisService
from auction_engine.services.state_cache import AuctionStateCache
from auction_engine.services.state_machine import AuctionStateMachine
from auction_engine.services.ws_manager import build_status_event

logger = logging.getLogger(__name__)

SCHEDULER_LOCK = "scheduler"
MAX_TRANSITION_ATTEMPTS = 3


class AuctionScheduler:
    """Periodic task driving Scheduled -> Open -> Closed."""

    def __init__(
        self,
        store: AuctionStore,
        state_machine: AuctionStateMachine | None = None,
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
        state_cache: AuctionStateCache | None = None,
        redis_service: RedisService | None = None,
        interval: float | None = None,
    ):
        self.store = store
        self.state_machine = state_machine or AuctionStateMachine()
        self.clock = clock or SystemClock()
        self.notifier = notifier
        self.state_cache = state_cache
        self.redis_service = redis_service
        self.interval = interval or settings.SCHEDULER_INTERVAL_SECONDS
        self.running = False
        self.task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the background loop"""
        if self.running:
            logger.warning("Auction scheduler already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info(f"Auction scheduler started (interval: {self.interval}s)")

    async def stop(self) -> None:
        """Stop the background loop"""
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("Auction scheduler stopped")

    async def _run(self) -> None:
        while self.running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in auction scheduler: {e}")
            await asyncio.sleep(self.interval)

    async def tick(self) -> int:
        """One scheduling pass, skipped if another replica holds the scheduler lock."""
        if self.redis_service is None:
            return await self.run_once()

        try:
            acquired, owner_id = await self.redis_service.acquire_lock(
                SCHEDULER_LOCK, ttl=max(1, int(self.interval * 2))
            )
        except RedisError as e:
            # The lock only avoids duplicate scans; CAS keeps a lock-less pass safe
            logger.warning(f"Scheduler lock unavailable, scanning anyway: {e}")
            return await self.run_once()

        if not acquired:
            return 0
        try:
            return await self.run_once()
        finally:
            try:
                await self.redis_service.release_lock(SCHEDULER_LOCK, owner_id)
            except RedisError as e:
                logger.warning(f"Failed to release scheduler lock: {e}")

    async def run_once(self) -> int:
        """Apply every due transition.

        Returns:
            Number of transitions applied
        """
        now = self.clock.now()
        due = await self.store.find_due(now)
        applied = 0

        for auction in due:
            try:
                applied += await self._advance(auction.auction_id)
            except InvalidTransition as e:
                logger.warning(f"Skipping auction {auction.auction_id}: {e}")

        if applied:
            logger.info(f"Scheduler applied {applied} transitions")
        return applied

    async def _advance(self, auction_id: UUID) -> int:
        """Move one auction forward until nothing more is due.

        A Scheduled auction whose end time has also passed is opened and then
        closed in the same pass.
        """
        applied = 0
        attempts = 0

        while attempts < MAX_TRANSITION_ATTEMPTS:
            auction = await self.store.get(auction_id)
            if auction is None:
                return applied

            now = self.clock.now()
            target = self.state_machine.due_transition(auction, now)
            if target is None:
                return applied

            new_state = self.state_machine.transition(auction, target, now)
            try:
                await self.store.compare_and_set(auction.version, new_state)
            except ConcurrentModification:
                attempts += 1
                record_cas_conflict("scheduler")
                logger.debug(f"Scheduler lost version race on auction {auction_id}, re-reading")
                continue

            applied += 1
            await self._after_transition(auction, new_state)

        logger.warning(
            f"Scheduler gave up on auction {auction_id} after {MAX_TRANSITION_ATTEMPTS} conflicts"
        )
        return applied

    async def _after_transition(self, previous: AuctionState, new_state: AuctionState) -> None:
        transition = f"{previous.status.value}_to_{new_state.status.value}"
        record_transition(transition)
        logger.info(
            f"Auction {transition}",
            extra={"auction_id": new_state.auction_id},
        )

        if self.state_cache is not None:
            await self.state_cache.put(new_state)
        if self.notifier is not None:
            self.notifier.broadcast(new_state.auction_id, build_status_event(new_state))
