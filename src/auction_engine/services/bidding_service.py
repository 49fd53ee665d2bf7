"""Bidding service: one bid submission, end to end.

Flow per attempt:
1. Read the auction snapshot from the store
2. Evaluate the candidate bid against it (pure state machine)
3. Conditionally write the new state plus the ledger entry, keyed on the
   version read in step 1

Losing the version race re-runs the whole attempt against fresh state, so the
outcome matches applying bids one at a time in commit order. Evaluation runs
concurrently; only the conditional write serializes.
"""

import asyncio
import logging
import random
import time
from uuid import UUID

from redis.exceptions import RedisError

from auction_engine.core.clock import Clock, SystemClock
from auction_engine.core.config import settings
from auction_engine.core.exceptions import (
    AuctionEngineError,
    AuctionNotFound,
    BidInProgress,
    ConcurrentModification,
)
from auction_engine.middleware.metrics import record_bid_outcome, record_cas_conflict
from auction_engine.schemas.auction import AuctionState
from auction_engine.schemas.bid import BidRecord, BidResult, CandidateBid
from auction_engine.schemas.identity import Identity
from auction_engine.services.auction_store import AuctionStore
from auction_engine.services.notification_service import NotificationDispatcher
from auction_engine.services.redis_service import RedisService
from auction_engine.services.state_cache import AuctionStateCache
from auction_engine.services.state_machine import Accepted, AuctionStateMachine
from auction_engine.services.ws_manager import build_bid_accepted_event

logger = logging.getLogger(__name__)


class BiddingService:
    """Service class for bid submission."""

    def __init__(
        self,
        store: AuctionStore,
        state_machine: AuctionStateMachine | None = None,
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
        state_cache: AuctionStateCache | None = None,
        redis_service: RedisService | None = None,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
    ):
        self.store = store
        self.state_machine = state_machine or AuctionStateMachine()
        self.clock = clock or SystemClock()
        self.notifier = notifier
        self.state_cache = state_cache
        self.redis_service = redis_service
        self.max_retries = max_retries or settings.BID_MAX_RETRIES
        self.retry_backoff = (
            settings.BID_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        )

    async def submit_bid(
        self,
        auction_id: UUID,
        bidder: Identity,
        amount: int,
        idempotency_key: str | None = None,
    ) -> BidResult:
        """Submit a bid and return whether it was accepted.

        Validation failures come back as ``BidResult(accepted=False, reason=...)``
        and are never retried. Version conflicts are retried up to
        ``max_retries`` attempts.

        Args:
            auction_id: Auction UUID
            bidder: Authenticated caller
            amount: Bid amount in minor units
            idempotency_key: Optional caller key; a replay returns the first result

        Returns:
            BidResult with the post-decision auction snapshot

        Raises:
            AuctionNotFound: Auction does not exist
            ConcurrentModification: Every attempt lost the version race
            StoreUnavailable: Store failed persistently
            BidInProgress: A duplicate with the same key is still running
        """
        start = time.perf_counter()

        replay_key = None
        if idempotency_key and self.redis_service is not None:
            replay_key = f"{auction_id}:{bidder.user_id}:{idempotency_key}"
            claimed = await self._claim_replay(replay_key)
            if claimed is None:
                replay_key = None
            elif not claimed:
                try:
                    previous = await self._await_replay(replay_key, auction_id)
                except BidInProgress as e:
                    record_bid_outcome(e.code.lower(), time.perf_counter() - start)
                    raise
                logger.info(
                    "Idempotent bid replay",
                    extra={"auction_id": auction_id, "bidder_id": bidder.user_id},
                )
                return previous

        try:
            result = await self._submit_with_retry(auction_id, bidder.user_id, amount)
        except AuctionEngineError as e:
            outcome = "conflict" if isinstance(e, ConcurrentModification) else e.code.lower()
            record_bid_outcome(outcome, time.perf_counter() - start)
            if replay_key is not None:
                await self._release_replay(replay_key)
            raise

        outcome = "accepted" if result.accepted else result.reason.value.lower()
        record_bid_outcome(outcome, time.perf_counter() - start)

        if replay_key is not None:
            await self._store_replay(replay_key, result)

        return result

    async def _submit_with_retry(
        self, auction_id: UUID, bidder_id: UUID, amount: int
    ) -> BidResult:
        for attempt in range(1, self.max_retries + 1):
            auction = await self.store.get(auction_id)
            if auction is None:
                raise AuctionNotFound(auction_id)

            candidate = CandidateBid(
                auction_id=auction_id,
                bidder_id=bidder_id,
                amount=amount,
                submitted_at=self.clock.now(),
            )
            decision = self.state_machine.evaluate(auction, candidate, candidate.submitted_at)

            if not isinstance(decision, Accepted):
                logger.info(
                    f"Bid rejected: {decision.reason.value}",
                    extra={"auction_id": auction_id, "bidder_id": bidder_id},
                )
                return BidResult(
                    accepted=False, reason=decision.reason, auction=auction, attempts=attempt
                )

            try:
                record = await self.store.compare_and_set(
                    auction.version, decision.new_state, candidate
                )
            except ConcurrentModification:
                record_cas_conflict("bidding")
                logger.debug(
                    f"Version conflict on attempt {attempt}/{self.max_retries}",
                    extra={"auction_id": auction_id, "bidder_id": bidder_id},
                )
                if attempt < self.max_retries:
                    await self._backoff(attempt)
                continue

            await self._after_accept(auction, decision.new_state, record)
            logger.info(
                f"Bid accepted: amount={amount} seq={record.sequence_number}",
                extra={"auction_id": auction_id, "bidder_id": bidder_id, "bid_id": record.bid_id},
            )
            return BidResult(
                accepted=True, auction=decision.new_state, bid=record, attempts=attempt
            )

        logger.warning(
            f"Bid gave up after {self.max_retries} conflicting attempts",
            extra={"auction_id": auction_id, "bidder_id": bidder_id},
        )
        raise ConcurrentModification(auction_id, auction.version)

    async def _backoff(self, attempt: int) -> None:
        if self.retry_backoff <= 0:
            await asyncio.sleep(0)
            return
        await asyncio.sleep(random.uniform(0, self.retry_backoff * (2 ** (attempt - 1))))

    async def _after_accept(
        self, previous: AuctionState, new_state: AuctionState, record: BidRecord
    ) -> None:
        """Post-commit side effects. None of these can undo the accepted bid."""
        if self.state_cache is not None:
            await self.state_cache.put(new_state)

        if self.notifier is None:
            return
        if (
            previous.current_high_bidder_id is not None
            and previous.current_high_bidder_id != record.bidder_id
        ):
            self.notifier.notify_outbid(
                previous.current_high_bidder_id, record.auction_id, record.amount
            )
        self.notifier.broadcast(record.auction_id, build_bid_accepted_event(record))

    async def _claim_replay(self, key: str) -> bool | None:
        """Reserve ``key`` for this submission. None means Redis is unavailable."""
        try:
            return await self.redis_service.reserve_idempotency_key(
                key, ttl=settings.IDEMPOTENCY_PENDING_TTL_SECONDS
            )
        except RedisError as e:
            logger.warning(f"Idempotency reservation failed, processing bid normally: {e}")
            return None

    async def _await_replay(self, key: str, auction_id: UUID) -> BidResult:
        """Wait for the submission that holds ``key`` to store its result."""
        for attempt in range(1, self.max_retries + 1):
            previous = await self._load_replay(key)
            if previous is not None:
                return previous
            await self._backoff(attempt)
        raise BidInProgress(auction_id)

    async def _release_replay(self, key: str) -> None:
        try:
            await self.redis_service.release_idempotency_key(key)
        except RedisError as e:
            logger.warning(f"Failed to release idempotency key: {e}")

    async def _load_replay(self, key: str) -> BidResult | None:
        try:
            data = await self.redis_service.get_idempotent_result(key)
        except RedisError as e:
            logger.warning(f"Idempotency lookup failed, processing bid normally: {e}")
            return None
        return BidResult.model_validate(data) if data else None

    async def _store_replay(self, key: str, result: BidResult) -> None:
        try:
            await self.redis_service.store_idempotent_result(
                key, result.model_dump(mode="json"), ttl=settings.IDEMPOTENCY_TTL_SECONDS
            )
        except RedisError as e:
            logger.warning(f"Failed to store idempotent bid result: {e}")

    async def get_auction_state(self, auction_id: UUID) -> AuctionState:
        """Latest auction snapshot, served from cache when possible.

        Raises:
            AuctionNotFound: Auction does not exist
        """
        if self.state_cache is not None:
            cached = await self.state_cache.get(auction_id)
            if cached is not None:
                return cached

        auction = await self.store.get(auction_id)
        if auction is None:
            raise AuctionNotFound(auction_id)

        if self.state_cache is not None:
            await self.state_cache.put(auction)
        return auction
