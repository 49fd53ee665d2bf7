"""Fire-and-forget delivery of outbid alerts and auction room events.

Producers only ever enqueue. A single background worker delivers to the
WebSocket rooms and to Redis pub/sub, so a slow or failing sink never holds up
bid acceptance and never reverses it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from auction_engine.core.config import settings
from auction_engine.middleware.metrics import NOTIFICATIONS_DROPPED
from auction_engine.services.redis_service import RedisService
from auction_engine.services.ws_manager import ConnectionManager, build_outbid_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    auction_id: str
    payload: dict[str, Any]
    # None means broadcast to the whole auction room
    user_id: str | None = None


class NotificationDispatcher:
    """Bounded queue plus one delivery worker."""

    def __init__(
        self,
        connection_manager: ConnectionManager | None = None,
        redis_service: RedisService | None = None,
        queue_size: int | None = None,
    ):
        self.connection_manager = connection_manager
        self.redis_service = redis_service
        self.queue: asyncio.Queue[Notification] = asyncio.Queue(
            maxsize=queue_size or settings.NOTIFICATION_QUEUE_SIZE
        )
        self.running = False
        self.task: asyncio.Task | None = None

    def notify_outbid(
        self, previous_bidder_id: UUID, auction_id: UUID, new_amount: int
    ) -> bool:
        """Queue an outbid alert for the bidder who lost the lead. Never blocks."""
        return self._enqueue(
            Notification(
                auction_id=str(auction_id),
                user_id=str(previous_bidder_id),
                payload=build_outbid_event(str(auction_id), new_amount),
            )
        )

    def broadcast(self, auction_id: UUID, payload: dict[str, Any]) -> bool:
        """Queue an event for everyone watching ``auction_id``. Never blocks."""
        return self._enqueue(Notification(auction_id=str(auction_id), payload=payload))

    def _enqueue(self, notification: Notification) -> bool:
        try:
            self.queue.put_nowait(notification)
            return True
        except asyncio.QueueFull:
            NOTIFICATIONS_DROPPED.inc()
            logger.warning(
                f"Notification queue full, dropping {notification.payload.get('event')} "
                f"for auction {notification.auction_id}"
            )
            return False

    async def start(self) -> None:
        """Start the delivery worker"""
        if self.running:
            logger.warning("Notification dispatcher already running")
            return
        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info("Notification dispatcher started")

    async def stop(self) -> None:
        """Stop the delivery worker. Undelivered notifications are dropped."""
        if not self.running:
            return
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("Notification dispatcher stopped")

    async def drain(self) -> None:
        """Wait until every queued notification has been handled."""
        await self.queue.join()

    async def _run(self) -> None:
        while self.running:
            notification = await self.queue.get()
            try:
                await self.deliver(notification)
            except Exception as e:
                logger.warning(
                    f"Notification delivery failed for auction {notification.auction_id}: {e}"
                )
            finally:
                self.queue.task_done()

    async def deliver(self, notification: Notification) -> None:
        if self.connection_manager is not None:
            if notification.user_id is not None:
                await self.connection_manager.send_to_user(
                    notification.auction_id, notification.user_id, notification.payload
                )
            else:
                await self.connection_manager.broadcast_to_auction(
                    notification.auction_id, notification.payload
                )

        if self.redis_service is not None:
            event = dict(notification.payload)
            if notification.user_id is not None:
                event["target_user_id"] = notification.user_id
            await self.redis_service.publish_auction_event(notification.auction_id, event)
