"""WebSocket connection manager for real-time auction updates."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from auction_engine.schemas.auction import AuctionState
from auction_engine.schemas.bid import BidRecord
from auction_engine.schemas.ws import (
    AuctionStatusData,
    AuctionStatusEvent,
    BidAcceptedData,
    BidAcceptedEvent,
    OutbidData,
    OutbidEvent,
)

logger = logging.getLogger(__name__)

STATUS_EVENTS = {
    "open": "auction_opened",
    "closed": "auction_closed",
    "cancelled": "auction_cancelled",
    "settled": "auction_settled",
}


class ConnectionManager:
    """Manages WebSocket connections organized by auction rooms.

    Structure: {auction_id: {user_id: WebSocket}}
    """

    def __init__(self):
        self.active_connections: dict[str, dict[str, WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(
        self, auction_id: str, user_id: str, websocket: WebSocket
    ) -> None:
        """Accept connection and add to auction room."""
        await websocket.accept()

        async with self._lock:
            room = self.active_connections.setdefault(auction_id, {})

            # If user already has a connection, close the old one
            old_ws = room.get(user_id)
            if old_ws is not None:
                try:
                    await old_ws.close()
                except Exception as e:
                    logger.debug(f"Closing stale websocket for user {user_id} failed: {e}")

            room[user_id] = websocket
            logger.info(
                f"WebSocket connected: auction={auction_id}, user={user_id}, "
                f"room_size={len(room)}"
            )

    async def disconnect(self, auction_id: str, user_id: str) -> None:
        """Remove connection from auction room."""
        async with self._lock:
            room = self.active_connections.get(auction_id)
            if room is None:
                return
            if room.pop(user_id, None) is not None:
                logger.info(f"WebSocket disconnected: auction={auction_id}, user={user_id}")

            # Clean up empty rooms
            if not room:
                del self.active_connections[auction_id]

    async def send_to_user(
        self, auction_id: str, user_id: str, message: dict[str, Any]
    ) -> bool:
        """Send message to a specific user watching an auction.

        Returns:
            True if message was sent, False if user not connected
        """
        websocket = self.active_connections.get(auction_id, {}).get(user_id)
        if websocket is None:
            return False

        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"Failed to send to user {user_id}: {e}")
            await self.disconnect(auction_id, user_id)
            return False

    async def broadcast_to_auction(
        self, auction_id: str, message: dict[str, Any]
    ) -> int:
        """Broadcast message to all users in an auction room using concurrent sends.

        Returns:
            Number of users successfully sent to
        """
        # Copy to avoid modification during iteration
        connections = dict(self.active_connections.get(auction_id, {}))
        if not connections:
            return 0

        async def send_to_one(user_id: str, ws: WebSocket) -> tuple[str, bool]:
            try:
                await ws.send_json(message)
                return (user_id, True)
            except Exception as e:
                logger.warning(f"Failed to broadcast to user {user_id}: {e}")
                return (user_id, False)

        results = await asyncio.gather(
            *[send_to_one(uid, ws) for uid, ws in connections.items()]
        )

        sent_count = 0
        for user_id, success in results:
            if success:
                sent_count += 1
            else:
                await self.disconnect(auction_id, user_id)

        return sent_count

    def get_room_size(self, auction_id: str) -> int:
        """Get number of connected users in an auction room."""
        return len(self.active_connections.get(auction_id, {}))

    def get_connected_users(self, auction_id: str) -> list[str]:
        """Get list of user IDs connected to an auction."""
        return list(self.active_connections.get(auction_id, {}).keys())


# Global singleton instance
manager = ConnectionManager()


def build_outbid_event(auction_id: str, new_amount: int) -> dict[str, Any]:
    event = OutbidEvent(
        data=OutbidData(
            auction_id=auction_id,
            new_amount=new_amount,
            timestamp=datetime.now(timezone.utc),
        )
    )
    return event.model_dump(mode="json")


def build_bid_accepted_event(bid: BidRecord) -> dict[str, Any]:
    event = BidAcceptedEvent(
        data=BidAcceptedData(
            bid_id=str(bid.bid_id),
            auction_id=str(bid.auction_id),
            bidder_id=str(bid.bidder_id),
            amount=bid.amount,
            sequence_number=bid.sequence_number,
            timestamp=datetime.now(timezone.utc),
        )
    )
    return event.model_dump(mode="json")


def build_status_event(auction: AuctionState) -> dict[str, Any]:
    event = AuctionStatusEvent(
        event=STATUS_EVENTS[auction.status.value],
        data=AuctionStatusData(
            auction_id=str(auction.auction_id),
            status=auction.status.value,
            current_high_bid=auction.current_high_bid,
            current_high_bidder_id=(
                str(auction.current_high_bidder_id)
                if auction.current_high_bidder_id
                else None
            ),
            timestamp=datetime.now(timezone.utc),
        ),
    )
    return event.model_dump(mode="json")
