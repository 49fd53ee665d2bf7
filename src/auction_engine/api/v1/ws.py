"""WebSocket endpoint for real-time auction updates."""

import logging
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from auction_engine.services.ws_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/auctions/{auction_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    auction_id: str,
    user_id: str = Query(..., description="Caller user id, as issued by the gateway"),
):
    """WebSocket endpoint for one auction room.

    Connection URL: ws://host/ws/auctions/{auction_id}?user_id={uuid}

    Events pushed to client:
    - outbid: Sent only to the bidder who just lost the lead
    - bid_accepted: Any accepted bid in this auction
    - auction_opened / auction_closed / auction_cancelled / auction_settled

    Client can send:
    - ping: Server responds with pong (heartbeat)
    """
    try:
        UUID(user_id)
    except ValueError:
        await websocket.close(code=4001, reason="Invalid user id")
        return

    try:
        UUID(auction_id)
    except ValueError:
        await websocket.close(code=4002, reason="Invalid auction ID")
        return

    await manager.connect(auction_id, user_id, websocket)

    try:
        while True:
            data = await websocket.receive_text()

            if data == "ping":
                await websocket.send_text("pong")

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: auction={auction_id}, user={user_id}")
    except Exception as e:
        logger.error(f"WebSocket error: auction={auction_id}, user={user_id}, error={e}")
    finally:
        await manager.disconnect(auction_id, user_id)
