"""API v1 routers."""

from auction_engine.api.v1 import auctions, ws

__all__ = ["auctions", "ws"]
