from auction_engine.core.config import settings
from auction_engine.core.database import Base, async_session_maker, engine
from auction_engine.core.redis import close_redis, get_redis

__all__ = [
    "settings",
    "Base",
    "engine",
    "async_session_maker",
    "get_redis",
    "close_redis",
]
