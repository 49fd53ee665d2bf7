"""API dependencies for caller identity and service access."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from auction_engine.core.clock import Clock, SystemClock
from auction_engine.core.config import settings
from auction_engine.core.database import async_session_maker
from auction_engine.core.redis import get_redis
from auction_engine.schemas.identity import Identity
from auction_engine.services.auction_scheduler import AuctionScheduler
from auction_engine.services.auction_service import AuctionService
from auction_engine.services.auction_store import (
    AuctionStore,
    InMemoryAuctionStore,
    SqlAuctionStore,
)
from auction_engine.services.bidding_service import BiddingService
from auction_engine.services.notification_service import NotificationDispatcher
from auction_engine.services.redis_service import RedisService
from auction_engine.services.state_cache import AuctionStateCache
from auction_engine.services.state_machine import AuctionStateMachine
from auction_engine.services.ws_manager import ConnectionManager, manager


# =============================================================================
# Caller identity
# Supplied by the upstream gateway; trusted as-is
# =============================================================================

async def get_identity(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str, Header()] = "user",
) -> Identity:
    """Build the caller identity from gateway headers.

    Raises:
        HTTPException: 401 if the user id is missing or malformed
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )

    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header",
        )

    role = x_user_role.lower()
    if role not in ("user", "admin"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Role header",
        )

    return Identity(user_id=user_id, role=role)


async def get_admin_identity(
    identity: Annotated[Identity, Depends(get_identity)],
) -> Identity:
    """Get caller identity and verify they are an admin.

    Raises:
        HTTPException: If caller is not an admin
    """
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return identity


# =============================================================================
# Service wiring
# One instance of each collaborator per process, shared by every request and
# by the background scheduler
# =============================================================================

class ServiceRegistry:
    """Process-wide wiring of store, caches, notifier and services."""

    def __init__(
        self,
        store: AuctionStore,
        redis_service: RedisService | None = None,
        clock: Clock | None = None,
        connection_manager: ConnectionManager | None = None,
    ):
        self.store = store
        self.redis_service = redis_service
        self.clock = clock or SystemClock()
        self.state_machine = AuctionStateMachine()
        self.state_cache = AuctionStateCache(redis_service)
        self.notifier = NotificationDispatcher(connection_manager, redis_service)
        self.bidding = BiddingService(
            store,
            state_machine=self.state_machine,
            clock=self.clock,
            notifier=self.notifier,
            state_cache=self.state_cache,
            redis_service=redis_service,
        )
        self.auctions = AuctionService(
            store,
            state_machine=self.state_machine,
            clock=self.clock,
            notifier=self.notifier,
            state_cache=self.state_cache,
        )
        self.scheduler = AuctionScheduler(
            store,
            state_machine=self.state_machine,
            clock=self.clock,
            notifier=self.notifier,
            state_cache=self.state_cache,
            redis_service=redis_service,
        )


_registry: ServiceRegistry | None = None


def build_store() -> AuctionStore:
    if settings.STORE_BACKEND == "memory":
        return InMemoryAuctionStore()
    return SqlAuctionStore(async_session_maker)


async def get_registry() -> ServiceRegistry:
    """Get or create the process-wide service registry."""
    global _registry
    if _registry is None:
        redis_service = RedisService(await get_redis()) if settings.REDIS_ENABLED else None
        _registry = ServiceRegistry(build_store(), redis_service, connection_manager=manager)
    return _registry


async def get_bidding_service(
    registry: Annotated[ServiceRegistry, Depends(get_registry)],
) -> BiddingService:
    return registry.bidding


async def get_auction_service(
    registry: Annotated[ServiceRegistry, Depends(get_registry)],
) -> AuctionService:
    return registry.auctions


# Type aliases for cleaner dependency injection
CurrentIdentity = Annotated[Identity, Depends(get_identity)]
AdminIdentity = Annotated[Identity, Depends(get_admin_identity)]
BiddingServiceDep = Annotated[BiddingService, Depends(get_bidding_service)]
AuctionServiceDep = Annotated[AuctionService, Depends(get_auction_service)]
