import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from auction_engine.api.deps import get_registry
from auction_engine.api.v1 import auctions, ws
from auction_engine.core.config import settings
from auction_engine.core.logging_config import setup_logging
from auction_engine.core.redis import close_redis
from auction_engine.middleware.metrics import PrometheusMiddleware, metrics_endpoint
from auction_engine.middleware.tracing import TracingMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()
    logger.info(f"Starting auction engine (store backend: {settings.STORE_BACKEND})")

    registry = await get_registry()

    # Start background tasks
    await registry.notifier.start()
    if settings.SCHEDULER_ENABLED:
        await registry.scheduler.start()
    else:
        logger.info("Auction scheduler disabled")

    yield

    # Shutdown
    logger.info("Stopping background tasks")
    await registry.scheduler.stop()
    await registry.notifier.stop()

    if settings.REDIS_ENABLED:
        await close_redis()


app = FastAPI(
    title="Auction Engine",
    version="1.0.0",
    description="Auction lifecycle and bid consistency engine",
    lifespan=lifespan,
)

# Prometheus Metrics Middleware (must be first to capture all requests)
app.add_middleware(PrometheusMiddleware)

app.add_middleware(TracingMiddleware)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include API routers
app.include_router(auctions.router, prefix="/api/v1/auctions", tags=["auctions"])

# WebSocket router (no prefix, endpoint is /ws/auctions/{auction_id})
app.include_router(ws.router, tags=["websocket"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# Prometheus metrics endpoint
app.add_route("/metrics", metrics_endpoint)
