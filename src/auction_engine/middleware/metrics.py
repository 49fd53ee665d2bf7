"""Prometheus metrics for HTTP traffic, bidding outcomes, and lifecycle transitions."""
import re
import time
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

# Request metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_requests_active",
    "Number of active HTTP requests",
)

# Bid-specific metrics
BID_COUNTER = Counter(
    "bids_total",
    "Bid submissions by outcome",
    ["outcome"],  # accepted, rejection reason code, conflict, error
)

BID_LATENCY = Histogram(
    "bid_latency_seconds",
    "Bid processing latency in seconds",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)

CAS_CONFLICTS = Counter(
    "bid_cas_conflicts_total",
    "Conditional updates that lost the version race",
    ["source"],  # bidding, scheduler, admin
)

# Lifecycle metrics
SCHEDULER_TRANSITIONS = Counter(
    "scheduler_transitions_total",
    "Auction status transitions applied by the scheduler",
    ["transition"],
)

NOTIFICATIONS_DROPPED = Counter(
    "notifications_dropped_total",
    "Notifications dropped because the dispatch queue was full",
)


# =============================================================================
# Metrics Middleware
# =============================================================================

class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for all HTTP requests."""

    # Collapse ids in paths to keep label cardinality bounded
    ENDPOINT_PATTERNS = [
        (re.compile(r"^/api/v1/auctions/[^/]+/bids$"), "/api/v1/auctions/{id}/bids"),
        (re.compile(r"^/api/v1/auctions/[^/]+/ledger/verify$"), "/api/v1/auctions/{id}/ledger/verify"),
        (re.compile(r"^/api/v1/auctions/[^/]+/(cancel|settle)$"), r"/api/v1/auctions/{id}/\1"),
        (re.compile(r"^/api/v1/auctions/[^/]+$"), "/api/v1/auctions/{id}"),
        (re.compile(r"^/api/v1/auctions/?$"), "/api/v1/auctions"),
    ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            ACTIVE_REQUESTS.dec()
            latency = time.perf_counter() - start_time
            endpoint = self._normalize_endpoint(request.url.path)

            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status=status_code,
            ).inc()

            REQUEST_LATENCY.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(latency)

        return response

    def _normalize_endpoint(self, path: str) -> str:
        """Normalize endpoint path to reduce metric cardinality."""
        for pattern, normalized in self.ENDPOINT_PATTERNS:
            match = pattern.match(path)
            if match:
                return match.expand(normalized) if match.groups() else normalized

        if path.startswith("/ws"):
            return "/ws"
        if path in ("/health", "/metrics"):
            return path

        return "/other"


# =============================================================================
# Metrics Endpoint
# =============================================================================

async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics scrape endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


# =============================================================================
# Helper Functions for Manual Metric Recording
# =============================================================================

def record_bid_outcome(outcome: str, duration: float) -> None:
    """Record one bid submission outcome and its latency."""
    BID_COUNTER.labels(outcome=outcome).inc()
    BID_LATENCY.observe(duration)


def record_cas_conflict(source: str) -> None:
    CAS_CONFLICTS.labels(source=source).inc()


def record_transition(transition: str) -> None:
    SCHEDULER_TRANSITIONS.labels(transition=transition).inc()
