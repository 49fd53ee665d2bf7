"""
Request tracing middleware
"""
import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from auction_engine.core.logging_config import generate_trace_id, set_trace_id

logger = logging.getLogger(__name__)

TRACE_HEADER = "X-Trace-ID"
QUIET_PATHS = ("/health", "/metrics")


class TracingMiddleware(BaseHTTPMiddleware):
    """Tag every request with a trace ID and log its start and completion."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or generate_trace_id()
        set_trace_id(trace_id)

        path = request.url.path
        quiet = path in QUIET_PATHS
        start_time = time.perf_counter()

        if not quiet:
            logger.info(
                f"Request started: {request.method} {path}",
                extra={"client_ip": request.client.host if request.client else None},
            )

        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {path}",
                extra={"duration_ms": round(duration_ms, 2)},
                exc_info=True,
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000
        if not quiet:
            logger.info(
                f"Request completed: {request.method} {path}",
                extra={
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        response.headers[TRACE_HEADER] = trace_id
        return response
