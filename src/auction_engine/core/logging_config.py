"""
Structured logging configuration with trace IDs
"""
import contextvars
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger.json import JsonFormatter

from auction_engine.core.config import settings

# Context variable to store trace ID across async calls
trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)

EXTRA_FIELDS = ("auction_id", "bidder_id", "bid_id", "duration_ms", "status_code")


class AuctionJsonFormatter(JsonFormatter):
    """JSON formatter that adds the trace ID and auction context fields."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "auction-engine"

        trace_id = trace_id_var.get()
        if trace_id:
            log_record["trace_id"] = trace_id

        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log_record[field] = str(getattr(record, field))


def setup_logging() -> logging.Logger:
    """Configure root logging. JSON output unless LOG_JSON is disabled."""
    handler = logging.StreamHandler()
    if settings.LOG_JSON:
        handler.setFormatter(AuctionJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL.upper())
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger


def get_trace_id() -> str | None:
    """Get current trace ID"""
    return trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Set trace ID for current context"""
    trace_id_var.set(trace_id)


def generate_trace_id() -> str:
    """Generate a new trace ID"""
    return str(uuid.uuid4())
