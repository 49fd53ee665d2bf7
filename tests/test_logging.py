"""Tests for structured log output."""

import json
import logging
from uuid import uuid4

from auction_engine.core.logging_config import (
    AuctionJsonFormatter,
    generate_trace_id,
    get_trace_id,
    set_trace_id,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="auction_engine.services.bidding_service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Bid accepted",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Test the JSON formatter fields."""

    def test_context_fields(self):
        formatter = AuctionJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
        auction_id = uuid4()
        set_trace_id("trace-abc")

        output = json.loads(formatter.format(_record(auction_id=auction_id)))

        assert output["message"] == "Bid accepted"
        assert output["level"] == "INFO"
        assert output["service"] == "auction-engine"
        assert output["trace_id"] == "trace-abc"
        assert output["auction_id"] == str(auction_id)

    def test_trace_id_helpers(self):
        trace_id = generate_trace_id()
        set_trace_id(trace_id)

        assert get_trace_id() == trace_id
        assert generate_trace_id() != trace_id
