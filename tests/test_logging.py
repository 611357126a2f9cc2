"""
Tests for structured JSON logging.

Tests cover:
- ISO-8601 UTC timestamps with a Z suffix
- correlation_id attached from the log context
"""

import json
import logging
from datetime import datetime, timedelta, timezone

from app.logging_utils import CustomJsonFormatter, correlation_context


def format_record(message="hello"):
    formatter = CustomJsonFormatter("%(message)s")
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, message, None, None)
    return json.loads(formatter.format(record))


class TestCustomJsonFormatter:
    def test_timestamp_is_current_utc(self):
        payload = format_record()

        assert payload["ts"].endswith("Z")
        ts = datetime.strptime(payload["ts"], "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)
        assert abs(datetime.now(timezone.utc) - ts) < timedelta(minutes=1)
        assert payload["level"] == "INFO"

    def test_correlation_id_from_context(self):
        with correlation_context("corr-42"):
            payload = format_record()
        assert payload["correlation_id"] == "corr-42"

        assert "correlation_id" not in format_record()
