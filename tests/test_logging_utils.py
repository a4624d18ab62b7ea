"""Tests for structured JSON logging helpers."""

import json
import logging
import unittest

from linkhive.core.logging_utils import (
    CorrelationIdFilter,
    EnhancedJsonFormatter,
    correlation_scope,
    current_correlation_id,
    generate_correlation_id,
    truncate_log_content,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="linkhive.sync.engine",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="sync_merged",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestEnhancedJsonFormatter(unittest.TestCase):
    def test_groups_sync_and_timing_fields(self):
        formatter = EnhancedJsonFormatter(include_location=False)

        payload = json.loads(
            formatter.format(
                _record(
                    correlation_id="abc123",
                    entity_kind="links",
                    pending_count=2,
                    latency_ms=12,
                    count=5,
                )
            )
        )

        assert payload["event"] == "sync_merged"
        assert payload["correlation_id"] == "abc123"
        assert payload["sync"] == {"entity_kind": "links", "pending_count": 2}
        assert payload["timing"] == {"latency_ms": 12}
        assert payload["extra"] == {"count": 5}
        assert "location" not in payload

    def test_enum_values_are_serialised(self):
        from linkhive.domain.models import EntityKind

        formatter = EnhancedJsonFormatter()

        payload = json.loads(formatter.format(_record(target=EntityKind.COLLECTIONS)))

        assert payload["extra"]["target"] == "collections"
        assert payload["location"].endswith(":1")


class TestCorrelationScope(unittest.TestCase):
    def test_scope_binds_and_restores(self):
        assert current_correlation_id() is None

        with correlation_scope() as outer:
            assert current_correlation_id() == outer
            with correlation_scope() as nested:
                assert nested == outer
            with correlation_scope("explicit") as explicit:
                assert explicit == "explicit"
            assert current_correlation_id() == outer

        assert current_correlation_id() is None

    def test_filter_stamps_records_inside_scope(self):
        log_filter = CorrelationIdFilter()
        outside = _record()
        log_filter.filter(outside)
        assert getattr(outside, "correlation_id", None) is None

        with correlation_scope("run-1"):
            stamped = _record()
            kept = _record(correlation_id="call-site")
            assert log_filter.filter(stamped)
            assert log_filter.filter(kept)

        assert stamped.correlation_id == "run-1"
        assert kept.correlation_id == "call-site"


class TestHelpers(unittest.TestCase):
    def test_correlation_ids_are_short_and_unique(self):
        ids = {generate_correlation_id() for _ in range(50)}

        assert len(ids) == 50
        assert all(len(value) == 12 for value in ids)

    def test_truncate_log_content(self):
        assert truncate_log_content(None) is None
        assert truncate_log_content("short") == "short"
        assert truncate_log_content("x" * 20, max_length=5) == "xxxxx... [truncated]"


if __name__ == "__main__":
    unittest.main()
