"""Tests for the pipeline data model."""

import json
import time
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from ethicrawler_shield.events import (
    ClassificationEvent,
    RetryRecord,
    correlation_id_from_retry_key,
    generate_correlation_id,
    retry_key_for,
    utc_timestamp,
)


@pytest.fixture
def event():
    return ClassificationEvent(
        site_id="site-123",
        user_agent="GPTBot/1.0",
        ip_address="203.0.113.1",
        path="/blog?page=2",
        timestamp="2024-05-01T12:00:00+00:00",
    )


class TestUtcTimestamp:

    def test_format(self):
        now = datetime(2024, 5, 1, 12, 30, 45, 123456, tzinfo=timezone.utc)
        assert utc_timestamp(now) == "2024-05-01T12:30:45+00:00"

    def test_converts_to_utc(self):
        local = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert utc_timestamp(local) == "2024-05-01T12:00:00+00:00"

    def test_default_is_now(self):
        parsed = datetime.fromisoformat(utc_timestamp())
        assert parsed.tzinfo is not None
        assert abs((datetime.now(timezone.utc) - parsed).total_seconds()) < 5


class TestClassificationEvent:

    def test_wire_format_has_exactly_five_fields(self, event):
        assert set(event.to_wire()) == {"site_id", "user_agent", "ip_address", "path", "timestamp"}

    def test_wire_round_trip(self, event):
        parsed = ClassificationEvent.from_wire(json.loads(event.to_json()))
        assert parsed == event
        assert parsed.to_wire() == event.to_wire()

    def test_timestamp_defaults_to_now(self):
        event = ClassificationEvent(site_id="s", user_agent="curl", ip_address="", path="/")
        assert event.timestamp.endswith("+00:00")

    def test_immutable(self, event):
        with pytest.raises(ValidationError):
            event.site_id = "other"


class TestCorrelationIds:

    def test_correlation_id_is_md5_hex(self, event):
        correlation_id = generate_correlation_id(event)
        assert len(correlation_id) == 32
        int(correlation_id, 16)

    def test_correlation_ids_differ_for_same_event(self, event):
        first = generate_correlation_id(event)
        time.sleep(0.001)
        assert generate_correlation_id(event) != first

    def test_retry_key_round_trip(self):
        key = retry_key_for("abc123")
        assert key == "ethicrawler_retry_abc123"
        assert correlation_id_from_retry_key(key) == "abc123"

    def test_foreign_key_is_returned_unchanged(self):
        assert correlation_id_from_retry_key("something_else") == "something_else"


class TestRetryRecord:

    def test_remaining_ttl_and_expiry(self, event):
        record = RetryRecord(retry_key="k", payload=event, expiry=1000.0)
        assert record.attempt_count == 0
        assert record.remaining_ttl(now=400.0) == 600.0
        assert record.is_expired(now=999.0) is False
        assert record.is_expired(now=1000.0) is True

    def test_negative_attempt_count_rejected(self, event):
        with pytest.raises(ValidationError):
            RetryRecord(retry_key="k", payload=event, attempt_count=-1, expiry=1.0)

    def test_json_round_trip(self, event):
        record = RetryRecord(retry_key="k", payload=event, attempt_count=2, expiry=1234.5)
        assert RetryRecord.model_validate(record.model_dump(mode="json")) == record
