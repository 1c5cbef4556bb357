"""Tests for analytics domain events."""

from __future__ import annotations

from datetime import datetime, timezone

from domain.events.analytics_events import (
    ANOMALY_DETECTED,
    PATTERN_DETECTED,
    SOURCE_DATA_EVENTS,
    AnomalyDetected,
    PatternDetected,
)


def test_event_names():
    assert PATTERN_DETECTED == "analytics.pattern-detected"
    assert ANOMALY_DETECTED == "analytics.anomaly-detected"


def test_pattern_detected_payload():
    ts = datetime(2026, 2, 17, 12, 0, tzinfo=timezone.utc)
    payload = PatternDetected(
        timestamp=ts, item_id=4, branch_id=None, confidence_score=0.75, is_new_pattern=True
    ).to_payload()

    assert payload == {
        "timestamp": "2026-02-17T12:00:00+00:00",
        "source": "PatternRecognitionService",
        "event_type": PATTERN_DETECTED,
        "item_id": 4,
        "branch_id": None,
        "confidence_score": 0.75,
        "is_new_pattern": True,
    }


def test_anomaly_detected_payload():
    payload = AnomalyDetected(
        invoice_id=9, item_id=4, branch_id=2, anomaly_type="BOTH", deviation=3.5
    ).to_payload()

    assert payload["event_type"] == ANOMALY_DETECTED
    assert payload["invoice_id"] == 9
    assert payload["anomaly_type"] == "BOTH"
    assert payload["deviation"] == 3.5
    assert isinstance(payload["timestamp"], str)


def test_timestamp_defaults_to_now():
    event = PatternDetected(item_id=1)
    assert event.timestamp.tzinfo is not None


def test_source_data_events():
    assert SOURCE_DATA_EVENTS == ("invoice.approved", "purchase-order.status-changed")
