from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

PATTERN_DETECTED = "analytics.pattern-detected"
ANOMALY_DETECTED = "analytics.anomaly-detected"


@dataclass
class AnalyticsEvent:
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    source: str = ""
    event_type: str = ""

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        return payload


@dataclass
class PatternDetected(AnalyticsEvent):
    event_type: str = PATTERN_DETECTED
    source: str = "PatternRecognitionService"
    item_id: int = 0
    branch_id: int | None = None
    confidence_score: float = 0.0
    is_new_pattern: bool = False


@dataclass
class AnomalyDetected(AnalyticsEvent):
    event_type: str = ANOMALY_DETECTED
    source: str = "PatternRecognitionService"
    invoice_id: int = 0
    item_id: int = 0
    branch_id: int | None = None
    anomaly_type: str = ""
    deviation: float = 0.0


# Source-data changes published by the invoicing and purchasing side; any of
# them can make cached analytics stale.
INVOICE_APPROVED = "invoice.approved"
PO_STATUS_CHANGED = "purchase-order.status-changed"
SOURCE_DATA_EVENTS = (INVOICE_APPROVED, PO_STATUS_CHANGED)
