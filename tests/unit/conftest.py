"""Shared fixtures for unit tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from application.services.cache_aside import CacheAside
from domain.models.analytics import OrderObservation
from domain.services.pattern_analyzer import PatternAnalyzer
from infrastructure.adapters import (
    InMemoryCacheStore,
    InMemoryOrderHistoryRepository,
    InMemoryPriceObservationRepository,
    InMemoryPurchasePatternRepository,
    InMemorySpendAggregateRepository,
    InProcessEventChannel,
    InvoiceLineRecord,
)

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)
ITEM_ID = 101
BRANCH_ID = 7
VENDOR_ID = 3


def _make_orders(
    quantities: list[float],
    *,
    start: datetime = NOW - timedelta(days=70),
    every_days: float = 7,
    price: float = 10.0,
) -> list[OrderObservation]:
    """One order per quantity, evenly spaced, oldest first."""
    return [
        OrderObservation(
            invoice_id=index + 1,
            date=start + timedelta(days=every_days * index),
            quantity=quantity,
            price=price,
        )
        for index, quantity in enumerate(quantities)
    ]


def _add_history(
    repo: InMemoryOrderHistoryRepository,
    orders: list[OrderObservation],
    *,
    item_id: int = ITEM_ID,
    branch_id: int | None = BRANCH_ID,
    vendor_id: int = VENDOR_ID,
) -> None:
    for order in orders:
        repo.add(
            InvoiceLineRecord(
                invoice_id=order.invoice_id,
                item_id=item_id,
                date=order.date,
                quantity=order.quantity,
                price=order.price,
                vendor_id=vendor_id,
                branch_id=branch_id,
            )
        )


class RecordingPublisher:
    """Event publisher double that keeps every published event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def publish(self, event_name: str, payload: dict) -> None:
        self.events.append((event_name, payload))

    def named(self, event_name: str) -> list[dict]:
        return [payload for name, payload in self.events if name == event_name]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def analyzer() -> PatternAnalyzer:
    return PatternAnalyzer(min_invoices_for_pattern=5)


@pytest.fixture
def order_repo() -> InMemoryOrderHistoryRepository:
    return InMemoryOrderHistoryRepository()


@pytest.fixture
def pattern_repo() -> InMemoryPurchasePatternRepository:
    return InMemoryPurchasePatternRepository()


@pytest.fixture
def price_repo(order_repo: InMemoryOrderHistoryRepository) -> InMemoryPriceObservationRepository:
    return InMemoryPriceObservationRepository(order_repo)


@pytest.fixture
def spend_repo() -> InMemorySpendAggregateRepository:
    return InMemorySpendAggregateRepository()


@pytest.fixture
def cache_store() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def cache(cache_store: InMemoryCacheStore) -> CacheAside:
    return CacheAside(cache_store, timeout_seconds=1.0, soft_fail=True)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def event_channel() -> InProcessEventChannel:
    return InProcessEventChannel()


@pytest.fixture
def make_orders():
    """Factory: ``make_orders([10, 12, ...], every_days=7, price=10.0)``."""
    return _make_orders


@pytest.fixture
def add_history():
    """Loader: ``add_history(order_repo, orders, branch_id=..., item_id=...)``."""
    return _add_history
