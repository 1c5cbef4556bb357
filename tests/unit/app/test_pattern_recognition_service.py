"""Unit tests for PatternRecognitionService analysis, lookup, prediction and anomalies."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from application.services.cache_aside import CacheAside
from application.services.pattern_recognition_service import PatternRecognitionService
from domain.events.analytics_events import ANOMALY_DETECTED, PATTERN_DETECTED
from domain.exceptions import CacheError, PatternRecognitionError
from domain.models.analytics import (
    AnomalyType,
    InsufficientData,
    PatternFound,
    PatternNotComputed,
    PurchasePattern,
)
from infrastructure.adapters import InvoiceLineRecord

NOW = datetime(2026, 2, 17, 12, 0, 0, tzinfo=timezone.utc)
ITEM_ID = 101
BRANCH_ID = 7


@pytest.fixture
def svc(order_repo, pattern_repo, cache, publisher, analyzer):
    return PatternRecognitionService(
        order_repo=order_repo,
        pattern_repo=pattern_repo,
        cache=cache,
        event_publisher=publisher,
        analyzer=analyzer,
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
class TestAnalyzePurchasePattern:

    async def test_insufficient_history(self, svc, order_repo, pattern_repo, publisher, make_orders, add_history):
        add_history(order_repo, make_orders([10, 12, 11]))

        result = await svc.analyze_purchase_pattern(ITEM_ID, BRANCH_ID)

        assert result == InsufficientData(order_count=3, min_required=5)
        assert result.found is False
        assert len(pattern_repo) == 0
        assert publisher.events == []

    async def test_unapproved_and_deleted_invoices_are_ignored(
        self, svc, order_repo, make_orders, add_history
    ):
        add_history(order_repo, make_orders([10, 12, 11, 9]))
        order_repo.add(
            InvoiceLineRecord(
                invoice_id=90, item_id=ITEM_ID, date=NOW, quantity=5, price=1,
                vendor_id=1, branch_id=BRANCH_ID, status="DRAFT",
            )
        )
        order_repo.add(
            InvoiceLineRecord(
                invoice_id=91, item_id=ITEM_ID, date=NOW, quantity=5, price=1,
                vendor_id=1, branch_id=BRANCH_ID, deleted=True,
            )
        )

        result = await svc.analyze_purchase_pattern(ITEM_ID, BRANCH_ID)

        assert isinstance(result, InsufficientData)
        assert result.order_count == 4

    async def test_pattern_found_persisted_and_cached(
        self, svc, order_repo, pattern_repo, cache_store, make_orders, add_history
    ):
        add_history(order_repo, make_orders([10, 10, 10, 10, 10], every_days=7))

        result = await svc.analyze_purchase_pattern(ITEM_ID, BRANCH_ID)

        assert isinstance(result, PatternFound)
        pattern = result.pattern
        assert pattern.avg_order_cycle_days == pytest.approx(7.0)
        assert pattern.based_on_invoices == 5
        assert pattern.next_predicted_order == pattern.last_order_date + timedelta(days=7)
        assert await pattern_repo.find(ITEM_ID, BRANCH_ID) is not None
        assert await cache_store.get(f"analytics:pattern:{ITEM_ID}:{BRANCH_ID}") is not None

    async def test_publishes_pattern_detected(self, svc, order_repo, publisher, make_orders, add_history):
        add_history(order_repo, make_orders([10, 11, 12, 13, 14]))

        result = await svc.analyze_purchase_pattern(ITEM_ID, BRANCH_ID)

        [payload] = publisher.named(PATTERN_DETECTED)
        assert payload["item_id"] == ITEM_ID
        assert payload["branch_id"] == BRANCH_ID
        assert payload["is_new_pattern"] is True
        assert payload["confidence_score"] == result.pattern.confidence_score

    async def test_reanalysis_upserts_single_row(
        self, svc, order_repo, pattern_repo, publisher, make_orders, add_history
    ):
        add_history(order_repo, make_orders([10, 11, 12, 13, 14]))
        await svc.analyze_purchase_pattern(ITEM_ID, BRANCH_ID)

        add_history(order_repo, [make_orders([50], start=NOW)[0]])
        second = await svc.analyze_purchase_pattern(ITEM_ID, BRANCH_ID)

        assert len(pattern_repo) == 1
        stored = await pattern_repo.find(ITEM_ID, BRANCH_ID)
        assert stored.based_on_invoices == 6
        assert stored == second.pattern
        assert [p["is_new_pattern"] for p in publisher.named(PATTERN_DETECTED)] == [True, False]

    async def test_network_wide_pattern_uses_all_branches(
        self, svc, order_repo, pattern_repo, make_orders, add_history
    ):
        add_history(order_repo, make_orders([10, 10, 10]), branch_id=1)
        add_history(order_repo, make_orders([10, 10], start=NOW - timedelta(days=3)), branch_id=2)

        result = await svc.analyze_purchase_pattern(ITEM_ID)

        assert isinstance(result, PatternFound)
        assert result.pattern.branch_id is None
        assert result.pattern.based_on_invoices == 5

    async def test_repository_failure_is_wrapped(self, pattern_repo, cache, publisher, analyzer):
        order_repo = AsyncMock()
        order_repo.get_order_history.side_effect = RuntimeError("connection reset")
        svc = PatternRecognitionService(order_repo, pattern_repo, cache, publisher, analyzer)

        with pytest.raises(PatternRecognitionError) as info:
            await svc.analyze_purchase_pattern(ITEM_ID)

        assert info.value.operation == "analyze_purchase_pattern"
        assert isinstance(info.value.cause, RuntimeError)
        assert info.value.__cause__ is info.value.cause


@pytest.mark.asyncio
class TestGetPurchasePattern:

    async def test_not_computed(self, svc):
        assert await svc.get_purchase_pattern(ITEM_ID, BRANCH_ID) == PatternNotComputed()

    async def test_reads_store_and_fills_cache(self, svc, pattern_repo, cache_store):
        await pattern_repo.upsert(PurchasePattern(item_id=ITEM_ID, branch_id=BRANCH_ID, updated_at=NOW))

        result = await svc.get_purchase_pattern(ITEM_ID, BRANCH_ID)

        assert isinstance(result, PatternFound)
        assert await cache_store.get(f"analytics:pattern:{ITEM_ID}:{BRANCH_ID}") is not None

    async def test_prefers_cache(self, svc, cache_store):
        cached = PurchasePattern(item_id=ITEM_ID, confidence_score=0.42, updated_at=NOW)
        await cache_store.set(f"analytics:pattern:{ITEM_ID}:all", cached.to_dict(), 60)

        result = await svc.get_purchase_pattern(ITEM_ID)

        assert result.pattern.confidence_score == 0.42

    async def test_strict_cache_fault_passes_through_unwrapped(
        self, order_repo, pattern_repo, publisher, analyzer
    ):
        store = AsyncMock()
        store.get.side_effect = CacheError("cache-get", "redis down")
        svc = PatternRecognitionService(
            order_repo, pattern_repo, CacheAside(store, soft_fail=False), publisher, analyzer
        )

        with pytest.raises(CacheError):
            await svc.get_purchase_pattern(ITEM_ID)


@pytest.mark.asyncio
class TestPredictNextOrder:

    async def test_lazy_analysis(self, svc, order_repo, pattern_repo, make_orders, add_history):
        orders = make_orders([5, 5, 5, 5, 5], every_days=10)
        add_history(order_repo, orders)

        predicted = await svc.predict_next_order(ITEM_ID, BRANCH_ID)

        assert predicted == orders[-1].date + timedelta(days=10)
        assert len(pattern_repo) == 1

    async def test_stored_pattern_is_used(self, svc, pattern_repo):
        when = NOW + timedelta(days=3)
        await pattern_repo.upsert(PurchasePattern(item_id=ITEM_ID, next_predicted_order=when))

        assert await svc.predict_next_order(ITEM_ID) == when

    async def test_stored_pattern_without_prediction_is_reanalyzed(
        self, svc, order_repo, pattern_repo, make_orders, add_history
    ):
        await pattern_repo.upsert(
            PurchasePattern(item_id=ITEM_ID, branch_id=BRANCH_ID, next_predicted_order=None)
        )
        orders = make_orders([4, 4, 4, 4, 4, 4], every_days=7)
        add_history(order_repo, orders)

        predicted = await svc.predict_next_order(ITEM_ID, BRANCH_ID)

        assert predicted == orders[-1].date + timedelta(days=7)
        assert (await pattern_repo.find(ITEM_ID, BRANCH_ID)).next_predicted_order == predicted

    async def test_insufficient_data_is_none(self, svc, order_repo, make_orders, add_history):
        add_history(order_repo, make_orders([1, 2]))
        assert await svc.predict_next_order(ITEM_ID, BRANCH_ID) is None


@pytest.mark.asyncio
class TestDetectAnomalies:

    @staticmethod
    async def seed(pattern_repo, order_repo, make_orders, add_history) -> None:
        await pattern_repo.upsert(
            PurchasePattern(
                item_id=ITEM_ID,
                branch_id=BRANCH_ID,
                avg_order_quantity=100.0,
                std_dev_quantity=10.0,
                avg_order_amount=1000.0,
                std_dev_amount=0.0,
            )
        )
        add_history(order_repo, make_orders([100, 125, 95], price=10.0))

    async def test_quantity_anomaly(self, svc, pattern_repo, order_repo, make_orders, add_history):
        await self.seed(pattern_repo, order_repo, make_orders, add_history)

        anomalies = await svc.detect_anomalies(ITEM_ID, BRANCH_ID)

        assert len(anomalies) == 1
        assert anomalies[0].invoice_id == 2
        assert anomalies[0].type == AnomalyType.QUANTITY_ANOMALY
        assert anomalies[0].quantity_deviation == pytest.approx(2.5)

    async def test_publishes_one_event_per_anomaly(
        self, svc, pattern_repo, order_repo, publisher, make_orders, add_history
    ):
        await self.seed(pattern_repo, order_repo, make_orders, add_history)

        await svc.detect_anomalies(ITEM_ID, BRANCH_ID)

        [payload] = publisher.named(ANOMALY_DETECTED)
        assert payload["invoice_id"] == 2
        assert payload["item_id"] == ITEM_ID
        assert payload["branch_id"] == BRANCH_ID
        assert payload["anomaly_type"] == "QUANTITY_ANOMALY"
        assert payload["deviation"] == pytest.approx(2.5)

    async def test_results_are_cached(
        self, svc, pattern_repo, order_repo, publisher, make_orders, add_history
    ):
        await self.seed(pattern_repo, order_repo, make_orders, add_history)
        first = await svc.detect_anomalies(ITEM_ID, BRANCH_ID)

        add_history(order_repo, make_orders([500], start=NOW))
        second = await svc.detect_anomalies(ITEM_ID, BRANCH_ID)

        assert second == first
        assert len(publisher.named(ANOMALY_DETECTED)) == 1

    async def test_reanalysis_clears_cached_anomalies(
        self, svc, cache_store, pattern_repo, order_repo, make_orders, add_history
    ):
        await self.seed(pattern_repo, order_repo, make_orders, add_history)
        await svc.detect_anomalies(ITEM_ID, BRANCH_ID)
        key = f"analytics:anomalies:{ITEM_ID}:{BRANCH_ID}"
        assert await cache_store.get(key) is not None

        add_history(order_repo, make_orders([100, 100], start=NOW - timedelta(days=2)))
        await svc.analyze_purchase_pattern(ITEM_ID, BRANCH_ID)

        assert await cache_store.get(key) is None

    async def test_no_pattern_no_anomalies(self, svc, order_repo, publisher, make_orders, add_history):
        add_history(order_repo, make_orders([1, 100]))

        assert await svc.detect_anomalies(ITEM_ID, BRANCH_ID) == []
        assert publisher.named(ANOMALY_DETECTED) == []

    async def test_uniform_history_has_no_anomalies(self, svc, order_repo, make_orders, add_history):
        add_history(order_repo, make_orders([20] * 6))
        assert await svc.detect_anomalies(ITEM_ID, BRANCH_ID) == []


@pytest.mark.asyncio
class TestInvalidate:

    async def test_single_branch(self, svc, cache_store):
        await cache_store.set(f"analytics:pattern:{ITEM_ID}:{BRANCH_ID}", {"x": 1}, 60)
        await cache_store.set(f"analytics:anomalies:{ITEM_ID}:{BRANCH_ID}", [], 60)
        await cache_store.set(f"analytics:pattern:{ITEM_ID}:all", {"x": 1}, 60)

        await svc.invalidate(ITEM_ID, BRANCH_ID)

        assert await cache_store.get(f"analytics:pattern:{ITEM_ID}:{BRANCH_ID}") is None
        assert await cache_store.get(f"analytics:anomalies:{ITEM_ID}:{BRANCH_ID}") is None
        assert await cache_store.get(f"analytics:pattern:{ITEM_ID}:all") is not None

    async def test_every_branch_of_the_item(self, svc, cache_store):
        for key in (
            f"analytics:pattern:{ITEM_ID}:1",
            f"analytics:pattern:{ITEM_ID}:all",
            f"analytics:anomalies:{ITEM_ID}:2",
            f"analytics:pattern:{ITEM_ID}0:all",
        ):
            await cache_store.set(key, {"x": 1}, 60)

        await svc.invalidate(ITEM_ID)

        assert await cache_store.get(f"analytics:pattern:{ITEM_ID}:1") is None
        assert await cache_store.get(f"analytics:pattern:{ITEM_ID}:all") is None
        assert await cache_store.get(f"analytics:anomalies:{ITEM_ID}:2") is None
        assert await cache_store.get(f"analytics:pattern:{ITEM_ID}0:all") is not None
