"""Pattern recognition application service.

Builds and persists a :class:`PurchasePattern` per (item, branch), predicts
the next order date, and flags historical orders that deviate from the
pattern. Statistical work is delegated to the domain-layer
:class:`PatternAnalyzer`; this service owns storage, caching and events.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import structlog

from application.services.cache_aside import (
    CacheAside,
    CacheKeys,
    EventPublisher,
    build_cache_key,
)
from domain.events.analytics_events import (
    ANOMALY_DETECTED,
    PATTERN_DETECTED,
    AnomalyDetected,
    PatternDetected,
)
from domain.exceptions import AnalyticsError, PatternRecognitionError
from domain.models.analytics import (
    Anomaly,
    InsufficientData,
    OrderObservation,
    PatternFound,
    PatternLookup,
    PatternNotComputed,
    PurchasePattern,
)

if TYPE_CHECKING:
    from domain.services.pattern_analyzer import PatternAnalyzer


# ---------------------------------------------------------------------------
# Repository ports
# ---------------------------------------------------------------------------


class OrderHistoryRepository(Protocol):
    """Port: read-only access to finalized (approved, non-deleted) invoice lines."""

    async def get_order_history(
        self,
        item_id: int,
        branch_id: int | None = None,
    ) -> list[OrderObservation]: ...

    async def list_recently_ordered_items(self, since: datetime) -> list[int]: ...


class PurchasePatternRepository(Protocol):
    """Port: derived pattern store keyed by ``(item_id, branch_id)``."""

    async def upsert(self, pattern: PurchasePattern) -> tuple[PurchasePattern, bool]:
        """Insert or overwrite; the flag is ``True`` when a new row was created."""
        ...

    async def find(
        self,
        item_id: int,
        branch_id: int | None = None,
    ) -> PurchasePattern | None: ...

    async def list_item_ids(self, branch_id: int | None = None) -> list[int]:
        """Distinct items with a stored pattern, optionally for one branch."""
        ...


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class PatternRecognitionService:
    """Analyzes purchase patterns and detects ordering anomalies."""

    def __init__(
        self,
        order_repo: OrderHistoryRepository,
        pattern_repo: PurchasePatternRepository,
        cache: CacheAside,
        event_publisher: EventPublisher,
        analyzer: PatternAnalyzer,
        *,
        pattern_ttl_seconds: int = 3600,
        anomaly_ttl_seconds: int = 3600,
        anomaly_std_dev_threshold: float = 2.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._order_repo = order_repo
        self._pattern_repo = pattern_repo
        self._cache = cache
        self._events = event_publisher
        self._analyzer = analyzer
        self._pattern_ttl = pattern_ttl_seconds
        self._anomaly_ttl = anomaly_ttl_seconds
        self._anomaly_threshold = anomaly_std_dev_threshold
        self._clock = clock or (lambda: datetime.now(UTC))
        self._log = structlog.get_logger(__name__).bind(service="PatternRecognitionService")

    # -- helpers ----------------------------------------------------------

    @staticmethod
    def _pattern_key(item_id: int, branch_id: int | None) -> str:
        return build_cache_key(CacheKeys.PURCHASE_PATTERN, item_id, branch_id)

    @staticmethod
    def _anomaly_key(item_id: int, branch_id: int | None) -> str:
        return build_cache_key(CacheKeys.ANOMALIES, item_id, branch_id)

    async def _resolve_pattern(self, item_id: int, branch_id: int | None) -> PatternLookup:
        """Stored pattern if there is one, otherwise a fresh analysis."""
        lookup = await self.get_purchase_pattern(item_id, branch_id)
        if isinstance(lookup, PatternFound):
            return lookup
        return await self.analyze_purchase_pattern(item_id, branch_id)

    # -- public API -------------------------------------------------------

    async def analyze_purchase_pattern(
        self,
        item_id: int,
        branch_id: int | None = None,
    ) -> PatternFound | InsufficientData:
        """Recompute, upsert and cache the pattern for ``(item_id, branch_id)``.

        Returns :class:`InsufficientData` when the history is shorter than the
        analyzer's ``min_invoices_for_pattern``.
        """
        log = self._log.bind(item_id=item_id, branch_id=branch_id)
        log.info("Analyzing purchase pattern")

        try:
            orders = await self._order_repo.get_order_history(item_id, branch_id)

            min_required = self._analyzer.min_invoices_for_pattern
            if len(orders) < min_required:
                log.info(
                    "Insufficient data for pattern analysis",
                    order_count=len(orders),
                    min_required=min_required,
                )
                return InsufficientData(order_count=len(orders), min_required=min_required)

            pattern = self._analyzer.build_pattern(item_id, branch_id, orders, self._clock())
            pattern, created = await self._pattern_repo.upsert(pattern)

            await self._cache.set(
                self._pattern_key(item_id, branch_id), pattern.to_dict(), self._pattern_ttl
            )
            # Anomalies cached against the previous pattern are stale now.
            await self._cache.delete(self._anomaly_key(item_id, branch_id))

            event = PatternDetected(
                item_id=item_id,
                branch_id=branch_id,
                confidence_score=pattern.confidence_score,
                is_new_pattern=created,
            )
            self._events.publish(PATTERN_DETECTED, event.to_payload())

            log.info(
                "Purchase pattern analyzed",
                confidence_score=pattern.confidence_score,
                cycle_days=pattern.avg_order_cycle_days,
                is_new_pattern=created,
            )
            return PatternFound(pattern)

        except AnalyticsError:
            raise
        except Exception as exc:
            log.exception("Failed to analyze purchase pattern")
            raise PatternRecognitionError(
                "analyze_purchase_pattern",
                f"Failed to analyze pattern for item {item_id}",
                exc,
            ) from exc

    async def get_purchase_pattern(
        self,
        item_id: int,
        branch_id: int | None = None,
    ) -> PatternFound | PatternNotComputed:
        """Look the pattern up in the cache, then the store, without computing it."""
        key = self._pattern_key(item_id, branch_id)
        try:
            cached = await self._cache.get(key)
            if cached is not None:
                return PatternFound(PurchasePattern.from_dict(cached))

            pattern = await self._pattern_repo.find(item_id, branch_id)
            if pattern is None:
                return PatternNotComputed()

            await self._cache.set(key, pattern.to_dict(), self._pattern_ttl)
            return PatternFound(pattern)

        except AnalyticsError:
            raise
        except Exception as exc:
            self._log.exception(
                "Failed to load purchase pattern", item_id=item_id, branch_id=branch_id
            )
            raise PatternRecognitionError(
                "get_purchase_pattern",
                f"Failed to load pattern for item {item_id}",
                exc,
            ) from exc

    async def predict_next_order(
        self,
        item_id: int,
        branch_id: int | None = None,
    ) -> datetime | None:
        """Predicted next order date.

        A stored pattern without a prediction is re-analyzed, as is a key
        with no pattern yet.
        """
        self._log.debug("Predicting next order", item_id=item_id, branch_id=branch_id)
        try:
            lookup = await self.get_purchase_pattern(item_id, branch_id)
            if isinstance(lookup, PatternFound) and lookup.pattern.next_predicted_order:
                return lookup.pattern.next_predicted_order

            analysis = await self.analyze_purchase_pattern(item_id, branch_id)
            if isinstance(analysis, PatternFound):
                return analysis.pattern.next_predicted_order
            return None

        except AnalyticsError:
            raise
        except Exception as exc:
            self._log.exception(
                "Failed to predict next order", item_id=item_id, branch_id=branch_id
            )
            raise PatternRecognitionError(
                "predict_next_order",
                f"Failed to predict next order for item {item_id}",
                exc,
            ) from exc

    async def detect_anomalies(
        self,
        item_id: int,
        branch_id: int | None = None,
    ) -> list[Anomaly]:
        """Flag orders deviating from the pattern by more than the configured std-devs.

        Publishes one ``ANOMALY_DETECTED`` event per flagged order.
        """
        key = self._anomaly_key(item_id, branch_id)
        log = self._log.bind(item_id=item_id, branch_id=branch_id)
        log.info("Detecting anomalies")

        try:
            cached = await self._cache.get(key)
            if cached is not None:
                log.debug("Returning cached anomalies")
                return [Anomaly.from_dict(entry) for entry in cached]

            lookup = await self._resolve_pattern(item_id, branch_id)
            if not isinstance(lookup, PatternFound):
                log.info("Cannot detect anomalies without a pattern")
                return []

            orders = await self._order_repo.get_order_history(item_id, branch_id)
            if not orders:
                return []

            anomalies = self._analyzer.find_anomalies(
                lookup.pattern, orders, self._anomaly_threshold
            )
            for anomaly in anomalies:
                event = AnomalyDetected(
                    invoice_id=anomaly.invoice_id,
                    item_id=item_id,
                    branch_id=branch_id,
                    anomaly_type=anomaly.type.value,
                    deviation=anomaly.max_deviation,
                )
                self._events.publish(ANOMALY_DETECTED, event.to_payload())

            await self._cache.set(key, [a.to_dict() for a in anomalies], self._anomaly_ttl)

            log.info("Anomaly detection completed", anomaly_count=len(anomalies))
            return anomalies

        except AnalyticsError:
            raise
        except Exception as exc:
            log.exception("Failed to detect anomalies")
            raise PatternRecognitionError(
                "detect_anomalies",
                f"Failed to detect anomalies for item {item_id}",
                exc,
            ) from exc

    async def invalidate(self, item_id: int, branch_id: int | None = None) -> None:
        """Drop cached pattern and anomalies; without a branch, for every branch."""
        if branch_id is not None:
            await self._cache.delete(self._pattern_key(item_id, branch_id))
            await self._cache.delete(self._anomaly_key(item_id, branch_id))
            return

        removed = 0
        for prefix in (CacheKeys.PURCHASE_PATTERN, CacheKeys.ANOMALIES):
            removed += await self._cache.invalidate_by_prefix(f"{prefix}:{item_id}:")
        self._log.info("Pattern cache invalidated", item_id=item_id, removed=removed)
