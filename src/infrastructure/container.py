"""Dependency injection container for the procurement analytics engine.

Wires storage and cache adapters into the analytics services according to
:class:`AnalyticsSettings`, and exposes accessor functions for workers and
any outer surface that needs a service instance.
"""

from __future__ import annotations

import logging

from application.services.cache_aside import CacheAside, CacheStore
from application.services.cache_invalidator import AnalyticsCacheInvalidator
from application.services.cross_location_service import CrossLocationService
from application.services.pattern_recognition_service import PatternRecognitionService
from domain.services.pattern_analyzer import PatternAnalyzer
from infrastructure.adapters import (
    InMemoryCacheStore,
    InMemoryOrderHistoryRepository,
    InMemoryPriceObservationRepository,
    InMemoryPurchasePatternRepository,
    InMemorySpendAggregateRepository,
    InProcessEventChannel,
)
from infrastructure.settings import AnalyticsSettings, get_settings

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Central DI container that owns all service instances."""

    def __init__(self, settings: AnalyticsSettings | None = None) -> None:
        self._settings = s = settings or get_settings()
        self.engine = None

        # Storage adapters
        if s.storage_backend == "sql":
            self._init_sql_repositories()
        else:
            self.order_repo = InMemoryOrderHistoryRepository()
            self.price_repo = InMemoryPriceObservationRepository(self.order_repo)
            self.spend_repo = InMemorySpendAggregateRepository()
            self.pattern_repo = InMemoryPurchasePatternRepository()

        # Cache and events
        self.cache_store = self._build_cache_store()
        self.cache = CacheAside(
            self.cache_store,
            timeout_seconds=s.cache_timeout_seconds,
            soft_fail=s.cache_soft_fail,
        )
        self.event_channel = InProcessEventChannel()
        self.cache_invalidator = AnalyticsCacheInvalidator(self.cache)
        self.cache_invalidator.register(self.event_channel)

        # Domain services
        self.analyzer = PatternAnalyzer(min_invoices_for_pattern=s.min_invoices_for_pattern)

        # Application services
        self.pattern_service = PatternRecognitionService(
            order_repo=self.order_repo,
            pattern_repo=self.pattern_repo,
            cache=self.cache,
            event_publisher=self.event_channel,
            analyzer=self.analyzer,
            pattern_ttl_seconds=s.purchase_patterns_ttl,
            anomaly_ttl_seconds=s.anomalies_ttl,
            anomaly_std_dev_threshold=s.anomaly_std_dev_threshold,
        )

        self.cross_location_service = CrossLocationService(
            price_repo=self.price_repo,
            spend_repo=self.spend_repo,
            cache=self.cache,
            price_variance_ttl_seconds=s.price_variance_ttl,
            benchmark_ttl_seconds=s.benchmarks_ttl,
            spending_ttl_seconds=s.spending_metrics_ttl,
            price_window_days=s.price_window_days,
            consolidation_window_days=s.consolidation_window_days,
        )

        logger.info(
            "ServiceContainer initialized: storage=%s cache=%s",
            s.storage_backend,
            s.cache_backend,
        )

    def _init_sql_repositories(self) -> None:
        from infrastructure.database.engine import build_async_engine, build_session_factory
        from infrastructure.database.repository import (
            SqlOrderHistoryRepository,
            SqlPriceObservationRepository,
            SqlPurchasePatternRepository,
            SqlSpendAggregateRepository,
        )

        self.engine = build_async_engine(self._settings)
        factory = build_session_factory(self.engine)
        self.order_repo = SqlOrderHistoryRepository(factory)
        self.price_repo = SqlPriceObservationRepository(factory)
        self.spend_repo = SqlSpendAggregateRepository(factory)
        self.pattern_repo = SqlPurchasePatternRepository(factory)

    def _build_cache_store(self) -> CacheStore:
        if self._settings.cache_backend == "redis":
            from infrastructure.cache.redis_cache import RedisCacheStore

            return RedisCacheStore.from_url(self._settings.redis_url)
        return InMemoryCacheStore()

    @property
    def settings(self) -> AnalyticsSettings:
        return self._settings

    async def aclose(self) -> None:
        """Release pooled database connections and the cache client."""
        if self.engine is not None:
            await self.engine.dispose()
        close = getattr(self.cache_store, "close", None)
        if close is not None:
            await close()


# Module-level singleton
_container: ServiceContainer | None = None


def get_container() -> ServiceContainer:
    """Return the global container singleton."""
    global _container
    if _container is None:
        _container = ServiceContainer()
    return _container


def reset_container() -> None:
    """Reset the global container (for testing)."""
    global _container
    _container = None


def get_pattern_recognition_service() -> PatternRecognitionService:
    return get_container().pattern_service


def get_cross_location_service() -> CrossLocationService:
    return get_container().cross_location_service
