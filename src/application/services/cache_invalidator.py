"""Drops cached analytics when the underlying invoices or purchase orders change."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog

from application.services.cache_aside import CacheAside, CacheKeys
from domain.events.analytics_events import SOURCE_DATA_EVENTS


class EventSubscriber(Protocol):
    """Port: channel that accepts (possibly async) event handlers."""

    def subscribe(
        self, event_name: str, handler: Callable[[dict[str, Any]], Awaitable[None] | None]
    ) -> None: ...


class AnalyticsCacheInvalidator:
    """Clears every ``analytics:`` cache entry on a source-data event.

    Patterns, variances and spending rollups all derive from approved
    invoices, so a single prefix sweep is used instead of per-key tracking.
    """

    def __init__(self, cache: CacheAside) -> None:
        self._cache = cache
        self._log = structlog.get_logger(__name__).bind(service="AnalyticsCacheInvalidator")

    def register(self, channel: EventSubscriber) -> None:
        for event_name in SOURCE_DATA_EVENTS:
            channel.subscribe(event_name, self.handle)
        self._log.info("Cache invalidator subscribed", events=list(SOURCE_DATA_EVENTS))

    async def handle(self, payload: dict[str, Any]) -> None:
        removed = await self._cache.invalidate_by_prefix(CacheKeys.ROOT)
        self._log.info("Analytics cache invalidated", removed=removed)
