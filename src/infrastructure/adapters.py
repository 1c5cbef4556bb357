"""Adapter implementations bridging infrastructure to application-layer ports.

Provides in-memory repositories for order history, price observations,
spend aggregates and purchase patterns, an in-process TTL cache, and an
in-process publish/subscribe event channel. The SQLAlchemy and Redis
adapters in :mod:`infrastructure.database` and :mod:`infrastructure.cache`
implement the same ports for production.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Optional

from domain.models.analytics import (
    OrderObservation,
    PriceObservation,
    PurchasePattern,
    SpendAggregate,
)
from infrastructure.observability.metrics import record_cache_lookup, record_event

logger = logging.getLogger(__name__)

APPROVED = "APPROVED"


# ---------------------------------------------------------------------------
# In-memory repository adapters (swap for the SQL repositories in production)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceLineRecord:
    """One invoice line as held by the in-memory ledger."""

    invoice_id: int
    item_id: int
    date: datetime
    quantity: float
    price: float
    vendor_id: int
    branch_id: Optional[int] = None
    status: str = APPROVED
    deleted: bool = False
    item_name: str = ""
    vendor_name: str = ""
    branch_name: str = "Unassigned"

    @property
    def is_finalized(self) -> bool:
        return self.status == APPROVED and not self.deleted


class InMemoryOrderHistoryRepository:
    """Invoice-line ledger serving finalized order history."""

    def __init__(self) -> None:
        self._lines: list[InvoiceLineRecord] = []

    def add(self, line: InvoiceLineRecord) -> InvoiceLineRecord:
        self._lines.append(line)
        return line

    def finalized_lines(self, item_id: int) -> list[InvoiceLineRecord]:
        return [line for line in self._lines if line.item_id == item_id and line.is_finalized]

    async def get_order_history(
        self, item_id: int, branch_id: Optional[int] = None
    ) -> list[OrderObservation]:
        lines = [
            line
            for line in self.finalized_lines(item_id)
            if branch_id is None or line.branch_id == branch_id
        ]
        lines.sort(key=lambda line: line.date)
        return [
            OrderObservation(
                invoice_id=line.invoice_id,
                date=line.date,
                quantity=line.quantity,
                price=line.price,
            )
            for line in lines
        ]

    async def list_recently_ordered_items(self, since: datetime) -> list[int]:
        return sorted(
            {line.item_id for line in self._lines if line.is_finalized and line.date >= since}
        )


class InMemoryPriceObservationRepository:
    """Price snapshots plus an invoice-line fallback source."""

    def __init__(self, ledger: Optional[InMemoryOrderHistoryRepository] = None) -> None:
        self._snapshots: list[tuple[int, PriceObservation]] = []
        self._ledger = ledger or InMemoryOrderHistoryRepository()

    def add_snapshot(self, item_id: int, observation: PriceObservation) -> PriceObservation:
        self._snapshots.append((item_id, observation))
        return observation

    async def get_price_snapshots(
        self, item_id: int, since: datetime, vendor_id: Optional[int] = None
    ) -> list[PriceObservation]:
        matches = [
            obs
            for snap_item, obs in self._snapshots
            if snap_item == item_id
            and obs.date >= since
            and (vendor_id is None or obs.vendor_id == vendor_id)
        ]
        return sorted(matches, key=lambda obs: obs.date, reverse=True)

    async def get_invoice_prices(
        self, item_id: int, since: datetime, vendor_id: Optional[int] = None
    ) -> list[PriceObservation]:
        lines = [
            line
            for line in self._ledger.finalized_lines(item_id)
            if line.date >= since and (vendor_id is None or line.vendor_id == vendor_id)
        ]
        lines.sort(key=lambda line: line.date, reverse=True)
        return [
            PriceObservation(
                branch_id=line.branch_id,
                vendor_id=line.vendor_id,
                price=line.price,
                date=line.date,
                branch_name=line.branch_name,
                vendor_name=line.vendor_name,
                item_name=line.item_name,
            )
            for line in lines
        ]


class InMemorySpendAggregateRepository:
    """In-memory store of precomputed spend rollups."""

    def __init__(self) -> None:
        self._aggregates: list[SpendAggregate] = []

    def save(self, aggregate: SpendAggregate) -> SpendAggregate:
        self._aggregates.append(aggregate)
        return aggregate

    def save_many(self, aggregates: list[SpendAggregate]) -> list[SpendAggregate]:
        self._aggregates.extend(aggregates)
        return aggregates

    async def get_branch_aggregates(
        self, start_date: date, end_date: date, item_id: Optional[int] = None
    ) -> list[SpendAggregate]:
        return [
            a
            for a in self._aggregates
            if start_date <= a.date <= end_date
            and a.branch_id is not None
            and (item_id is None or a.item_id == item_id)
        ]

    async def get_item_aggregates(self, since: date) -> list[SpendAggregate]:
        return [a for a in self._aggregates if a.date >= since and a.item_id is not None]


class InMemoryPurchasePatternRepository:
    """Pattern store keyed by ``(item_id, branch_id)``; upserts never duplicate."""

    def __init__(self) -> None:
        self._store: dict[tuple[int, Optional[int]], PurchasePattern] = {}

    def __len__(self) -> int:
        return len(self._store)

    async def upsert(self, pattern: PurchasePattern) -> tuple[PurchasePattern, bool]:
        created = pattern.key not in self._store
        self._store[pattern.key] = replace(pattern)
        return replace(pattern), created

    async def find(
        self, item_id: int, branch_id: Optional[int] = None
    ) -> Optional[PurchasePattern]:
        pattern = self._store.get((item_id, branch_id))
        return replace(pattern) if pattern else None

    async def list_item_ids(self, branch_id: Optional[int] = None) -> list[int]:
        return sorted(
            {
                item_id
                for item_id, key_branch in self._store
                if branch_id is None or key_branch == branch_id
            }
        )


# ---------------------------------------------------------------------------
# Cache store
# ---------------------------------------------------------------------------


class InMemoryCacheStore:
    """Process-local TTL cache.

    Values are deep-copied in and out so callers never share mutable state
    with the cache, matching the copy semantics of a networked store.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[Any, Optional[float]]] = {}
        self._clock = clock

    def _live(self, key: str) -> Optional[tuple[Any, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        entry = self._live(key)
        record_cache_lookup(key, hit=entry is not None)
        return copy.deepcopy(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._entries[key] = (copy.deepcopy(value), expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def invalidate_by_prefix(self, prefix: str) -> int:
        keys_to_remove = [k for k in self._entries if k.startswith(prefix)]
        for k in keys_to_remove:
            del self._entries[k]
        if keys_to_remove:
            logger.info("Cache invalidated: prefix=%s count=%d", prefix, len(keys_to_remove))
        return len(keys_to_remove)

    async def ping(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Event channel
# ---------------------------------------------------------------------------


EventHandler = Callable[[dict[str, Any]], Optional[Coroutine[Any, Any, None]]]


class InProcessEventChannel:
    """In-process publish/subscribe channel.

    Plain handlers run inline. Coroutine handlers are scheduled on the
    running event loop, or run to completion when ``publish`` is called
    outside one. A failing subscriber is logged and does not stop delivery
    to the others or propagate into the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_name, []).append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        record_event(event_name)
        logger.debug("Analytics event: %s %s", event_name, payload)
        for handler in list(self._handlers.get(event_name, [])):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    self._dispatch(event_name, result)
            except Exception:
                logger.exception("Event handler failed for %s", event_name)

    def _dispatch(self, event_name: str, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return

        task = loop.create_task(coro)
        self._pending.add(task)

        def finished(done: asyncio.Task[None]) -> None:
            self._pending.discard(done)
            if not done.cancelled() and done.exception() is not None:
                logger.error(
                    "Event handler failed for %s", event_name, exc_info=done.exception()
                )

        task.add_done_callback(finished)

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
