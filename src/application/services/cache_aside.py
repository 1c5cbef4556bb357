"""Cache-aside plumbing shared by the analytics services.

Defines the narrow :class:`CacheStore` and :class:`EventPublisher` ports,
deterministic cache-key construction, and :class:`CacheAside`, which bounds
every cache call with a timeout and optionally degrades cache faults into
misses so an unavailable cache never blocks an analytics computation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, Protocol, TypeVar

import structlog

from domain.exceptions import CacheError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


class CacheStore(Protocol):
    """Port: key/value store with per-entry TTL."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def invalidate_by_prefix(self, prefix: str) -> int: ...

    async def ping(self) -> bool: ...


class EventPublisher(Protocol):
    """Port: fire-and-forget notification channel."""

    def publish(self, event_name: str, payload: dict[str, Any]) -> None: ...


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class CacheKeys:
    ROOT = "analytics:"
    PURCHASE_PATTERN = "analytics:pattern"
    ANOMALIES = "analytics:anomalies"
    PRICE_VARIANCE = "analytics:price-variance"
    BENCHMARK_STATS = "analytics:benchmark-stats"
    BRANCH_SPENDING = "analytics:branch-spending"
    CONSOLIDATION = "analytics:consolidation"


def build_cache_key(prefix: str, *parts: int | str | date | None) -> str:
    """Join *parts* onto *prefix*; ``None`` becomes ``all``, dates and datetimes become ISO text."""
    rendered = []
    for part in parts:
        if part is None:
            rendered.append("all")
        elif isinstance(part, date):
            rendered.append(part.isoformat())
        else:
            rendered.append(str(part))
    return ":".join([prefix, *rendered])


# ---------------------------------------------------------------------------
# Cache-aside wrapper
# ---------------------------------------------------------------------------


class CacheAside:
    """Timeout-bounded access to a :class:`CacheStore`.

    With ``soft_fail`` enabled, a timed-out or failing cache read is treated
    as a miss and a failing write is skipped; otherwise the fault is raised
    as :class:`CacheError`.
    """

    def __init__(
        self,
        store: CacheStore,
        timeout_seconds: float = 2.0,
        soft_fail: bool = True,
    ) -> None:
        self._store = store
        self._timeout = timeout_seconds
        self._soft_fail = soft_fail

    async def _call(self, operation: str, key: str, call: Awaitable[T], fallback: T) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except (CacheError, TimeoutError) as exc:
            if not self._soft_fail:
                if isinstance(exc, CacheError):
                    raise
                raise CacheError(operation, f"Cache timed out for key: {key}", exc) from exc
            logger.warning("Cache unavailable, continuing without it", operation=operation, key=key)
            return fallback

    async def get(self, key: str) -> Any | None:
        value = await self._call("get", key, self._store.get(key), None)
        logger.debug("Cache hit" if value is not None else "Cache miss", key=key)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int | None) -> None:
        await self._call("set", key, self._store.set(key, value, ttl_seconds), None)

    async def delete(self, key: str) -> None:
        await self._call("delete", key, self._store.delete(key), None)

    async def invalidate_by_prefix(self, prefix: str) -> int:
        return await self._call(
            "invalidate_by_prefix", prefix, self._store.invalidate_by_prefix(prefix), 0
        )

    async def get_or_compute(
        self,
        key: str,
        ttl_seconds: int | None,
        compute: Callable[[], Awaitable[T]],
        *,
        encode: Callable[[T], Any],
        decode: Callable[[Any], T],
        cache_if: Callable[[T], bool] | None = None,
    ) -> T:
        """Return the cached value for *key*, computing and storing it on a miss.

        *cache_if* can veto storing a result (e.g. ``None`` or empty results).
        """
        cached = await self.get(key)
        if cached is not None:
            return decode(cached)

        result = await compute()
        if cache_if is None or cache_if(result):
            await self.set(key, encode(result), ttl_seconds)
        return result
