"""Unit tests for the cache-aside wrapper and cache key construction."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import AsyncMock

import pytest

from application.services.cache_aside import CacheAside, CacheKeys, build_cache_key
from domain.exceptions import CacheError


class SlowStore:
    """Cache store whose every call outlasts the configured timeout."""

    async def get(self, key):
        await asyncio.sleep(1)

    async def set(self, key, value, ttl_seconds=None):
        await asyncio.sleep(1)

    async def delete(self, key):
        await asyncio.sleep(1)

    async def invalidate_by_prefix(self, prefix):
        await asyncio.sleep(1)
        return 0

    async def ping(self):
        return True


def failing_store() -> AsyncMock:
    store = AsyncMock()
    store.get.side_effect = CacheError("cache-get", "down")
    store.set.side_effect = CacheError("cache-set", "down")
    store.delete.side_effect = CacheError("cache-delete", "down")
    store.invalidate_by_prefix.side_effect = CacheError("cache-invalidate", "down")
    return store


class TestBuildCacheKey:
    def test_none_becomes_all(self):
        assert build_cache_key(CacheKeys.PURCHASE_PATTERN, 5, None) == "analytics:pattern:5:all"

    def test_dates_render_as_iso_days(self):
        key = build_cache_key(CacheKeys.BRANCH_SPENDING, date(2026, 1, 1), date(2026, 1, 31), None)
        assert key == "analytics:branch-spending:2026-01-01:2026-01-31:all"

    def test_datetimes_keep_their_time(self):
        morning = build_cache_key("p", datetime(2026, 1, 31, 8, 0, tzinfo=timezone.utc))
        evening = build_cache_key("p", datetime(2026, 1, 31, 20, 0, tzinfo=timezone.utc))
        assert morning == "p:2026-01-31T08:00:00+00:00"
        assert morning != evening

    def test_deterministic(self):
        assert build_cache_key("p", 1, 2) == build_cache_key("p", 1, 2)


@pytest.mark.asyncio
class TestSoftFail:

    async def test_store_error_reads_as_miss(self):
        cache = CacheAside(failing_store(), soft_fail=True)
        assert await cache.get("k") is None

    async def test_store_error_skips_writes(self):
        cache = CacheAside(failing_store(), soft_fail=True)
        await cache.set("k", {"a": 1}, 60)
        await cache.delete("k")
        assert await cache.invalidate_by_prefix("k") == 0

    async def test_timeout_reads_as_miss(self):
        cache = CacheAside(SlowStore(), timeout_seconds=0.01, soft_fail=True)
        assert await cache.get("k") is None

    async def test_get_or_compute_still_computes(self):
        cache = CacheAside(failing_store(), soft_fail=True)
        compute = AsyncMock(return_value=[1, 2])

        result = await cache.get_or_compute("k", 60, compute, encode=list, decode=list)

        assert result == [1, 2]
        compute.assert_awaited_once()


@pytest.mark.asyncio
class TestStrictFail:

    async def test_store_error_raises(self):
        cache = CacheAside(failing_store(), soft_fail=False)
        with pytest.raises(CacheError):
            await cache.get("k")

    async def test_timeout_raises_cache_error(self):
        cache = CacheAside(SlowStore(), timeout_seconds=0.01, soft_fail=False)
        with pytest.raises(CacheError) as info:
            await cache.set("k", 1, 60)
        assert info.value.operation == "set"


@pytest.mark.asyncio
class TestGetOrCompute:

    async def test_miss_then_hit(self, cache):
        compute = AsyncMock(return_value={"value": 3})

        first = await cache.get_or_compute("k", 60, compute, encode=dict, decode=dict)
        second = await cache.get_or_compute("k", 60, compute, encode=dict, decode=dict)

        assert first == second == {"value": 3}
        compute.assert_awaited_once()

    async def test_cache_if_vetoes_storage(self, cache, cache_store):
        compute = AsyncMock(return_value=None)

        await cache.get_or_compute(
            "k", 60, compute, encode=lambda v: v, decode=lambda v: v,
            cache_if=lambda v: v is not None,
        )
        await cache.get_or_compute(
            "k", 60, compute, encode=lambda v: v, decode=lambda v: v,
            cache_if=lambda v: v is not None,
        )

        assert compute.await_count == 2
        assert await cache_store.get("k") is None
