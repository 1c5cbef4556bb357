"""Tests for the in-process TTL cache store."""

from __future__ import annotations

import pytest

from infrastructure.adapters import InMemoryCacheStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=clock)


@pytest.mark.asyncio
class TestInMemoryCacheStore:

    async def test_get_missing(self, store):
        assert await store.get("analytics:pattern:1:all") is None

    async def test_set_and_get(self, store):
        await store.set("k", {"a": 1}, 60)
        assert await store.get("k") == {"a": 1}

    async def test_entry_expires_after_ttl(self, store, clock):
        await store.set("k", [1], 60)
        clock.now += 59
        assert await store.get("k") == [1]
        clock.now += 1
        assert await store.get("k") is None

    async def test_no_ttl_never_expires(self, store, clock):
        await store.set("k", "v")
        clock.now += 10**9
        assert await store.get("k") == "v"

    async def test_values_are_copied(self, store):
        value = {"branches": [1]}
        await store.set("k", value, 60)
        value["branches"].append(2)

        cached = await store.get("k")
        cached["branches"].append(3)

        assert await store.get("k") == {"branches": [1]}

    async def test_delete(self, store):
        await store.set("k", 1, 60)
        await store.delete("k")
        await store.delete("missing")
        assert await store.get("k") is None

    async def test_invalidate_by_prefix(self, store):
        await store.set("analytics:pattern:1:all", 1, 60)
        await store.set("analytics:pattern:1:7", 1, 60)
        await store.set("analytics:pattern:12:all", 1, 60)

        removed = await store.invalidate_by_prefix("analytics:pattern:1:")

        assert removed == 2
        assert await store.get("analytics:pattern:12:all") == 1

    async def test_ping(self, store):
        assert await store.ping() is True
