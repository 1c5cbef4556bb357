"""Integration test fixtures using testcontainers for PostgreSQL and Redis."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))


@pytest.fixture(scope="session")
def postgres_url():
    """Provide an asyncpg PostgreSQL URL via testcontainers.

    Skips the dependent tests when Docker or testcontainers is unavailable.
    """
    try:
        from testcontainers.postgres import PostgresContainer

        pg = PostgresContainer("postgres:16-alpine", driver="asyncpg")
        pg.start()
    except Exception:
        pytest.skip("PostgreSQL testcontainer unavailable")
    try:
        yield pg.get_connection_url()
    finally:
        pg.stop()


@pytest.fixture(scope="session")
def redis_url():
    """Provide a Redis URL via testcontainers."""
    try:
        from testcontainers.redis import RedisContainer

        container = RedisContainer("redis:7-alpine")
        container.start()
    except Exception:
        pytest.skip("Redis testcontainer unavailable")
    try:
        yield f"redis://{container.get_container_host_ip()}:{container.get_exposed_port(6379)}/0"
    finally:
        container.stop()


@pytest_asyncio.fixture
async def session_factory(postgres_url):
    """Fresh schema per test on an async engine; dropped afterwards."""
    from sqlalchemy.ext.asyncio import create_async_engine

    from infrastructure.database.engine import build_session_factory
    from infrastructure.database.models import Base

    engine = create_async_engine(postgres_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def redis_store(redis_url):
    from infrastructure.cache.redis_cache import RedisCacheStore

    store = RedisCacheStore.from_url(redis_url)
    yield store
    await store.invalidate_by_prefix("analytics:")
    await store.close()
