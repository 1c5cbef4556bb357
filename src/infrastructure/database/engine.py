"""
SQLAlchemy async engine and session helpers.

Repositories receive an :class:`async_sessionmaker` and open one short
session per call through :func:`session_scope`.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from infrastructure.settings import AnalyticsSettings

from .config import get_async_database_url

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


def build_async_engine(settings: Optional[AnalyticsSettings] = None) -> AsyncEngine:
    """Create an asynchronous SQLAlchemy :class:`AsyncEngine` with a pooled connection."""
    s = settings or AnalyticsSettings()
    return create_async_engine(
        get_async_database_url(s),
        pool_size=s.db_pool_size,
        max_overflow=s.db_max_overflow,
        pool_pre_ping=True,
        echo=False,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
