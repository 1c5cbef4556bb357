"""
Database URL builders for the procurement analytics store.

Connection values come from :class:`infrastructure.settings.AnalyticsSettings`;
this module only turns them into SQLAlchemy DSNs.
"""

from __future__ import annotations

from typing import Optional

from infrastructure.settings import AnalyticsSettings


def get_async_database_url(settings: Optional[AnalyticsSettings] = None) -> str:
    """Build an asynchronous ``postgresql+asyncpg://`` DSN.

    Parameters
    ----------
    settings:
        An explicit :class:`AnalyticsSettings` instance.  When *None* the
        environment-derived settings are used.
    """
    s = settings or AnalyticsSettings()
    return (
        f"postgresql+asyncpg://{s.postgres_user}:{s.postgres_password}"
        f"@{s.postgres_host}:{s.postgres_port}/{s.postgres_db}"
    )
