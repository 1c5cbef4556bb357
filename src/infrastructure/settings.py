"""Application settings loaded from environment variables via Pydantic."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class AnalyticsSettings(BaseSettings):
    """Central configuration for the procurement analytics engine."""

    model_config = {"env_prefix": "ANALYTICS_", "case_sensitive": False}

    # Database
    storage_backend: Literal["memory", "sql"] = "memory"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    postgres_db: str = "procurement"
    db_pool_size: int = 10
    db_max_overflow: int = 10

    # Cache
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_timeout_seconds: float = 2.0
    cache_soft_fail: bool = True

    # Cache TTLs (seconds)
    spending_metrics_ttl: int = 300
    price_variance_ttl: int = 600
    purchase_patterns_ttl: int = 3600
    anomalies_ttl: int = 3600
    benchmarks_ttl: int = 86400

    # Analysis thresholds
    min_invoices_for_pattern: int = 5
    anomaly_std_dev_threshold: float = 2.0

    # Analysis windows (days)
    price_window_days: int = 30
    consolidation_window_days: int = 90
    recent_order_window_days: int = 7

    # Background jobs
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"
    pattern_batch_size: int = 50
    schedule_purchase_patterns: str = "0 3 * * *"
    schedule_anomalies: str = "0 */6 * * *"

    # Logging
    log_level: str = "INFO"


def get_settings() -> AnalyticsSettings:
    """Return the application settings."""
    return AnalyticsSettings()
