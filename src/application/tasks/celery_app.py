"""Celery application configuration for the procurement analytics engine.

Sets up the broker, result backend, serialisation, task routing, retry
policy and the beat schedule for the recurring analytics jobs.
"""

from __future__ import annotations

from celery import Celery, signals
from celery.schedules import crontab

from infrastructure.observability.logging_config import setup_logging
from infrastructure.settings import get_settings


def parse_cron(expression: str) -> crontab:
    """Build a :class:`crontab` from a five-field cron expression.

    Fields are ``minute hour day-of-month month day-of-week``.
    """
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Expected 5 cron fields, got {len(fields)}: {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


settings = get_settings()

app = Celery("procurement_analytics")

# ---------------------------------------------------------------------------
# Broker and result backend
# ---------------------------------------------------------------------------

app.conf.broker_url = settings.celery_broker_url
app.conf.result_backend = settings.celery_result_backend

# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

app.conf.accept_content = ["json"]
app.conf.task_serializer = "json"
app.conf.result_serializer = "json"

# ---------------------------------------------------------------------------
# Task routing
# ---------------------------------------------------------------------------

app.conf.task_routes = {
    "application.tasks.analytics_tasks.*": {"queue": "analytics"},
}

# ---------------------------------------------------------------------------
# Default retry policy
# ---------------------------------------------------------------------------

app.conf.task_annotations = {
    "*": {
        "max_retries": 3,
        "default_retry_delay": 60,
        "retry_backoff": True,
        "retry_backoff_max": 600,
        "retry_jitter": True,
    },
}

# ---------------------------------------------------------------------------
# Beat schedule
# ---------------------------------------------------------------------------

app.conf.beat_schedule = {
    "analyze-purchase-patterns": {
        "task": "application.tasks.analytics_tasks.analyze_purchase_patterns",
        "schedule": parse_cron(settings.schedule_purchase_patterns),
    },
    "detect-anomalies": {
        "task": "application.tasks.analytics_tasks.detect_anomalies",
        "schedule": parse_cron(settings.schedule_anomalies),
    },
}

# ---------------------------------------------------------------------------
# Miscellaneous
# ---------------------------------------------------------------------------

app.conf.task_acks_late = True
app.conf.worker_prefetch_multiplier = 1
app.conf.task_track_started = True
app.conf.task_time_limit = 3600
app.conf.task_soft_time_limit = 3300
app.conf.timezone = "UTC"

app.autodiscover_tasks(["application.tasks.analytics_tasks"])


@signals.setup_logging.connect
def configure_worker_logging(**_: object) -> None:
    """Route worker logs through structlog instead of Celery's default handlers."""
    setup_logging(settings.log_level)
