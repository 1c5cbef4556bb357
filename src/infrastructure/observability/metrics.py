"""
Prometheus metrics for the analytics engine.

Counters are module-level singletons on the default registry; callers
record through the small helper functions so label handling stays in one
place.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    generate_latest,
)

# ======================================================================
# Custom metrics (module-level singletons)
# ======================================================================

analytics_cache_requests_total = Counter(
    "analytics_cache_requests_total",
    "Analytics cache lookups by key prefix and outcome",
    labelnames=["prefix", "outcome"],
    registry=REGISTRY,
)

analytics_events_published_total = Counter(
    "analytics_events_published_total",
    "Analytics events published by event name",
    labelnames=["event"],
    registry=REGISTRY,
)

analytics_job_items_total = Counter(
    "analytics_job_items_total",
    "Items processed by analytics background jobs",
    labelnames=["job", "status"],
    registry=REGISTRY,
)


# ======================================================================
# Recording helpers
# ======================================================================


def cache_prefix(key: str) -> str:
    """Collapse a cache key to its ``analytics:<category>`` prefix for labelling."""
    return ":".join(key.split(":")[:2])


def record_cache_lookup(key: str, hit: bool) -> None:
    analytics_cache_requests_total.labels(
        prefix=cache_prefix(key), outcome="hit" if hit else "miss"
    ).inc()


def record_event(event_name: str) -> None:
    analytics_events_published_total.labels(event=event_name).inc()


def record_job_item(job: str, succeeded: bool) -> None:
    analytics_job_items_total.labels(job=job, status="ok" if succeeded else "error").inc()


def render_latest(registry: CollectorRegistry = REGISTRY) -> tuple[bytes, str]:
    """Serialise *registry* in the Prometheus text format for a scrape endpoint."""
    return generate_latest(registry), CONTENT_TYPE_LATEST
