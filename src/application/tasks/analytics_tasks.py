"""Background Celery tasks for recurring purchase analytics.

Each task resolves its item set, processes the items in batches through
:class:`PatternRecognitionService`, and counts per-item failures. A run
fails (and is retried by Celery) only when every item failed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional

from application.tasks.celery_app import app
from domain.exceptions import PatternRecognitionError
from infrastructure.observability.logging_config import get_logger
from infrastructure.observability.metrics import record_job_item

if TYPE_CHECKING:
    from infrastructure.container import ServiceContainer

ANALYZE_PATTERNS_JOB = "analyze-purchase-patterns"
DETECT_ANOMALIES_JOB = "detect-anomalies"


async def _process_in_batches(
    job: str,
    item_ids: list[int],
    batch_size: int,
    handle: Callable[[int], Awaitable[int]],
) -> dict[str, Any]:
    """Run *handle* over *item_ids*, one concurrent batch at a time.

    *handle* returns a per-item count (anomalies found, or 1 for an
    analysed pattern) that is summed into ``found``.
    """
    log = get_logger(__name__, job=job)
    started = time.monotonic()
    processed = 0
    errors = 0
    found = 0

    async def run_one(item_id: int) -> int | None:
        """Per-item count, or ``None`` when the item failed."""
        try:
            count = await handle(item_id)
        except Exception:
            record_job_item(job, succeeded=False)
            log.exception("Item failed", item_id=item_id)
            return None
        record_job_item(job, succeeded=True)
        return count

    for start in range(0, len(item_ids), batch_size):
        batch = item_ids[start : start + batch_size]
        results = await asyncio.gather(*(run_one(item_id) for item_id in batch))
        for count in results:
            if count is None:
                errors += 1
            else:
                processed += 1
                found += count
        if len(item_ids) > batch_size:
            done = start + len(batch)
            log.info(
                "Batch finished",
                processed=done,
                total=len(item_ids),
                progress=round(done / len(item_ids) * 100),
            )

    summary = {
        "total_items": len(item_ids),
        "processed": processed,
        "errors": errors,
        "found": found,
        "duration_ms": round((time.monotonic() - started) * 1000),
    }
    log.info("Job completed", **summary)

    if errors and processed == 0:
        raise PatternRecognitionError(job, f"All {errors} items failed")
    return summary


async def run_pattern_analysis(
    container: ServiceContainer,
    item_ids: Optional[list[int]] = None,
    branch_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Re-analyse the given items, or every item ordered in the recent window."""
    settings = container.settings
    log = get_logger(__name__, job=ANALYZE_PATTERNS_JOB)

    if not item_ids:
        since = (now or datetime.now(UTC)) - timedelta(days=settings.recent_order_window_days)
        item_ids = await container.order_repo.list_recently_ordered_items(since)
        log.info("Analysing recently ordered items", item_count=len(item_ids))

    if not item_ids:
        log.info("No items to analyse")
        return {"total_items": 0, "processed": 0, "errors": 0, "found": 0}

    async def analyze(item_id: int) -> int:
        result = await container.pattern_service.analyze_purchase_pattern(item_id, branch_id)
        return 1 if result.found else 0

    return await _process_in_batches(
        ANALYZE_PATTERNS_JOB, item_ids, settings.pattern_batch_size, analyze
    )


async def run_anomaly_detection(
    container: ServiceContainer,
    item_ids: Optional[list[int]] = None,
    branch_id: Optional[int] = None,
) -> dict[str, Any]:
    """Detect anomalies for the given items, or every item with a stored pattern."""
    settings = container.settings
    log = get_logger(__name__, job=DETECT_ANOMALIES_JOB)

    if not item_ids:
        item_ids = await container.pattern_repo.list_item_ids(branch_id)
        log.info("Checking items with stored patterns", item_count=len(item_ids))

    if not item_ids:
        log.info("No items with stored patterns")
        return {"total_items": 0, "processed": 0, "errors": 0, "found": 0}

    async def detect(item_id: int) -> int:
        anomalies = await container.pattern_service.detect_anomalies(item_id, branch_id)
        return len(anomalies)

    return await _process_in_batches(
        DETECT_ANOMALIES_JOB, item_ids, settings.pattern_batch_size, detect
    )


async def _with_container(
    job: Callable[[ServiceContainer], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    from infrastructure.container import get_container

    container = get_container()
    try:
        return await job(container)
    finally:
        # Pools are bound to this event loop; the next task run opens a new one.
        await container.aclose()


@app.task(  # type: ignore[untyped-decorator]
    name="application.tasks.analytics_tasks.analyze_purchase_patterns",
    bind=True,
    max_retries=3,
    default_retry_delay=120,
)
def analyze_purchase_patterns(
    self: Any,
    item_ids: Optional[list[int]] = None,
    branch_id: Optional[int] = None,
) -> dict[str, Any]:
    """Recompute purchase patterns for recently ordered (or the given) items."""
    try:
        return asyncio.run(
            _with_container(lambda c: run_pattern_analysis(c, item_ids, branch_id))
        )
    except Exception as exc:
        get_logger(__name__, job=ANALYZE_PATTERNS_JOB).exception("Purchase pattern analysis failed")
        raise self.retry(exc=exc) from exc


@app.task(  # type: ignore[untyped-decorator]
    name="application.tasks.analytics_tasks.detect_anomalies",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
)
def detect_anomalies(
    self: Any,
    item_ids: Optional[list[int]] = None,
    branch_id: Optional[int] = None,
) -> dict[str, Any]:
    """Flag anomalous orders for items with stored (or the given) patterns."""
    try:
        return asyncio.run(
            _with_container(lambda c: run_anomaly_detection(c, item_ids, branch_id))
        )
    except Exception as exc:
        get_logger(__name__, job=DETECT_ANOMALIES_JOB).exception("Anomaly detection failed")
        raise self.retry(exc=exc) from exc
