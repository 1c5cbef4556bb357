"""Cross-location application service.

Compares item prices and spending across branches and vendors. Price
questions read recent price snapshots and fall back to approved invoice
lines when no snapshot exists in the window; spending questions read the
precomputed spend aggregates rather than raw invoices.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

import structlog

from application.services.cache_aside import CacheAside, CacheKeys, build_cache_key
from domain.exceptions import AnalyticsError, CrossLocationError
from domain.models.analytics import (
    BenchmarkStats,
    BranchPrice,
    BranchSpending,
    ConsolidationBranchDetail,
    ConsolidationOpportunity,
    PriceObservation,
    PriceVarianceResult,
    SpendAggregate,
)
from domain.services.statistics import mean, safe_div

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable


# ---------------------------------------------------------------------------
# Repository ports
# ---------------------------------------------------------------------------


class PriceObservationRepository(Protocol):
    """Port: dated price observations for an item."""

    async def get_price_snapshots(
        self,
        item_id: int,
        since: datetime,
        vendor_id: int | None = None,
    ) -> list[PriceObservation]: ...

    async def get_invoice_prices(
        self,
        item_id: int,
        since: datetime,
        vendor_id: int | None = None,
    ) -> list[PriceObservation]:
        """Prices taken from approved, non-deleted invoice lines."""
        ...


class SpendAggregateRepository(Protocol):
    """Port: precomputed spend rollups."""

    async def get_branch_aggregates(
        self,
        start_date: date,
        end_date: date,
        item_id: int | None = None,
    ) -> list[SpendAggregate]: ...

    async def get_item_aggregates(self, since: date) -> list[SpendAggregate]: ...


# ---------------------------------------------------------------------------
# Internal accumulators
# ---------------------------------------------------------------------------


@dataclass
class _BranchAccumulator:
    branch_id: int | None
    branch_name: str | None
    vendors: dict[int, str | None] = field(default_factory=dict)
    total_amount: float = 0.0


@dataclass
class _ItemAccumulator:
    item_id: int
    item_name: str
    branches: dict[int | None, _BranchAccumulator] = field(default_factory=dict)
    vendors: set[int] = field(default_factory=set)
    total_spending: float = 0.0


def _as_day(value: date) -> date:
    return value.date() if isinstance(value, datetime) else value


def _latest_price_per_branch(
    observations: Iterable[PriceObservation],
) -> dict[int | None, PriceObservation]:
    """Keep the newest observation per branch."""
    latest: dict[int | None, PriceObservation] = {}
    for obs in sorted(observations, key=lambda o: o.date, reverse=True):
        latest.setdefault(obs.branch_id, obs)
    return latest


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class CrossLocationService:
    """Price variance, benchmarks, branch spending and consolidation analysis."""

    def __init__(
        self,
        price_repo: PriceObservationRepository,
        spend_repo: SpendAggregateRepository,
        cache: CacheAside,
        *,
        price_variance_ttl_seconds: int = 600,
        benchmark_ttl_seconds: int = 86400,
        spending_ttl_seconds: int = 300,
        price_window_days: int = 30,
        consolidation_window_days: int = 90,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._price_repo = price_repo
        self._spend_repo = spend_repo
        self._cache = cache
        self._price_variance_ttl = price_variance_ttl_seconds
        self._benchmark_ttl = benchmark_ttl_seconds
        self._spending_ttl = spending_ttl_seconds
        self._price_window = timedelta(days=price_window_days)
        self._consolidation_window = timedelta(days=consolidation_window_days)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._log = structlog.get_logger(__name__).bind(service="CrossLocationService")

    # -- helpers ----------------------------------------------------------

    async def _recent_prices(
        self,
        item_id: int,
        vendor_id: int | None,
    ) -> list[PriceObservation]:
        """Snapshots from the price window, or invoice-line prices when there are none."""
        since = self._clock() - self._price_window
        observations = await self._price_repo.get_price_snapshots(item_id, since, vendor_id)
        if observations:
            return observations

        self._log.info(
            "No price snapshots in window, falling back to invoice prices",
            item_id=item_id,
            vendor_id=vendor_id,
        )
        return await self._price_repo.get_invoice_prices(item_id, since, vendor_id)

    @staticmethod
    def _build_price_variance(
        item_id: int,
        observations: list[PriceObservation],
    ) -> list[PriceVarianceResult]:
        by_vendor: dict[int, list[PriceObservation]] = {}
        for obs in observations:
            by_vendor.setdefault(obs.vendor_id, []).append(obs)

        results: list[PriceVarianceResult] = []
        for vendor_id, vendor_obs in by_vendor.items():
            latest = _latest_price_per_branch(vendor_obs)
            prices = [obs.price for obs in latest.values()]
            avg_price = mean(prices)

            branches = [
                BranchPrice(
                    branch_id=branch_id,
                    branch_name=obs.branch_name,
                    price=obs.price,
                    variance_from_avg=(
                        safe_div(obs.price - avg_price, avg_price) * 100 if avg_price > 0 else 0.0
                    ),
                )
                for branch_id, obs in latest.items()
            ]
            sample = vendor_obs[0]
            results.append(
                PriceVarianceResult(
                    item_id=item_id,
                    item_name=sample.item_name,
                    vendor_id=vendor_id,
                    vendor_name=sample.vendor_name,
                    branches=branches,
                    network_avg_price=avg_price,
                    network_min_price=min(prices),
                    network_max_price=max(prices),
                    max_variance=max((abs(b.variance_from_avg) for b in branches), default=0.0),
                )
            )
        return results

    async def _run(self, operation: str, message: str, call: Awaitable, **context):
        """Await *call*, wrapping infrastructure faults into :class:`CrossLocationError`."""
        try:
            return await call
        except AnalyticsError:
            raise
        except Exception as exc:
            self._log.exception(message, operation=operation, **context)
            raise CrossLocationError(operation, message, exc) from exc

    # -- public API -------------------------------------------------------

    async def get_price_variance(
        self,
        item_id: int,
        vendor_id: int | None = None,
    ) -> list[PriceVarianceResult]:
        """Per-vendor price spread for *item_id* across branches."""
        self._log.info("Getting price variance", item_id=item_id, vendor_id=vendor_id)

        async def compute() -> list[PriceVarianceResult]:
            observations = await self._recent_prices(item_id, vendor_id)
            results = self._build_price_variance(item_id, observations)
            self._log.info(
                "Price variance computed",
                item_id=item_id,
                vendor_id=vendor_id,
                result_count=len(results),
            )
            return results

        return await self._run(
            "get_price_variance",
            f"Failed to get price variance for item {item_id}",
            self._cache.get_or_compute(
                build_cache_key(CacheKeys.PRICE_VARIANCE, item_id, vendor_id),
                self._price_variance_ttl,
                compute,
                encode=lambda results: [r.to_dict() for r in results],
                decode=lambda data: [PriceVarianceResult.from_dict(d) for d in data],
                cache_if=bool,
            ),
            item_id=item_id,
            vendor_id=vendor_id,
        )

    async def get_benchmark_stats(self, item_id: int) -> BenchmarkStats | None:
        """Network-wide price statistics, or ``None`` when no branch has a price."""
        self._log.info("Getting benchmark stats", item_id=item_id)

        async def compute() -> BenchmarkStats | None:
            latest = _latest_price_per_branch(await self._recent_prices(item_id, None))
            if not latest:
                return None

            prices = [obs.price for obs in latest.values()]
            stats = BenchmarkStats(
                item_id=item_id,
                avg_price=mean(prices),
                min_price=min(prices),
                max_price=max(prices),
                price_range=max(prices) - min(prices),
                branch_count=len(latest),
            )
            self._log.info(
                "Benchmark stats computed", item_id=item_id, branch_count=stats.branch_count
            )
            return stats

        return await self._run(
            "get_benchmark_stats",
            f"Failed to get benchmark stats for item {item_id}",
            self._cache.get_or_compute(
                build_cache_key(CacheKeys.BENCHMARK_STATS, item_id),
                self._benchmark_ttl,
                compute,
                encode=lambda stats: stats.to_dict(),
                decode=BenchmarkStats.from_dict,
                cache_if=lambda stats: stats is not None,
            ),
            item_id=item_id,
        )

    async def compare_spending_by_branch(
        self,
        start_date: date,
        end_date: date,
        item_id: int | None = None,
    ) -> list[BranchSpending]:
        """Total spend per branch within ``[start_date, end_date]``, largest first.

        Spend aggregates are daily rollups, so datetime bounds are reduced to
        their calendar day before querying and keying the cache.
        """
        start_date = _as_day(start_date)
        end_date = _as_day(end_date)
        self._log.info(
            "Comparing spending by branch",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
            item_id=item_id,
        )

        async def compute() -> list[BranchSpending]:
            aggregates = await self._spend_repo.get_branch_aggregates(start_date, end_date, item_id)

            by_branch: dict[int, BranchSpending] = {}
            for agg in aggregates:
                if agg.branch_id is None:
                    continue
                current = by_branch.get(agg.branch_id)
                by_branch[agg.branch_id] = BranchSpending(
                    branch_id=agg.branch_id,
                    branch_name=current.branch_name if current else (agg.branch_name or ""),
                    total_amount=(current.total_amount if current else 0.0) + agg.total_amount,
                    invoice_count=(current.invoice_count if current else 0) + agg.invoice_count,
                )

            results = sorted(by_branch.values(), key=lambda b: b.total_amount, reverse=True)
            self._log.info("Branch spending comparison completed", branch_count=len(results))
            return results

        return await self._run(
            "compare_spending_by_branch",
            "Failed to compare spending by branch",
            self._cache.get_or_compute(
                build_cache_key(CacheKeys.BRANCH_SPENDING, start_date, end_date, item_id),
                self._spending_ttl,
                compute,
                encode=lambda results: [r.to_dict() for r in results],
                decode=lambda data: [BranchSpending.from_dict(d) for d in data],
            ),
            item_id=item_id,
        )

    async def find_consolidation_opportunities(self) -> list[ConsolidationOpportunity]:
        """Items bought from several vendors or at several branches, by spend."""
        self._log.info("Finding consolidation opportunities")

        async def compute() -> list[ConsolidationOpportunity]:
            since = (self._clock() - self._consolidation_window).date()
            aggregates = await self._spend_repo.get_item_aggregates(since)

            by_item: dict[int, _ItemAccumulator] = {}
            for agg in aggregates:
                if agg.item_id is None:
                    continue
                item = by_item.setdefault(
                    agg.item_id, _ItemAccumulator(item_id=agg.item_id, item_name=agg.item_name)
                )
                item.total_spending += agg.total_amount

                branch = item.branches.setdefault(
                    agg.branch_id,
                    _BranchAccumulator(branch_id=agg.branch_id, branch_name=agg.branch_name),
                )
                branch.total_amount += agg.total_amount
                if agg.vendor_id is not None:
                    item.vendors.add(agg.vendor_id)
                    branch.vendors.setdefault(agg.vendor_id, agg.vendor_name)

            opportunities: list[ConsolidationOpportunity] = []
            for item in by_item.values():
                if len(item.vendors) < 2 and len(item.branches) < 2:
                    continue

                details = []
                for branch in item.branches.values():
                    # Vendor is only meaningful when the branch used exactly one.
                    sole_vendor = next(iter(branch.vendors.items())) if len(branch.vendors) == 1 else None
                    details.append(
                        ConsolidationBranchDetail(
                            branch_id=branch.branch_id,
                            branch_name=branch.branch_name,
                            vendor_id=sole_vendor[0] if sole_vendor else None,
                            vendor_name=sole_vendor[1] if sole_vendor else None,
                            total_amount=branch.total_amount,
                        )
                    )

                opportunities.append(
                    ConsolidationOpportunity(
                        item_id=item.item_id,
                        item_name=item.item_name,
                        branch_count=len(item.branches),
                        vendor_count=len(item.vendors),
                        total_spending=item.total_spending,
                        branches=details,
                    )
                )

            opportunities.sort(key=lambda o: o.total_spending, reverse=True)
            self._log.info(
                "Consolidation opportunities identified", opportunity_count=len(opportunities)
            )
            return opportunities

        return await self._run(
            "find_consolidation_opportunities",
            "Failed to find consolidation opportunities",
            self._cache.get_or_compute(
                CacheKeys.CONSOLIDATION,
                self._spending_ttl,
                compute,
                encode=lambda results: [r.to_dict() for r in results],
                decode=lambda data: [ConsolidationOpportunity.from_dict(d) for d in data],
            ),
        )
