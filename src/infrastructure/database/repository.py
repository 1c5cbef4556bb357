"""
SQLAlchemy repository implementations of the analytics ports.

Each repository receives an :class:`async_sessionmaker` and opens one
short-lived session per call, so a single instance can be shared by the
long-lived analytics services and by Celery workers.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import Select, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domain.models.analytics import (
    OrderObservation,
    PriceObservation,
    PurchasePattern,
    SpendAggregate,
)

from .engine import session_scope
from .models import (
    INVOICE_STATUS_APPROVED,
    PATTERN_KEY_CONSTRAINT,
    BranchModel,
    InvoiceItemModel,
    InvoiceModel,
    ItemModel,
    PriceSnapshotModel,
    PurchasePatternModel,
    SpendingMetricModel,
    VendorModel,
)

UNASSIGNED_BRANCH = "Unassigned"


def _finalized(stmt: Select[Any]) -> Select[Any]:
    """Restrict a statement joined on :class:`InvoiceModel` to approved, live invoices."""
    return stmt.where(
        InvoiceModel.status == INVOICE_STATUS_APPROVED,
        InvoiceModel.deleted_at.is_(None),
    )


# =========================================================================
# Order history
# =========================================================================

class SqlOrderHistoryRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_order_history(
        self, item_id: int, branch_id: Optional[int] = None
    ) -> list[OrderObservation]:
        stmt = _finalized(
            select(
                InvoiceModel.id,
                InvoiceModel.date,
                InvoiceItemModel.quantity,
                InvoiceItemModel.price,
            )
            .join(InvoiceModel, InvoiceItemModel.invoice_id == InvoiceModel.id)
            .where(InvoiceItemModel.item_id == item_id)
        )
        if branch_id is not None:
            stmt = stmt.where(InvoiceModel.branch_id == branch_id)
        stmt = stmt.order_by(InvoiceModel.date.asc())

        async with session_scope(self._session_factory) as session:
            rows = (await session.execute(stmt)).all()
        return [
            OrderObservation(invoice_id=row.id, date=row.date, quantity=row.quantity, price=row.price)
            for row in rows
        ]

    async def list_recently_ordered_items(self, since: datetime) -> list[int]:
        stmt = _finalized(
            select(InvoiceItemModel.item_id)
            .join(InvoiceModel, InvoiceItemModel.invoice_id == InvoiceModel.id)
            .where(InvoiceModel.date >= since)
            .distinct()
            .order_by(InvoiceItemModel.item_id)
        )
        async with session_scope(self._session_factory) as session:
            return list((await session.execute(stmt)).scalars().all())


# =========================================================================
# Price observations
# =========================================================================

class SqlPriceObservationRepository:
    """Reads price snapshots, and invoice lines as the fallback price source."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_price_snapshots(
        self, item_id: int, since: datetime, vendor_id: Optional[int] = None
    ) -> list[PriceObservation]:
        stmt = (
            select(
                PriceSnapshotModel.branch_id,
                PriceSnapshotModel.vendor_id,
                PriceSnapshotModel.price,
                PriceSnapshotModel.date,
                BranchModel.name.label("branch_name"),
                VendorModel.name.label("vendor_name"),
                ItemModel.name.label("item_name"),
            )
            .join(ItemModel, PriceSnapshotModel.item_id == ItemModel.id)
            .join(VendorModel, PriceSnapshotModel.vendor_id == VendorModel.id)
            .outerjoin(BranchModel, PriceSnapshotModel.branch_id == BranchModel.id)
            .where(PriceSnapshotModel.item_id == item_id, PriceSnapshotModel.date >= since)
            .order_by(PriceSnapshotModel.date.desc())
        )
        if vendor_id is not None:
            stmt = stmt.where(PriceSnapshotModel.vendor_id == vendor_id)
        return await self._observations(stmt)

    async def get_invoice_prices(
        self, item_id: int, since: datetime, vendor_id: Optional[int] = None
    ) -> list[PriceObservation]:
        stmt = _finalized(
            select(
                InvoiceModel.branch_id,
                ItemModel.vendor_id,
                InvoiceItemModel.price,
                InvoiceModel.date,
                BranchModel.name.label("branch_name"),
                VendorModel.name.label("vendor_name"),
                ItemModel.name.label("item_name"),
            )
            .join(InvoiceModel, InvoiceItemModel.invoice_id == InvoiceModel.id)
            .join(ItemModel, InvoiceItemModel.item_id == ItemModel.id)
            .join(VendorModel, ItemModel.vendor_id == VendorModel.id)
            .outerjoin(BranchModel, InvoiceModel.branch_id == BranchModel.id)
            .where(InvoiceItemModel.item_id == item_id, InvoiceModel.date >= since)
            .order_by(InvoiceModel.date.desc())
        )
        if vendor_id is not None:
            stmt = stmt.where(ItemModel.vendor_id == vendor_id)
        return await self._observations(stmt)

    async def _observations(self, stmt: Select[Any]) -> list[PriceObservation]:
        async with session_scope(self._session_factory) as session:
            rows = (await session.execute(stmt)).all()
        return [
            PriceObservation(
                branch_id=row.branch_id,
                vendor_id=row.vendor_id,
                price=row.price,
                date=row.date,
                branch_name=row.branch_name or UNASSIGNED_BRANCH,
                vendor_name=row.vendor_name,
                item_name=row.item_name,
            )
            for row in rows
        ]


# =========================================================================
# Spend aggregates
# =========================================================================

class SqlSpendAggregateRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _base(self) -> Select[Any]:
        return (
            select(
                SpendingMetricModel.date,
                SpendingMetricModel.total_amount,
                SpendingMetricModel.invoice_count,
                SpendingMetricModel.item_id,
                SpendingMetricModel.vendor_id,
                SpendingMetricModel.branch_id,
                ItemModel.name.label("item_name"),
                VendorModel.name.label("vendor_name"),
                BranchModel.name.label("branch_name"),
            )
            .outerjoin(ItemModel, SpendingMetricModel.item_id == ItemModel.id)
            .outerjoin(VendorModel, SpendingMetricModel.vendor_id == VendorModel.id)
            .outerjoin(BranchModel, SpendingMetricModel.branch_id == BranchModel.id)
        )

    async def get_branch_aggregates(
        self, start_date: date, end_date: date, item_id: Optional[int] = None
    ) -> list[SpendAggregate]:
        stmt = self._base().where(
            SpendingMetricModel.date >= start_date,
            SpendingMetricModel.date <= end_date,
            SpendingMetricModel.branch_id.is_not(None),
        )
        if item_id is not None:
            stmt = stmt.where(SpendingMetricModel.item_id == item_id)
        return await self._aggregates(stmt)

    async def get_item_aggregates(self, since: date) -> list[SpendAggregate]:
        stmt = self._base().where(
            SpendingMetricModel.date >= since,
            SpendingMetricModel.item_id.is_not(None),
        )
        return await self._aggregates(stmt)

    async def _aggregates(self, stmt: Select[Any]) -> list[SpendAggregate]:
        async with session_scope(self._session_factory) as session:
            rows = (await session.execute(stmt)).all()
        return [
            SpendAggregate(
                date=row.date,
                total_amount=row.total_amount,
                invoice_count=row.invoice_count,
                item_id=row.item_id,
                vendor_id=row.vendor_id,
                branch_id=row.branch_id,
                item_name=row.item_name or "",
                vendor_name=row.vendor_name,
                branch_name=row.branch_name,
            )
            for row in rows
        ]


# =========================================================================
# Purchase patterns
# =========================================================================

_PATTERN_COLUMNS = (
    "avg_order_cycle_days",
    "avg_order_quantity",
    "avg_order_amount",
    "std_dev_quantity",
    "std_dev_amount",
    "is_increasing",
    "is_decreasing",
    "is_seasonal",
    "last_order_date",
    "next_predicted_order",
    "confidence_score",
    "based_on_invoices",
    "analysis_start_date",
    "analysis_end_date",
)


def _to_domain(row: Any) -> PurchasePattern:
    """Map an ORM row or a RETURNING row onto the domain pattern."""
    pattern = PurchasePattern(
        item_id=row.item_id,
        branch_id=row.branch_id,
        seasonality_pattern=(
            {int(month): float(avg) for month, avg in row.seasonality_pattern.items()}
            if row.seasonality_pattern is not None
            else None
        ),
        updated_at=row.updated_at,
    )
    for column in _PATTERN_COLUMNS:
        setattr(pattern, column, getattr(row, column))
    return pattern


def _row_values(pattern: PurchasePattern) -> dict[str, Any]:
    values: dict[str, Any] = {column: getattr(pattern, column) for column in _PATTERN_COLUMNS}
    values["seasonality_pattern"] = (
        {str(month): avg for month, avg in pattern.seasonality_pattern.items()}
        if pattern.seasonality_pattern is not None
        else None
    )
    values["updated_at"] = pattern.updated_at
    return values


class SqlPurchasePatternRepository:
    """``INSERT ... ON CONFLICT DO UPDATE`` keyed by ``(item_id, branch_id)``; last write wins.

    The unique key treats NULL branches as equal, so concurrent first
    analyses of one key still leave a single row.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _lookup(item_id: int, branch_id: Optional[int]) -> Select[Any]:
        stmt = select(PurchasePatternModel).where(PurchasePatternModel.item_id == item_id)
        if branch_id is None:
            return stmt.where(PurchasePatternModel.branch_id.is_(None))
        return stmt.where(PurchasePatternModel.branch_id == branch_id)

    async def upsert(self, pattern: PurchasePattern) -> tuple[PurchasePattern, bool]:
        table = PurchasePatternModel.__table__
        values = _row_values(pattern)
        stmt = pg_insert(table).values(
            item_id=pattern.item_id, branch_id=pattern.branch_id, **values
        )
        stmt = stmt.on_conflict_do_update(
            constraint=PATTERN_KEY_CONSTRAINT,
            set_={column: stmt.excluded[column] for column in values},
        ).returning(
            *table.c,
            # xmax is 0 only on a freshly inserted tuple
            literal_column("(xmax = 0)").label("created"),
        )
        async with session_scope(self._session_factory) as session:
            row = (await session.execute(stmt)).one()
        return _to_domain(row), bool(row.created)

    async def find(
        self, item_id: int, branch_id: Optional[int] = None
    ) -> Optional[PurchasePattern]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(self._lookup(item_id, branch_id))
            row = result.scalars().first()
            return _to_domain(row) if row else None

    async def list_item_ids(self, branch_id: Optional[int] = None) -> list[int]:
        stmt = select(PurchasePatternModel.item_id).distinct().order_by(PurchasePatternModel.item_id)
        if branch_id is not None:
            stmt = stmt.where(PurchasePatternModel.branch_id == branch_id)
        async with session_scope(self._session_factory) as session:
            return list((await session.execute(stmt)).scalars().all())
