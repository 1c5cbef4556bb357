"""
SQLAlchemy 2.0+ ORM models for the procurement analytics store.

Schema layout
-------------
* Reference data     -- ``branches``, ``vendors``, ``items``
* Transactions       -- ``invoices``, ``invoice_items``
* Derived analytics  -- ``price_snapshots``, ``spending_metrics``,
  ``purchase_patterns``

Only ``purchase_patterns`` is written by the analytics engine; the other
tables are read.
"""

from __future__ import annotations

import datetime as dt
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


class Base(DeclarativeBase):
    """Shared declarative base for every ORM model."""
    pass


INVOICE_STATUS_APPROVED = "APPROVED"
PATTERN_KEY_CONSTRAINT = "uq_purchase_patterns_item_branch"


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

class BranchModel(Base):
    __tablename__ = "branches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class VendorModel(Base):
    __tablename__ = "vendors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class ItemModel(Base):
    """A catalogue item; each item is supplied by exactly one vendor."""

    __tablename__ = "items"
    __table_args__ = (Index("ix_items_vendor_id", "vendor_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vendors.id"), nullable=False
    )


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class InvoiceModel(Base):
    """An invoice header. Only approved, non-deleted invoices feed analytics."""

    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_status_date", "status", "date"),
        Index("ix_invoices_branch_id", "branch_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=INVOICE_STATUS_APPROVED
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("branches.id"), nullable=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    lines: Mapped[List["InvoiceItemModel"]] = relationship(
        back_populates="invoice", lazy="selectin"
    )


class InvoiceItemModel(Base):
    __tablename__ = "invoice_items"
    __table_args__ = (Index("ix_invoice_items_item_id", "item_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("items.id"), nullable=False
    )
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)

    invoice: Mapped["InvoiceModel"] = relationship(back_populates="lines")


# ---------------------------------------------------------------------------
# Derived analytics
# ---------------------------------------------------------------------------

class PriceSnapshotModel(Base):
    __tablename__ = "price_snapshots"
    __table_args__ = (Index("ix_price_snapshots_item_date", "item_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("items.id"), nullable=False
    )
    vendor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("vendors.id"), nullable=False
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("branches.id"), nullable=True
    )
    price: Mapped[float] = mapped_column(Float, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SpendingMetricModel(Base):
    """Precomputed spend per (date, item, vendor, branch) cell."""

    __tablename__ = "spending_metrics"
    __table_args__ = (
        Index("ix_spending_metrics_date", "date"),
        Index("ix_spending_metrics_branch_date", "branch_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    item_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("items.id"), nullable=True
    )
    vendor_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("vendors.id"), nullable=True
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("branches.id"), nullable=True
    )
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    invoice_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PurchasePatternModel(Base):
    """One row per ``(item_id, branch_id)``; a NULL branch is the network-wide pattern."""

    __tablename__ = "purchase_patterns"
    __table_args__ = (
        UniqueConstraint(
            "item_id",
            "branch_id",
            name=PATTERN_KEY_CONSTRAINT,
            postgresql_nulls_not_distinct=True,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("items.id"), nullable=False
    )
    branch_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("branches.id"), nullable=True
    )
    avg_order_cycle_days: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_order_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_order_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    std_dev_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    std_dev_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_increasing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_decreasing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_seasonal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Month keys ("0".."11") are stored as strings.
    seasonality_pattern: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)
    last_order_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_predicted_order: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    based_on_invoices: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analysis_start_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    analysis_end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<PurchasePattern(item_id={self.item_id!r}, branch_id={self.branch_id!r}, "
            f"confidence={self.confidence_score!r})>"
        )
