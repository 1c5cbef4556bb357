from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any


class AnomalyType(str, enum.Enum):
    QUANTITY_ANOMALY = "QUANTITY_ANOMALY"
    AMOUNT_ANOMALY = "AMOUNT_ANOMALY"
    BOTH = "BOTH"


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Inputs read from transaction history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderObservation:
    """A single finalized invoice line for one item."""

    invoice_id: int
    date: datetime
    quantity: float
    price: float

    @property
    def amount(self) -> float:
        return self.quantity * self.price


@dataclass(frozen=True)
class PriceObservation:
    branch_id: int | None
    vendor_id: int
    price: float
    date: datetime
    branch_name: str = "Unassigned"
    vendor_name: str = ""
    item_name: str = ""


@dataclass(frozen=True)
class SpendAggregate:
    """Precomputed spend rollup for one (date, item, vendor, branch) cell."""

    date: date
    total_amount: float
    invoice_count: int = 0
    item_id: int | None = None
    vendor_id: int | None = None
    branch_id: int | None = None
    item_name: str = ""
    vendor_name: str | None = None
    branch_name: str | None = None


# ---------------------------------------------------------------------------
# Purchase pattern (persisted)
# ---------------------------------------------------------------------------


@dataclass
class PurchasePattern:
    item_id: int
    branch_id: int | None = None
    avg_order_cycle_days: float = 0.0
    avg_order_quantity: float = 0.0
    avg_order_amount: float = 0.0
    std_dev_quantity: float = 0.0
    std_dev_amount: float = 0.0
    is_increasing: bool = False
    is_decreasing: bool = False
    is_seasonal: bool = False
    seasonality_pattern: dict[int, float] | None = None
    last_order_date: datetime | None = None
    next_predicted_order: datetime | None = None
    confidence_score: float = 0.0
    based_on_invoices: int = 0
    analysis_start_date: datetime | None = None
    analysis_end_date: datetime | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> tuple[int, int | None]:
        return (self.item_id, self.branch_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "branch_id": self.branch_id,
            "avg_order_cycle_days": self.avg_order_cycle_days,
            "avg_order_quantity": self.avg_order_quantity,
            "avg_order_amount": self.avg_order_amount,
            "std_dev_quantity": self.std_dev_quantity,
            "std_dev_amount": self.std_dev_amount,
            "is_increasing": self.is_increasing,
            "is_decreasing": self.is_decreasing,
            "is_seasonal": self.is_seasonal,
            # JSON object keys are always strings
            "seasonality_pattern": (
                {str(month): avg for month, avg in self.seasonality_pattern.items()}
                if self.seasonality_pattern is not None
                else None
            ),
            "last_order_date": _iso(self.last_order_date),
            "next_predicted_order": _iso(self.next_predicted_order),
            "confidence_score": self.confidence_score,
            "based_on_invoices": self.based_on_invoices,
            "analysis_start_date": _iso(self.analysis_start_date),
            "analysis_end_date": _iso(self.analysis_end_date),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PurchasePattern:
        seasonality = data.get("seasonality_pattern")
        return cls(
            item_id=data["item_id"],
            branch_id=data.get("branch_id"),
            avg_order_cycle_days=data.get("avg_order_cycle_days", 0.0),
            avg_order_quantity=data.get("avg_order_quantity", 0.0),
            avg_order_amount=data.get("avg_order_amount", 0.0),
            std_dev_quantity=data.get("std_dev_quantity", 0.0),
            std_dev_amount=data.get("std_dev_amount", 0.0),
            is_increasing=data.get("is_increasing", False),
            is_decreasing=data.get("is_decreasing", False),
            is_seasonal=data.get("is_seasonal", False),
            seasonality_pattern=(
                {int(month): float(avg) for month, avg in seasonality.items()}
                if seasonality is not None
                else None
            ),
            last_order_date=_dt(data.get("last_order_date")),
            next_predicted_order=_dt(data.get("next_predicted_order")),
            confidence_score=data.get("confidence_score", 0.0),
            based_on_invoices=data.get("based_on_invoices", 0),
            analysis_start_date=_dt(data.get("analysis_start_date")),
            analysis_end_date=_dt(data.get("analysis_end_date")),
            updated_at=_dt(data.get("updated_at")) or datetime.now(UTC),
        )


# ---------------------------------------------------------------------------
# Pattern lookup outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternFound:
    pattern: PurchasePattern
    found: bool = field(default=True, init=False)


@dataclass(frozen=True)
class InsufficientData:
    """Too few finalized orders to model a pattern. Not an error."""

    order_count: int
    min_required: int
    found: bool = field(default=False, init=False)


@dataclass(frozen=True)
class PatternNotComputed:
    found: bool = field(default=False, init=False)


PatternLookup = PatternFound | InsufficientData | PatternNotComputed


# ---------------------------------------------------------------------------
# Anomalies (cached, never persisted)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Anomaly:
    invoice_id: int
    invoice_date: datetime
    quantity: float
    amount: float
    expected_quantity: float
    expected_amount: float
    quantity_deviation: float
    amount_deviation: float
    type: AnomalyType

    @property
    def max_deviation(self) -> float:
        return max(self.quantity_deviation, self.amount_deviation)

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice_id": self.invoice_id,
            "invoice_date": self.invoice_date.isoformat(),
            "quantity": self.quantity,
            "amount": self.amount,
            "expected_quantity": self.expected_quantity,
            "expected_amount": self.expected_amount,
            "quantity_deviation": self.quantity_deviation,
            "amount_deviation": self.amount_deviation,
            "type": self.type.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Anomaly:
        return cls(
            invoice_id=data["invoice_id"],
            invoice_date=datetime.fromisoformat(data["invoice_date"]),
            quantity=data["quantity"],
            amount=data["amount"],
            expected_quantity=data["expected_quantity"],
            expected_amount=data["expected_amount"],
            quantity_deviation=data["quantity_deviation"],
            amount_deviation=data["amount_deviation"],
            type=AnomalyType(data["type"]),
        )


# ---------------------------------------------------------------------------
# Cross-location results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BranchPrice:
    branch_id: int | None
    branch_name: str
    price: float
    variance_from_avg: float


@dataclass(frozen=True)
class PriceVarianceResult:
    item_id: int
    item_name: str
    vendor_id: int
    vendor_name: str
    branches: list[BranchPrice] = field(default_factory=list)
    network_avg_price: float = 0.0
    network_min_price: float = 0.0
    network_max_price: float = 0.0
    max_variance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "vendor_id": self.vendor_id,
            "vendor_name": self.vendor_name,
            "branches": [
                {
                    "branch_id": b.branch_id,
                    "branch_name": b.branch_name,
                    "price": b.price,
                    "variance_from_avg": b.variance_from_avg,
                }
                for b in self.branches
            ],
            "network_avg_price": self.network_avg_price,
            "network_min_price": self.network_min_price,
            "network_max_price": self.network_max_price,
            "max_variance": self.max_variance,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PriceVarianceResult:
        return cls(
            item_id=data["item_id"],
            item_name=data["item_name"],
            vendor_id=data["vendor_id"],
            vendor_name=data["vendor_name"],
            branches=[BranchPrice(**b) for b in data["branches"]],
            network_avg_price=data["network_avg_price"],
            network_min_price=data["network_min_price"],
            network_max_price=data["network_max_price"],
            max_variance=data["max_variance"],
        )


@dataclass(frozen=True)
class BenchmarkStats:
    item_id: int
    avg_price: float
    min_price: float
    max_price: float
    price_range: float
    branch_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "avg_price": self.avg_price,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "price_range": self.price_range,
            "branch_count": self.branch_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkStats:
        return cls(**data)


@dataclass(frozen=True)
class BranchSpending:
    branch_id: int
    branch_name: str
    total_amount: float
    invoice_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "total_amount": self.total_amount,
            "invoice_count": self.invoice_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BranchSpending:
        return cls(**data)


@dataclass(frozen=True)
class ConsolidationBranchDetail:
    branch_id: int | None
    branch_name: str | None
    vendor_id: int | None
    vendor_name: str | None
    total_amount: float


@dataclass(frozen=True)
class ConsolidationOpportunity:
    item_id: int
    item_name: str
    branch_count: int
    vendor_count: int
    total_spending: float
    branches: list[ConsolidationBranchDetail] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_name": self.item_name,
            "branch_count": self.branch_count,
            "vendor_count": self.vendor_count,
            "total_spending": self.total_spending,
            "branches": [
                {
                    "branch_id": b.branch_id,
                    "branch_name": b.branch_name,
                    "vendor_id": b.vendor_id,
                    "vendor_name": b.vendor_name,
                    "total_amount": b.total_amount,
                }
                for b in self.branches
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConsolidationOpportunity:
        return cls(
            item_id=data["item_id"],
            item_name=data["item_name"],
            branch_count=data["branch_count"],
            vendor_count=data["vendor_count"],
            total_spending=data["total_spending"],
            branches=[ConsolidationBranchDetail(**b) for b in data["branches"]],
        )
