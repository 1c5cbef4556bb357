"""
Purchase-pattern modelling over a single item's order history.

:class:`PatternAnalyzer` is stateless apart from its thresholds: it turns a
list of :class:`OrderObservation` into cycle, trend, seasonality and
confidence figures, and scores historical orders against a stored
:class:`PurchasePattern` to find anomalies.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from domain.models.analytics import Anomaly, AnomalyType, OrderObservation, PurchasePattern
from domain.services.statistics import (
    SECONDS_PER_DAY,
    coefficient_of_variation,
    day_intervals,
    mean,
    safe_div,
    std_dev,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

# Trend / seasonality thresholds, in percent.
TREND_CHANGE_PERCENT: float = 10.0
SEASONALITY_CV_PERCENT: float = 20.0

MIN_ORDERS_FOR_CYCLE: int = 2
MIN_ORDERS_FOR_TREND: int = 3
MIN_ORDERS_FOR_SEASONALITY: int = 12
MIN_MONTHS_FOR_SEASONALITY: int = 4

# Confidence factor caps; they sum to 1.0.
SAMPLE_FACTOR_MAX: float = 0.4
CYCLE_FACTOR_MAX: float = 0.4
CYCLE_FACTOR_DEFAULT: float = 0.2
RECENCY_FACTOR_MAX: float = 0.2
RECENCY_HORIZON_DAYS: float = 180.0


@dataclass(frozen=True)
class TrendResult:
    is_increasing: bool = False
    is_decreasing: bool = False


@dataclass(frozen=True)
class SeasonalityResult:
    is_seasonal: bool = False
    seasonality_pattern: dict[int, float] | None = None


def _chronological(orders: Sequence[OrderObservation]) -> list[OrderObservation]:
    return sorted(orders, key=lambda o: o.date)


class PatternAnalyzer:
    """Computes purchase-pattern statistics for one (item, branch) history."""

    def __init__(self, min_invoices_for_pattern: int = 5) -> None:
        self.min_invoices_for_pattern = min_invoices_for_pattern

    # -- individual detectors --------------------------------------------

    def detect_order_cycle(self, orders: Sequence[OrderObservation]) -> float:
        """Average number of days between consecutive orders (0 if < 2 orders)."""
        if len(orders) < MIN_ORDERS_FOR_CYCLE:
            return 0.0
        dates = [o.date for o in _chronological(orders)]
        return mean(day_intervals(dates))

    def detect_trend(self, orders: Sequence[OrderObservation]) -> TrendResult:
        """Compare the average amount of the first and last thirds of the history.

        Changes inside +/-10% count as stable.
        """
        if len(orders) < MIN_ORDERS_FOR_TREND:
            return TrendResult()

        amounts = [o.amount for o in _chronological(orders)]
        third = len(amounts) // 3
        if third == 0:
            return TrendResult()

        first_avg = mean(amounts[:third])
        last_avg = mean(amounts[-third:])
        change_percent = safe_div(last_avg - first_avg, first_avg) * 100 if first_avg > 0 else 0.0

        return TrendResult(
            is_increasing=change_percent > TREND_CHANGE_PERCENT,
            is_decreasing=change_percent < -TREND_CHANGE_PERCENT,
        )

    def detect_seasonality(self, orders: Sequence[OrderObservation]) -> SeasonalityResult:
        """Flag month-of-year periodicity in order amounts.

        Calendar months are numbered 0-11 regardless of year. The history is
        seasonal when the coefficient of variation of the per-month average
        amount exceeds 20%.
        """
        if len(orders) < MIN_ORDERS_FOR_SEASONALITY:
            return SeasonalityResult()

        by_month: dict[int, list[float]] = {}
        for order in orders:
            by_month.setdefault(order.date.month - 1, []).append(order.amount)

        if len(by_month) < MIN_MONTHS_FOR_SEASONALITY:
            return SeasonalityResult()

        monthly_avg = {month: mean(amounts) for month, amounts in sorted(by_month.items())}
        cv_percent = coefficient_of_variation(list(monthly_avg.values())) * 100

        if cv_percent > SEASONALITY_CV_PERCENT:
            return SeasonalityResult(is_seasonal=True, seasonality_pattern=monthly_avg)
        return SeasonalityResult()

    def compute_confidence_score(
        self,
        orders: Sequence[OrderObservation],
        avg_cycle_days: float,
        now: datetime,
    ) -> float:
        """Heuristic trust score in ``[0, 1]``.

        Sum of a sample-size factor (max 0.4), a cycle-regularity factor
        (max 0.4) and a recency factor (max 0.2). Not a statistical posterior.
        """
        ideal_sample = self.min_invoices_for_pattern * 4
        sample_factor = min(safe_div(len(orders), ideal_sample), 1.0) * SAMPLE_FACTOR_MAX

        cycle_factor = CYCLE_FACTOR_DEFAULT
        if avg_cycle_days > 0 and len(orders) >= MIN_ORDERS_FOR_CYCLE:
            intervals = day_intervals([o.date for o in _chronological(orders)])
            cv = safe_div(std_dev(intervals), avg_cycle_days)
            cycle_factor = max(0.0, CYCLE_FACTOR_MAX - cv * 0.2)

        recency_factor = 0.0
        if orders:
            last_order = max(o.date for o in orders)
            days_since = (now - last_order).total_seconds() / SECONDS_PER_DAY
            decay = safe_div(days_since, RECENCY_HORIZON_DAYS) * RECENCY_FACTOR_MAX
            recency_factor = min(RECENCY_FACTOR_MAX, max(0.0, RECENCY_FACTOR_MAX - decay))

        return min(sample_factor + cycle_factor + recency_factor, 1.0)

    @staticmethod
    def predict_next_order_date(
        last_order_date: datetime | None,
        avg_cycle_days: float,
    ) -> datetime | None:
        if last_order_date is None or avg_cycle_days <= 0:
            return None
        # Whole days, half rounds up.
        return last_order_date + timedelta(days=math.floor(avg_cycle_days + 0.5))

    # -- composite --------------------------------------------------------

    def build_pattern(
        self,
        item_id: int,
        branch_id: int | None,
        orders: Sequence[OrderObservation],
        now: datetime,
    ) -> PurchasePattern:
        """Model a full :class:`PurchasePattern` from a non-empty history."""
        chronological = _chronological(orders)
        quantities = [o.quantity for o in chronological]
        amounts = [o.amount for o in chronological]

        avg_cycle_days = self.detect_order_cycle(chronological)
        trend = self.detect_trend(chronological)
        seasonality = self.detect_seasonality(chronological)
        last_order_date = chronological[-1].date if chronological else None

        return PurchasePattern(
            item_id=item_id,
            branch_id=branch_id,
            avg_order_cycle_days=avg_cycle_days,
            avg_order_quantity=mean(quantities),
            avg_order_amount=mean(amounts),
            std_dev_quantity=std_dev(quantities),
            std_dev_amount=std_dev(amounts),
            is_increasing=trend.is_increasing,
            is_decreasing=trend.is_decreasing,
            is_seasonal=seasonality.is_seasonal,
            seasonality_pattern=seasonality.seasonality_pattern,
            last_order_date=last_order_date,
            next_predicted_order=self.predict_next_order_date(last_order_date, avg_cycle_days),
            confidence_score=self.compute_confidence_score(chronological, avg_cycle_days, now),
            based_on_invoices=len(chronological),
            analysis_start_date=chronological[0].date if chronological else None,
            analysis_end_date=last_order_date,
            updated_at=now,
        )

    @staticmethod
    def find_anomalies(
        pattern: PurchasePattern,
        orders: Sequence[OrderObservation],
        threshold: float,
    ) -> list[Anomaly]:
        """Return the orders deviating more than *threshold* standard deviations."""
        anomalies: list[Anomaly] = []
        for order in orders:
            quantity_deviation = (
                abs(order.quantity - pattern.avg_order_quantity) / pattern.std_dev_quantity
                if pattern.std_dev_quantity > 0
                else 0.0
            )
            amount_deviation = (
                abs(order.amount - pattern.avg_order_amount) / pattern.std_dev_amount
                if pattern.std_dev_amount > 0
                else 0.0
            )

            quantity_flag = quantity_deviation > threshold
            amount_flag = amount_deviation > threshold
            if not (quantity_flag or amount_flag):
                continue

            if quantity_flag and amount_flag:
                anomaly_type = AnomalyType.BOTH
            elif quantity_flag:
                anomaly_type = AnomalyType.QUANTITY_ANOMALY
            else:
                anomaly_type = AnomalyType.AMOUNT_ANOMALY

            anomalies.append(
                Anomaly(
                    invoice_id=order.invoice_id,
                    invoice_date=order.date,
                    quantity=order.quantity,
                    amount=order.amount,
                    expected_quantity=pattern.avg_order_quantity,
                    expected_amount=pattern.avg_order_amount,
                    quantity_deviation=quantity_deviation,
                    amount_deviation=amount_deviation,
                    type=anomaly_type,
                )
            )
        return anomalies
