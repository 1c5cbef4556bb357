"""
Numeric primitives shared by the pattern and cross-location analytics.

Every function degrades to ``0`` on empty or degenerate input instead of
raising or producing NaN/Infinity, so sparse purchase histories never
surface arithmetic errors to callers.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

SECONDS_PER_DAY: float = 86_400.0


def safe_div(numerator: float, denominator: float) -> float:
    """Return ``numerator / denominator``, or ``0`` when the denominator is zero."""
    if denominator == 0:
        return 0.0
    return numerator / denominator


def mean(values: Sequence[float]) -> float:
    return safe_div(sum(values), len(values))


def std_dev(values: Sequence[float]) -> float:
    """Population standard deviation (divides by N).

    Returns ``0`` for fewer than two values.
    """
    if len(values) < 2:
        return 0.0
    avg = mean(values)
    variance = safe_div(sum((v - avg) ** 2 for v in values), len(values))
    return math.sqrt(variance)


def coefficient_of_variation(values: Sequence[float]) -> float:
    """``std_dev / mean`` as a ratio (multiply by 100 for percent)."""
    return safe_div(std_dev(values), mean(values))


def day_intervals(dates: Sequence[datetime]) -> list[float]:
    """Fractional day gaps between consecutive entries of a sorted sequence."""
    return [
        (later - earlier).total_seconds() / SECONDS_PER_DAY
        for earlier, later in zip(dates, dates[1:])
    ]
