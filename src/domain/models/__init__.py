from domain.models.analytics import (
    Anomaly,
    AnomalyType,
    BenchmarkStats,
    BranchPrice,
    BranchSpending,
    ConsolidationBranchDetail,
    ConsolidationOpportunity,
    InsufficientData,
    OrderObservation,
    PatternFound,
    PatternLookup,
    PatternNotComputed,
    PriceObservation,
    PriceVarianceResult,
    PurchasePattern,
    SpendAggregate,
)

__all__ = [
    "Anomaly",
    "AnomalyType",
    "BenchmarkStats",
    "BranchPrice",
    "BranchSpending",
    "ConsolidationBranchDetail",
    "ConsolidationOpportunity",
    "InsufficientData",
    "OrderObservation",
    "PatternFound",
    "PatternLookup",
    "PatternNotComputed",
    "PriceObservation",
    "PriceVarianceResult",
    "PurchasePattern",
    "SpendAggregate",
]
