from domain.exceptions.analytics_exceptions import (
    AnalyticsError,
    CacheError,
    CrossLocationError,
    DomainException,
    PatternRecognitionError,
)

__all__ = [
    "AnalyticsError",
    "CacheError",
    "CrossLocationError",
    "DomainException",
    "PatternRecognitionError",
]
