from __future__ import annotations


class DomainException(Exception):
    """Base class for all domain-layer exceptions.

    Carries HTTP-mapping metadata so a presentation layer can produce
    RFC 9457 Problem Details without knowing exception internals.
    """

    def __init__(
        self,
        detail: str = "",
        *,
        title: str = "Domain Error",
        status_code: int = 400,
        error_type: str = "about:blank",
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.title = title
        self.status_code = status_code
        self.error_type = error_type


class AnalyticsError(DomainException):
    """An analytics computation failed because of an infrastructure fault.

    Insufficient data is never reported through this hierarchy.
    """

    default_message = "Analytics computation failed"
    problem_slug = "analytics-failure"

    def __init__(
        self,
        operation: str = "",
        message: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.operation = operation
        self.message = message or self.default_message
        self.cause = cause
        super().__init__(
            detail=f"Analytics computation failed [{operation}]: {self.message}",
            title=type(self).__name__,
            status_code=500,
            error_type=f"https://api.procurement.example/problems/{self.problem_slug}",
        )


class PatternRecognitionError(AnalyticsError):
    default_message = "Pattern recognition failed"
    problem_slug = "pattern-recognition"


class CrossLocationError(AnalyticsError):
    default_message = "Cross-location analysis failed"
    problem_slug = "cross-location"


class CacheError(AnalyticsError):
    default_message = "Cache operation failed"
    problem_slug = "cache"
