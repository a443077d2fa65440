"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class AnalyticsException(Exception):
    """Base exception for the analytics service"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AnalyticsException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None, code: str = "NOT_FOUND"):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code=code,
            status_code=404
        )


class VideoNotFoundError(NotFoundError):
    """Video missing or soft-deleted"""

    def __init__(self, video_id: str):
        super().__init__("Video", video_id, code="VIDEO_NOT_FOUND")


class ValidationError(AnalyticsException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class InvalidDateRangeError(ValidationError):
    """Date range with start after end, or an unknown preset"""

    def __init__(self, message: str = "Date range start must not be after end"):
        super().__init__(message=message, field="date_range")


class EventStoreError(AnalyticsException):
    """Read or write against the event store failed"""

    def __init__(self, operation: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Event store operation '{operation}' failed",
            code="EVENT_STORE_ERROR",
            status_code=503,
            details={"operation": operation}
        )


class QuotaExceededError(AnalyticsException):
    """Tier limit reached for a resource"""

    def __init__(self, resource: str, limit: int, reason: Optional[str] = None):
        super().__init__(
            message=reason or f"{resource} limit ({limit}) reached",
            code="QUOTA_EXCEEDED",
            status_code=403,
            details={"resource": resource, "limit": limit}
        )


class ExternalServiceError(AnalyticsException):
    """External service error"""

    def __init__(self, service: str, message: str = None):
        super().__init__(
            message=message or f"External service {service} is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
            details={"service": service}
        )
