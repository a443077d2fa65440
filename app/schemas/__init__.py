"""
Pydantic schemas for request and response validation
"""

from app.schemas.analytics import (
    AnalyticsEventCreate,
    AnalyticsEventRecord,
    AggregatedReport,
    DateRange,
    DateRangeType,
    VideoEventType,
)
from app.schemas.usage import (
    QuotaCheckResult,
    SubscriptionTier,
    UsageReport,
    UsageResource,
)
from app.schemas.response import (
    ErrorResponse,
)

__all__ = [
    "AnalyticsEventCreate",
    "AnalyticsEventRecord",
    "AggregatedReport",
    "DateRange",
    "DateRangeType",
    "VideoEventType",
    "QuotaCheckResult",
    "SubscriptionTier",
    "UsageReport",
    "UsageResource",
    "ErrorResponse",
]
