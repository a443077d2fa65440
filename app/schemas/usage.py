"""
Tier usage and quota schemas
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel


class SubscriptionTier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class UsageResource(str, Enum):
    VIDEOS = "videos"
    STORAGE_GB = "storage_gb"
    AI_MESSAGES = "ai_messages"
    STUDENTS = "students"
    COURSES = "courses"


class UsageStat(BaseModel):
    current: float
    limit: float  # -1 means unlimited
    percentage: float

    @property
    def is_unlimited(self) -> bool:
        return self.limit == -1


class UsageReport(BaseModel):
    tier: SubscriptionTier
    usage: Dict[UsageResource, UsageStat]
    warnings: List[UsageResource]
    suggested_tier: Optional[SubscriptionTier] = None


class QuotaCheckResult(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    current_usage: Optional[float] = None
    limit: Optional[float] = None


class StorageBreakdownItem(BaseModel):
    video_id: str
    video_title: str
    size_bytes: int
    size_gb: float
    percentage: float


class AIMessageTrendPoint(BaseModel):
    date: str
    count: int
    cumulative: int


class StorageReport(BaseModel):
    total_bytes: int
    total_formatted: str
    breakdown: List[StorageBreakdownItem]
