"""
Subscription tier usage and quota checks
"""

import asyncio
import logging
import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from app.core.exceptions import QuotaExceededError
from app.schemas.usage import (
    AIMessageTrendPoint,
    QuotaCheckResult,
    StorageBreakdownItem,
    SubscriptionTier,
    UsageReport,
    UsageResource,
    UsageStat,
)
from app.services.event_store import EventStore

logger = logging.getLogger(__name__)

UNLIMITED = -1
WARNING_THRESHOLD_PERCENT = 80
UPGRADE_THRESHOLD_PERCENT = 90
BYTES_PER_GB = 1024 ** 3

TIER_ORDER = [
    SubscriptionTier.FREE,
    SubscriptionTier.BASIC,
    SubscriptionTier.PRO,
    SubscriptionTier.ENTERPRISE,
]

TIER_LIMITS: Dict[SubscriptionTier, Dict[UsageResource, int]] = {
    SubscriptionTier.FREE: {
        UsageResource.VIDEOS: 3,
        UsageResource.STORAGE_GB: 1,
        UsageResource.AI_MESSAGES: 100,
        UsageResource.STUDENTS: 10,
        UsageResource.COURSES: 1,
    },
    SubscriptionTier.BASIC: {
        UsageResource.VIDEOS: 15,
        UsageResource.STORAGE_GB: 10,
        UsageResource.AI_MESSAGES: 1000,
        UsageResource.STUDENTS: 50,
        UsageResource.COURSES: 3,
    },
    SubscriptionTier.PRO: {
        UsageResource.VIDEOS: 100,
        UsageResource.STORAGE_GB: 100,
        UsageResource.AI_MESSAGES: 10000,
        UsageResource.STUDENTS: 500,
        UsageResource.COURSES: 10,
    },
    SubscriptionTier.ENTERPRISE: {
        UsageResource.VIDEOS: UNLIMITED,
        UsageResource.STORAGE_GB: 500,
        UsageResource.AI_MESSAGES: UNLIMITED,
        UsageResource.STUDENTS: UNLIMITED,
        UsageResource.COURSES: UNLIMITED,
    },
}


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def calculate_usage_stat(current: float, limit: float) -> UsageStat:
    """
    Usage of one resource against its limit. Unlimited resources always
    report 0 percent so they never warn.
    """
    if limit == UNLIMITED:
        return UsageStat(current=current, limit=UNLIMITED, percentage=0)

    percentage = (current / limit) * 100 if limit > 0 else 0
    return UsageStat(
        current=_round_half_up(current, 2),
        limit=limit,
        percentage=_round_half_up(percentage, 1),
    )


def is_nearing_limit(current: float, limit: float, threshold: float = 0.8) -> bool:
    if limit == UNLIMITED:
        return False
    if limit <= 0:
        return current > 0
    return current / limit >= threshold


def suggest_tier_upgrade(
    usage: Dict[UsageResource, UsageStat],
    tier: SubscriptionTier
) -> Optional[SubscriptionTier]:
    """Next tier up when any resource is at or above 90%; enterprise never upgrades"""
    tier = SubscriptionTier(tier)
    if tier == SubscriptionTier.ENTERPRISE:
        return None

    if not any(stat.percentage >= UPGRADE_THRESHOLD_PERCENT for stat in usage.values()):
        return None

    index = TIER_ORDER.index(tier)
    if index < len(TIER_ORDER) - 1:
        return TIER_ORDER[index + 1]
    return None


def format_storage(size_bytes: float) -> str:
    """Human readable size, e.g. '1.50 GB'"""
    if size_bytes <= 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB"]
    index = min(int(math.floor(math.log(size_bytes, 1024))), len(units) - 1)
    return f"{size_bytes / (1024 ** index):.2f} {units[index]}"


def _first_of_month(now: datetime) -> datetime:
    now = now.astimezone(timezone.utc)
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)


class UsageCalculator:
    """Measures a creator's resource usage against their tier's limits"""

    def __init__(
        self,
        store: EventStore,
        tier_limits: Optional[Dict[SubscriptionTier, Dict[UsageResource, int]]] = None
    ):
        self.store = store
        self.tier_limits = tier_limits or TIER_LIMITS

    async def current_usage(
        self,
        creator_id: str,
        tier: SubscriptionTier,
        now: Optional[datetime] = None
    ) -> UsageReport:
        tier = SubscriptionTier(tier)
        now = now or datetime.now(timezone.utc)
        limits = self.tier_limits[tier]

        videos, ai_messages, students, courses = await asyncio.gather(
            self.store.list_videos(creator_id),
            self.store.count_ai_messages(creator_id, _first_of_month(now)),
            self.store.count_active_students(creator_id),
            self.store.count_courses(creator_id),
        )

        storage_gb = sum(video.file_size_bytes or 0 for video in videos) / BYTES_PER_GB

        measured = {
            UsageResource.VIDEOS: len(videos),
            UsageResource.STORAGE_GB: storage_gb,
            UsageResource.AI_MESSAGES: ai_messages,
            UsageResource.STUDENTS: students,
            UsageResource.COURSES: courses,
        }

        usage = {
            resource: calculate_usage_stat(measured[resource], limits[resource])
            for resource in UsageResource
        }
        warnings = [
            resource for resource, stat in usage.items()
            if stat.percentage >= WARNING_THRESHOLD_PERCENT
        ]

        if warnings:
            logger.info(
                f"Creator {creator_id} ({tier.value}) nearing limits: "
                f"{', '.join(w.value for w in warnings)}"
            )

        return UsageReport(
            tier=tier,
            usage=usage,
            warnings=warnings,
            suggested_tier=suggest_tier_upgrade(usage, tier),
        )

    async def check_quota(
        self,
        creator_id: str,
        tier: SubscriptionTier,
        resource: UsageResource
    ) -> QuotaCheckResult:
        resource = UsageResource(resource)
        report = await self.current_usage(creator_id, tier)
        stat = report.usage[resource]

        if stat.is_unlimited:
            return QuotaCheckResult(allowed=True, current_usage=stat.current, limit=stat.limit)

        if stat.current >= stat.limit:
            return QuotaCheckResult(
                allowed=False,
                reason=f"{resource.value} limit ({stat.limit:g}) reached",
                current_usage=stat.current,
                limit=stat.limit,
            )

        return QuotaCheckResult(allowed=True, current_usage=stat.current, limit=stat.limit)

    async def enforce_quota(
        self,
        creator_id: str,
        tier: SubscriptionTier,
        resource: UsageResource
    ) -> QuotaCheckResult:
        """Like check_quota but raises QuotaExceededError when not allowed"""
        result = await self.check_quota(creator_id, tier, resource)
        if not result.allowed:
            raise QuotaExceededError(UsageResource(resource).value, result.limit, result.reason)
        return result

    async def storage_breakdown(self, creator_id: str) -> List[StorageBreakdownItem]:
        """Per-video storage share, largest first"""
        videos = await self.store.list_videos(creator_id)
        total_bytes = sum(video.file_size_bytes or 0 for video in videos)

        sized = [video for video in videos if video.file_size_bytes and video.file_size_bytes > 0]
        sized.sort(key=lambda video: video.file_size_bytes, reverse=True)

        return [
            StorageBreakdownItem(
                video_id=video.id,
                video_title=video.title,
                size_bytes=video.file_size_bytes,
                size_gb=video.file_size_bytes / BYTES_PER_GB,
                percentage=(video.file_size_bytes / total_bytes) * 100 if total_bytes > 0 else 0,
            )
            for video in sized
        ]

    async def ai_message_trend(
        self,
        creator_id: str,
        days: int = 30,
        now: Optional[datetime] = None
    ) -> List[AIMessageTrendPoint]:
        """Daily AI message counts with a running total, oldest first"""
        now = now or datetime.now(timezone.utc)
        timestamps = await self.store.list_ai_message_timestamps(
            creator_id, now - timedelta(days=days)
        )

        daily = Counter(ts.astimezone(timezone.utc).date().isoformat() for ts in timestamps)

        trend: List[AIMessageTrendPoint] = []
        cumulative = 0
        for day in sorted(daily):
            cumulative += daily[day]
            trend.append(AIMessageTrendPoint(date=day, count=daily[day], cumulative=cumulative))
        return trend
