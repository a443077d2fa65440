"""
Creator analytics endpoints
"""

from datetime import datetime, timezone
from typing import Any, List, Optional
import logging
from fastapi import APIRouter, Depends, Query, Response, status

from app.config import settings
from app.core.cache import CacheManager, get_cache_manager
from app.core.exceptions import InvalidDateRangeError, VideoNotFoundError
from app.schemas.analytics import (
    AggregatedReport,
    AnalyticsEventCreate,
    DateRange,
    DateRangeType,
    VideoEventAccepted,
)
from app.schemas.engagement import (
    EngagementMetric,
    EngagementReport,
    EngagementScore,
    EngagementTimeRange,
    StudentMetrics,
)
from app.schemas.usage import (
    AIMessageTrendPoint,
    QuotaCheckResult,
    StorageReport,
    SubscriptionTier,
    UsageReport,
    UsageResource,
)
from app.services.aggregator import MetricsAggregator
from app.services.engagement import calculate_engagement_score
from app.services.engagement_report import EngagementReporter
from app.services.event_store import EventStore
from app.services.refresh import report_cache_key
from app.services.report_export import export_report_csv, generate_export_filename
from app.services.sql_event_store import get_event_store
from app.services.usage import UsageCalculator, format_storage

router = APIRouter()
logger = logging.getLogger(__name__)


def get_aggregator(store: EventStore = Depends(get_event_store)) -> MetricsAggregator:
    return MetricsAggregator(store)


def get_usage_calculator(store: EventStore = Depends(get_event_store)) -> UsageCalculator:
    return UsageCalculator(store)


def get_engagement_reporter(store: EventStore = Depends(get_event_store)) -> EngagementReporter:
    return EngagementReporter(store)


def _explicit_range(start: Optional[datetime], end: Optional[datetime]) -> Optional[DateRange]:
    """Explicit bounds override the preset; naive values are read as UTC"""
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise InvalidDateRangeError("start and end must be given together")

    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return DateRange(start=start, end=end)


async def _cached_report(
    creator_id: str,
    date_range: DateRangeType,
    explicit_range: Optional[DateRange],
    aggregator: MetricsAggregator,
    cache: CacheManager
) -> AggregatedReport:
    return await cache.get_or_set(
        report_cache_key(creator_id, date_range, explicit_range),
        lambda: aggregator.aggregate(creator_id, date_range, date_range=explicit_range),
        ttl=settings.CACHE_TTL_DASHBOARD,
        response_model=AggregatedReport
    )


@router.get("/videos/dashboard", response_model=AggregatedReport)
async def get_video_dashboard(
    creator_id: str = Query(..., min_length=1),
    date_range: DateRangeType = Query(DateRangeType.LAST_30_DAYS),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    aggregator: MetricsAggregator = Depends(get_aggregator),
    cache: CacheManager = Depends(get_cache_manager)
) -> Any:
    """
    Aggregated video analytics for one creator, served from cache when warm
    """
    return await _cached_report(
        creator_id, date_range, _explicit_range(start, end), aggregator, cache
    )


@router.get("/videos/export")
async def export_video_dashboard(
    creator_id: str = Query(..., min_length=1),
    date_range: DateRangeType = Query(DateRangeType.LAST_30_DAYS),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    aggregator: MetricsAggregator = Depends(get_aggregator),
    cache: CacheManager = Depends(get_cache_manager)
) -> Response:
    """
    Dashboard report as a CSV attachment
    """
    report = await _cached_report(
        creator_id, date_range, _explicit_range(start, end), aggregator, cache
    )
    filename = generate_export_filename(report.date_range)

    return Response(
        content=export_report_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.post("/video-event", response_model=VideoEventAccepted, status_code=status.HTTP_201_CREATED)
async def track_video_event(
    event: AnalyticsEventCreate,
    store: EventStore = Depends(get_event_store)
) -> Any:
    """
    Record one video analytics event
    """
    video = await store.get_video(event.video_id)
    if video is None:
        raise VideoNotFoundError(event.video_id)

    record = await store.append_event(event)
    logger.debug(f"Recorded {event.event_type.value} for video {event.video_id}")

    return VideoEventAccepted(
        success=True,
        event_id=record.id,
        message="Event tracked successfully"
    )


@router.get("/usage/current", response_model=UsageReport)
async def get_current_usage(
    creator_id: str = Query(..., min_length=1),
    tier: SubscriptionTier = Query(SubscriptionTier.FREE),
    calculator: UsageCalculator = Depends(get_usage_calculator)
) -> Any:
    return await calculator.current_usage(creator_id, tier)


@router.get("/usage/quota", response_model=QuotaCheckResult)
async def check_usage_quota(
    resource: UsageResource,
    creator_id: str = Query(..., min_length=1),
    tier: SubscriptionTier = Query(SubscriptionTier.FREE),
    calculator: UsageCalculator = Depends(get_usage_calculator)
) -> Any:
    """
    Whether the creator may add one more of `resource` on their tier
    """
    return await calculator.check_quota(creator_id, tier, resource)


@router.get("/usage/storage", response_model=StorageReport)
async def get_storage_breakdown(
    creator_id: str = Query(..., min_length=1),
    calculator: UsageCalculator = Depends(get_usage_calculator)
) -> Any:
    breakdown = await calculator.storage_breakdown(creator_id)
    total_bytes = sum(item.size_bytes for item in breakdown)

    return StorageReport(
        total_bytes=total_bytes,
        total_formatted=format_storage(total_bytes),
        breakdown=breakdown
    )


@router.get("/usage/ai-messages", response_model=List[AIMessageTrendPoint])
async def get_ai_message_trend(
    creator_id: str = Query(..., min_length=1),
    days: int = Query(30, ge=1, le=365),
    calculator: UsageCalculator = Depends(get_usage_calculator)
) -> Any:
    return await calculator.ai_message_trend(creator_id, days=days)


@router.get("/engagement", response_model=EngagementReport)
async def get_engagement_metrics(
    creator_id: str = Query(..., min_length=1),
    metric: EngagementMetric = Query(EngagementMetric.ALL),
    time_range: EngagementTimeRange = Query(EngagementTimeRange.LAST_30_DAYS),
    reporter: EngagementReporter = Depends(get_engagement_reporter)
) -> Any:
    """
    Active users, cohort retention and session length histogram for the
    creator's students. `all` also adds average session length and the
    returning-student rate.
    """
    return await reporter.build(creator_id, metric, time_range)


@router.post("/engagement/score", response_model=EngagementScore)
async def score_engagement(metrics: StudentMetrics) -> Any:
    return calculate_engagement_score(metrics)


@router.delete("/cache/{creator_id}")
async def invalidate_creator_cache(
    creator_id: str,
    cache: CacheManager = Depends(get_cache_manager)
) -> Any:
    """
    Drop every cached entry for the creator
    """
    deleted = await cache.invalidate_creator_cache(creator_id)
    return {"success": True, "deleted": deleted}
