"""
Metrics aggregation for the creator video dashboard

Builds one AggregatedReport per (creator, date range). All sub-reports are
independent reads against the event store and run concurrently; trend math
only starts once every one of them has returned.
"""

import asyncio
import logging
import time
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

from app.config import settings
from app.core.exceptions import InvalidDateRangeError
from app.core.metrics import AGGREGATION_DURATION
from app.schemas.analytics import (
    AggregatedReport,
    CostBreakdownItem,
    DailyViews,
    DateRange,
    DateRangeType,
    MetricTrends,
    PeakHour,
    ReportMetrics,
    SourceType,
    StorageUsagePoint,
    StudentEngagementSummary,
    SummaryMetrics,
    TopVideo,
    VideoCompletionRate,
    VideoEventType,
    VideoRecord,
)
from app.services.engagement import percentage_change
from app.services.event_store import EventStore

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3
COMPLETION_RANKING_LIMIT = 10
TOP_VIDEOS_LIMIT = 20
CUSTOM_RANGE_LABEL = "custom"

_RANGE_DAYS = {
    DateRangeType.LAST_7_DAYS: 7,
    DateRangeType.LAST_30_DAYS: 30,
    DateRangeType.LAST_90_DAYS: 90,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def resolve_date_range(range_type: DateRangeType, now: Optional[datetime] = None) -> DateRange:
    """Turn a preset into concrete bounds ending at `now`"""
    now = now or _utcnow()
    range_type = DateRangeType(range_type)

    if range_type == DateRangeType.ALL_TIME:
        start = settings.ANALYTICS_EPOCH
        if start > now:
            raise InvalidDateRangeError("Analytics epoch is in the future")
        return DateRange(start=start, end=now)

    return DateRange(start=now - timedelta(days=_RANGE_DAYS[range_type]), end=now)


def previous_period(date_range: DateRange) -> DateRange:
    """Window of identical length immediately preceding `date_range`"""
    return DateRange(start=date_range.start - date_range.duration, end=date_range.start)


def _calendar_days(date_range: DateRange) -> List[date]:
    first = date_range.start.astimezone(timezone.utc).date()
    last = date_range.end.astimezone(timezone.utc).date()
    return [first + timedelta(days=offset) for offset in range((last - first).days + 1)]


def _day_key(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).date().isoformat()


def _completion_rate(starts: int, completions: int) -> float:
    if starts == 0:
        return 0.0
    return (completions / starts) * 100


class MetricsAggregator:
    """Computes dashboard reports from the event store"""

    def __init__(self, store: EventStore):
        self.store = store
        self.logger = logging.getLogger(__name__)

    async def aggregate(
        self,
        creator_id: str,
        range_type: Optional[DateRangeType] = None,
        now: Optional[datetime] = None,
        date_range: Optional[DateRange] = None
    ) -> AggregatedReport:
        """
        Build the report for a preset range, or for explicit bounds when
        `date_range` is given. Explicit reports carry no range_type.
        """
        now = now or _utcnow()
        if date_range is not None:
            range_type = None
            window = date_range
        elif range_type is not None:
            range_type = DateRangeType(range_type)
            window = resolve_date_range(range_type, now)
        else:
            raise InvalidDateRangeError("Either a preset or explicit bounds are required")
        prev_window = previous_period(window)
        range_label = range_type.value if range_type is not None else CUSTOM_RANGE_LABEL

        started = time.perf_counter()
        try:
            (
                current,
                previous,
                views_over_time,
                completion_rates,
                cost_breakdown,
                storage_usage,
                student_engagement,
                top_videos,
            ) = await asyncio.gather(
                self.fetch_metrics(creator_id, window),
                self.fetch_metrics(creator_id, prev_window),
                self.fetch_views_over_time(creator_id, window),
                self.fetch_completion_rates(creator_id, window),
                self.fetch_cost_breakdown(creator_id, window),
                self.fetch_storage_usage(creator_id, window),
                self.fetch_student_engagement(creator_id, window),
                self.fetch_top_videos(creator_id, window),
            )
        except Exception as e:
            self.logger.error(f"Aggregation failed for creator {creator_id} ({range_label}): {e}")
            raise
        finally:
            AGGREGATION_DURATION.labels(range_type=range_label).observe(
                time.perf_counter() - started
            )

        trends = MetricTrends(
            views=percentage_change(current.total_views, previous.total_views),
            watch_time=percentage_change(
                current.total_watch_time_seconds,
                previous.total_watch_time_seconds
            ),
            completion=percentage_change(
                current.avg_completion_rate,
                previous.avg_completion_rate
            ),
            videos=percentage_change(current.total_videos, previous.total_videos),
        )

        return AggregatedReport(
            creator_id=creator_id,
            range_type=range_type,
            date_range=window,
            generated_at=now,
            metrics=ReportMetrics(**current.model_dump(), trends=trends),
            views_over_time=views_over_time,
            completion_rates=completion_rates,
            cost_breakdown=cost_breakdown,
            storage_usage=storage_usage,
            student_engagement=student_engagement,
            top_videos=top_videos,
        )

    async def _video_counts(self, video_id: str, window: DateRange) -> Tuple[int, int]:
        starts, completions = await asyncio.gather(
            self.store.count_video_events(
                video_id, VideoEventType.VIDEO_STARTED, window.start, window.end
            ),
            self.store.count_video_events(
                video_id, VideoEventType.VIDEO_COMPLETED, window.start, window.end
            ),
        )
        return starts, completions

    async def fetch_metrics(self, creator_id: str, window: DateRange) -> SummaryMetrics:
        """Views, watch time, average completion and video count for one window"""
        total_views, completed, videos = await asyncio.gather(
            self.store.count_creator_events(
                creator_id, VideoEventType.VIDEO_STARTED, window.start, window.end
            ),
            self.store.list_creator_events(
                creator_id, VideoEventType.VIDEO_COMPLETED, window.start, window.end
            ),
            self.store.list_videos(creator_id),
        )

        total_watch_time = sum(event.metadata.watch_time_or_zero for event in completed)

        avg_completion_rate = 0.0
        if videos:
            counts = await asyncio.gather(
                *(self._video_counts(video.id, window) for video in videos)
            )
            rates = [_completion_rate(starts, completions) for starts, completions in counts]
            avg_completion_rate = sum(rates) / len(rates)

        return SummaryMetrics(
            total_views=total_views,
            total_watch_time_seconds=total_watch_time,
            avg_completion_rate=avg_completion_rate,
            total_videos=len(videos),
        )

    async def fetch_views_over_time(self, creator_id: str, window: DateRange) -> List[DailyViews]:
        """Daily video_started counts for every calendar day in range, zero-filled"""
        events = await self.store.list_creator_events(
            creator_id, VideoEventType.VIDEO_STARTED, window.start, window.end
        )
        views_by_date = Counter(_day_key(event.timestamp) for event in events)

        return [
            DailyViews(date=day.isoformat(), views=views_by_date.get(day.isoformat(), 0))
            for day in _calendar_days(window)
        ]

    async def fetch_completion_rates(
        self,
        creator_id: str,
        window: DateRange
    ) -> List[VideoCompletionRate]:
        videos = await self.store.list_videos(creator_id)
        if not videos:
            return []

        counts = await asyncio.gather(
            *(self._video_counts(video.id, window) for video in videos)
        )

        rates = [
            VideoCompletionRate(
                video_id=video.id,
                title=video.title,
                completion_rate=_completion_rate(starts, completions),
                views=starts,
            )
            for video, (starts, completions) in zip(videos, counts)
            if starts > 0
        ]
        rates.sort(key=lambda item: item.completion_rate, reverse=True)
        return rates[:COMPLETION_RANKING_LIMIT]

    async def fetch_cost_breakdown(
        self,
        creator_id: str,
        window: DateRange
    ) -> List[CostBreakdownItem]:
        """Transcription cost grouped by method, in first-seen order"""
        events = await self.store.list_creator_events(
            creator_id, VideoEventType.VIDEO_TRANSCRIBED, window.start, window.end
        )

        totals: Dict[str, float] = {}
        counts: Dict[str, int] = {}
        for event in events:
            method = event.metadata.method_or_unknown
            totals[method] = totals.get(method, 0.0) + event.metadata.cost_or_zero
            counts[method] = counts.get(method, 0) + 1

        return [
            CostBreakdownItem(method=method, total_cost=totals[method], video_count=counts[method])
            for method in totals
        ]

    async def fetch_storage_usage(
        self,
        creator_id: str,
        window: DateRange
    ) -> List[StorageUsagePoint]:
        """
        Uploaded storage added per day with a running total. The running total
        starts at zero on the first day of the window.
        """
        videos = await self.store.list_videos(creator_id, source_type=SourceType.UPLOAD)

        added_by_date: Dict[str, float] = defaultdict(float)
        for video in videos:
            added_by_date[_day_key(video.created_at)] += (video.file_size_bytes or 0) / BYTES_PER_GB

        points: List[StorageUsagePoint] = []
        cumulative = 0.0
        for day in _calendar_days(window):
            daily = added_by_date.get(day.isoformat(), 0.0)
            cumulative += daily
            points.append(StorageUsagePoint(
                date=day.isoformat(),
                storage_gb=daily,
                cumulative_gb=cumulative,
            ))
        return points

    async def fetch_student_engagement(
        self,
        creator_id: str,
        window: DateRange
    ) -> StudentEngagementSummary:
        events = await self.store.list_creator_events(
            creator_id, VideoEventType.VIDEO_STARTED, window.start, window.end
        )

        videos_by_student: Dict[str, Set[str]] = defaultdict(set)
        activity: Dict[Tuple[int, int], int] = defaultdict(int)

        for event in events:
            if event.student_id is not None:
                videos_by_student[event.student_id].add(event.video_id)

            ts = event.timestamp.astimezone(timezone.utc)
            # isoweekday: Monday=1..Sunday=7, shifted so Sunday=0
            activity[(ts.isoweekday() % 7, ts.hour)] += 1

        active_learners = len(videos_by_student)
        avg_videos = (
            sum(len(videos) for videos in videos_by_student.values()) / max(active_learners, 1)
        )

        return StudentEngagementSummary(
            active_learners=active_learners,
            avg_videos_per_student=avg_videos,
            peak_hours=[
                PeakHour(hour=hour, day_of_week=day, activity_count=count)
                for (day, hour), count in activity.items()
            ],
        )

    async def _video_stats(self, video: VideoRecord, window: DateRange) -> TopVideo:
        views, completions = await asyncio.gather(
            self.store.count_video_events(
                video.id, VideoEventType.VIDEO_STARTED, window.start, window.end
            ),
            self.store.list_video_events(
                video.id, VideoEventType.VIDEO_COMPLETED, window.start, window.end
            ),
        )

        avg_watch_time = 0.0
        if completions:
            avg_watch_time = sum(c.metadata.watch_time_or_zero for c in completions) / len(completions)

        return TopVideo(
            id=video.id,
            title=video.title,
            thumbnail_url=video.thumbnail_url,
            duration_seconds=video.duration_seconds,
            source_type=SourceType(video.source_type).value,
            views=views,
            avg_watch_time_seconds=avg_watch_time,
            completion_rate=_completion_rate(views, len(completions)),
        )

    async def fetch_top_videos(self, creator_id: str, window: DateRange) -> List[TopVideo]:
        videos = await self.store.list_videos(creator_id)
        if not videos:
            return []

        stats = await asyncio.gather(*(self._video_stats(video, window) for video in videos))

        ranked = [item for item in stats if item.views > 0]
        ranked.sort(key=lambda item: item.views, reverse=True)
        return ranked[:TOP_VIDEOS_LIMIT]