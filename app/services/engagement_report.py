"""
Student engagement report for one creator

Loads activity, cohort and session data from the event store and runs the
engagement calculations over it. Only the sections the requested metric
needs are loaded.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.schemas.engagement import (
    ActivityType,
    EngagementMetric,
    EngagementReport,
    EngagementTimeRange,
)
from app.services.engagement import (
    calculate_active_users_over_time,
    calculate_average_session_duration,
    calculate_cohort_retention,
    calculate_returning_rate,
    calculate_session_durations,
)
from app.services.event_store import EventStore

logger = logging.getLogger(__name__)

TIME_RANGE_DAYS = {
    EngagementTimeRange.LAST_7_DAYS: 7,
    EngagementTimeRange.LAST_30_DAYS: 30,
    EngagementTimeRange.LAST_90_DAYS: 90,
    EngagementTimeRange.LAST_YEAR: 365,
    # Roughly ten years
    EngagementTimeRange.ALL: 3650,
}

RETURNING_WINDOW_DAYS = 14


class EngagementReporter:
    """Builds engagement reports from the event store"""

    def __init__(self, store: EventStore):
        self.store = store
        self.logger = logging.getLogger(__name__)

    async def build(
        self,
        creator_id: str,
        metric: EngagementMetric = EngagementMetric.ALL,
        time_range: EngagementTimeRange = EngagementTimeRange.LAST_30_DAYS,
        now: Optional[datetime] = None
    ) -> EngagementReport:
        metric = EngagementMetric(metric)
        time_range = EngagementTimeRange(time_range)
        now = now or datetime.now(timezone.utc)
        days = TIME_RANGE_DAYS[time_range]
        since = now - timedelta(days=days)

        report = EngagementReport(
            creator_id=creator_id,
            metric=metric,
            time_range=time_range,
            generated_at=now,
        )
        sections = set(EngagementMetric) if metric == EngagementMetric.ALL else {metric}

        try:
            if EngagementMetric.ACTIVE_USERS in sections:
                activities = await self.store.list_activities(creator_id, since)
                report.active_users = calculate_active_users_over_time(activities, days, now=now)

            if EngagementMetric.RETENTION in sections:
                cohorts = await self.store.list_cohorts(creator_id)
                report.retention = calculate_cohort_retention(cohorts)

            if EngagementMetric.SESSION_DURATION in sections:
                session_lengths = await self.store.list_session_lengths(creator_id, since)
                report.session_durations = calculate_session_durations(session_lengths)
                if metric == EngagementMetric.ALL:
                    report.avg_session_duration = calculate_average_session_duration(session_lengths)

            if metric == EngagementMetric.ALL:
                report.retention_rate = await self._returning_rate(creator_id, now)

        except Exception as e:
            self.logger.error(f"Engagement report failed for creator {creator_id} ({metric.value}): {e}")
            raise

        return report

    async def _returning_rate(self, creator_id: str, now: datetime) -> float:
        activities = await self.store.list_activities(
            creator_id, now - timedelta(days=RETURNING_WINDOW_DAYS)
        )
        views = [activity for activity in activities if activity.type == ActivityType.VIDEO_VIEW]
        return calculate_returning_rate(views, now=now)
