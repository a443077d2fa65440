"""
Periodic pre-computation of dashboard reports into the cache
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from app.config import settings
from app.core.cache import CacheManager
from app.schemas.analytics import DateRange, DateRangeType
from app.services.aggregator import CUSTOM_RANGE_LABEL, MetricsAggregator
from app.services.event_store import EventStore

logger = logging.getLogger(__name__)


def report_cache_key(
    creator_id: str,
    range_type: Optional[DateRangeType],
    date_range: Optional[DateRange] = None
) -> Dict[str, str]:
    """Cache key shared by the dashboard endpoint and the refresh job"""
    if date_range is not None:
        return {
            "creator_id": creator_id,
            "date_range": CUSTOM_RANGE_LABEL,
            "start": date_range.start.isoformat(),
            "end": date_range.end.isoformat(),
            "report": "video_dashboard",
        }
    return {
        "creator_id": creator_id,
        "date_range": DateRangeType(range_type).value,
        "report": "video_dashboard",
    }


class AnalyticsRefreshJob:
    """
    Recomputes every preset range for every creator. A failing creator is
    logged and recorded; the rest still refresh.
    """

    def __init__(
        self,
        store: EventStore,
        cache: CacheManager,
        aggregator: Optional[MetricsAggregator] = None,
        ttl: Optional[int] = None
    ):
        self.store = store
        self.cache = cache
        self.aggregator = aggregator or MetricsAggregator(store)
        self.ttl = ttl or settings.ANALYTICS_REFRESH_INTERVAL_SECONDS
        self.logger = logging.getLogger(__name__)

    async def refresh_creator(self, creator_id: str) -> int:
        """Refresh all ranges for one creator; returns cache entries written"""
        updated = 0
        for range_type in DateRangeType:
            report = await self.aggregator.aggregate(creator_id, range_type)
            if await self.cache.set(report_cache_key(creator_id, range_type), report, ttl=self.ttl):
                updated += 1
            else:
                self.logger.error(f"Cache write failed for creator {creator_id} ({range_type.value})")
        return updated

    async def refresh_all(self) -> Dict[str, Any]:
        creator_ids = await self.store.list_creator_ids()
        self.logger.info(f"Refreshing analytics for {len(creator_ids)} creators")

        creators_processed = 0
        cache_entries_updated = 0
        errors: List[str] = []

        for creator_id in creator_ids:
            try:
                cache_entries_updated += await self.refresh_creator(creator_id)
                creators_processed += 1
            except Exception as e:
                self.logger.error(f"Error aggregating analytics for creator {creator_id}: {e}")
                errors.append(f"{creator_id}: {e}")

        self.logger.info(
            f"Analytics refresh complete: {creators_processed}/{len(creator_ids)} creators, "
            f"{cache_entries_updated} cache entries, {len(errors)} errors"
        )

        return {
            "creators_processed": creators_processed,
            "cache_entries_updated": cache_entries_updated,
            "errors": errors,
        }

    async def run_forever(self, interval: Optional[float] = None):
        interval = interval or settings.ANALYTICS_REFRESH_INTERVAL_SECONDS
        while True:
            try:
                await self.refresh_all()
            except Exception as e:
                self.logger.error(f"Analytics refresh run failed: {e}")
            await asyncio.sleep(interval)
