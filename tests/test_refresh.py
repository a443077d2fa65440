"""
Unit tests for the periodic dashboard refresh job
"""

from datetime import timedelta

import pytest

from app.core.cache import CacheManager
from app.schemas.analytics import AggregatedReport, DateRange, DateRangeType, VideoEventType
from app.services.refresh import AnalyticsRefreshJob, report_cache_key


@pytest.mark.unit
@pytest.mark.asyncio
class TestAnalyticsRefreshJob:
    """Pre-computing every preset range per creator"""

    async def test_refresh_all_writes_every_range(self, event_store, cache, now):
        video = event_store.add_video("creator-1", title="Intro")
        event_store.add_video("creator-2", title="Other")
        event_store.add_event(VideoEventType.VIDEO_STARTED, video, now - timedelta(hours=1))

        result = await AnalyticsRefreshJob(event_store, cache, ttl=60).refresh_all()

        assert result == {"creators_processed": 2, "cache_entries_updated": 8, "errors": []}
        for range_type in DateRangeType:
            report = await cache.get(report_cache_key("creator-1", range_type), response_model=AggregatedReport)
            assert report is not None
            assert report.range_type == range_type

    async def test_entries_use_job_ttl(self, event_store, cache, cache_backend):
        event_store.add_video("creator-1", title="Intro")

        await AnalyticsRefreshJob(event_store, cache, ttl=60).refresh_all()

        assert set(cache_backend.ttls.values()) == {60}

    async def test_failing_creator_does_not_stop_others(self, event_store, cache):
        event_store.add_video("broken", title="x")
        event_store.add_video("healthy", title="y")
        event_store.failing_creators.add("broken")

        result = await AnalyticsRefreshJob(event_store, cache).refresh_all()

        assert result["creators_processed"] == 1
        assert result["cache_entries_updated"] == 4
        assert len(result["errors"]) == 1
        assert result["errors"][0].startswith("broken:")
        assert await cache.get(report_cache_key("healthy", DateRangeType.ALL_TIME)) is not None

    async def test_cache_write_failures_are_not_counted(self, event_store, failing_backend):
        event_store.add_video("creator-1", title="Intro")
        cache = CacheManager(backend=failing_backend, prefix="test:")

        result = await AnalyticsRefreshJob(event_store, cache).refresh_all()

        assert result["creators_processed"] == 1
        assert result["cache_entries_updated"] == 0

    async def test_no_creators(self, event_store, cache):
        result = await AnalyticsRefreshJob(event_store, cache).refresh_all()
        assert result == {"creators_processed": 0, "cache_entries_updated": 0, "errors": []}


@pytest.mark.unit
class TestReportCacheKey:

    def test_explicit_bounds_do_not_share_preset_keys(self, now):
        window = DateRange(start=now - timedelta(days=7), end=now)

        custom = report_cache_key("creator-1", DateRangeType.LAST_7_DAYS, window)

        assert custom != report_cache_key("creator-1", DateRangeType.LAST_7_DAYS)
        assert custom["date_range"] == "custom"
        assert custom["start"] == window.start.isoformat()
        assert custom["creator_id"] == "creator-1"
