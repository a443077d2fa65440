"""
Test configuration and fixtures
In-memory stand-ins for the cache backend and event store
"""

import fnmatch
import os
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Set test environment
os.environ["APP_ENV"] = "testing"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"

from app.core.cache import CacheManager
from app.core.exceptions import EventStoreError
from app.schemas.analytics import (
    AnalyticsEventCreate,
    AnalyticsEventRecord,
    EventMetadata,
    SourceType,
    VideoEventType,
    VideoRecord,
)
from app.schemas.engagement import Activity, ActivityType, CohortMember
from app.services.engagement import group_cohorts
from app.services.event_store import EventStore

# Sunday
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeCacheBackend:
    """Dict-backed subset of the redis.asyncio client, SCAN included"""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.scan_calls: List[dict] = []
        self._scan_snapshot: List[str] = []

    async def get(self, name):
        return self.data.get(name)

    async def set(self, name, value, ex=None):
        self.data[name] = value
        self.ttls[name] = ex
        return True

    async def delete(self, *names):
        removed = 0
        for name in names:
            if name in self.data:
                del self.data[name]
                self.ttls.pop(name, None)
                removed += 1
        return removed

    async def scan(self, cursor=0, match=None, count=None):
        self.scan_calls.append({"cursor": cursor, "match": match, "count": count})
        if cursor == 0:
            self._scan_snapshot = sorted(
                key for key in self.data
                if match is None or fnmatch.fnmatchcase(key, match)
            )
        count = count or 10
        page = self._scan_snapshot[cursor:cursor + count]
        next_cursor = cursor + count
        if next_cursor >= len(self._scan_snapshot):
            next_cursor = 0
        return next_cursor, page


class FailingCacheBackend:
    """Every call fails the way a dropped Redis connection does"""

    async def get(self, name):
        raise ConnectionError("cache backend down")

    async def set(self, name, value, ex=None):
        raise ConnectionError("cache backend down")

    async def delete(self, *names):
        raise ConnectionError("cache backend down")

    async def scan(self, cursor=0, match=None, count=None):
        raise ConnectionError("cache backend down")


class InMemoryEventStore(EventStore):
    """Event store over plain lists; windows are inclusive on both ends"""

    def __init__(self):
        self.events: List[AnalyticsEventRecord] = []
        self.videos: Dict[str, VideoRecord] = {}
        self.creators: List[str] = []
        self.ai_messages: Dict[str, List[datetime]] = defaultdict(list)
        self.active_students: Dict[str, int] = defaultdict(int)
        self.courses: Dict[str, int] = defaultdict(int)
        self.chat_messages: Dict[str, List[Tuple[str, datetime]]] = defaultdict(list)
        self.students: Dict[str, List[CohortMember]] = defaultdict(list)
        self.watch_sessions: Dict[str, List[Tuple[datetime, float]]] = defaultdict(list)
        self.failing_creators = set()
        self.fail_reads = False

    # Seeding helpers

    def add_video(
        self,
        creator_id: str,
        title: str = "Video",
        video_id: Optional[str] = None,
        created_at: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc),
        file_size_bytes: Optional[int] = None,
        source_type: SourceType = SourceType.UPLOAD,
        duration_seconds: float = 600,
        is_deleted: bool = False
    ) -> VideoRecord:
        video = VideoRecord(
            id=video_id or str(uuid.uuid4()),
            creator_id=creator_id,
            title=title,
            duration_seconds=duration_seconds,
            source_type=source_type,
            file_size_bytes=file_size_bytes,
            is_deleted=is_deleted,
            created_at=created_at,
        )
        self.videos[video.id] = video
        if creator_id not in self.creators:
            self.creators.append(creator_id)
        return video

    def add_event(
        self,
        event_type: VideoEventType,
        video: VideoRecord,
        timestamp: datetime,
        student_id: Optional[str] = None,
        **metadata
    ) -> AnalyticsEventRecord:
        record = AnalyticsEventRecord(
            id=str(uuid.uuid4()),
            event_type=event_type,
            video_id=video.id,
            creator_id=video.creator_id,
            student_id=student_id,
            metadata=EventMetadata(**metadata),
            timestamp=timestamp,
        )
        self.events.append(record)
        return record

    def add_chat_message(self, creator_id: str, student_id: str, timestamp: datetime):
        self.chat_messages[creator_id].append((student_id, timestamp))
        self.ai_messages[creator_id].append(timestamp)

    def add_student(self, creator_id: str, student_id: str, joined: datetime):
        self.students[creator_id].append(CohortMember(id=student_id, join_date=joined))

    def add_watch_session(self, creator_id: str, started: datetime, watch_time_seconds: float):
        self.watch_sessions[creator_id].append((started, watch_time_seconds))

    def _check(self, operation: str, creator_id: Optional[str] = None):
        if self.fail_reads or (creator_id is not None and creator_id in self.failing_creators):
            raise EventStoreError(operation)

    def _matching(self, event_type, start, end, **filters) -> List[AnalyticsEventRecord]:
        return sorted(
            (
                event for event in self.events
                if event.event_type == event_type
                and start <= event.timestamp <= end
                and all(getattr(event, field) == value for field, value in filters.items())
            ),
            key=lambda event: event.timestamp
        )

    # EventStore interface

    async def count_creator_events(self, creator_id, event_type, start, end):
        self._check("count_creator_events", creator_id)
        return len(self._matching(event_type, start, end, creator_id=creator_id))

    async def list_creator_events(self, creator_id, event_type, start, end):
        self._check("list_creator_events", creator_id)
        return self._matching(event_type, start, end, creator_id=creator_id)

    async def count_video_events(self, video_id, event_type, start, end):
        self._check("count_video_events")
        return len(self._matching(event_type, start, end, video_id=video_id))

    async def list_video_events(self, video_id, event_type, start, end):
        self._check("list_video_events")
        return self._matching(event_type, start, end, video_id=video_id)

    async def list_videos(self, creator_id, source_type=None):
        self._check("list_videos", creator_id)
        videos = [
            video for video in self.videos.values()
            if video.creator_id == creator_id
            and not video.is_deleted
            and (source_type is None or video.source_type == source_type)
        ]
        return sorted(videos, key=lambda video: video.created_at)

    async def get_video(self, video_id):
        self._check("get_video")
        video = self.videos.get(video_id)
        if video is None or video.is_deleted:
            return None
        return video

    async def append_event(self, event: AnalyticsEventCreate):
        self._check("append_event")
        record = AnalyticsEventRecord(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            **event.model_dump(),
        )
        self.events.append(record)
        return record

    async def list_creator_ids(self):
        self._check("list_creator_ids")
        return list(self.creators)

    async def count_ai_messages(self, creator_id, since):
        self._check("count_ai_messages", creator_id)
        return sum(1 for ts in self.ai_messages[creator_id] if ts >= since)

    async def list_ai_message_timestamps(self, creator_id, since):
        self._check("list_ai_message_timestamps", creator_id)
        return sorted(ts for ts in self.ai_messages[creator_id] if ts >= since)

    async def count_active_students(self, creator_id):
        self._check("count_active_students", creator_id)
        return self.active_students[creator_id]

    async def count_courses(self, creator_id):
        self._check("count_courses", creator_id)
        return self.courses[creator_id]

    def _chat_activities(self, creator_id, since=None) -> List[Activity]:
        return [
            Activity(student_id=student_id, creator_id=creator_id, type=ActivityType.CHAT_MESSAGE, timestamp=ts)
            for student_id, ts in self.chat_messages[creator_id]
            if since is None or ts >= since
        ]

    async def list_activities(self, creator_id, since):
        self._check("list_activities", creator_id)
        views = [
            Activity(
                student_id=event.student_id,
                creator_id=creator_id,
                type=ActivityType.VIDEO_VIEW,
                timestamp=event.timestamp,
            )
            for event in self.events
            if event.creator_id == creator_id
            and event.event_type == VideoEventType.VIDEO_STARTED
            and event.student_id is not None
            and event.timestamp >= since
        ]
        return sorted(self._chat_activities(creator_id, since) + views, key=lambda a: a.timestamp)

    async def list_cohorts(self, creator_id):
        self._check("list_cohorts", creator_id)
        return group_cohorts(self.students[creator_id], self._chat_activities(creator_id))

    async def list_session_lengths(self, creator_id, since):
        self._check("list_session_lengths", creator_id)
        return [seconds / 60 for started, seconds in self.watch_sessions[creator_id] if started >= since]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def cache_backend():
    return FakeCacheBackend()


@pytest.fixture
def failing_backend():
    return FailingCacheBackend()


@pytest.fixture
def cache(cache_backend):
    return CacheManager(backend=cache_backend, prefix="test:", default_ttl=300, scan_count=2)


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest_asyncio.fixture
async def client(event_store, cache):
    """Create test client with dependency overrides"""
    from app.main import app
    from app.core.cache import get_cache_manager
    from app.services.sql_event_store import get_event_store

    app.dependency_overrides[get_event_store] = lambda: event_store
    app.dependency_overrides[get_cache_manager] = lambda: cache

    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
