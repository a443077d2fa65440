"""
SQLAlchemy-backed event store
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import EventStoreError
from app.models.analytics_event import VideoAnalyticsEvent
from app.models.creator import Creator
from app.models.student import ChatMessage, Course, Student
from app.models.video import Video
from app.models.watch_session import WatchSession
from app.schemas.analytics import (
    AnalyticsEventCreate,
    AnalyticsEventRecord,
    EventMetadata,
    SourceType,
    VideoEventType,
    VideoRecord,
)
from app.schemas.engagement import Activity, ActivityType, Cohort, CohortMember
from app.services.engagement import group_cohorts
from app.services.event_store import EventStore

logger = logging.getLogger(__name__)

_SESSION_EVENTS = {VideoEventType.VIDEO_PROGRESS, VideoEventType.VIDEO_COMPLETED}


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _to_event_record(row: VideoAnalyticsEvent) -> AnalyticsEventRecord:
    return AnalyticsEventRecord(
        id=str(row.id),
        event_type=row.event_type,
        video_id=str(row.video_id),
        creator_id=str(row.creator_id),
        student_id=row.student_id,
        course_id=row.course_id,
        module_id=row.module_id,
        metadata=EventMetadata.model_validate(row.event_metadata or {}),
        timestamp=row.created_at,
    )


def _to_video_record(row: Video) -> VideoRecord:
    return VideoRecord(
        id=str(row.id),
        creator_id=str(row.creator_id),
        title=row.title,
        thumbnail_url=row.thumbnail_url,
        duration_seconds=row.duration_seconds or 0,
        source_type=row.source_type,
        file_size_bytes=row.file_size_bytes,
        is_deleted=row.is_deleted,
        created_at=row.created_at,
    )


def _to_activity(creator_id: str, activity_type: ActivityType, student_id: str, ts: datetime) -> Activity:
    return Activity(student_id=student_id, creator_id=creator_id, type=activity_type, timestamp=ts)


class SQLAlchemyEventStore(EventStore):
    """
    Event store over the analytics tables. Each call runs in its own
    session so concurrent reads from one report never share a connection.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _scalar(self, operation: str, stmt) -> int:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            logger.error(f"Event store {operation} failed: {e}")
            raise EventStoreError(operation) from e

    async def _rows(self, operation: str, stmt) -> list:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Event store {operation} failed: {e}")
            raise EventStoreError(operation) from e

    async def _tuples(self, operation: str, stmt) -> list:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return [tuple(row) for row in result.all()]
        except SQLAlchemyError as e:
            logger.error(f"Event store {operation} failed: {e}")
            raise EventStoreError(operation) from e

    @staticmethod
    def _window(start: datetime, end: datetime):
        return and_(
            VideoAnalyticsEvent.created_at >= start,
            VideoAnalyticsEvent.created_at <= end
        )

    async def count_creator_events(self, creator_id, event_type, start, end) -> int:
        stmt = select(func.count(VideoAnalyticsEvent.id)).where(
            VideoAnalyticsEvent.creator_id == _as_uuid(creator_id),
            VideoAnalyticsEvent.event_type == event_type,
            self._window(start, end)
        )
        return await self._scalar("count_creator_events", stmt)

    async def list_creator_events(self, creator_id, event_type, start, end) -> List[AnalyticsEventRecord]:
        stmt = select(VideoAnalyticsEvent).where(
            VideoAnalyticsEvent.creator_id == _as_uuid(creator_id),
            VideoAnalyticsEvent.event_type == event_type,
            self._window(start, end)
        ).order_by(VideoAnalyticsEvent.created_at)
        rows = await self._rows("list_creator_events", stmt)
        return [_to_event_record(row) for row in rows]

    async def count_video_events(self, video_id, event_type, start, end) -> int:
        stmt = select(func.count(VideoAnalyticsEvent.id)).where(
            VideoAnalyticsEvent.video_id == _as_uuid(video_id),
            VideoAnalyticsEvent.event_type == event_type,
            self._window(start, end)
        )
        return await self._scalar("count_video_events", stmt)

    async def list_video_events(self, video_id, event_type, start, end) -> List[AnalyticsEventRecord]:
        stmt = select(VideoAnalyticsEvent).where(
            VideoAnalyticsEvent.video_id == _as_uuid(video_id),
            VideoAnalyticsEvent.event_type == event_type,
            self._window(start, end)
        ).order_by(VideoAnalyticsEvent.created_at)
        rows = await self._rows("list_video_events", stmt)
        return [_to_event_record(row) for row in rows]

    async def list_videos(self, creator_id, source_type: Optional[SourceType] = None) -> List[VideoRecord]:
        filters = [Video.creator_id == _as_uuid(creator_id), Video.is_deleted.is_(False)]
        if source_type is not None:
            filters.append(Video.source_type == source_type)
        stmt = select(Video).where(and_(*filters)).order_by(Video.created_at)
        rows = await self._rows("list_videos", stmt)
        return [_to_video_record(row) for row in rows]

    async def get_video(self, video_id: str) -> Optional[VideoRecord]:
        video_uuid = _as_uuid(video_id)
        if video_uuid is None:
            return None
        stmt = select(Video).where(Video.id == video_uuid, Video.is_deleted.is_(False))
        rows = await self._rows("get_video", stmt)
        return _to_video_record(rows[0]) if rows else None

    async def append_event(self, event: AnalyticsEventCreate) -> AnalyticsEventRecord:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    row = VideoAnalyticsEvent(
                        event_type=event.event_type,
                        video_id=_as_uuid(event.video_id),
                        creator_id=_as_uuid(event.creator_id),
                        student_id=event.student_id,
                        course_id=event.course_id,
                        module_id=event.module_id,
                        event_metadata=event.metadata.model_dump(mode="json", exclude_none=True),
                    )
                    session.add(row)

                    if event.event_type in _SESSION_EVENTS and event.metadata.session_id:
                        await self._record_session_progress(session, event)

                    await session.flush()
                return _to_event_record(row)
        except SQLAlchemyError as e:
            logger.error(f"Event store append_event failed: {e}")
            raise EventStoreError("append_event") from e

    async def _record_session_progress(self, session: AsyncSession, event: AnalyticsEventCreate):
        session_uuid = _as_uuid(event.metadata.session_id)
        if session_uuid is None:
            return
        watch_session = await session.get(WatchSession, session_uuid)
        if watch_session is None:
            logger.debug(f"Watch session {event.metadata.session_id} not found, skipping progress update")
            return

        percent = event.metadata.percent_complete
        if event.event_type == VideoEventType.VIDEO_COMPLETED:
            percent = 100.0
        watch_session.record_progress(
            percent if percent is not None else watch_session.percent_complete,
            event.metadata.watch_time_seconds
            if event.metadata.watch_time_seconds is not None
            else watch_session.watch_time_seconds
        )

    async def list_creator_ids(self) -> List[str]:
        stmt = select(Creator.id).order_by(Creator.created_at.desc())
        rows = await self._rows("list_creator_ids", stmt)
        return [str(row) for row in rows]

    async def count_ai_messages(self, creator_id: str, since: datetime) -> int:
        stmt = select(func.count(ChatMessage.id)).where(
            ChatMessage.creator_id == _as_uuid(creator_id),
            ChatMessage.created_at >= since
        )
        return await self._scalar("count_ai_messages", stmt)

    async def list_ai_message_timestamps(self, creator_id: str, since: datetime) -> List[datetime]:
        stmt = select(ChatMessage.created_at).where(
            ChatMessage.creator_id == _as_uuid(creator_id),
            ChatMessage.created_at >= since
        ).order_by(ChatMessage.created_at)
        return await self._rows("list_ai_message_timestamps", stmt)

    async def count_active_students(self, creator_id: str) -> int:
        stmt = select(func.count(Student.id)).where(
            Student.creator_id == _as_uuid(creator_id),
            Student.is_active.is_(True)
        )
        return await self._scalar("count_active_students", stmt)

    async def count_courses(self, creator_id: str) -> int:
        stmt = select(func.count(Course.id)).where(
            Course.creator_id == _as_uuid(creator_id),
            Course.is_deleted.is_(False)
        )
        return await self._scalar("count_courses", stmt)

    async def list_activities(self, creator_id: str, since: datetime) -> List[Activity]:
        creator_uuid = _as_uuid(creator_id)
        chat_stmt = select(ChatMessage.student_id, ChatMessage.created_at).where(
            ChatMessage.creator_id == creator_uuid,
            ChatMessage.student_id.is_not(None),
            ChatMessage.created_at >= since
        )
        view_stmt = select(VideoAnalyticsEvent.student_id, VideoAnalyticsEvent.created_at).where(
            VideoAnalyticsEvent.creator_id == creator_uuid,
            VideoAnalyticsEvent.event_type == VideoEventType.VIDEO_STARTED,
            VideoAnalyticsEvent.student_id.is_not(None),
            VideoAnalyticsEvent.created_at >= since
        )
        chats = await self._tuples("list_activities", chat_stmt)
        views = await self._tuples("list_activities", view_stmt)

        activities = [
            _to_activity(creator_id, ActivityType.CHAT_MESSAGE, student_id, ts) for student_id, ts in chats
        ] + [
            _to_activity(creator_id, ActivityType.VIDEO_VIEW, student_id, ts) for student_id, ts in views
        ]
        activities.sort(key=lambda activity: activity.timestamp)
        return activities

    async def list_cohorts(self, creator_id: str) -> List[Cohort]:
        creator_uuid = _as_uuid(creator_id)
        # Chat rows carry the external student id, so cohorts key on it too
        students_stmt = select(Student.external_id, Student.created_at).where(
            Student.creator_id == creator_uuid
        ).order_by(Student.created_at)
        chat_stmt = select(ChatMessage.student_id, ChatMessage.created_at).where(
            ChatMessage.creator_id == creator_uuid,
            ChatMessage.student_id.is_not(None)
        ).order_by(ChatMessage.created_at)

        students = await self._tuples("list_cohorts", students_stmt)
        chats = await self._tuples("list_cohorts", chat_stmt)

        return group_cohorts(
            [CohortMember(id=external_id, join_date=joined) for external_id, joined in students],
            [_to_activity(creator_id, ActivityType.CHAT_MESSAGE, student_id, ts) for student_id, ts in chats]
        )

    async def list_session_lengths(self, creator_id: str, since: datetime) -> List[float]:
        stmt = select(WatchSession.watch_time_seconds).join(
            Video, WatchSession.video_id == Video.id
        ).where(
            Video.creator_id == _as_uuid(creator_id),
            WatchSession.session_start >= since
        )
        seconds = await self._rows("list_session_lengths", stmt)
        return [(value or 0) / 60 for value in seconds]


_event_store: Optional[SQLAlchemyEventStore] = None


def get_event_store() -> EventStore:
    """
    FastAPI dependency returning the process-wide SQL event store
    """
    global _event_store
    if _event_store is None:
        from app.core.database import async_session
        _event_store = SQLAlchemyEventStore(async_session)
    return _event_store
