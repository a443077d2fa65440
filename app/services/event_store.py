"""
Event store collaborator interface

Reporting services depend only on this interface. Windows passed to the
range queries are inclusive on both ends.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from app.schemas.analytics import (
    AnalyticsEventCreate,
    AnalyticsEventRecord,
    SourceType,
    VideoEventType,
    VideoRecord,
)
from app.schemas.engagement import Activity, Cohort


class EventStore(ABC):
    """Read side of the append-only analytics event log plus catalog lookups"""

    @abstractmethod
    async def count_creator_events(
        self,
        creator_id: str,
        event_type: VideoEventType,
        start: datetime,
        end: datetime
    ) -> int:
        ...

    @abstractmethod
    async def list_creator_events(
        self,
        creator_id: str,
        event_type: VideoEventType,
        start: datetime,
        end: datetime
    ) -> List[AnalyticsEventRecord]:
        """Events ordered by timestamp ascending"""

    @abstractmethod
    async def count_video_events(
        self,
        video_id: str,
        event_type: VideoEventType,
        start: datetime,
        end: datetime
    ) -> int:
        ...

    @abstractmethod
    async def list_video_events(
        self,
        video_id: str,
        event_type: VideoEventType,
        start: datetime,
        end: datetime
    ) -> List[AnalyticsEventRecord]:
        ...

    @abstractmethod
    async def list_videos(
        self,
        creator_id: str,
        source_type: Optional[SourceType] = None
    ) -> List[VideoRecord]:
        """Non-deleted videos owned by the creator, oldest first"""

    @abstractmethod
    async def get_video(self, video_id: str) -> Optional[VideoRecord]:
        """The video if it exists and is not deleted"""

    @abstractmethod
    async def append_event(self, event: AnalyticsEventCreate) -> AnalyticsEventRecord:
        ...

    @abstractmethod
    async def list_creator_ids(self) -> List[str]:
        ...

    @abstractmethod
    async def count_ai_messages(self, creator_id: str, since: datetime) -> int:
        ...

    @abstractmethod
    async def list_ai_message_timestamps(self, creator_id: str, since: datetime) -> List[datetime]:
        ...

    @abstractmethod
    async def count_active_students(self, creator_id: str) -> int:
        ...

    @abstractmethod
    async def count_courses(self, creator_id: str) -> int:
        ...

    @abstractmethod
    async def list_activities(self, creator_id: str, since: datetime) -> List[Activity]:
        """Chat messages and video views by identified students, oldest first"""

    @abstractmethod
    async def list_cohorts(self, creator_id: str) -> List[Cohort]:
        """Students grouped by join week, each cohort carrying the creator's chat activity"""

    @abstractmethod
    async def list_session_lengths(self, creator_id: str, since: datetime) -> List[float]:
        """Watch time in minutes of every session started at or after `since`"""
