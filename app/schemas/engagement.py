"""
Student engagement schemas
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class ActivityType(str, Enum):
    VIDEO_VIEW = "video_view"
    CHAT_MESSAGE = "chat_message"
    COURSE_PROGRESS = "course_progress"
    LOGIN = "login"


class Activity(BaseModel):
    student_id: str
    creator_id: str
    type: ActivityType
    timestamp: datetime
    metadata: Optional[Dict[str, object]] = None


class StudentMetrics(BaseModel):
    video_completion_rate: float = Field(0, ge=0, le=100)
    chat_interaction_frequency: float = Field(0, ge=0)  # messages per day
    login_frequency: float = Field(0, ge=0)  # logins per week
    course_progress_rate: float = Field(0, ge=0, le=100)


class EngagementBreakdown(BaseModel):
    video_completion: int
    chat_interaction: int
    login_frequency: int
    course_progress: int


class EngagementScore(BaseModel):
    total: int = Field(..., ge=0, le=100)
    breakdown: EngagementBreakdown


class CohortMember(BaseModel):
    id: str
    join_date: datetime


class Cohort(BaseModel):
    cohort_id: str
    students: List[CohortMember]
    activities: List[Activity] = Field(default_factory=list)


class CohortRetention(BaseModel):
    cohort: str
    week0: int = 100
    week1: int = 0
    week2: int = 0
    week3: int = 0
    week4: int = 0
    week5: int = 0
    week6: int = 0
    week7: int = 0
    week8: int = 0
    week9: int = 0
    week10: int = 0
    week11: int = 0
    week12: int = 0

    def weeks(self) -> List[int]:
        return [getattr(self, f"week{i}") for i in range(13)]


class ActiveUserData(BaseModel):
    date: str
    dau: int
    mau: int
    change: int


class SessionDurationBucket(BaseModel):
    bucket: str
    range: Tuple[float, float]  # minutes, half-open
    count: int = 0


class EngagementMetric(str, Enum):
    ACTIVE_USERS = "active_users"
    RETENTION = "retention"
    SESSION_DURATION = "session_duration"
    ALL = "all"


class EngagementTimeRange(str, Enum):
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    LAST_YEAR = "1y"
    ALL = "all"


class EngagementReport(BaseModel):
    """Sections not requested by `metric` are left as None"""
    creator_id: str
    metric: EngagementMetric
    time_range: EngagementTimeRange
    generated_at: datetime
    active_users: Optional[List[ActiveUserData]] = None
    retention: Optional[List[CohortRetention]] = None
    session_durations: Optional[List[SessionDurationBucket]] = None
    avg_session_duration: Optional[int] = None  # minutes
    retention_rate: Optional[float] = None  # percent of last week's students who came back
