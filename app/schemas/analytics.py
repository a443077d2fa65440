"""
Analytics event, video and aggregated report schemas
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.core.exceptions import InvalidDateRangeError
from app.schemas.base import BaseSchema


class VideoEventType(str, Enum):
    VIDEO_IMPORTED = "video_imported"
    VIDEO_TRANSCRIBED = "video_transcribed"
    VIDEO_EMBEDDED = "video_embedded"
    VIDEO_ADDED_TO_COURSE = "video_added_to_course"
    VIDEO_STARTED = "video_started"
    VIDEO_PROGRESS = "video_progress"
    VIDEO_COMPLETED = "video_completed"
    VIDEO_REWATCHED = "video_rewatched"


class SourceType(str, Enum):
    YOUTUBE = "youtube"
    MUX = "mux"
    LOOM = "loom"
    UPLOAD = "upload"


class DateRangeType(str, Enum):
    LAST_7_DAYS = "last_7_days"
    LAST_30_DAYS = "last_30_days"
    LAST_90_DAYS = "last_90_days"
    ALL_TIME = "all_time"


class EventMetadata(BaseModel):
    """
    Known optional metadata fields; unknown keys are kept as extras.
    """
    model_config = ConfigDict(extra="allow")

    source_type: Optional[SourceType] = None
    duration_seconds: Optional[float] = Field(None, ge=0)
    percent_complete: Optional[float] = Field(None, ge=0, le=100)
    watch_time_seconds: Optional[float] = Field(None, ge=0)
    cost: Optional[float] = Field(None, ge=0)
    transcript_method: Optional[str] = None
    session_id: Optional[str] = None
    current_time_seconds: Optional[float] = None
    device: Optional[str] = None

    @property
    def watch_time_or_zero(self) -> float:
        return self.watch_time_seconds if self.watch_time_seconds is not None else 0.0

    @property
    def cost_or_zero(self) -> float:
        return self.cost if self.cost is not None else 0.0

    @property
    def method_or_unknown(self) -> str:
        return self.transcript_method if self.transcript_method else "unknown"


class AnalyticsEventCreate(BaseSchema):
    """Payload accepted by the ingestion endpoint"""
    event_type: VideoEventType
    video_id: str = Field(..., min_length=1)
    creator_id: str = Field(..., min_length=1)
    student_id: Optional[str] = None
    course_id: Optional[str] = None
    module_id: Optional[str] = None
    metadata: EventMetadata = Field(default_factory=EventMetadata)


class AnalyticsEventRecord(AnalyticsEventCreate):
    """Immutable event as read back from the store"""
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    timestamp: datetime


class VideoRecord(BaseSchema):
    id: str
    creator_id: str
    title: str
    thumbnail_url: Optional[str] = None
    duration_seconds: float = 0
    source_type: SourceType = SourceType.UPLOAD
    file_size_bytes: Optional[int] = None
    is_deleted: bool = False
    created_at: datetime


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.start > self.end:
            raise InvalidDateRangeError()
        return self

    @property
    def duration(self):
        return self.end - self.start


class MetricTrends(BaseModel):
    views: int = 0
    watch_time: int = 0
    completion: int = 0
    videos: int = 0


class SummaryMetrics(BaseModel):
    total_views: int = 0
    total_watch_time_seconds: float = 0
    avg_completion_rate: float = 0
    total_videos: int = 0


class ReportMetrics(SummaryMetrics):
    trends: MetricTrends = Field(default_factory=MetricTrends)


class DailyViews(BaseModel):
    date: str
    views: int


class VideoCompletionRate(BaseModel):
    video_id: str
    title: str
    completion_rate: float
    views: int


class CostBreakdownItem(BaseModel):
    method: str
    total_cost: float
    video_count: int


class StorageUsagePoint(BaseModel):
    date: str
    storage_gb: float
    cumulative_gb: float


class PeakHour(BaseModel):
    hour: int = Field(..., ge=0, le=23)
    day_of_week: int = Field(..., ge=0, le=6)  # 0 = Sunday
    activity_count: int


class StudentEngagementSummary(BaseModel):
    active_learners: int = 0
    avg_videos_per_student: float = 0
    peak_hours: List[PeakHour] = Field(default_factory=list)


class TopVideo(BaseModel):
    id: str
    title: str
    thumbnail_url: Optional[str] = None
    duration_seconds: float = 0
    source_type: str
    views: int
    avg_watch_time_seconds: float
    completion_rate: float


class AggregatedReport(BaseModel):
    """Everything the video analytics dashboard renders for one creator and range"""
    creator_id: str
    range_type: Optional[DateRangeType] = None  # None for explicit bounds
    date_range: DateRange
    generated_at: datetime
    metrics: ReportMetrics
    views_over_time: List[DailyViews] = Field(default_factory=list)
    completion_rates: List[VideoCompletionRate] = Field(default_factory=list)
    cost_breakdown: List[CostBreakdownItem] = Field(default_factory=list)
    storage_usage: List[StorageUsagePoint] = Field(default_factory=list)
    student_engagement: StudentEngagementSummary = Field(default_factory=StudentEngagementSummary)
    top_videos: List[TopVideo] = Field(default_factory=list)


class VideoEventAccepted(BaseModel):
    success: bool = True
    event_id: str
    message: str
