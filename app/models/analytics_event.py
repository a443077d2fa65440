"""
Video analytics event model
"""

from sqlalchemy import Column, String, ForeignKey, Enum, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.schemas.analytics import VideoEventType


class VideoAnalyticsEvent(BaseModel):
    """
    Append-only behavioral event; rows are never updated
    """
    __tablename__ = "video_analytics_events"

    event_type = Column(
        Enum(VideoEventType, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    video_id = Column(UUID(as_uuid=True), ForeignKey("videos.id"), nullable=False)
    creator_id = Column(UUID(as_uuid=True), ForeignKey("creators.id"), nullable=False)
    student_id = Column(String(255), index=True)
    course_id = Column(String(255))
    module_id = Column(String(255))
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSONB, nullable=False, default=dict)

    video = relationship("Video", back_populates="events")

    __table_args__ = (
        Index("ix_video_events_creator_type_time", "creator_id", "event_type", "created_at"),
        Index("ix_video_events_video_type_time", "video_id", "event_type", "created_at"),
    )

    def __repr__(self):
        return f"<VideoAnalyticsEvent(id={self.id}, event_type={self.event_type}, video_id={self.video_id})>"
