"""
Watch session model
"""

from sqlalchemy import Column, String, Float, Boolean, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel

# Sessions flip to completed once this share of the video has been watched
COMPLETION_THRESHOLD_PERCENT = 90


class WatchSession(BaseModel):
    """
    One student's playback of one video, updated as they watch
    """
    __tablename__ = "video_watch_sessions"

    video_id = Column(UUID(as_uuid=True), ForeignKey("videos.id"), nullable=False, index=True)
    student_id = Column(String(255), nullable=False, index=True)
    session_start = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    session_end = Column(DateTime(timezone=True))
    watch_time_seconds = Column(Float, nullable=False, default=0)
    percent_complete = Column(Float, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    device_type = Column(String(50))
    referrer_type = Column(String(50))

    video = relationship("Video", back_populates="watch_sessions")

    def record_progress(self, percent_complete: float, watch_time_seconds: float):
        self.percent_complete = max(0.0, min(percent_complete, 100.0))
        self.watch_time_seconds = watch_time_seconds
        if self.percent_complete >= COMPLETION_THRESHOLD_PERCENT:
            self.completed = True

    def __repr__(self):
        return f"<WatchSession(id={self.id}, video_id={self.video_id}, percent_complete={self.percent_complete})>"
