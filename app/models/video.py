"""
Video model
"""

from sqlalchemy import Column, String, BigInteger, Float, Boolean, ForeignKey, Enum, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.schemas.analytics import SourceType


class Video(BaseModel):
    """
    Video in a creator's library; soft-deleted rows are kept for history
    """
    __tablename__ = "videos"

    creator_id = Column(UUID(as_uuid=True), ForeignKey("creators.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    thumbnail_url = Column(Text)
    duration_seconds = Column(Float, nullable=False, default=0)
    source_type = Column(
        Enum(SourceType, values_callable=lambda e: [m.value for m in e]),
        default=SourceType.UPLOAD,
        nullable=False,
        index=True
    )
    file_size_bytes = Column(BigInteger)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)

    creator = relationship("Creator", back_populates="videos")
    events = relationship("VideoAnalyticsEvent", back_populates="video")
    watch_sessions = relationship("WatchSession", back_populates="video")

    def __repr__(self):
        return f"<Video(id={self.id}, title={self.title}, source_type={self.source_type})>"
