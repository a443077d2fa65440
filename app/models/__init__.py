"""
Database models
"""

from app.models.creator import Creator
from app.models.video import Video
from app.models.analytics_event import VideoAnalyticsEvent
from app.models.watch_session import WatchSession
from app.models.student import Student, Course, ChatMessage

__all__ = [
    "Creator",
    "Video",
    "VideoAnalyticsEvent",
    "WatchSession",
    "Student",
    "Course",
    "ChatMessage"
]
