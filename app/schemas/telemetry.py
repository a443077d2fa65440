"""
Client-side telemetry schemas
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SubmissionState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class QueuedTelemetryEvent(BaseModel):
    video_id: str
    creator_id: str
    student_id: str
    session_id: str
    percent_complete: float = Field(..., ge=0, le=100)
    current_time: Optional[float] = None


class TelemetryPayload(BaseModel):
    """One request body for the ingestion endpoint"""
    event_type: str
    video_id: str
    creator_id: str
    student_id: Optional[str] = None
    course_id: Optional[str] = None
    module_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SubmissionResult(BaseModel):
    success: bool
    state: SubmissionState
    attempts: int = 0
    event_id: Optional[str] = None
    error: Optional[str] = None
