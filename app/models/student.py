"""
Student, course and chat message models used for tier usage counts
"""

from sqlalchemy import Column, String, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID

from app.models.base import BaseModel


class Student(BaseModel):
    __tablename__ = "students"

    creator_id = Column(UUID(as_uuid=True), ForeignKey("creators.id"), nullable=False, index=True)
    external_id = Column(String(255), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Student(id={self.id}, creator_id={self.creator_id}, is_active={self.is_active})>"


class Course(BaseModel):
    __tablename__ = "courses"

    creator_id = Column(UUID(as_uuid=True), ForeignKey("creators.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    is_deleted = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Course(id={self.id}, title={self.title})>"


class ChatMessage(BaseModel):
    """
    AI chat message; counted against the monthly message allowance
    """
    __tablename__ = "chat_messages"

    creator_id = Column(UUID(as_uuid=True), ForeignKey("creators.id"), nullable=False, index=True)
    student_id = Column(String(255), index=True)
    role = Column(String(20), nullable=False, default="user")

    def __repr__(self):
        return f"<ChatMessage(id={self.id}, creator_id={self.creator_id}, role={self.role})>"
