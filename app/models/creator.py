"""
Creator model
"""

from sqlalchemy import Column, String, Enum
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.schemas.usage import SubscriptionTier


class Creator(BaseModel):
    """
    Tenant that owns videos, courses and students
    """
    __tablename__ = "creators"

    name = Column(String(255), nullable=False)
    tier = Column(
        Enum(SubscriptionTier, values_callable=lambda e: [m.value for m in e]),
        default=SubscriptionTier.FREE,
        nullable=False
    )

    videos = relationship("Video", back_populates="creator", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Creator(id={self.id}, name={self.name}, tier={self.tier})>"
