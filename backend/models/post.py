"""
Post model for marketplace listings.

Only the columns the messaging core joins against are mapped here.
"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from database import Base
from .profile import utcnow


class PostModel(Base):
    """Model for a listing that buyers can message the seller about."""

    __tablename__ = "posts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    owner = relationship("ProfileModel")

    def __repr__(self):
        return f"<PostModel(id={self.id}, title={self.title})>"
