"""
Message model for chat utterances.

Messages are immutable once written and are removed together with their
thread.
"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from database import Base
from .profile import utcnow


class MessageModel(Base):
    """Model for one message inside a thread."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    thread_id = Column(String(36), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)

    sender_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    receiver_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    post_id = Column(String(36), nullable=False)  # Denormalized for quick lookups

    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    # Relationships
    thread = relationship("ThreadModel", back_populates="messages")
    sender = relationship("ProfileModel", foreign_keys=[sender_id])

    def __repr__(self):
        return f"<MessageModel(id={self.id}, thread={self.thread_id}, sender={self.sender_id})>"
