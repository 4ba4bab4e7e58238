"""
Thread model for buyer/seller conversations.

A thread is anchored to one listing and one buyer/seller pair. The
composite unique constraint makes concurrent find-or-create calls collapse
onto a single row.
"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from .profile import utcnow


class ThreadModel(Base):
    """Model for a conversation about one listing."""

    __tablename__ = "threads"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))

    post_id = Column(String(36), ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    post = relationship("PostModel")
    buyer = relationship("ProfileModel", foreign_keys=[buyer_id])
    seller = relationship("ProfileModel", foreign_keys=[seller_id])
    messages = relationship(
        "MessageModel",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="MessageModel.created_at",
    )

    __table_args__ = (
        UniqueConstraint("post_id", "buyer_id", "seller_id", name="uix_post_buyer_seller"),
    )

    def __repr__(self):
        return f"<ThreadModel(id={self.id}, post={self.post_id}, buyer={self.buyer_id}, seller={self.seller_id})>"
