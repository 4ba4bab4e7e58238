"""
Profile and stored-object models.

Profiles hold the display name and avatar reference of each user. Stored
objects record which storage paths exist so signing can report missing ones.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfileModel(Base):
    """Model for a marketplace user's public profile."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    full_name = Column(String(255), nullable=True)

    # Storage path such as "users/<uuid>/profile-1.jpg"
    avatar_path = Column(String(512), nullable=True)
    avatar_updated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<ProfileModel(id={self.id}, name={self.full_name})>"

    def set_avatar(self, path: str):
        """
        Point the profile at a new avatar object.

        Args:
            path: Storage path of the uploaded picture
        """
        self.avatar_path = path
        self.avatar_updated_at = utcnow()


class StoredObjectModel(Base):
    """Model for an object held in the avatar bucket."""

    __tablename__ = "storage_objects"

    path = Column(String(512), primary_key=True)
    content_type = Column(String(128), nullable=False, default="image/jpeg")
    size = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
