"""
Database models for the marketplace messaging core.

This package contains SQLAlchemy models for the tables the SQL gateway
reads and writes.
"""

from .profile import ProfileModel, StoredObjectModel
from .post import PostModel
from .thread import ThreadModel
from .message import MessageModel

__all__ = ["ProfileModel", "StoredObjectModel", "PostModel", "ThreadModel", "MessageModel"]
