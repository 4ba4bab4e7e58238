"""
Pydantic schemas for backend rows and display models.

This package contains Pydantic models for validating backend rows and
the resolved threads and messages handed to the UI.
"""

from .chat import Listing, ListingRow, Message, MessageRow, ProfileRow, Thread, ThreadRow

__all__ = [
    "Listing",
    "ListingRow",
    "Message",
    "MessageRow",
    "ProfileRow",
    "Thread",
    "ThreadRow",
]
