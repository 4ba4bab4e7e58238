"""
Backend gateways for the messaging core.

The core depends only on BackendGateway; SupabaseGateway talks to the
hosted backend and SqlGateway to the application's own database.
"""

from .base import BackendGateway
from .errors import (
    BackendError,
    BackendUnavailableError,
    DuplicateThreadError,
    NotPermittedError,
    ObjectNotFoundError,
)
from .sql import SqlGateway
from .supabase import SupabaseGateway

__all__ = [
    "BackendGateway",
    "BackendError",
    "BackendUnavailableError",
    "DuplicateThreadError",
    "NotPermittedError",
    "ObjectNotFoundError",
    "SqlGateway",
    "SupabaseGateway",
]
