"""
Error taxonomy for backend gateway failures.

Every gateway raises subclasses of BackendError so callers can tell a
missing object or a uniqueness race apart from the backend being down.
"""


class BackendError(RuntimeError):
    """Base class for all backend gateway failures."""


class BackendUnavailableError(BackendError):
    """The backend could not be reached or answered with a server error."""


class ObjectNotFoundError(BackendError):
    """A stored object or row does not exist."""


class DuplicateThreadError(BackendError):
    """A thread for the same (listing, buyer, seller) triple already exists."""


class NotPermittedError(BackendError):
    """The caller is not allowed to modify the target row."""
