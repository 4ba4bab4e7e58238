"""
Avatar resolution for thread rows and the message view.

Turns a user id or a stored-object path into a short-lived display URL.
URLs carry two cache-busting parameters: ``_t`` (the caller's reload token)
and ``_u`` (a stable per-identity salt). Repeated resolutions of the same
identity with the same token stay cache-equivalent downstream; bumping the
token forces a fresh image fetch.
"""

import asyncio
import hashlib
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from uuid import UUID

from config import settings
from modules.gateway.base import BackendGateway
from modules.gateway.errors import BackendError, BackendUnavailableError
from utils.logging import get_logger

logger = get_logger("avatars.resolver")


def identity_salt(ref: str) -> str:
    """Return a short salt that is stable for ``ref`` across processes."""
    parsed = _parse_uuid(ref)
    if parsed is not None:
        return str(parsed)[:8]
    return hashlib.sha1(ref.encode()).hexdigest()[:8]


def with_cache_busters(url: str, reload_token: int, salt: str) -> str:
    """Append ``_t`` and ``_u`` query parameters to ``url``."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append(("_t", str(reload_token)))
    query.append(("_u", salt))
    return urlunsplit(parts._replace(query=urlencode(query)))


def user_id_from_storage_path(path: str) -> Optional[str]:
    """Extract the owner id from a path shaped like ``users/<uuid>/file.jpg``."""
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return None
    parsed = _parse_uuid(parts[1])
    return str(parsed) if parsed else None


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(value)
    except ValueError:
        return None


class AvatarResolver:
    """
    Resolve avatar references to signed, cache-busted URLs.

    The resolver keeps no shared state, so many rows can resolve at once.
    Missing avatars and cancelled signing requests yield None; only backend
    unavailability raises.
    """

    def __init__(
        self,
        gateway: BackendGateway,
        path_ttl_seconds: int = None,
        user_ttl_seconds: int = None
    ):
        """
        Initialize the resolver.

        Args:
            gateway: Backend gateway used for lookups and signing
            path_ttl_seconds: Signed URL lifetime for storage paths (defaults to config)
            user_ttl_seconds: Signed URL lifetime for user ids (defaults to config)
        """
        self.gateway = gateway
        self.path_ttl_seconds = path_ttl_seconds or settings.signed_url_ttl_seconds
        self.user_ttl_seconds = user_ttl_seconds or settings.user_avatar_ttl_seconds

    async def resolve(self, ref: str, reload_token: int = 0) -> Optional[str]:
        """
        Resolve ``ref`` to a display URL.

        Args:
            ref: Full URL, storage path ("users/<uuid>/file.jpg") or user id
            reload_token: Caller's reload counter, appended as ``_t``

        Returns:
            The display URL, or None when no avatar is available

        Raises:
            BackendUnavailableError: If the backend cannot be reached
        """
        if not ref:
            return None

        salt = identity_salt(ref)

        if ref.lower().startswith("http"):
            return with_cache_busters(ref, reload_token, salt)

        if "/" in ref:
            return await self._resolve_path(ref, reload_token, salt)

        if _parse_uuid(ref) is not None:
            return await self._resolve_user(ref, reload_token, salt)

        logger.warning(f"Unsupported avatar reference '{ref}', showing placeholder")
        return None

    async def _resolve_path(self, path: str, reload_token: int, salt: str) -> Optional[str]:
        try:
            signed = await self.gateway.get_signed_url(path, self.path_ttl_seconds)
        except BackendUnavailableError:
            raise
        except BackendError as e:
            logger.info(f"Could not sign avatar path '{path}': {e}")
            signed = None

        if signed is not None:
            return with_cache_busters(signed, reload_token, salt)

        # Signing failed or was cancelled: fall back to the owner's current avatar
        owner_id = user_id_from_storage_path(path)
        if owner_id is None:
            return None
        return await self._resolve_user(owner_id, reload_token, salt)

    async def _resolve_user(self, user_id: str, reload_token: int, salt: str) -> Optional[str]:
        try:
            path = await self.gateway.get_avatar_path(user_id)
        except BackendUnavailableError:
            raise
        except BackendError as e:
            logger.warning(f"Could not look up avatar for user {user_id}: {e}")
            return None

        if not path:
            logger.debug(f"No avatar on file for user {user_id}")
            return None

        try:
            signed = await self.gateway.get_signed_url(path, self.user_ttl_seconds)
        except BackendUnavailableError:
            raise
        except BackendError:
            logger.warning(f"Could not sign avatar path '{path}' for user {user_id}")
            return None

        if signed is None:
            return None
        return with_cache_busters(signed, reload_token, salt)


class AvatarSlot:
    """
    One avatar view's resolution state.

    Starting a new resolution supersedes the one in flight: the earlier call
    is cancelled and returns None instead of raising, so fast scrolling never
    flashes an error.
    """

    def __init__(self, resolver: AvatarResolver):
        self.resolver = resolver
        self._pending: Optional[asyncio.Task] = None
        self.url: Optional[str] = None

    async def load(self, ref: str, reload_token: int = 0) -> Optional[str]:
        """
        Resolve ``ref`` for this view, cancelling any earlier request.

        Returns:
            The resolved URL, or None if unavailable or superseded
        """
        self.cancel()
        task = asyncio.create_task(self.resolver.resolve(ref, reload_token))
        self._pending = task

        try:
            url = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                task.cancel()
                raise
            return None
        finally:
            if self._pending is task:
                self._pending = None

        self.url = url
        return url

    def cancel(self) -> None:
        """Cancel the in-flight resolution, if any."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None
