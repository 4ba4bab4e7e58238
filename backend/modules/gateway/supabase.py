"""
Hosted backend gateway over the Supabase REST and storage APIs.

Rows are read through PostgREST with embedded joins so a thread list is a
single round trip. Avatars are signed through the storage API.
"""

import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from config import settings
from modules.gateway.base import BackendGateway
from modules.gateway.errors import (
    BackendError,
    BackendUnavailableError,
    DuplicateThreadError,
    NotPermittedError,
    ObjectNotFoundError,
)
from schemas.chat import MessageRow, ThreadRow
from utils.logging import get_logger, log_backend_event

logger = get_logger("gateway.supabase")

PROFILE_FIELDS = "id,full_name,avatar_path,avatar_updated_at"
MESSAGE_FIELDS = "id,thread_id,sender_id,receiver_id,post_id,message,created_at"

THREAD_SELECT = (
    "id,post_id,buyer_id,seller_id,created_at,"
    "post:posts(id,user_id,title),"
    f"buyer:profiles!threads_buyer_id_fkey({PROFILE_FIELDS}),"
    f"seller:profiles!threads_seller_id_fkey({PROFILE_FIELDS}),"
    f"messages({MESSAGE_FIELDS})"
)
MESSAGE_SELECT = f"{MESSAGE_FIELDS},sender:profiles!messages_sender_id_fkey({PROFILE_FIELDS})"

UNIQUE_VIOLATION = "23505"


class SupabaseGateway(BackendGateway):
    """
    Gateway for a hosted Supabase project.

    The access token identifies the signed-in user; without one the gateway
    reports an unauthenticated session.
    """

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        access_token: str = None,
        bucket: str = None,
        timeout: float = None,
        client: httpx.AsyncClient = None
    ):
        """
        Initialize the gateway.

        Args:
            base_url: Project URL (defaults to config)
            api_key: Public API key (defaults to config)
            access_token: Signed-in user's access token (defaults to config)
            bucket: Avatar storage bucket (defaults to config)
            timeout: HTTP timeout in seconds (defaults to config)
            client: Pre-built HTTP client, mainly for tests
        """
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.supabase_anon_key
        self.access_token = access_token if access_token is not None else settings.supabase_access_token
        self.bucket = bucket or settings.avatar_bucket
        self.timeout = timeout or settings.request_timeout
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"apikey": self.api_key}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None
    ) -> httpx.Response:
        """
        Send one request and map failures onto the gateway error taxonomy.

        Raises:
            BackendUnavailableError: On transport errors, timeouts and 5xx
            ObjectNotFoundError: On 404 responses
            DuplicateThreadError: On unique-constraint violations
            BackendError: On any other unsuccessful response
        """
        headers = self._headers()
        if prefer:
            headers["Prefer"] = prefer

        started = time.monotonic()
        try:
            response = await self._get_client().request(
                method, path, params=params, json=json, headers=headers
            )
        except httpx.TransportError as e:
            log_backend_event(operation, success=False, duration=time.monotonic() - started, error=str(e))
            raise BackendUnavailableError(f"{operation} failed: {e}") from e

        duration = time.monotonic() - started
        if response.is_success:
            log_backend_event(operation, success=True, duration=duration, status_code=response.status_code)
            return response

        log_backend_event(operation, success=False, duration=duration, status_code=response.status_code)
        detail = _error_detail(response)
        if response.status_code >= 500:
            raise BackendUnavailableError(f"{operation} failed: {detail}")
        if response.status_code == 404:
            raise ObjectNotFoundError(f"{operation} failed: {detail}")
        if response.status_code == 409 or _error_code(response) == UNIQUE_VIOLATION:
            raise DuplicateThreadError(f"{operation} failed: {detail}")
        raise BackendError(f"{operation} failed: {detail}")

    async def current_user_id(self) -> Optional[str]:
        if not self.access_token:
            return None
        try:
            response = await self._request("current_user", "GET", "/auth/v1/user")
        except BackendError as e:
            if isinstance(e, BackendUnavailableError):
                raise
            logger.info(f"Access token rejected, treating session as signed out: {e}")
            return None
        return response.json().get("id")

    async def list_threads_for_user(self, user_id: str) -> List[ThreadRow]:
        response = await self._request(
            "list_threads",
            "GET",
            "/rest/v1/threads",
            params={
                "select": THREAD_SELECT,
                "or": f"(buyer_id.eq.{user_id},seller_id.eq.{user_id})",
                "messages.order": "created_at.desc",
                "messages.limit": "1",
            },
        )
        rows = []
        for item in response.json():
            latest = item.pop("messages", None) or []
            item["last_message"] = latest[0] if latest else None
            try:
                rows.append(ThreadRow.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed thread row", thread_id=item.get("id"), error=str(e))
        return rows

    async def find_thread(self, post_id: str, buyer_id: str, seller_id: str) -> Optional[str]:
        response = await self._request(
            "find_thread",
            "GET",
            "/rest/v1/threads",
            params={
                "select": "id",
                "post_id": f"eq.{post_id}",
                "buyer_id": f"eq.{buyer_id}",
                "seller_id": f"eq.{seller_id}",
                "limit": "1",
            },
        )
        rows = response.json()
        return str(rows[0]["id"]) if rows else None

    async def create_thread(self, post_id: str, buyer_id: str, seller_id: str) -> str:
        response = await self._request(
            "create_thread",
            "POST",
            "/rest/v1/threads",
            params={"select": "id"},
            json={"post_id": post_id, "buyer_id": buyer_id, "seller_id": seller_id},
            prefer="return=representation",
        )
        return str(response.json()[0]["id"])

    async def list_messages(self, thread_id: str) -> List[MessageRow]:
        response = await self._request(
            "list_messages",
            "GET",
            "/rest/v1/messages",
            params={
                "select": MESSAGE_SELECT,
                "thread_id": f"eq.{thread_id}",
                "order": "created_at.asc",
            },
        )
        rows = []
        for item in response.json():
            try:
                rows.append(MessageRow.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping malformed message row", message_id=item.get("id"), error=str(e))
        return rows

    async def insert_message(
        self,
        sender_id: str,
        receiver_id: str,
        post_id: str,
        thread_id: str,
        text: str
    ) -> MessageRow:
        response = await self._request(
            "insert_message",
            "POST",
            "/rest/v1/messages",
            params={"select": MESSAGE_SELECT},
            json={
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "post_id": post_id,
                "thread_id": thread_id,
                "message": text,
            },
            prefer="return=representation",
        )
        return MessageRow.model_validate(response.json()[0])

    async def delete_message(self, message_id: str, sender_id: str) -> None:
        response = await self._request(
            "delete_message",
            "DELETE",
            "/rest/v1/messages",
            params={"id": f"eq.{message_id}", "sender_id": f"eq.{sender_id}", "select": "id"},
            prefer="return=representation",
        )
        if response.json():
            return

        # Nothing deleted: tell a foreign message apart from a missing one
        lookup = await self._request(
            "find_message",
            "GET",
            "/rest/v1/messages",
            params={"select": "id", "id": f"eq.{message_id}"},
        )
        if lookup.json():
            raise NotPermittedError(f"Message {message_id} was not sent by {sender_id}")
        raise ObjectNotFoundError(f"Message {message_id} not found")

    async def delete_thread_cascade(self, thread_id: str) -> None:
        await self._request(
            "delete_thread_messages",
            "DELETE",
            "/rest/v1/messages",
            params={"thread_id": f"eq.{thread_id}"},
        )
        await self._request(
            "delete_thread",
            "DELETE",
            "/rest/v1/threads",
            params={"id": f"eq.{thread_id}"},
        )

    async def get_signed_url(self, object_path: str, ttl_seconds: int) -> Optional[str]:
        try:
            response = await self._request(
                "sign_object",
                "POST",
                f"/storage/v1/object/sign/{self.bucket}/{object_path.lstrip('/')}",
                json={"expiresIn": ttl_seconds},
            )
        except BackendError as e:
            if isinstance(e, BackendUnavailableError):
                raise
            # Storage reports missing objects as 400 with a "not_found" body
            raise ObjectNotFoundError(str(e)) from e

        signed = response.json().get("signedURL")
        if not signed:
            return None
        return f"{self.base_url}/storage/v1{signed}"

    async def get_avatar_path(self, user_id: str) -> Optional[str]:
        response = await self._request(
            "get_avatar_path",
            "GET",
            "/rest/v1/profiles",
            params={"select": "avatar_path", "id": f"eq.{user_id}", "limit": "1"},
        )
        rows = response.json()
        if not rows:
            return None
        return rows[0].get("avatar_path") or None


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("code")
    return None


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or body.get("msg")
        if message:
            return f"HTTP {response.status_code}: {message}"
    return f"HTTP {response.status_code}"
