"""
Self-hosted backend gateway over SQLAlchemy tables.

Rows live in the ``profiles``, ``posts``, ``threads`` and ``messages``
tables. Avatar objects are served from a static base URL and protected by
HMAC-signed, expiring query parameters.
"""

import hashlib
import hmac
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional
from urllib.parse import quote

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from config import settings
from database import async_session_maker as default_session_maker
from models import MessageModel, ProfileModel, StoredObjectModel, ThreadModel
from modules.gateway.base import BackendGateway
from modules.gateway.errors import (
    BackendError,
    BackendUnavailableError,
    DuplicateThreadError,
    NotPermittedError,
    ObjectNotFoundError,
)
from schemas.chat import ListingRow, MessageRow, ProfileRow, ThreadRow
from utils.logging import get_logger, log_backend_event

logger = get_logger("gateway.sql")


def sign_object_path(path: str, expires: int, secret: str) -> str:
    """Return the hex HMAC-SHA256 token for ``path`` valid until ``expires``."""
    return hmac.new(
        secret.encode(),
        f"{path}:{expires}".encode(),
        hashlib.sha256
    ).hexdigest()


def verify_object_signature(
    path: str,
    expires: int,
    token: str,
    secret: Optional[str] = None,
    now: Optional[float] = None
) -> bool:
    """
    Check a signed object URL's token and expiry.

    Args:
        path: Object path inside the bucket
        expires: Expiry as a Unix timestamp
        token: Token from the URL
        secret: Signing secret (defaults to config value)
        now: Current time override

    Returns:
        bool: True if the token matches and has not expired
    """
    secret = secret or settings.storage_signing_secret
    current_time = time.time() if now is None else now
    if current_time > expires:
        return False
    expected = sign_object_path(path, expires, secret)
    return hmac.compare_digest(expected, token)


class SqlGateway(BackendGateway):
    """Gateway backed by the application's own database."""

    def __init__(
        self,
        session_maker: async_sessionmaker = None,
        user_id: Optional[str] = None,
        signing_secret: str = None,
        storage_base_url: str = None,
        bucket: str = None
    ):
        """
        Initialize the gateway.

        Args:
            session_maker: Session factory (defaults to the global one)
            user_id: Id of the signed-in user, None when signed out
            signing_secret: HMAC key for object URLs (defaults to config)
            storage_base_url: Public base URL for objects (defaults to config)
            bucket: Avatar bucket name (defaults to config)
        """
        self.session_maker = session_maker or default_session_maker
        self.user_id = user_id
        self.signing_secret = signing_secret or settings.storage_signing_secret
        self.storage_base_url = (storage_base_url or settings.storage_base_url).rstrip("/")
        self.bucket = bucket or settings.avatar_bucket

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session and translate driver errors into gateway errors."""
        started = time.monotonic()
        try:
            async with self.session_maker() as session:
                yield session
        except OperationalError as e:
            log_backend_event(operation, success=False, duration=time.monotonic() - started, error=str(e))
            raise BackendUnavailableError(f"{operation} failed: {e}") from e
        except IntegrityError as e:
            log_backend_event(operation, success=False, duration=time.monotonic() - started, error=str(e))
            if "UNIQUE" in str(e.orig).upper() or "uix_post_buyer_seller" in str(e.orig):
                raise DuplicateThreadError(f"{operation} failed: thread already exists") from e
            raise BackendError(f"{operation} failed: {e.orig}") from e
        log_backend_event(operation, success=True, duration=time.monotonic() - started)

    async def current_user_id(self) -> Optional[str]:
        return self.user_id

    async def list_threads_for_user(self, user_id: str) -> List[ThreadRow]:
        async with self._session("list_threads") as session:
            result = await session.execute(
                select(ThreadModel)
                .where(or_(ThreadModel.buyer_id == user_id, ThreadModel.seller_id == user_id))
                .options(
                    selectinload(ThreadModel.post),
                    selectinload(ThreadModel.buyer),
                    selectinload(ThreadModel.seller),
                )
            )
            threads = result.scalars().all()

            latest: Dict[str, MessageModel] = {}
            if threads:
                # Rank each thread's messages newest first and keep only rank 1
                ranked = (
                    select(
                        MessageModel.id,
                        func.row_number().over(
                            partition_by=MessageModel.thread_id,
                            order_by=(MessageModel.created_at.desc(), MessageModel.id.desc()),
                        ).label("rank"),
                    )
                    .where(MessageModel.thread_id.in_([t.id for t in threads]))
                    .subquery()
                )
                messages = await session.execute(
                    select(MessageModel)
                    .join(ranked, MessageModel.id == ranked.c.id)
                    .where(ranked.c.rank == 1)
                    .options(selectinload(MessageModel.sender))
                )
                for message in messages.scalars():
                    latest[message.thread_id] = message

            return [
                ThreadRow(
                    id=thread.id,
                    post_id=thread.post_id,
                    buyer_id=thread.buyer_id,
                    seller_id=thread.seller_id,
                    created_at=thread.created_at,
                    post=ListingRow.model_validate(thread.post) if thread.post else None,
                    buyer=ProfileRow.model_validate(thread.buyer) if thread.buyer else None,
                    seller=ProfileRow.model_validate(thread.seller) if thread.seller else None,
                    last_message=_message_row(latest[thread.id]) if thread.id in latest else None,
                )
                for thread in threads
            ]

    async def find_thread(self, post_id: str, buyer_id: str, seller_id: str) -> Optional[str]:
        async with self._session("find_thread") as session:
            result = await session.execute(
                select(ThreadModel.id).where(
                    ThreadModel.post_id == post_id,
                    ThreadModel.buyer_id == buyer_id,
                    ThreadModel.seller_id == seller_id,
                )
            )
            return result.scalar_one_or_none()

    async def create_thread(self, post_id: str, buyer_id: str, seller_id: str) -> str:
        async with self._session("create_thread") as session:
            thread = ThreadModel(post_id=post_id, buyer_id=buyer_id, seller_id=seller_id)
            session.add(thread)
            await session.commit()
            logger.info(f"Created thread {thread.id} for post {post_id}")
            return thread.id

    async def list_messages(self, thread_id: str) -> List[MessageRow]:
        async with self._session("list_messages") as session:
            result = await session.execute(
                select(MessageModel)
                .where(MessageModel.thread_id == thread_id)
                .options(selectinload(MessageModel.sender))
                .order_by(MessageModel.created_at.asc(), MessageModel.id.asc())
            )
            return [_message_row(message) for message in result.scalars()]

    async def insert_message(
        self,
        sender_id: str,
        receiver_id: str,
        post_id: str,
        thread_id: str,
        text: str
    ) -> MessageRow:
        async with self._session("insert_message") as session:
            message = MessageModel(
                sender_id=sender_id,
                receiver_id=receiver_id,
                post_id=post_id,
                thread_id=thread_id,
                message=text,
            )
            session.add(message)
            await session.commit()

            result = await session.execute(
                select(MessageModel)
                .where(MessageModel.id == message.id)
                .options(selectinload(MessageModel.sender))
            )
            return _message_row(result.scalar_one())

    async def delete_message(self, message_id: str, sender_id: str) -> None:
        async with self._session("delete_message") as session:
            message = await session.get(MessageModel, message_id)
            if message is None:
                raise ObjectNotFoundError(f"Message {message_id} not found")
            if message.sender_id != sender_id:
                raise NotPermittedError(f"Message {message_id} was not sent by {sender_id}")
            await session.delete(message)
            await session.commit()

    async def delete_thread_cascade(self, thread_id: str) -> None:
        async with self._session("delete_thread") as session:
            await session.execute(delete(MessageModel).where(MessageModel.thread_id == thread_id))
            await session.execute(delete(ThreadModel).where(ThreadModel.id == thread_id))
            await session.commit()
            logger.info(f"Deleted thread {thread_id} and its messages")

    async def get_signed_url(self, object_path: str, ttl_seconds: int) -> Optional[str]:
        path = object_path.lstrip("/")
        async with self._session("sign_object") as session:
            stored = await session.get(StoredObjectModel, path)
        if stored is None:
            raise ObjectNotFoundError(f"Object {path} not found")

        expires = int(time.time()) + ttl_seconds
        token = sign_object_path(path, expires, self.signing_secret)
        return f"{self.storage_base_url}/{self.bucket}/{quote(path)}?expires={expires}&token={token}"

    async def get_avatar_path(self, user_id: str) -> Optional[str]:
        async with self._session("get_avatar_path") as session:
            result = await session.execute(
                select(ProfileModel.avatar_path).where(ProfileModel.id == user_id)
            )
            return result.scalar_one_or_none() or None


def _message_row(message: MessageModel) -> MessageRow:
    return MessageRow(
        id=message.id,
        thread_id=message.thread_id,
        sender_id=message.sender_id,
        receiver_id=message.receiver_id,
        post_id=message.post_id,
        message=message.message,
        created_at=message.created_at,
        sender=ProfileRow.model_validate(message.sender) if message.sender else None,
    )


