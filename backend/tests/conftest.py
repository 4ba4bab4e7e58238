import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

import pytest

from modules.gateway.base import BackendGateway
from modules.gateway.errors import (
    BackendUnavailableError,
    DuplicateThreadError,
    NotPermittedError,
    ObjectNotFoundError,
)
from schemas.chat import ListingRow, MessageRow, ProfileRow, ThreadRow

BUYER_ID = "11111111-1111-1111-1111-111111111111"
SELLER_ID = "22222222-2222-2222-2222-222222222222"
OTHER_ID = "33333333-3333-3333-3333-333333333333"

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0) -> datetime:
    return BASE_TIME.replace(hour=hour, minute=minute)


class FakeGateway(BackendGateway):
    """In-memory backend that records every call it receives."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id
        self.profiles: Dict[str, ProfileRow] = {}
        self.posts: Dict[str, ListingRow] = {}
        self.threads: Dict[str, dict] = {}
        self.messages: List[dict] = []
        self.objects: Set[str] = set()
        self.cancelled_paths: Set[str] = set()

        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self.gates: Dict[str, List[asyncio.Event]] = {}
        self._ids = 0
        self._clock = BASE_TIME

    # Seeding helpers

    def add_profile(self, user_id: str, name: str, avatar_path: Optional[str] = None) -> ProfileRow:
        profile = ProfileRow(id=user_id, full_name=name, avatar_path=avatar_path)
        self.profiles[user_id] = profile
        return profile

    def add_post(self, post_id: str, owner_id: str, title: str) -> ListingRow:
        post = ListingRow(id=post_id, user_id=owner_id, title=title)
        self.posts[post_id] = post
        return post

    def add_thread(self, thread_id: str, post_id: str, buyer_id: str, seller_id: str, created_at: datetime) -> dict:
        thread = {
            "id": thread_id,
            "post_id": post_id,
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "created_at": created_at,
        }
        self.threads[thread_id] = thread
        return thread

    def add_message(self, thread_id: str, sender_id: str, receiver_id: str, text: str, created_at: datetime) -> dict:
        self._ids += 1
        message = {
            "id": f"m{self._ids}",
            "thread_id": thread_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "post_id": self.threads[thread_id]["post_id"],
            "message": text,
            "created_at": created_at,
        }
        self.messages.append(message)
        return message

    def gate(self, operation: str) -> asyncio.Event:
        """Hold the next ``operation`` call after it has taken its snapshot."""
        event = asyncio.Event()
        self.gates.setdefault(operation, []).append(event)
        return event

    def count(self, operation: str) -> int:
        return self.calls.count(operation)

    @property
    def data_calls(self) -> List[str]:
        return [call for call in self.calls if call != "current_user_id"]

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        await asyncio.sleep(0)
        if operation in self.failures:
            raise self.failures[operation]

    async def _wait_gate(self, operation: str) -> None:
        pending = self.gates.get(operation)
        if pending:
            await pending.pop(0).wait()

    def _message_row(self, message: dict) -> MessageRow:
        return MessageRow(**message, sender=self.profiles.get(message["sender_id"]))

    # BackendGateway

    async def current_user_id(self) -> Optional[str]:
        await self._enter("current_user_id")
        return self.user_id

    async def list_threads_for_user(self, user_id: str) -> List[ThreadRow]:
        await self._enter("list_threads_for_user")
        rows = []
        for thread in self.threads.values():
            if user_id not in (thread["buyer_id"], thread["seller_id"]):
                continue
            own = [m for m in self.messages if m["thread_id"] == thread["id"]]
            latest = max(own, key=lambda m: m["created_at"]) if own else None
            rows.append(ThreadRow(
                **thread,
                post=self.posts.get(thread["post_id"]),
                buyer=self.profiles.get(thread["buyer_id"]),
                seller=self.profiles.get(thread["seller_id"]),
                last_message=self._message_row(latest) if latest else None,
            ))
        await self._wait_gate("list_threads_for_user")
        return rows

    async def find_thread(self, post_id: str, buyer_id: str, seller_id: str) -> Optional[str]:
        await self._enter("find_thread")
        for thread in self.threads.values():
            if (thread["post_id"], thread["buyer_id"], thread["seller_id"]) == (post_id, buyer_id, seller_id):
                return thread["id"]
        return None

    async def create_thread(self, post_id: str, buyer_id: str, seller_id: str) -> str:
        await self._enter("create_thread")
        for thread in self.threads.values():
            if (thread["post_id"], thread["buyer_id"], thread["seller_id"]) == (post_id, buyer_id, seller_id):
                raise DuplicateThreadError("duplicate key value violates unique constraint")
        self._ids += 1
        thread_id = f"t{self._ids}"
        self.add_thread(thread_id, post_id, buyer_id, seller_id, self._tick())
        return thread_id

    async def list_messages(self, thread_id: str) -> List[MessageRow]:
        await self._enter("list_messages")
        rows = [
            self._message_row(m)
            for m in sorted(self.messages, key=lambda m: m["created_at"])
            if m["thread_id"] == thread_id
        ]
        await self._wait_gate("list_messages")
        return rows

    async def insert_message(self, sender_id, receiver_id, post_id, thread_id, text) -> MessageRow:
        await self._enter("insert_message")
        message = self.add_message(thread_id, sender_id, receiver_id, text, self._tick())
        message["post_id"] = post_id
        return self._message_row(message)

    async def delete_message(self, message_id: str, sender_id: str) -> None:
        await self._enter("delete_message")
        for message in self.messages:
            if message["id"] == message_id:
                if message["sender_id"] != sender_id:
                    raise NotPermittedError("not the sender")
                self.messages.remove(message)
                return
        raise ObjectNotFoundError("no such message")

    async def delete_thread_cascade(self, thread_id: str) -> None:
        await self._enter("delete_thread_cascade")
        self.threads.pop(thread_id, None)
        self.messages = [m for m in self.messages if m["thread_id"] != thread_id]

    async def get_signed_url(self, object_path: str, ttl_seconds: int) -> Optional[str]:
        await self._enter("get_signed_url")
        if object_path in self.cancelled_paths:
            return None
        if object_path not in self.objects:
            raise ObjectNotFoundError(f"{object_path} not found")
        return f"https://cdn.test/{object_path}?token=signed&ttl={ttl_seconds}"

    async def get_avatar_path(self, user_id: str) -> Optional[str]:
        await self._enter("get_avatar_path")
        profile = self.profiles.get(user_id)
        return profile.avatar_path if profile else None

    def _tick(self) -> datetime:
        self._clock = self._clock + timedelta(hours=12)
        return self._clock


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway(user_id=BUYER_ID)
    gw.add_profile(BUYER_ID, "Bea Buyer")
    gw.add_profile(SELLER_ID, "Sam Seller", avatar_path=f"users/{SELLER_ID}/profile-1.jpg")
    gw.add_profile(OTHER_ID, "Olive Other")
    gw.objects.add(f"users/{SELLER_ID}/profile-1.jpg")
    gw.add_post("p1", SELLER_ID, "Desk lamp")
    gw.add_post("p2", SELLER_ID, "Calculus textbook")
    gw.add_post("p3", OTHER_ID, "Mini fridge")
    return gw


@pytest.fixture
def unavailable() -> BackendUnavailableError:
    return BackendUnavailableError("connection refused")
