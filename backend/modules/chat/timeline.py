"""
Message Timeline: the ordered messages of one open thread.
"""

from typing import List

from modules.gateway.base import BackendGateway
from modules.gateway.errors import BackendError
from schemas.chat import IncompleteRow, Message, MessageRow, Thread
from utils.logging import get_logger, log_chat_event

logger = get_logger("chat.timeline")


class MessageTimeline:
    """
    Messages for a single thread, oldest first.

    Sends append the server's echo of the stored message. Polled updates
    replace the list only when they bring more messages than are held.
    """

    def __init__(self, gateway: BackendGateway, thread: Thread):
        self.gateway = gateway
        self.thread = thread
        self.messages: List[Message] = []

    @property
    def thread_id(self) -> str:
        return self.thread.id

    async def fetch(self) -> List[Message]:
        """
        Fetch the thread's messages without touching local state.

        Messages whose sender profile cannot be resolved are left out.
        """
        rows = await self.gateway.list_messages(self.thread_id)
        return _resolve_rows(rows)

    def replace(self, messages: List[Message]) -> None:
        self.messages = list(messages)

    def merge(self, fetched: List[Message]) -> bool:
        """
        Apply a polled message list.

        Returns:
            bool: True if the fetched list had more messages and replaced the local one
        """
        if len(fetched) <= len(self.messages):
            return False
        self.messages = list(fetched)
        return True

    def append(self, message: Message) -> None:
        if any(existing.id == message.id for existing in self.messages):
            return
        self.messages.append(message)

    async def load_messages(self) -> List[Message]:
        """Fetch and hold the full message list."""
        self.replace(await self.fetch())
        return self.messages

    async def refresh(self) -> bool:
        """Fetch and merge; returns whether the local list changed."""
        return self.merge(await self.fetch())

    async def send(self, sender_id: str, receiver_id: str, post_id: str, text: str) -> Message:
        """
        Store a message and append the server's copy.

        Args:
            sender_id: Signed-in user sending the message
            receiver_id: Other participant of the thread
            post_id: Listing the thread is about
            text: Message body

        Returns:
            Message: The stored message with server id and timestamp

        Raises:
            ValueError: If the text is blank or the pair is not the thread's participants
            BackendError: If the message could not be stored
        """
        if not text.strip():
            raise ValueError("Message text is empty")

        participants = {self.thread.buyer_id, self.thread.seller_id}
        if sender_id == receiver_id or {sender_id, receiver_id} != participants:
            raise ValueError("Sender and receiver must be the thread's buyer and seller")

        row = await self.gateway.insert_message(sender_id, receiver_id, post_id, self.thread_id, text)
        resolved = row.resolve()
        if isinstance(resolved, IncompleteRow):
            raise BackendError(f"Message {row.id} was stored but its sender could not be resolved")

        self.append(resolved)
        log_chat_event("message_sent", thread_id=self.thread_id, user_id=sender_id, message_id=resolved.id)
        return resolved

    async def delete_message(self, message_id: str, sender_id: str) -> None:
        """Delete one of the sender's own messages and drop it locally."""
        await self.gateway.delete_message(message_id, sender_id)
        self.messages = [m for m in self.messages if m.id != message_id]
        log_chat_event("message_deleted", thread_id=self.thread_id, user_id=sender_id, message_id=message_id)


def _resolve_rows(rows: List[MessageRow]) -> List[Message]:
    messages = []
    for row in rows:
        resolved = row.resolve()
        if isinstance(resolved, IncompleteRow):
            logger.warning("Excluding message with unknown sender", message_id=resolved.row_id)
            continue
        messages.append(resolved)
    messages.sort(key=lambda m: (m.created_at, m.id))
    return messages
