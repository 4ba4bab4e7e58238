"""
Backend gateway contract consumed by the conversation core.

The core never talks to a concrete backend directly. Thread Registry,
Message Timeline and Avatar Resolver receive a BackendGateway instance,
which lets the hosted backend, the SQL backend and test fakes be swapped
freely.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from schemas.chat import MessageRow, ThreadRow


class BackendGateway(ABC):
    """Row CRUD, session lookup and object signing for the messaging core."""

    @abstractmethod
    async def current_user_id(self) -> Optional[str]:
        """Return the signed-in user's id, or None when unauthenticated."""

    @abstractmethod
    async def list_threads_for_user(self, user_id: str) -> List[ThreadRow]:
        """
        Fetch every thread where the user is buyer or seller.

        Rows carry optional listing, profile and latest-message joins;
        a join that could not be made is left as None.
        """

    @abstractmethod
    async def find_thread(self, post_id: str, buyer_id: str, seller_id: str) -> Optional[str]:
        """Return the id of the thread for this exact triple, if one exists."""

    @abstractmethod
    async def create_thread(self, post_id: str, buyer_id: str, seller_id: str) -> str:
        """
        Insert a new thread and return its id.

        Raises:
            DuplicateThreadError: If the triple already has a thread
        """

    @abstractmethod
    async def list_messages(self, thread_id: str) -> List[MessageRow]:
        """Fetch all messages of a thread, oldest first, with sender joins."""

    @abstractmethod
    async def insert_message(
        self,
        sender_id: str,
        receiver_id: str,
        post_id: str,
        thread_id: str,
        text: str
    ) -> MessageRow:
        """Insert a message and return the stored row, including server id and timestamp."""

    @abstractmethod
    async def delete_message(self, message_id: str, sender_id: str) -> None:
        """
        Delete one message sent by ``sender_id``.

        Raises:
            NotPermittedError: If the message belongs to another sender
            ObjectNotFoundError: If the message does not exist
        """

    @abstractmethod
    async def delete_thread_cascade(self, thread_id: str) -> None:
        """Delete a thread together with all of its messages."""

    @abstractmethod
    async def get_signed_url(self, object_path: str, ttl_seconds: int) -> Optional[str]:
        """
        Issue a time-limited URL for a stored object.

        Returns:
            The signed URL, or None if the signing request was cancelled

        Raises:
            ObjectNotFoundError: If the object does not exist
        """

    @abstractmethod
    async def get_avatar_path(self, user_id: str) -> Optional[str]:
        """Return the storage path of the user's avatar, or None if they have none."""
