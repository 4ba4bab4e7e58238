"""
Thread Registry: the signed-in user's conversations.

Loads every thread the user takes part in, resolves the counterpart and
latest-message preview for each, and orders them by recency. Rows with
missing joins are dropped from the result instead of failing the batch.
"""

from typing import List

from modules.gateway.base import BackendGateway
from modules.gateway.errors import DuplicateThreadError
from schemas.chat import IncompleteRow, Thread, thread_sort_key
from utils.logging import get_logger, log_chat_event

logger = get_logger("chat.threads")


class ThreadRegistry:
    """Reads and creates threads through the backend gateway."""

    def __init__(self, gateway: BackendGateway):
        self.gateway = gateway

    async def load_threads(self, user_id: str) -> List[Thread]:
        """
        Fetch the user's threads, most recent activity first.

        Args:
            user_id: Signed-in user; must not be None

        Returns:
            List of resolved threads (possibly empty)

        Raises:
            BackendError: If the thread list itself cannot be fetched
        """
        rows = await self.gateway.list_threads_for_user(user_id)

        threads = []
        for row in rows:
            resolved = row.resolve(user_id)
            if isinstance(resolved, IncompleteRow):
                logger.warning(
                    "Excluding thread with missing data",
                    thread_id=resolved.row_id,
                    missing=resolved.missing,
                )
                continue
            threads.append(resolved)

        threads.sort(key=thread_sort_key)
        logger.info(f"Loaded {len(threads)} of {len(rows)} threads for user {user_id}")
        return threads

    async def find_or_create_thread(self, post_id: str, buyer_id: str, seller_id: str) -> str:
        """
        Return the thread for this listing and buyer/seller pair, creating it if needed.

        A uniqueness violation on insert means a concurrent call created the
        thread first; the existing row is looked up and returned.

        Returns:
            str: Thread id
        """
        existing = await self.gateway.find_thread(post_id, buyer_id, seller_id)
        if existing:
            return existing

        try:
            thread_id = await self.gateway.create_thread(post_id, buyer_id, seller_id)
        except DuplicateThreadError:
            existing = await self.gateway.find_thread(post_id, buyer_id, seller_id)
            if existing is None:
                raise
            logger.info(f"Thread for post {post_id} was created concurrently, reusing {existing}")
            return existing

        log_chat_event("thread_created", thread_id=thread_id, user_id=buyer_id, post_id=post_id)
        return thread_id

    async def delete_thread(self, thread_id: str) -> None:
        """Delete a thread and all of its messages."""
        await self.gateway.delete_thread_cascade(thread_id)
        log_chat_event("thread_deleted", thread_id=thread_id)
