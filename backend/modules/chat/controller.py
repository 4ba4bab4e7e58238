"""
Conversation Controller: the messaging core's single entry point for the UI.

This module composes the Thread Registry, Message Timeline and Avatar
Resolver, gates every operation on the signed-in user, exposes loading and
error state, and keeps the thread list and open timeline fresh with two
independent polling tasks.

All state lives on the event loop thread. Each fetch is tagged with a
ticket; a result is applied only if its ticket is still the newest one
issued for that resource, so a slow response can never overwrite a newer
one. User-initiated loads issue a new ticket. Poll ticks observe the
current ticket, skip while a user load is running, and invalidate older
tickets only when they actually apply a result.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

from config import settings
from modules.avatars.resolver import AvatarResolver
from modules.chat.polling import RepeatingTask, TickCounter
from modules.chat.threads import ThreadRegistry
from modules.chat.timeline import MessageTimeline
from modules.gateway.base import BackendGateway
from modules.gateway.errors import BackendError
from schemas.chat import Listing, Message, Thread
from utils.logging import get_logger, log_chat_event, log_poll_event

logger = get_logger("chat.controller")

SIGN_IN_TO_VIEW = "Please log in to view chats."
SIGN_IN_TO_SEND = "Please log in to send messages."
SIGN_IN_TO_START = "Please log in to start a conversation."
NO_ACTIVE_THREAD = "No active thread."

Listener = Callable[["ConversationController"], None]


class ConversationController:
    """
    Session state and operations for one signed-in user's conversations.

    The controller never raises backend failures to its caller. User-initiated
    operations record a message in ``error_message`` and keep whatever was
    already displayed; poll ticks fail silently and retry on the next tick.
    """

    def __init__(
        self,
        gateway: BackendGateway,
        user_id: Optional[str] = None,
        message_poll_interval: float = None,
        thread_poll_interval: float = None
    ):
        """
        Initialize the controller.

        Args:
            gateway: Backend gateway shared by all components
            user_id: Signed-in user, None for an unauthenticated session
            message_poll_interval: Seconds between timeline polls (defaults to config)
            thread_poll_interval: Seconds between thread list polls (defaults to config)
        """
        self.gateway = gateway
        self.registry = ThreadRegistry(gateway)
        self.avatars = AvatarResolver(gateway)

        self.current_user_id = user_id
        self.threads: List[Thread] = []
        self.current_thread: Optional[Thread] = None
        self._timeline: Optional[MessageTimeline] = None

        self.is_loading_threads = False
        self.is_loading_messages = False
        self.is_sending_message = False
        self.error_message: Optional[str] = None
        self.avatar_reload_token = 0

        self._thread_ticks = TickCounter()
        self._message_ticks = TickCounter()
        self._message_poller = RepeatingTask(
            "messages",
            message_poll_interval or settings.message_poll_interval,
            self._poll_messages,
        )
        self._thread_poller = RepeatingTask(
            "threads",
            thread_poll_interval or settings.thread_poll_interval,
            self._poll_threads,
        )
        self._listeners: List[Listener] = []

    # Session

    @property
    def is_authenticated(self) -> bool:
        return self.current_user_id is not None

    @property
    def timeline_messages(self) -> List[Message]:
        if self._timeline is None:
            return []
        return self._timeline.messages

    @property
    def is_polling_messages(self) -> bool:
        return self._message_poller.is_running

    @property
    def is_polling_threads(self) -> bool:
        return self._thread_poller.is_running

    async def restore_session(self) -> bool:
        """
        Ask the backend who is signed in and adopt that session.

        Returns:
            bool: True if a user is signed in
        """
        try:
            user_id = await self.gateway.current_user_id()
        except BackendError as e:
            self.error_message = f"Failed to restore session: {e}"
            logger.error(f"Error restoring session: {e}")
            self._notify()
            return False

        if user_id is None:
            self.sign_out()
        else:
            self.sign_in(user_id)
        return user_id is not None

    def sign_in(self, user_id: str) -> None:
        """Switch the session to ``user_id``, dropping another user's state."""
        if self.current_user_id == user_id:
            return
        if self.current_user_id is not None:
            self.sign_out()
        self.current_user_id = user_id
        log_chat_event("signed_in", user_id=user_id)
        self._notify()

    def sign_out(self) -> None:
        """Stop all polling and clear every piece of session state."""
        self.stop_polling()
        previous = self.current_user_id
        self.current_user_id = None
        self.threads = []
        self.current_thread = None
        self._timeline = None
        self.is_loading_threads = False
        self.is_loading_messages = False
        self.is_sending_message = False
        self.error_message = None
        if previous is not None:
            log_chat_event("signed_out", user_id=previous)
        self._notify()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback run after every applied state change.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def is_message_from_current_user(self, message: Message) -> bool:
        return self.current_user_id is not None and message.sender_id == self.current_user_id

    # Threads

    async def load_threads(self) -> bool:
        """
        Load the thread list for the signed-in user.

        Returns:
            bool: True if a fresh list was applied
        """
        if not self.is_authenticated:
            self.threads = []
            self._fail(SIGN_IN_TO_VIEW)
            return False
        if self.is_loading_threads:
            return False

        user_id = self.current_user_id
        ticket = self._thread_ticks.issue()
        self.is_loading_threads = True
        self.error_message = None
        self._notify()

        try:
            threads = await self.registry.load_threads(user_id)
        except BackendError as e:
            if self._thread_ticks.is_current(ticket):
                self.error_message = f"Failed to load threads: {e}"
            logger.error(f"Error loading threads: {e}")
            return False
        finally:
            self.is_loading_threads = False
            self._notify()

        if not self._thread_ticks.is_current(ticket) or user_id != self.current_user_id:
            logger.debug(f"Discarding stale thread list (ticket {ticket})")
            return False

        self.threads = threads
        # Bump token so avatars in the list re-resolve
        self.avatar_reload_token += 1
        logger.info(f"Loaded {len(threads)} threads for user {user_id}")
        self._notify()
        return True

    async def refresh_threads(self) -> bool:
        return await self.load_threads()

    async def show_thread_list(self) -> bool:
        """Load threads and keep them fresh while the list is visible."""
        loaded = await self.load_threads()
        if self.is_authenticated:
            self._thread_poller.start()
        return loaded

    def hide_thread_list(self) -> None:
        self._thread_poller.stop()

    async def start_conversation(self, listing: Listing) -> Optional[str]:
        """
        Find or create the thread about ``listing`` and open it.

        The signed-in user is the buyer and the listing's owner the seller.

        Returns:
            The thread id, or None on failure
        """
        if not self.is_authenticated:
            self._fail(SIGN_IN_TO_START)
            return None

        buyer_id = self.current_user_id
        if listing.user_id == buyer_id:
            self._fail("You cannot start a conversation about your own listing.")
            return None

        self.error_message = None
        try:
            thread_id = await self.registry.find_or_create_thread(listing.id, buyer_id, listing.user_id)
        except BackendError as e:
            self._fail(f"Failed to create conversation: {e}")
            logger.error(f"Error creating thread: {e}")
            return None

        await self.load_threads()
        if buyer_id != self.current_user_id:
            return None

        thread = next((t for t in self.threads if t.id == thread_id), None)
        if thread is None:
            # Fresh list has not caught up yet; open a minimal stand-in
            thread = Thread(
                id=thread_id,
                post_id=listing.id,
                post_title=listing.title,
                buyer_id=buyer_id,
                seller_id=listing.user_id,
                other_participant_id=listing.user_id,
                other_participant_name=listing.seller_name or "Seller",
                created_at=datetime.now(timezone.utc),
            )

        await self.open_thread(thread)
        return thread_id

    async def delete_thread(self, thread: Thread) -> bool:
        """Delete a thread and its messages, closing it if it is open."""
        if not self.is_authenticated:
            self._fail(SIGN_IN_TO_VIEW)
            return False

        self.error_message = None
        try:
            await self.registry.delete_thread(thread.id)
        except BackendError as e:
            self._fail(f"Failed to delete conversation: {e}")
            logger.error(f"Error deleting thread {thread.id}: {e}")
            return False

        self._thread_ticks.invalidate()
        self.threads = [t for t in self.threads if t.id != thread.id]
        if self.current_thread is not None and self.current_thread.id == thread.id:
            self.close_thread()
        self._notify()
        return True

    # Timeline

    async def open_thread(self, thread: Thread) -> bool:
        """
        Show ``thread``: load its messages and start polling them.

        Any previously open thread's polling is stopped first.

        Returns:
            bool: True if the messages were loaded
        """
        if not self.is_authenticated:
            self._fail(SIGN_IN_TO_VIEW)
            return False

        self._message_poller.stop()
        self._message_ticks.invalidate()
        timeline = MessageTimeline(self.gateway, thread)
        self.current_thread = thread
        self._timeline = timeline
        log_chat_event("thread_opened", thread_id=thread.id, user_id=self.current_user_id)

        loaded = await self._load_timeline(timeline)
        if self._timeline is timeline:
            self._message_poller.start()
        return loaded

    async def refresh_current_thread(self) -> bool:
        """Reload the open thread's messages on user request."""
        if self._timeline is None:
            return False
        return await self._load_timeline(self._timeline)

    def close_thread(self) -> None:
        """Stop message polling and clear the open thread."""
        self._message_poller.stop()
        self._message_ticks.invalidate()
        self.current_thread = None
        self._timeline = None
        self.is_loading_messages = False
        self._notify()

    async def send(
        self,
        text: str,
        receiver_id: Optional[str] = None,
        listing_id: Optional[str] = None
    ) -> Optional[Message]:
        """
        Send a message in the open thread.

        Args:
            text: Message body; blank text is ignored
            receiver_id: Recipient (defaults to the thread's other participant)
            listing_id: Listing id (defaults to the thread's listing)

        Returns:
            The stored message, or None if nothing was sent
        """
        if not self.is_authenticated:
            self._fail(SIGN_IN_TO_SEND)
            return None
        if not text.strip():
            return None
        if self.current_thread is None or self._timeline is None:
            self._fail(NO_ACTIVE_THREAD)
            return None

        thread = self.current_thread
        timeline = self._timeline
        self.is_sending_message = True
        self.error_message = None
        self._notify()

        try:
            message = await timeline.send(
                sender_id=self.current_user_id,
                receiver_id=receiver_id or thread.other_participant_id,
                post_id=listing_id or thread.post_id,
                text=text,
            )
        except ValueError as e:
            self.error_message = f"Cannot send message: {e}"
            return None
        except BackendError as e:
            self.error_message = f"Failed to send message: {e}"
            logger.error(f"Error sending message: {e}")
            return None
        finally:
            self.is_sending_message = False
            self._notify()

        return message

    async def delete_message(self, message: Message) -> bool:
        """Delete one of the signed-in user's own messages in the open thread."""
        if not self.is_authenticated:
            self._fail(SIGN_IN_TO_SEND)
            return False
        if self._timeline is None or message.thread_id != self._timeline.thread_id:
            self._fail(NO_ACTIVE_THREAD)
            return False
        if not self.is_message_from_current_user(message):
            self._fail("You can only delete your own messages.")
            return False

        timeline = self._timeline
        self.error_message = None
        try:
            await timeline.delete_message(message.id, self.current_user_id)
        except BackendError as e:
            self._fail(f"Failed to delete message: {e}")
            logger.error(f"Error deleting message {message.id}: {e}")
            return False

        self._message_ticks.invalidate()
        self._notify()
        return True

    # Polling

    def stop_polling(self) -> None:
        """Cancel both polling tasks. Idempotent and safe from any state."""
        self._message_poller.stop()
        self._thread_poller.stop()

    async def _load_timeline(self, timeline: MessageTimeline) -> bool:
        ticket = self._message_ticks.issue()
        self.is_loading_messages = True
        self.error_message = None
        self._notify()

        try:
            messages = await timeline.fetch()
        except BackendError as e:
            if self._message_ticks.is_current(ticket):
                self.error_message = f"Failed to load messages: {e}"
            logger.error(f"Error loading messages for thread {timeline.thread_id}: {e}")
            return False
        finally:
            if self._timeline is timeline:
                self.is_loading_messages = False
            self._notify()

        if not self._message_ticks.is_current(ticket) or self._timeline is not timeline:
            logger.debug(f"Discarding stale messages for thread {timeline.thread_id} (ticket {ticket})")
            return False

        timeline.replace(messages)
        logger.info(f"Loaded {len(messages)} messages for thread {timeline.thread_id}")
        self._notify()
        return True

    async def _poll_messages(self) -> None:
        timeline = self._timeline
        if timeline is None or not self.is_authenticated or self.is_loading_messages:
            return

        # Observe the current ticket; only an applied poll invalidates other loads
        ticket = self._message_ticks.current
        try:
            fetched = await timeline.fetch()
        except BackendError as e:
            logger.warning(f"Message poll failed for thread {timeline.thread_id}: {e}")
            log_poll_event("messages", ticket, applied=False, error=str(e))
            return

        if not self._message_ticks.is_current(ticket) or self._timeline is not timeline:
            log_poll_event("messages", ticket, applied=False, stale=True)
            return

        applied = timeline.merge(fetched)
        log_poll_event("messages", ticket, applied=applied, count=len(fetched))
        if applied:
            self._message_ticks.invalidate()
            self._notify()

    async def _poll_threads(self) -> None:
        user_id = self.current_user_id
        if user_id is None or self.is_loading_threads:
            return

        ticket = self._thread_ticks.current
        try:
            threads = await self.registry.load_threads(user_id)
        except BackendError as e:
            logger.warning(f"Thread poll failed: {e}")
            log_poll_event("threads", ticket, applied=False, error=str(e))
            return

        if not self._thread_ticks.is_current(ticket) or user_id != self.current_user_id:
            log_poll_event("threads", ticket, applied=False, stale=True)
            return

        applied = len(threads) != len(self.threads)
        if applied:
            self._thread_ticks.invalidate()
            self.threads = threads
            self._notify()
        log_poll_event("threads", ticket, applied=applied, count=len(threads))

    def _fail(self, message: str) -> None:
        self.error_message = message
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
