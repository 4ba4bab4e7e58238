"""
Chat schemas for threads, messages and the rows they are built from.

Raw rows (``*Row``) mirror what the backend returns, including joins that
may be missing. Resolved models (``Thread``, ``Message``) are what the
conversation core hands to the UI.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict
from typing_extensions import Annotated


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDateTime = Annotated[datetime, AfterValidator(_as_utc)]


class ProfileRow(BaseModel):
    """A user profile as stored by the backend."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: Optional[str] = None
    avatar_path: Optional[str] = None
    avatar_updated_at: Optional[UtcDateTime] = None

    @property
    def display_name(self) -> str:
        return (self.full_name or "").strip() or "User"


class ListingRow(BaseModel):
    """The subset of a listing (post) the conversation core needs."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str


class Listing(BaseModel):
    """A listing a buyer can start a conversation about."""

    id: str
    user_id: str
    title: str
    seller_name: Optional[str] = None


@dataclass(frozen=True)
class IncompleteRow:
    """A fetched row whose required joins were unavailable."""

    row_id: str
    missing: List[str]


class Message(BaseModel):
    """One chat utterance, ready for display."""

    id: str
    thread_id: str
    sender_id: str
    receiver_id: str
    post_id: str
    text: str
    sender_name: str
    created_at: UtcDateTime


class MessageRow(BaseModel):
    """A message row with its optional sender profile join."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    thread_id: str
    sender_id: str
    receiver_id: str
    post_id: str
    message: str
    created_at: UtcDateTime
    sender: Optional[ProfileRow] = None

    def resolve(self) -> Union[Message, IncompleteRow]:
        """Return the display message, or an IncompleteRow if the sender is unknown."""
        if self.sender is None:
            return IncompleteRow(row_id=self.id, missing=["sender"])
        return Message(
            id=self.id,
            thread_id=self.thread_id,
            sender_id=self.sender_id,
            receiver_id=self.receiver_id,
            post_id=self.post_id,
            text=self.message,
            sender_name=self.sender.display_name,
            created_at=self.created_at,
        )


class Thread(BaseModel):
    """A conversation about one listing, seen from one participant's side."""

    id: str
    post_id: str
    post_title: str
    buyer_id: str
    seller_id: str
    other_participant_id: str
    other_participant_name: str
    created_at: UtcDateTime

    last_message_preview: Optional[str] = None
    last_message_time: Optional[UtcDateTime] = None
    other_participant_avatar_path: Optional[str] = None
    other_participant_avatar_updated_at: Optional[UtcDateTime] = None

    @property
    def activity_time(self) -> datetime:
        """Time used for recency ordering."""
        return self.last_message_time or self.created_at

    @property
    def avatar_ref(self) -> str:
        """Storage path of the counterpart's avatar, or their user id."""
        return self.other_participant_avatar_path or self.other_participant_id

    @property
    def avatar_reload_token(self) -> int:
        """Reload token that changes whenever the counterpart updates their photo."""
        if self.other_participant_avatar_updated_at is None:
            return 0
        return int(self.other_participant_avatar_updated_at.timestamp())


class ThreadRow(BaseModel):
    """A thread row with its optional listing, profile and latest message joins."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    post_id: str
    buyer_id: str
    seller_id: str
    created_at: UtcDateTime
    post: Optional[ListingRow] = None
    buyer: Optional[ProfileRow] = None
    seller: Optional[ProfileRow] = None
    last_message: Optional[MessageRow] = None

    def missing_joins(self) -> List[str]:
        return [
            name for name in ("post", "buyer", "seller")
            if getattr(self, name) is None
        ]

    def resolve(self, viewer_id: str) -> Union[Thread, IncompleteRow]:
        """
        Build the thread as seen by ``viewer_id``.

        Args:
            viewer_id: User the thread list belongs to

        Returns:
            Thread, or IncompleteRow when the listing or a participant
            profile could not be joined
        """
        missing = self.missing_joins()
        if missing:
            return IncompleteRow(row_id=self.id, missing=missing)

        other = self.seller if viewer_id == self.buyer_id else self.buyer
        thread = Thread(
            id=self.id,
            post_id=self.post_id,
            post_title=self.post.title,
            buyer_id=self.buyer_id,
            seller_id=self.seller_id,
            other_participant_id=other.id,
            other_participant_name=other.display_name,
            created_at=self.created_at,
            other_participant_avatar_path=other.avatar_path or None,
            other_participant_avatar_updated_at=other.avatar_updated_at,
        )
        if self.last_message is not None:
            thread.last_message_preview = self.last_message.message
            thread.last_message_time = self.last_message.created_at
        return thread


def thread_sort_key(thread: Thread):
    """Sort key for most-recent-first ordering with a deterministic tie-break."""
    return (-thread.activity_time.timestamp(), thread.id)
