"""
Conversation module.

Key Components:
- ThreadRegistry: the signed-in user's threads, ordered by recency
- MessageTimeline: messages of the open thread
- ConversationController: UI-facing state, auth gating and polling
"""

from .controller import ConversationController
from .threads import ThreadRegistry
from .timeline import MessageTimeline

__all__ = ["ConversationController", "ThreadRegistry", "MessageTimeline"]
