"""Avatar URL resolution with cache-busting and superseding per view."""

from .resolver import AvatarResolver, AvatarSlot

__all__ = ["AvatarResolver", "AvatarSlot"]
