"""Conversation state and preference profile storage."""

from .base import MessageLog, ProfileStore, Storage, UserDirectory
from .factory import open_storage
from .memory import MemoryStorage
from .models import (
    DEFAULT_STYLE,
    Message,
    Profile,
    ProfilePatch,
    Role,
    User,
    VersionEntry,
)
from .mongo import MongoStorage

__all__ = [
    "DEFAULT_STYLE",
    "MemoryStorage",
    "Message",
    "MessageLog",
    "MongoStorage",
    "Profile",
    "ProfilePatch",
    "ProfileStore",
    "Role",
    "Storage",
    "User",
    "UserDirectory",
    "VersionEntry",
    "open_storage",
]
