"""Storage contracts.

Three narrow interfaces cover the storage layer:
- UserDirectory: display name -> stable identity
- MessageLog: per-user ordered chat turns
- ProfileStore: per-user preference profile with merge semantics

A Storage bundles one implementation of each behind a single handle,
built once at start-up and passed to whoever needs it.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import Message, Profile, ProfilePatch, Role, User


class UserDirectory(ABC):
    """Resolves display names to users, creating them on first contact."""

    @abstractmethod
    async def resolve(self, name: str) -> User | None:
        """Find the user with this (trimmed) name."""
        ...

    @abstractmethod
    async def create_or_get(self, name: str) -> User:
        """Return the user with this name, creating it if needed.

        An existing user has last_seen refreshed before being returned.
        """
        ...

    @abstractmethod
    async def touch(self, user_id: str) -> None:
        """Refresh last_seen for a user. Unknown ids are ignored."""
        ...


class MessageLog(ABC):
    """Append-only ordered sequence of turns per user."""

    @abstractmethod
    async def append(
        self,
        user_id: str,
        role: Role,
        content: str,
        timestamp: datetime | None = None,
    ) -> Message:
        """Store a turn and return it with its assigned id and timestamp."""
        ...

    @abstractmethod
    async def list_all(self, user_id: str) -> list[Message]:
        """Every turn of the user, ascending by timestamp."""
        ...

    @abstractmethod
    async def clear(self, user_id: str) -> int:
        """Delete every turn of the user. Returns the records removed."""
        ...


class ProfileStore(ABC):
    """Per-user preference profiles."""

    @abstractmethod
    async def get(self, user_id: str) -> Profile | None:
        ...

    @abstractmethod
    async def merge(self, user_id: str, patch: ProfilePatch) -> Profile:
        """Fold a patch into the user's profile, creating it if absent."""
        ...


class Storage:
    """One handle to the storage layer for the whole process."""

    backend = "abstract"

    def __init__(
        self,
        users: UserDirectory,
        messages: MessageLog,
        profiles: ProfileStore,
    ) -> None:
        self.users = users
        self.messages = messages
        self.profiles = profiles

    async def init(self) -> None:
        """Connect and prepare the backend. Raises StorageUnavailable."""

    async def close(self) -> None:
        """Release backend resources."""
