"""In-process fallback backend.

Keeps everything in plain dicts. Nothing survives a restart; a fresh
MemoryStorage always starts empty.
"""

import itertools
from dataclasses import replace
from datetime import datetime

from .base import MessageLog, ProfileStore, Storage, UserDirectory
from .merge import merge_profile, seed_profile
from .models import (
    Message,
    Profile,
    ProfilePatch,
    Role,
    User,
    clean_name,
    truncate_ms,
    utc_now,
)


class MemoryUserDirectory(UserDirectory):
    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._ids = itertools.count(1)

    async def resolve(self, name: str) -> User | None:
        name = clean_name(name)
        for user in self._users.values():
            if user.name == name:
                return user
        return None

    async def create_or_get(self, name: str) -> User:
        name = clean_name(name)
        existing = await self.resolve(name)
        if existing is not None:
            await self.touch(existing.id)
            return self._users[existing.id]

        now = utc_now()
        user = User(id=f"user_{next(self._ids)}", name=name, created_at=now, last_seen=now)
        self._users[user.id] = user
        return user

    async def touch(self, user_id: str) -> None:
        user = self._users.get(user_id)
        if user is None:
            return
        self._users[user_id] = replace(user, last_seen=max(user.last_seen, utc_now()))


class MemoryMessageLog(MessageLog):
    def __init__(self) -> None:
        self._messages: dict[str, dict[str, Message]] = {}
        self._ids = itertools.count(1)

    async def append(
        self,
        user_id: str,
        role: Role,
        content: str,
        timestamp: datetime | None = None,
    ) -> Message:
        message = Message(
            id=f"msg_{next(self._ids)}",
            user_id=user_id,
            role=Role(role),
            content=content,
            timestamp=truncate_ms(timestamp) if timestamp else utc_now(),
        )
        self._messages.setdefault(user_id, {})[message.id] = message
        return message

    async def list_all(self, user_id: str) -> list[Message]:
        # sorted() is stable and dicts keep insertion order
        messages = self._messages.get(user_id, {}).values()
        return sorted(messages, key=lambda m: m.timestamp)

    async def clear(self, user_id: str) -> int:
        removed = self._messages.pop(user_id, {})
        return len(removed)


class MemoryProfileStore(ProfileStore):
    def __init__(self) -> None:
        self._profiles: dict[str, Profile] = {}
        self._ids = itertools.count(1)

    async def get(self, user_id: str) -> Profile | None:
        return self._profiles.get(user_id)

    async def merge(self, user_id: str, patch: ProfilePatch) -> Profile:
        now = utc_now()
        current = self._profiles.get(user_id)
        if current is None:
            profile = seed_profile(f"profile_{next(self._ids)}", user_id, patch, now)
        else:
            profile = merge_profile(current, patch, now)
        self._profiles[user_id] = profile
        return profile


class MemoryStorage(Storage):
    """Non-durable backend with the same contract as the durable one."""

    backend = "memory"

    def __init__(self) -> None:
        super().__init__(
            users=MemoryUserDirectory(),
            messages=MemoryMessageLog(),
            profiles=MemoryProfileStore(),
        )
