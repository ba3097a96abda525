"""Domain entities for users, chat turns and preference profiles."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import ValidationError

DEFAULT_STYLE = "neutral"


def truncate_ms(value: datetime) -> datetime:
    """Drop sub-millisecond precision, which the document store cannot keep."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def utc_now() -> datetime:
    """Current UTC time at millisecond resolution."""
    return truncate_ms(datetime.now(timezone.utc))


def clean_name(name: str | None) -> str:
    """Trim a display name, rejecting blank ones."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("User name is required")
    return cleaned


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class Role(str, Enum):
    """Who produced a turn."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class User:
    """A chat participant identified by display name.

    Attributes:
        id: Opaque identity, immutable once created.
        name: Trimmed display name.
        created_at: When the identity was created.
        last_seen: Last session resumption, never moves backwards.
    """

    id: str
    name: str
    created_at: datetime
    last_seen: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": _iso(self.created_at),
            "lastSeen": _iso(self.last_seen),
        }


@dataclass(frozen=True)
class Message:
    """One turn of a conversation."""

    id: str
    user_id: str
    role: Role
    content: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": _iso(self.timestamp),
        }

    def for_llm(self) -> dict[str, str]:
        """Return only role and content (chat completions format)."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class VersionEntry:
    """Audit snapshot appended on every profile merge."""

    timestamp: datetime
    changes: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": _iso(self.timestamp), "changes": self.changes}


@dataclass(frozen=True)
class Profile:
    """Cumulative preference record for one user.

    Attributes:
        id: Profile identity, None for the unsaved default.
        user_id: Owning user.
        interests: Deduplicated interests in order of first appearance.
        communication_style: Current style classifier.
        traits: Observed styles, most recent first, each at most once.
        preferences: Free-form string settings.
        version: Incremented on every merge, 0 for the unsaved default.
        last_updated: Time of the last merge.
        version_history: Append-only audit trail.
    """

    id: str | None
    user_id: str
    interests: list[str] = field(default_factory=list)
    communication_style: str = DEFAULT_STYLE
    traits: list[str] = field(default_factory=list)
    preferences: dict[str, str] = field(default_factory=dict)
    version: int = 0
    last_updated: datetime | None = None
    version_history: list[VersionEntry] = field(default_factory=list)

    @classmethod
    def empty(cls, user_id: str) -> "Profile":
        """Default profile for a user that has none yet."""
        return cls(id=None, user_id=user_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "interests": list(self.interests),
            "communicationStyle": self.communication_style,
            "traits": list(self.traits),
            "preferences": dict(self.preferences),
            "version": self.version,
            "lastUpdated": _iso(self.last_updated),
            "versionHistory": [entry.to_dict() for entry in self.version_history],
        }


@dataclass
class ProfilePatch:
    """Incremental preference signals to fold into a profile."""

    interests: list[str] = field(default_factory=list)
    communication_style: str | None = None
    preferences: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """True when merging would change nothing but the version."""
        style = self.communication_style
        return (
            not self.interests
            and not self.preferences
            and (not style or style == DEFAULT_STYLE)
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProfilePatch":
        """Build a patch from analyzer output or a request body.

        Accepts camelCase or snake_case keys and drops malformed values.
        """
        interests = data.get("interests") or []
        if not isinstance(interests, list):
            interests = []

        style = data.get("communicationStyle", data.get("communication_style"))
        if style is not None and not isinstance(style, str):
            style = str(style)

        preferences = data.get("preferences") or {}
        if not isinstance(preferences, dict):
            preferences = {}

        return cls(
            interests=[str(item) for item in interests if item is not None],
            communication_style=style or None,
            preferences={str(k): str(v) for k, v in preferences.items()},
        )
