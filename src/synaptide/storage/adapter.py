"""Conversion between stored documents and domain entities.

Stored documents have changed shape over time: camelCase keys from the
first revision, nested legacy profile fields (short_term_interests,
bio.personality_traits) and the current snake_case layout all coexist.
Readers prefer the current key, fall back to the legacy one and default
when neither is present. Writers always emit the current layout.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from bson.timestamp import Timestamp

from .models import (
    DEFAULT_STYLE,
    Message,
    Profile,
    Role,
    User,
    VersionEntry,
)

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Assistant half of a collapsed exchange sorts at least this far after the user half
ASSISTANT_OFFSET = timedelta(milliseconds=1)

# Epoch values above this are milliseconds, not seconds
_MILLIS_THRESHOLD = 1e11

_MISSING = object()


def to_datetime(value: Any) -> datetime | None:
    """Normalize a stored timestamp to an aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), BSON timestamps,
    objects exposing to_datetime(), epoch seconds or milliseconds and
    ISO-8601 strings. Returns None for anything else.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        result = value
    elif isinstance(value, Timestamp):
        result = value.as_datetime()
    elif hasattr(value, "to_datetime"):
        result = value.to_datetime()
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > _MILLIS_THRESHOLD else value
        try:
            result = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning("Epoch timestamp out of range %r", value)
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            result = datetime.fromisoformat(text)
        except ValueError:
            logger.warning("Unparseable timestamp %r", value)
            return None
    else:
        logger.warning("Unsupported timestamp type %s", type(value).__name__)
        return None

    if result.tzinfo is None:
        return result.replace(tzinfo=timezone.utc)
    return result.astimezone(timezone.utc)


def _lookup(doc: dict[str, Any], path: str) -> Any:
    """Read a dotted path from a nested document."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _first(doc: dict[str, Any], *paths: str, default: Any = None) -> Any:
    """Value of the first present path, newest key first."""
    for path in paths:
        value = _lookup(doc, path)
        if value is not _MISSING and value is not None:
            return value
    return default


def _parse_role(value: Any) -> Role:
    try:
        return Role(value)
    except ValueError:
        logger.warning("Unknown role %r, treating as system", value)
        return Role.SYSTEM


# Users


def user_to_document(user: User) -> dict[str, Any]:
    return {
        "_id": user.id,
        "name": user.name,
        "created_at": user.created_at,
        "last_seen": user.last_seen,
    }


def document_to_user(doc: dict[str, Any]) -> User:
    created_at = to_datetime(_first(doc, "created_at", "createdAt")) or EPOCH
    last_seen = to_datetime(_first(doc, "last_seen", "lastSeen")) or created_at
    return User(
        id=str(doc["_id"]),
        name=str(doc.get("name", "")),
        created_at=created_at,
        last_seen=last_seen,
    )


# Messages, one document per turn


def message_to_document(message: Message) -> dict[str, Any]:
    return {
        "_id": message.id,
        "user_id": message.user_id,
        "role": message.role.value,
        "content": message.content,
        "timestamp": message.timestamp,
    }


def document_to_message(doc: dict[str, Any], user_id: str | None = None) -> Message:
    return Message(
        id=str(doc["_id"]),
        user_id=str(_first(doc, "user_id", "userId", default=user_id or "")),
        role=_parse_role(doc.get("role")),
        content=str(doc.get("content", "")),
        timestamp=to_datetime(doc.get("timestamp")) or EPOCH,
    )


# Messages, collapsed exchange documents


def assistant_timestamp(doc: dict[str, Any]) -> datetime:
    """Timestamp of the assistant half, strictly after the user half."""
    base = to_datetime(doc.get("timestamp")) or EPOCH
    stored = to_datetime(doc.get("ai_timestamp"))
    floor = base + ASSISTANT_OFFSET
    if stored is None or stored < floor:
        return floor
    return stored


def exchange_to_messages(doc: dict[str, Any], user_id: str | None = None) -> list[Message]:
    """Expand one stored exchange into its logical turns.

    A document holds a user_input, an ai_response or both. Absent halves
    produce no turn. Plain {role, content} documents yield a single turn.

    Documents written by this package carry an ai_only flag and keep
    empty halves. Older documents have no flag and used "" as a
    placeholder, so there an empty half counts as absent.
    """
    doc_id = str(doc["_id"])
    owner = str(_first(doc, "user_id", "userId", default=user_id or ""))
    timestamp = to_datetime(doc.get("timestamp")) or EPOCH

    if "user_input" not in doc and "ai_response" not in doc:
        if doc.get("role") and doc.get("content") is not None:
            return [document_to_message(doc, owner)]
        return []

    keeps_empty = "ai_only" in doc

    def present(value: Any) -> bool:
        return value is not None if keeps_empty else bool(value)

    messages: list[Message] = []
    user_input = doc.get("user_input")
    if present(user_input) and not doc.get("ai_only"):
        messages.append(
            Message(
                id=doc_id,
                user_id=owner,
                role=Role.USER,
                content=str(user_input),
                timestamp=timestamp,
            )
        )
    ai_response = doc.get("ai_response")
    if present(ai_response):
        messages.append(
            Message(
                id=f"{doc_id}_ai",
                user_id=owner,
                role=Role.ASSISTANT,
                content=str(ai_response),
                timestamp=assistant_timestamp(doc),
            )
        )
    return messages


# Profiles


def profile_to_document(profile: Profile) -> dict[str, Any]:
    """Current-layout fields of a profile, without the _id."""
    return {
        "user_id": profile.user_id,
        "interests": list(profile.interests),
        "communication_style": profile.communication_style,
        "traits": list(profile.traits),
        "preferences": dict(profile.preferences),
        "version": profile.version,
        "last_updated": profile.last_updated,
        "version_history": [
            {"timestamp": entry.timestamp, "changes": entry.changes}
            for entry in profile.version_history
        ],
    }


def _to_history(raw: Any) -> list[VersionEntry]:
    if not isinstance(raw, list):
        return []
    history = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        history.append(
            VersionEntry(
                timestamp=to_datetime(item.get("timestamp")) or EPOCH,
                changes=dict(item.get("changes") or {}),
            )
        )
    return history


def document_to_profile(doc: dict[str, Any], user_id: str | None = None) -> Profile:
    interests = _first(doc, "interests", "short_term_interests", default=[])
    traits = _first(doc, "traits", "bio.personality_traits", default=[])
    if not isinstance(traits, list):
        traits = []
    style = _first(doc, "communication_style", "communicationStyle")
    if not style:
        style = traits[0] if traits else DEFAULT_STYLE
    preferences = doc.get("preferences") or {}

    return Profile(
        id=str(doc["_id"]),
        user_id=str(_first(doc, "user_id", "userId", default=user_id or "")),
        interests=[str(item) for item in interests] if isinstance(interests, list) else [],
        communication_style=str(style),
        traits=[str(item) for item in traits],
        preferences=(
            {str(k): str(v) for k, v in preferences.items()}
            if isinstance(preferences, dict)
            else {}
        ),
        version=int(doc.get("version") or 1),
        last_updated=to_datetime(_first(doc, "last_updated", "lastUpdated")),
        version_history=_to_history(_first(doc, "version_history", "versionHistory")),
    )
