"""Profile merge rules shared by every backend.

Backends only decide where a profile lives; how incoming preference
signals are folded into it is decided here, so both backends agree.
"""

from dataclasses import replace
from datetime import datetime
from typing import Iterable

from .models import DEFAULT_STYLE, Profile, ProfilePatch, VersionEntry


def _dedupe(*groups: Iterable[str]) -> list[str]:
    """Concatenate groups keeping the first occurrence of each value."""
    seen: set[str] = set()
    result: list[str] = []
    for group in groups:
        for item in group:
            if item not in seen:
                seen.add(item)
                result.append(item)
    return result


def _observed_style(patch: ProfilePatch) -> str | None:
    style = patch.communication_style
    if style and style != DEFAULT_STYLE:
        return style
    return None


def seed_profile(
    profile_id: str, user_id: str, patch: ProfilePatch, now: datetime
) -> Profile:
    """Create the first version of a profile from a patch."""
    style = _observed_style(patch)
    return Profile(
        id=profile_id,
        user_id=user_id,
        interests=_dedupe(patch.interests),
        communication_style=style or DEFAULT_STYLE,
        traits=[style] if style else [],
        preferences=dict(patch.preferences),
        version=1,
        last_updated=now,
        version_history=[],
    )


def merge_profile(current: Profile, patch: ProfilePatch, now: datetime) -> Profile:
    """Fold a patch into an existing profile.

    Interests are unioned, preferences shallow-merged with incoming keys
    winning, and the style replaced only by a non-default value. A style
    already in the trait list is not pushed again. The version always
    advances, even when nothing visible changed.
    """
    interests = _dedupe(current.interests, patch.interests)
    preferences = {**current.preferences, **patch.preferences}

    style = current.communication_style
    traits = list(current.traits)
    observed = _observed_style(patch)
    if observed:
        style = observed
        if observed not in traits:
            traits.insert(0, observed)

    entry = VersionEntry(
        timestamp=now,
        changes={"interests": list(interests), "preferences": dict(preferences)},
    )
    return replace(
        current,
        interests=interests,
        communication_style=style,
        traits=traits,
        preferences=preferences,
        version=current.version + 1,
        last_updated=now,
        version_history=[*current.version_history, entry],
    )
