"""
Owner-scoped settings and profile operations.
"""

from typing import Dict, Optional

from util.logging import logger
from .exceptions import ResourceValidationError
from .identity import Identity, require_identity
from .schema import BIO_MAX, BOARD_TYPES, THEMES, TargetProfile, TargetSettings, now_ms
from .store import PROFILES, SETTINGS, RecordStore
from .transformers import validate_username, validate_website


def find_settings(store: RecordStore, user_id: str) -> Optional[TargetSettings]:
    record = store.first(SETTINGS, lambda r: r.get("user_id") == user_id)
    return TargetSettings.from_record(record) if record else None


def find_profile(store: RecordStore, user_id: str) -> Optional[TargetProfile]:
    record = store.first(PROFILES, lambda r: r.get("user_id") == user_id)
    return TargetProfile.from_record(record) if record else None


def ensure_username_available(store: RecordStore, username: str, user_id: str) -> None:
    """
    Raise if another user's profile already holds `username`.

    The owner's own record is excluded, so re-setting a username is allowed.
    """
    taken = store.first(
        PROFILES,
        lambda r: r.get("username") == username and r.get("user_id") != user_id
    )
    if taken:
        raise ResourceValidationError("Username already taken", field="username")


def get_user_settings(store: RecordStore, identity: Optional[Identity]) -> TargetSettings:
    """Stored settings, or the implicit defaults (never persisted here)."""
    identity = require_identity(identity)
    return find_settings(store, identity.subject) or TargetSettings.default(identity.subject)


def update_user_settings(store: RecordStore, identity: Optional[Identity], **changes) -> TargetSettings:
    identity = require_identity(identity)

    allowed = {"board_type", "theme", "language", "auto_save", "tutorial_completed"}
    unknown = set(changes) - allowed
    if unknown:
        raise ResourceValidationError(f"Unknown settings fields: {', '.join(sorted(unknown))}")

    updates = {k: v for k, v in changes.items() if v is not None}
    if "board_type" in updates and updates["board_type"] not in BOARD_TYPES:
        raise ResourceValidationError("Invalid board type", field="boardType")
    if "theme" in updates and updates["theme"] not in THEMES:
        raise ResourceValidationError("Invalid theme", field="theme")

    updates["updated"] = now_ms()
    existing = find_settings(store, identity.subject)
    if existing:
        store.patch(existing.id, updates)
    else:
        settings = TargetSettings.default(identity.subject)
        for key, value in updates.items():
            setattr(settings, key, value)
        store.insert(SETTINGS, settings.to_record())

    return find_settings(store, identity.subject)


def update_tutorial_progress(store: RecordStore, identity: Optional[Identity], step: str, completed: bool) -> Dict:
    identity = require_identity(identity)
    existing = find_settings(store, identity.subject)

    if existing:
        tutorial_completed = dict(existing.tutorial_completed or {})
        tutorial_completed[step] = completed
        store.patch(existing.id, {"tutorial_completed": tutorial_completed, "updated": now_ms()})
    else:
        settings = TargetSettings.default(identity.subject)
        settings.tutorial_completed = {step: completed}
        store.insert(SETTINGS, settings.to_record())

    return {"user_id": identity.subject, "tutorial_completed": {step: completed}}


def get_user_profile(store: RecordStore, identity: Optional[Identity], user_id: str = None) -> Optional[TargetProfile]:
    """Public profiles are visible to all, private ones only to their owner."""
    subject = identity.subject if identity else None
    target_user_id = user_id or subject
    if not target_user_id:
        return None

    profile = find_profile(store, target_user_id)
    if profile and not profile.is_public and profile.user_id != subject:
        return None
    return profile


def update_user_profile(store: RecordStore, identity: Optional[Identity], username: str = None,
                        bio: str = None, location: str = None, website: str = None,
                        is_public: bool = None) -> TargetProfile:
    """
    Update the caller's profile, creating it from the identity when missing.

    Raises:
        AuthorizationError: no identity
        ResourceValidationError: bad username format, username taken, bio too
            long, malformed website
    """
    identity = require_identity(identity)

    if username:
        if not validate_username(username):
            raise ResourceValidationError("Invalid username format", field="username")
        ensure_username_available(store, username, identity.subject)

    if bio and len(bio) > BIO_MAX:
        raise ResourceValidationError("Bio too long", field="bio")

    if website and not validate_website(website):
        raise ResourceValidationError("Invalid URL format", field="website")

    changes = {
        "username": username,
        "bio": bio,
        "location": location,
        "website": website,
        "is_public": is_public,
    }
    updates = {k: v for k, v in changes.items() if v is not None}
    now = now_ms()

    existing = find_profile(store, identity.subject)
    if existing:
        updates["updated"] = now
        store.patch(existing.id, updates)
    else:
        profile = TargetProfile(
            user_id=identity.subject,
            email=identity.email or "",
            name=identity.name or "",
            profile_image=identity.picture_url,
            is_public=False,
            last_login=now,
            created=now,
            updated=now,
        )
        for key, value in updates.items():
            setattr(profile, key, value)
        store.insert(PROFILES, profile.to_record())

    logger.log_operation("profile.update", "success", {"user_id": identity.subject, "fields": sorted(updates)})
    return find_profile(store, identity.subject)
