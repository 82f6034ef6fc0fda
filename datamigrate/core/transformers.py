"""
Legacy -> target transformers.

Each legacy resource kind has its own pydantic model; every optional field
gets its default from LEGACY_DEFAULTS rather than from ad-hoc lookups. The
transformers are pure: they never touch a store.
"""

import math
import re
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from util.logging import logger
from .config import SCHEMA_VALIDATION_STRICT
from .exceptions import ResourceValidationError
from .identity import Identity
from .schema import (
    BIO_MAX,
    BOARD_TYPES,
    PROJECT_NAME_MAX,
    THEMES,
    TargetProfile,
    TargetProject,
    TargetSettings,
    now_ms,
)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,20}$")

LEGACY_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "settings": {
        "board_type": "uno",
        "theme": "light",
        "language": "en",
        "auto_save": True,
        "tutorial_completed": {},
    },
    "profile": {
        "username": None,
        "bio": None,
        "location": None,
        "website": None,
        "is_public": True,
    },
    "project": {
        "name": "Untitled Project",
        "description": "",
        "board_type": "uno",
        "is_public": False,
        "can_share": False,
        "tags": [],
    },
}


class _LegacyModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    KIND: ClassVar[str] = ""


class LegacySettings(_LegacyModel):
    KIND: ClassVar[str] = "settings"

    board_type: Optional[str] = Field(None, alias="boardType")
    theme: Optional[str] = None
    language: Optional[str] = None
    auto_save: Optional[bool] = Field(None, alias="autoSave")
    tutorial_completed: Optional[Dict[str, bool]] = Field(None, alias="tutorialCompleted")


class LegacyProfile(_LegacyModel):
    KIND: ClassVar[str] = "profile"

    uid: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = Field(None, alias="displayName")
    photo_url: Optional[str] = Field(None, alias="photoURL")
    username: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    is_public: Optional[bool] = Field(None, alias="isPublic")
    created: Optional[Any] = None


class LegacyProject(_LegacyModel):
    KIND: ClassVar[str] = "project"

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    xml: Optional[str] = None
    workspace: Optional[str] = None
    workspace_xml: Optional[str] = Field(None, alias="workspaceXml")
    board_type: Optional[str] = Field(None, alias="boardType")
    is_public: Optional[bool] = Field(None, alias="isPublic")
    can_share: Optional[bool] = Field(None, alias="canShare")
    tags: Optional[List[str]] = None
    created: Optional[Any] = None
    updated: Optional[Any] = None

    @field_validator('id', mode='before')
    @classmethod
    def id_as_string(cls, v):
        return None if v is None else str(v)


class LegacyDataBundle(BaseModel):
    """Caller-supplied collection of legacy resources for one user."""
    model_config = ConfigDict(extra="ignore")

    settings: Optional[Dict[str, Any]] = None
    profile: Optional[Dict[str, Any]] = None
    projects: Optional[List[Dict[str, Any]]] = None

    def sections(self) -> List[str]:
        present = []
        if self.settings is not None:
            present.append("settings")
        if self.profile is not None:
            present.append("profile")
        if self.projects:
            present.append("projects")
        return present


def validate_workspace_xml(xml: Optional[str]) -> bool:
    """Minimal Blockly workspace check: non-empty with an <xml> root pair."""
    if not xml:
        return False
    return "<xml" in xml and "</xml>" in xml


def validate_username(username: str) -> bool:
    """Username: 3-20 characters, alphanumeric + underscore."""
    return bool(USERNAME_PATTERN.match(username))


def validate_website(website: str) -> bool:
    parsed = urlparse(website)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def _finite_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("boolean is not a timestamp")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"non-finite timestamp: {value}")
    return int(value)


def to_epoch_ms(value: Any, default: int) -> int:
    """Parse ISO-8601 strings, epoch numbers or {seconds} maps to epoch ms."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return default
        # Seconds-precision numbers are promoted to milliseconds
        return int(value * 1000) if value < 1e11 else int(value)
    if isinstance(value, dict) and "seconds" in value:
        try:
            seconds = _finite_int(value["seconds"])
            nanos = _finite_int(value.get("nanoseconds") or 0)
        except (TypeError, ValueError):
            return default
        return seconds * 1000 + nanos // 1_000_000
    if isinstance(value, str):
        try:
            return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000)
        except (ValueError, OverflowError, OSError):
            return default
    return default


def _parse(model_cls, legacy: Union[Dict[str, Any], BaseModel]):
    if isinstance(legacy, model_cls):
        return legacy
    if not isinstance(legacy, dict):
        raise ResourceValidationError(f"{model_cls.KIND} must be a mapping, got {type(legacy).__name__}")

    if SCHEMA_VALIDATION_STRICT:
        known = set()
        for name, info in model_cls.model_fields.items():
            known.add(name)
            if info.alias:
                known.add(info.alias)
        unknown = sorted(set(legacy) - known)
        if unknown:
            raise ResourceValidationError(f"Unknown {model_cls.KIND} fields: {', '.join(unknown)}")

    try:
        return model_cls.model_validate(legacy)
    except ValidationError as e:
        logger.log_validation_error(f"transform.{model_cls.KIND}", e.errors(), legacy)
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ResourceValidationError(f"Invalid {model_cls.KIND} field '{location}': {first.get('msg')}", field=location) from e


def _default(kind: str, field_name: str):
    value = LEGACY_DEFAULTS[kind][field_name]
    # Copy mutable defaults so records never share them
    if isinstance(value, (dict, list)):
        return type(value)(value)
    return value


def _pick(value, kind: str, field_name: str):
    return value if value is not None else _default(kind, field_name)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    return value if value else None


def transform_settings(legacy: Union[Dict[str, Any], LegacySettings], user_id: str, now: int = None) -> TargetSettings:
    """Map legacy settings to the target shape with per-field defaults."""
    settings = _parse(LegacySettings, legacy)
    now = now if now is not None else now_ms()

    board_type = _pick(settings.board_type, "settings", "board_type")
    if board_type not in BOARD_TYPES:
        raise ResourceValidationError(f"Invalid board type: {board_type}", field="boardType")

    theme = _pick(settings.theme, "settings", "theme")
    if theme not in THEMES:
        raise ResourceValidationError(f"Invalid theme: {theme}", field="theme")

    return TargetSettings(
        user_id=user_id,
        board_type=board_type,
        theme=theme,
        language=_pick(settings.language, "settings", "language"),
        auto_save=_pick(settings.auto_save, "settings", "auto_save"),
        tutorial_completed=_pick(settings.tutorial_completed, "settings", "tutorial_completed"),
        updated=now,
    )


def transform_profile(legacy: Union[Dict[str, Any], LegacyProfile], identity: Identity = None, now: int = None) -> TargetProfile:
    """
    Map a legacy profile to the target shape.

    Identity fields (owner id, email, name, avatar) come from the verified
    identity when one is supplied, otherwise from the legacy record.
    """
    profile = _parse(LegacyProfile, legacy)
    now = now if now is not None else now_ms()

    user_id = identity.subject if identity else profile.uid
    if not user_id:
        raise ResourceValidationError("Profile has no owner id", field="uid")

    username = _blank_to_none(profile.username)
    if username is not None and not validate_username(username):
        raise ResourceValidationError(f"Invalid username format: {username}", field="username")

    bio = _blank_to_none(profile.bio)
    if bio is not None and len(bio) > BIO_MAX:
        raise ResourceValidationError("Bio too long", field="bio")

    website = _blank_to_none(profile.website)
    if website is not None and not validate_website(website):
        raise ResourceValidationError("Invalid URL format", field="website")

    return TargetProfile(
        user_id=user_id,
        email=(identity.email if identity and identity.email else profile.email) or "",
        name=(identity.name if identity and identity.name else profile.display_name) or "",
        profile_image=(identity.picture_url if identity and identity.picture_url else profile.photo_url),
        username=username,
        bio=bio,
        location=_blank_to_none(profile.location),
        website=website,
        is_public=_pick(profile.is_public, "profile", "is_public"),
        last_login=now,
        created=to_epoch_ms(profile.created, now),
        updated=now,
    )


def transform_project(legacy: Union[Dict[str, Any], LegacyProject], user_id: str, now: int = None) -> TargetProject:
    """
    Map a legacy project to the target shape.

    The legacy id is preserved as `legacy_id` for audit and rollback.

    Raises:
        ResourceValidationError: malformed workspace XML, bad name or board type
    """
    project = _parse(LegacyProject, legacy)
    now = now if now is not None else now_ms()
    label = project.id or project.name or "<unnamed>"

    workspace = project.xml or project.workspace or project.workspace_xml or ""
    if not validate_workspace_xml(workspace):
        raise ResourceValidationError(
            f"Invalid XML content in project '{label}': malformed Blockly workspace",
            field="xml",
            resource_id=project.id,
        )

    name = project.name or _default("project", "name")
    if len(name) > PROJECT_NAME_MAX:
        raise ResourceValidationError(
            f"Project '{label}' name must be between 1 and {PROJECT_NAME_MAX} characters",
            field="name",
            resource_id=project.id,
        )

    board_type = _pick(project.board_type, "project", "board_type")
    if board_type not in BOARD_TYPES:
        raise ResourceValidationError(f"Invalid board type for project '{label}': {board_type}", field="boardType", resource_id=project.id)

    created = to_epoch_ms(project.created, now)
    return TargetProject(
        user_id=user_id,
        name=name,
        workspace=workspace,
        board_type=board_type,
        description=_pick(project.description, "project", "description"),
        is_public=_pick(project.is_public, "project", "is_public"),
        can_share=_pick(project.can_share, "project", "can_share"),
        tags=_pick(project.tags, "project", "tags"),
        legacy_id=project.id,
        created=created,
        updated=to_epoch_ms(project.updated, now),
    )


RESOURCE_KINDS = ("settings", "profile", "project")


def transform_resource(kind: str, payload: Dict[str, Any], user_id: str, identity: Identity = None):
    """Transform one legacy record of `kind` without writing anything."""
    if kind == "settings":
        return transform_settings(payload, user_id)
    if kind == "profile":
        if identity is None and isinstance(payload, dict) and not payload.get("uid"):
            payload = {**payload, "uid": user_id}
        return transform_profile(payload, identity)
    if kind == "project":
        return transform_project(payload, user_id)
    raise ResourceValidationError(f"Unknown resource kind: {kind}")
