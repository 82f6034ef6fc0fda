"""
Target-store record types and migration results.

Timestamps are epoch milliseconds. `migration_id` is set on every record a
migration writes so a rollback can find it again.
"""

import time
from dataclasses import dataclass, field, asdict, fields
from typing import Dict, List, Optional

BOARD_TYPES = ("uno", "nano", "mega")
THEMES = ("light", "dark")

PROJECT_NAME_MAX = 100
BIO_MAX = 500

WORKSPACE_FILENAME = "workspace.xml"
WORKSPACE_CONTENT_TYPE = "application/xml"


def now_ms() -> int:
    return int(time.time() * 1000)


class _StoredRecord:
    """Conversion helpers shared by record dataclasses."""

    def to_record(self) -> Dict:
        """Convert to a store document (the store owns the id)."""
        data = asdict(self)
        data.pop("id", None)
        return data

    @classmethod
    def from_record(cls, record: Dict):
        """Build from a store document, keeping only known fields."""
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in record.items() if k in known}
        if "_id" in record:
            data["id"] = record["_id"]
        return cls(**data)


@dataclass
class TargetProfile(_StoredRecord):
    user_id: str
    email: str
    name: str
    profile_image: Optional[str] = None
    username: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    is_public: bool = False
    last_login: int = 0
    created: int = 0
    updated: int = 0
    migration_id: Optional[str] = None
    id: Optional[str] = None


@dataclass
class TargetSettings(_StoredRecord):
    user_id: str
    board_type: str = "uno"
    theme: str = "light"
    language: str = "en"
    auto_save: bool = True
    tutorial_completed: Dict[str, bool] = field(default_factory=dict)
    updated: int = 0
    migration_id: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def default(cls, user_id: str) -> 'TargetSettings':
        """Implicit settings for a user with no stored record."""
        return cls(user_id=user_id, updated=now_ms())


@dataclass
class TargetProject(_StoredRecord):
    user_id: str
    name: str
    workspace: str
    board_type: str = "uno"
    description: Optional[str] = None
    is_public: bool = False
    can_share: bool = False
    tags: Optional[List[str]] = None
    likes: int = 0
    views: int = 0
    legacy_id: Optional[str] = None
    created: int = 0
    updated: int = 0
    migration_id: Optional[str] = None
    id: Optional[str] = None


@dataclass
class ProjectFile(_StoredRecord):
    """Integrity record for a project's workspace document."""
    project_id: str
    user_id: str
    filename: str
    content_type: str
    size: int
    checksum: str
    storage_id: str
    uploaded_at: int
    migration_id: Optional[str] = None
    id: Optional[str] = None


@dataclass
class MigrationStatus(_StoredRecord):
    """Persisted per-user migration record; consulted by the duplicate guard."""
    user_id: str
    migration_id: str
    status: str  # pending, completed, failed, rolled_back
    checksum: str
    started_at: int
    migrated_count: int = 0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)
    records: List[Dict[str, str]] = field(default_factory=list)  # [{kind, id}]
    completed_at: Optional[int] = None
    rolled_back_at: Optional[int] = None
    id: Optional[str] = None

    @property
    def migrated(self) -> bool:
        return self.status == "completed"

    @property
    def migrated_at(self) -> Optional[int]:
        return self.completed_at


@dataclass
class MigrationResult:
    """Aggregate outcome of one migration call; partial failure is normal."""
    migrated: int = 0
    errors: List[str] = field(default_factory=list)
    migration_id: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=lambda: {"settings": 0, "profile": 0, "projects": 0})

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["success"] = self.success
        return data


@dataclass
class RollbackResult:
    user_id: str
    migration_id: str
    rolled_back: Dict[str, int] = field(default_factory=lambda: {"settings": 0, "profile": 0, "projects": 0})
    files_removed: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)
