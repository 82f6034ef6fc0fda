"""
Request and response models for the migration API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime


class HealthResponse(BaseModel):
    status: str
    version: str
    target_health: bool
    legacy_health: bool


class MigrateRequest(BaseModel):
    bundle: Dict[str, Any]
    checksum: str
    user_id: Optional[str] = None  # defaults to the caller

    @field_validator('checksum')
    @classmethod
    def checksum_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('checksum cannot be empty')
        return v


class MigrationResultResponse(BaseModel):
    success: bool
    migrated: int
    errors: List[str]
    migration_id: Optional[str] = None
    counts: Dict[str, int]


class MigrationStatusResponse(BaseModel):
    user_id: str
    migrated: bool
    status: Optional[str] = None
    migration_id: Optional[str] = None
    migrated_at: Optional[int] = None
    migrated_count: int = 0
    error_count: int = 0
    errors: List[str] = []
    counts: Dict[str, int] = {}


class RollbackRequest(BaseModel):
    user_id: str
    migration_id: str

    @field_validator('user_id', 'migration_id')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v


class RollbackResponse(BaseModel):
    user_id: str
    migration_id: str
    rolled_back: Dict[str, int]
    files_removed: int


class TransformResponse(BaseModel):
    kind: str
    record: Dict[str, Any]


class DualReadResponse(BaseModel):
    data: Any = None
    source: str
    timestamp: int
    migration: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    is_public: Optional[bool] = None

    @field_validator('username', 'website')
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip() if v is not None else v


class ProfileResponse(BaseModel):
    user_id: str
    email: str
    name: str
    profile_image: Optional[str] = None
    username: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    is_public: bool
    created: int
    updated: int


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: datetime = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
