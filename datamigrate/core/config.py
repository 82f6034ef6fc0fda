"""
Service configuration - environment driven, read once at import.
Accessor functions re-read the environment where tests need to flip flags.
"""

import os
from pathlib import Path
from typing import List

# Target (authoritative) store
DB_PATH = os.getenv("DB_PATH", "./data/target.db")

# Legacy store read by the dual-read fallback and the migration scripts
LEGACY_DB_PATH = os.getenv("LEGACY_DB_PATH", "./data/legacy.db")

DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Integrity tag strategy for bundles and project files
CHECKSUM_STRATEGY = os.getenv("CHECKSUM_STRATEGY", "rolling")  # rolling|sha256

# Dual-read behaviour
DUAL_READ_AUTO_MIGRATE = os.getenv("DUAL_READ_AUTO_MIGRATE", "true").lower() == "true"
DUAL_READ_PREFER_TARGET = os.getenv("DUAL_READ_PREFER_TARGET", "true").lower() == "true"
DUAL_READ_CACHE_TTL_SEC = int(os.getenv("DUAL_READ_CACHE_TTL_SEC", "0"))  # 0 disables the cache

# Comma separated subjects allowed to roll back migrations
ADMIN_USER_IDS = os.getenv("ADMIN_USER_IDS", "")

# Reject unknown legacy fields instead of ignoring them
SCHEMA_VALIDATION_STRICT = os.getenv("SCHEMA_VALIDATION_STRICT", "false").lower() == "true"

VERSION = "0.3.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def get_checksum_strategy() -> str:
    """Get the configured checksum strategy name."""
    return os.getenv("CHECKSUM_STRATEGY", CHECKSUM_STRATEGY)


def get_admin_user_ids() -> List[str]:
    """Subjects holding the rollback capability."""
    raw = os.getenv("ADMIN_USER_IDS", ADMIN_USER_IDS)
    return [part.strip() for part in raw.split(",") if part.strip()]


def is_auto_migrate_enabled() -> bool:
    return os.getenv("DUAL_READ_AUTO_MIGRATE", "true").lower() == "true"


def get_cache_ttl() -> int:
    """Dual-read cache TTL in seconds."""
    return int(os.getenv("DUAL_READ_CACHE_TTL_SEC", str(DUAL_READ_CACHE_TTL_SEC)))


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if get_checksum_strategy() not in ["rolling", "sha256"]:
        issues.append(f"Invalid CHECKSUM_STRATEGY: {get_checksum_strategy()}")

    if get_cache_ttl() < 0:
        issues.append("DUAL_READ_CACHE_TTL_SEC must be >= 0")

    if os.path.abspath(DB_PATH) == os.path.abspath(LEGACY_DB_PATH):
        issues.append("DB_PATH and LEGACY_DB_PATH must point at different databases")

    if not get_admin_user_ids():
        issues.append("ADMIN_USER_IDS is empty - migrations cannot be rolled back")

    return issues
