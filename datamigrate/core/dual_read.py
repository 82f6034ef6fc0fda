"""
Dual-read resolver for the migration window.

Reads prefer the target store and fall back to the legacy store. A legacy hit
can trigger a synchronous migration of all of that user's legacy data, so the
next read is served from the target store.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from util.logging import logger
from .checksum import checksum
from .config import DUAL_READ_PREFER_TARGET, get_cache_ttl, is_auto_migrate_enabled
from .exceptions import MigrationServiceError
from .identity import Identity
from .migration import MigrationOrchestrator
from .projects import get_user_projects
from .schema import now_ms
from .store import LegacyStore, RecordStore
from .users import find_profile, find_settings

READ_KINDS = ("profile", "settings", "projects")


class DataSource(str, Enum):
    TARGET = "target"
    LEGACY = "legacy"
    CACHE = "cache"
    NONE = "none"


@dataclass
class DataReadResult:
    """Outcome of one dual-read; `data` is None when neither store has it."""
    data: Any = None
    source: DataSource = DataSource.NONE
    timestamp: int = field(default_factory=now_ms)
    migration: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.data is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "source": self.source.value,
            "timestamp": self.timestamp,
            "migration": self.migration,
            "error": self.error,
        }


class DualReadResolver:
    """Resolves reads across the target and legacy stores."""

    def __init__(self, target: RecordStore, legacy: LegacyStore,
                 orchestrator: MigrationOrchestrator = None,
                 auto_migrate: bool = None, prefer_target: bool = None,
                 cache_ttl: int = None):
        self.target = target
        self.legacy = legacy
        self.orchestrator = orchestrator or MigrationOrchestrator(target)
        self.auto_migrate = is_auto_migrate_enabled() if auto_migrate is None else auto_migrate
        self.prefer_target = DUAL_READ_PREFER_TARGET if prefer_target is None else prefer_target
        self.cache_ttl = get_cache_ttl() if cache_ttl is None else cache_ttl

        self._cache: Dict[Tuple[str, str], Tuple[float, DataReadResult]] = {}
        self._hits = 0
        self._misses = 0

    def read(self, user_id: str, kind: str, identity: Identity = None) -> DataReadResult:
        """
        Read `kind` ("profile", "settings" or "projects") for `user_id`.

        `identity` is the caller on whose behalf a fallback migration runs; a
        caller who does not own `user_id` still gets the legacy data, and the
        refused migration is reported in `migration`.
        """
        if kind not in READ_KINDS:
            raise ValueError(f"Unknown read kind: {kind}")

        cached = self._cache_get(user_id, kind)
        if cached is not None:
            return cached

        if self.prefer_target:
            result = self._read_target_first(user_id, kind, identity)
        else:
            result = self._read_legacy_first(user_id, kind)

        logger.log_dual_read(kind, user_id, result.source.value,
                             {"migration": result.migration, "error": result.error})

        # A migrated read is stale as soon as the target store has the data
        if result.found and result.migration is None and result.error is None:
            self._cache_put(user_id, kind, result)
        return result

    def _read_target_first(self, user_id: str, kind: str, identity: Optional[Identity]) -> DataReadResult:
        target_error = None
        try:
            data = self._target_lookup(user_id, kind)
        except MigrationServiceError as e:
            logger.warning(f"Target lookup of {kind} for {user_id} failed, falling back: {e}")
            data, target_error = None, str(e)
        if data is not None:
            return DataReadResult(data=data, source=DataSource.TARGET)

        try:
            data = self._legacy_lookup(user_id, kind)
        except MigrationServiceError as e:
            logger.error(f"Legacy lookup of {kind} for {user_id} failed: {e}")
            return DataReadResult(source=DataSource.NONE, error=_join_errors(target_error, str(e)))

        if data is None:
            return DataReadResult(source=DataSource.NONE, error=target_error)

        # No auto-migration while the target store is failing
        migration = None
        if self.auto_migrate and target_error is None:
            migration = self._trigger_migration(user_id, identity)
        return DataReadResult(data=data, source=DataSource.LEGACY, migration=migration, error=target_error)

    def _read_legacy_first(self, user_id: str, kind: str) -> DataReadResult:
        legacy_error = None
        try:
            data = self._legacy_lookup(user_id, kind)
        except MigrationServiceError as e:
            data, legacy_error = None, str(e)
        if data is not None:
            return DataReadResult(data=data, source=DataSource.LEGACY)

        try:
            data = self._target_lookup(user_id, kind)
        except MigrationServiceError as e:
            logger.warning(f"Target lookup of {kind} for {user_id} failed: {e}")
            return DataReadResult(source=DataSource.NONE, error=_join_errors(legacy_error, str(e)))
        if data is not None:
            return DataReadResult(data=data, source=DataSource.TARGET, error=legacy_error)
        return DataReadResult(source=DataSource.NONE, error=legacy_error)

    def _target_lookup(self, user_id: str, kind: str) -> Any:
        if kind == "profile":
            profile = find_profile(self.target, user_id)
            return _as_dict(profile) if profile else None
        if kind == "settings":
            settings = find_settings(self.target, user_id)
            return _as_dict(settings) if settings else None
        projects = get_user_projects(self.target, user_id)
        return [_as_dict(project) for project in projects] or None

    def _legacy_lookup(self, user_id: str, kind: str) -> Any:
        if kind == "profile":
            return self.legacy.get_profile(user_id)
        if kind == "settings":
            return self.legacy.get_settings(user_id)
        return self.legacy.get_projects(user_id) or None

    def _trigger_migration(self, user_id: str, identity: Optional[Identity]) -> Dict[str, Any]:
        bundle = self.legacy.build_bundle(user_id)
        try:
            result = self.orchestrator.migrate_user_data(identity, user_id, bundle, checksum(bundle))
        except MigrationServiceError as e:
            logger.warning(f"Auto-migration for {user_id} did not run: {e}")
            return {"triggered": True, "error": str(e)}

        # Later reads must see the migrated records
        self.clear_cache(user_id)
        return {"triggered": True, **result.to_dict()}

    def _cache_get(self, user_id: str, kind: str) -> Optional[DataReadResult]:
        if self.cache_ttl <= 0:
            return None

        entry = self._cache.get((user_id, kind))
        if entry is None or entry[0] < time.monotonic():
            self._cache.pop((user_id, kind), None)
            self._misses += 1
            return None

        self._hits += 1
        cached = entry[1]
        return DataReadResult(data=cached.data, source=DataSource.CACHE)

    def _cache_put(self, user_id: str, kind: str, result: DataReadResult):
        if self.cache_ttl <= 0:
            return
        self._cache[(user_id, kind)] = (time.monotonic() + self.cache_ttl, result)

    def clear_cache(self, user_id: str = None):
        """Drop cached reads for one user, or all of them."""
        if user_id is None:
            self._cache.clear()
            return
        for key in [key for key in self._cache if key[0] == user_id]:
            del self._cache[key]

    def cache_stats(self) -> Dict[str, int]:
        return {
            "size": len(self._cache),
            "hits": self._hits,
            "misses": self._misses,
            "ttl": self.cache_ttl,
        }

    def health(self) -> Dict[str, bool]:
        target_ok = self.target.healthy()
        legacy_ok = self.legacy.healthy()
        return {"target": target_ok, "legacy": legacy_ok, "healthy": target_ok and legacy_ok}


def _as_dict(record) -> Dict[str, Any]:
    data = record.to_record()
    data["id"] = record.id
    return data


def _join_errors(*errors: Optional[str]) -> Optional[str]:
    return "; ".join(e for e in errors if e) or None
