"""
Keyed record stores.

Every call opens its own connection and commits before returning, so each
insert/patch/delete is individually atomic and durable. Cross-record
transactions are not offered.
"""

import json
import sqlite3
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from .db import get_db, init_db, health_check
from .exceptions import StoreError
from util.logging import logger

Record = Dict[str, Any]
Predicate = Callable[[Record], bool]

# Target store kinds
PROFILES = "profiles"
SETTINGS = "settings"
PROJECTS = "projects"
PROJECT_FILES = "project_files"
MIGRATIONS = "migrations"

# Legacy store kinds
LEGACY_USERS = "users"
LEGACY_PROJECTS = "projects"


class RecordStore(ABC):
    """Abstract interface for keyed record storage."""

    @abstractmethod
    def insert(self, kind: str, record: Record, record_id: str = None) -> str:
        """Insert a record and return its id."""
        pass

    @abstractmethod
    def patch(self, record_id: str, partial: Record) -> None:
        """Merge `partial` into an existing record."""
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[Record]:
        """Get a record by id, or None."""
        pass

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        """Delete a record by id. Returns True if it existed."""
        pass

    @abstractmethod
    def filter(self, kind: str, predicate: Predicate = None) -> List[Record]:
        """Return records of `kind` matching `predicate`, oldest first."""
        pass

    def first(self, kind: str, predicate: Predicate = None) -> Optional[Record]:
        """Return the first matching record, or None."""
        matches = self.filter(kind, predicate)
        return matches[0] if matches else None

    def healthy(self) -> bool:
        return True


class SQLiteRecordStore(RecordStore):
    """SQLite-backed record store; documents are stored as JSON."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_db(db_path)

    def insert(self, kind: str, record: Record, record_id: str = None) -> str:
        record_id = record_id or uuid.uuid4().hex
        document = {k: v for k, v in record.items() if k not in ("_id", "_kind")}
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "INSERT INTO records (id, kind, data) VALUES (?, ?, ?)",
                    (record_id, kind, json.dumps(document))
                )
                conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Insert into '{kind}' failed: {e}")
            raise StoreError(f"insert into {kind} failed: {e}") from e
        return record_id

    def patch(self, record_id: str, partial: Record) -> None:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT data FROM records WHERE id = ?", (record_id,))
                row = cursor.fetchone()
                if not row:
                    raise StoreError(f"record {record_id} not found")

                document = json.loads(row[0])
                document.update({k: v for k, v in partial.items() if k not in ("_id", "_kind")})
                cursor.execute(
                    "UPDATE records SET data = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (json.dumps(document), record_id)
                )
                conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Patch of record '{record_id}' failed: {e}")
            raise StoreError(f"patch of {record_id} failed: {e}") from e

    def get(self, record_id: str) -> Optional[Record]:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT id, kind, data FROM records WHERE id = ?", (record_id,))
                row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"get of {record_id} failed: {e}") from e

        return self._to_record(row) if row else None

    def delete(self, record_id: str) -> bool:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM records WHERE id = ?", (record_id,))
                conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(f"delete of {record_id} failed: {e}") from e

    def filter(self, kind: str, predicate: Predicate = None) -> List[Record]:
        try:
            with get_db(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT id, kind, data FROM records WHERE kind = ? ORDER BY rowid",
                    (kind,)
                )
                rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"filter on {kind} failed: {e}") from e

        records = [self._to_record(row) for row in rows]
        if predicate is None:
            return records
        return [record for record in records if predicate(record)]

    def count(self, kind: str) -> int:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM records WHERE kind = ?", (kind,))
            return cursor.fetchone()[0]

    def healthy(self) -> bool:
        return health_check(self.db_path)

    @staticmethod
    def _to_record(row) -> Record:
        record_id, kind, data = row
        record = json.loads(data)
        record["_id"] = record_id
        record["_kind"] = kind
        return record


class LegacyStore:
    """
    Read access to the legacy document layout.

    `users/<uid>` documents carry identity fields plus nested `profile` and
    `settings` maps; `projects/<id>` documents carry their owner in `userId`.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def get_user(self, uid: str) -> Optional[Record]:
        record = self.store.get(f"user:{uid}")
        return _strip(record) if record else None

    def get_profile(self, uid: str) -> Optional[Record]:
        """Flattened legacy profile (identity fields + nested profile map)."""
        user = self.get_user(uid)
        if not user:
            return None
        profile = {k: user[k] for k in ("uid", "email", "displayName", "photoURL", "created") if k in user}
        profile.update(user.get("profile") or {})
        return profile

    def get_settings(self, uid: str) -> Optional[Record]:
        user = self.get_user(uid)
        if not user or user.get("settings") is None:
            return None
        return dict(user["settings"])

    def get_projects(self, uid: str) -> List[Record]:
        projects = self.store.filter(LEGACY_PROJECTS, lambda r: r.get("userId") == uid)
        return [_strip(project) for project in projects]

    def build_bundle(self, uid: str) -> Record:
        """Assemble every present legacy section for one user into a bundle."""
        bundle: Record = {}
        settings = self.get_settings(uid)
        if settings is not None:
            bundle["settings"] = settings
        profile = self.get_profile(uid)
        if profile is not None:
            bundle["profile"] = profile
        projects = self.get_projects(uid)
        if projects:
            bundle["projects"] = projects
        return bundle

    def put_user(self, user: Record) -> str:
        return self.store.insert(LEGACY_USERS, user, record_id=f"user:{user['uid']}")

    def put_project(self, project: Record) -> str:
        return self.store.insert(LEGACY_PROJECTS, project, record_id=f"project:{project['id']}")

    def healthy(self) -> bool:
        return self.store.healthy()


def _strip(record: Record) -> Record:
    return {k: v for k, v in record.items() if k not in ("_id", "_kind")}
