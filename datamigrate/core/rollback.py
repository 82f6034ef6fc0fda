"""
Rollback of a completed migration.

Only administrators may roll back. Every record carrying the migration's id
is deleted, project files before their projects, and the status is marked
rolled_back so the user can migrate again.
"""

from typing import Optional

from util.logging import logger, audit_event
from .exceptions import MigrationNotFoundError
from .identity import Identity, require_admin
from .projects import remove_project_files
from .schema import RollbackResult, now_ms
from .store import MIGRATIONS, PROFILES, PROJECTS, PROJECT_FILES, SETTINGS, RecordStore


def rollback_user_migration(store: RecordStore, identity: Optional[Identity], user_id: str,
                            migration_id: str) -> RollbackResult:
    """
    Remove everything a migration wrote for `user_id`.

    Raises:
        AuthorizationError: caller is not an administrator
        MigrationNotFoundError: no such migration for this user
    """
    actor = require_admin(identity)

    status = store.get(migration_id)
    if not status or status.get("_kind") != MIGRATIONS or status.get("user_id") != user_id:
        raise MigrationNotFoundError(f"Migration {migration_id} not found for user {user_id}")

    def attributed(record):
        return record.get("migration_id") == migration_id and record.get("user_id") == user_id

    result = RollbackResult(user_id=user_id, migration_id=migration_id)

    for project in store.filter(PROJECTS, attributed):
        result.files_removed += remove_project_files(store, project["_id"])
        if store.delete(project["_id"]):
            result.rolled_back["projects"] += 1

    # Files written by the migration whose project has already gone
    for project_file in store.filter(PROJECT_FILES, attributed):
        if store.delete(project_file["_id"]):
            result.files_removed += 1

    for kind, key in ((SETTINGS, "settings"), (PROFILES, "profile")):
        for record in store.filter(kind, attributed):
            if store.delete(record["_id"]):
                result.rolled_back[key] += 1

    store.patch(migration_id, {"status": "rolled_back", "rolled_back_at": now_ms()})

    logger.log_rollback(user_id, migration_id, result.rolled_back, actor.subject)
    audit_event(
        event_type="rollback.completed",
        identifiers={"user_id": user_id, "migration_id": migration_id, "actor": actor.subject},
        payload={"rolled_back": result.rolled_back, "files_removed": result.files_removed}
    )
    return result
