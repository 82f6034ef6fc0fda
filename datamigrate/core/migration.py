"""
Migration orchestrator: moves one user's legacy bundle into the target store.

Gates run in order (authorization, checksum, duplicate guard) and nothing is
written until all three pass. After that each sub-resource is transformed and
written on its own; a failing resource is recorded in the result and the rest
carry on.
"""

import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from util.logging import logger, audit_event, sanitize_payload
from .checksum import checksum as compute_checksum
from .checksum import verify_checksum
from .exceptions import (
    DataIntegrityError,
    DuplicateMigrationError,
    MigrationServiceError,
    ResourceValidationError,
    StoreError,
)
from .identity import Identity, require_identity
from .projects import insert_project
from .schema import MigrationResult, MigrationStatus, now_ms
from .store import MIGRATIONS, PROFILES, PROJECTS, SETTINGS, RecordStore
from .transformers import LegacyDataBundle, transform_profile, transform_project, transform_settings
from .users import ensure_username_available, find_profile, find_settings

# Statuses that block a new migration for the same user
BLOCKING_STATUSES = ("completed", "pending")


def new_migration_id() -> str:
    return f"mig_{uuid.uuid4().hex[:16]}"


def _bundle_payload(bundle: Union[Dict[str, Any], LegacyDataBundle]) -> Dict[str, Any]:
    if isinstance(bundle, LegacyDataBundle):
        return bundle.model_dump(exclude_none=True)
    return bundle


class MigrationOrchestrator:
    """Runs the gated, per-resource migration of one user's data."""

    def __init__(self, store: RecordStore):
        self.store = store

    def check_migration_status(self, user_id: str) -> Optional[MigrationStatus]:
        """Latest migration status recorded for `user_id`, or None."""
        records = self.store.filter(MIGRATIONS, lambda r: r.get("user_id") == user_id)
        if not records:
            return None
        return MigrationStatus.from_record(records[-1])

    def get_migration(self, migration_id: str) -> Optional[MigrationStatus]:
        record = self.store.get(migration_id)
        if not record or record.get("_kind") != MIGRATIONS:
            return None
        return MigrationStatus.from_record(record)

    def migrate_user_data(self, identity: Optional[Identity], user_id: str,
                          bundle: Union[Dict[str, Any], LegacyDataBundle],
                          checksum: str) -> MigrationResult:
        """
        Migrate a legacy bundle for `user_id`.

        Args:
            identity: Verified caller; must own `user_id`
            user_id: Owner of the data being migrated
            bundle: Legacy sections (settings, profile, projects)
            checksum: Checksum the caller computed over `bundle`

        Returns:
            MigrationResult with the success count and one message per failed
            sub-resource

        Raises:
            AuthorizationError: caller missing or not the owner
            DataIntegrityError: checksum mismatch
            DuplicateMigrationError: a completed or pending migration exists
            ResourceValidationError: bundle is not a valid bundle shape
        """
        require_identity(identity, owner_id=user_id)

        payload = _bundle_payload(bundle)
        if not verify_checksum(payload, checksum):
            logger.log_migration_rejected(user_id, "checksum mismatch")
            audit_event(
                event_type="migration.integrity_failed",
                identifiers={"user_id": user_id},
                payload={"expected": checksum, "actual": compute_checksum(payload)}
            )
            logger.debug(f"Rejected bundle: {sanitize_payload(payload)}")
            raise DataIntegrityError("Data integrity check failed: checksum mismatch")

        existing = self.check_migration_status(user_id)
        if existing and existing.status in BLOCKING_STATUSES:
            logger.log_migration_rejected(user_id, f"existing migration {existing.migration_id} is {existing.status}")
            audit_event(
                event_type="migration.duplicate_rejected",
                identifiers={"user_id": user_id, "migration_id": existing.migration_id}
            )
            raise DuplicateMigrationError("User data already migrated")

        try:
            legacy = LegacyDataBundle.model_validate(payload)
        except ValidationError as e:
            logger.log_validation_error("migration.bundle", e.errors())
            raise ResourceValidationError("Invalid migration bundle") from e
        sections = legacy.sections()
        result = MigrationResult()
        if not sections:
            logger.info(f"Empty bundle for user {user_id}; nothing to migrate")
            return result

        migration_id = new_migration_id()
        result.migration_id = migration_id
        status = MigrationStatus(
            user_id=user_id,
            migration_id=migration_id,
            status="pending",
            checksum=checksum,
            started_at=now_ms(),
        )
        self.store.insert(MIGRATIONS, status.to_record(), record_id=migration_id)
        logger.log_migration_started(user_id, migration_id, sections)

        written: List[Dict[str, str]] = []
        final_status = "failed"
        try:
            if legacy.settings is not None:
                self._run("settings", user_id, result, written,
                          lambda: self._migrate_settings(legacy.settings, user_id, migration_id))

            if legacy.profile is not None:
                self._run("profile", user_id, result, written,
                          lambda: self._migrate_profile(legacy.profile, identity, user_id, migration_id))

            for project in legacy.projects or []:
                self._run("projects", user_id, result, written,
                          lambda project=project: self._migrate_project(project, user_id, migration_id),
                          resource_id=project.get("id") if isinstance(project, dict) else None)

            final_status = "failed" if result.migrated == 0 and result.errors else "completed"
        finally:
            # Aborted runs end as failed, never pending
            self.store.patch(migration_id, {
                "status": final_status,
                "migrated_count": result.migrated,
                "error_count": len(result.errors),
                "errors": result.errors,
                "counts": result.counts,
                "records": written,
                "completed_at": now_ms(),
            })

        logger.log_migration_completed(user_id, migration_id, result.migrated, len(result.errors))
        audit_event(
            event_type=f"migration.{final_status}",
            identifiers={"user_id": user_id, "migration_id": migration_id},
            payload={"counts": result.counts, "error_count": len(result.errors)}
        )
        return result

    def _run(self, kind: str, user_id: str, result: MigrationResult,
             written: List[Dict[str, str]], action, resource_id: str = None):
        label = {"settings": "Settings", "profile": "Profile", "projects": "Project"}[kind]
        try:
            records = action()
        except MigrationServiceError as e:
            result.errors.append(f"{label} migration failed: {e}")
            logger.log_resource_failure(kind, user_id, str(e), resource_id)
            return
        except Exception as e:
            # Unexpected errors fail this resource only
            result.errors.append(f"{label} migration failed: {type(e).__name__}: {e}")
            logger.error(f"Unexpected {kind} migration error for {user_id}: {e}")
            logger.log_resource_failure(kind, user_id, str(e), resource_id)
            return

        written.extend(records)
        result.migrated += 1
        result.counts[kind] += 1

    def _migrate_settings(self, legacy: Dict[str, Any], user_id: str, migration_id: str) -> List[Dict[str, str]]:
        settings = transform_settings(legacy, user_id)
        if find_settings(self.store, user_id):
            raise StoreError("settings already exist in target store")

        settings.migration_id = migration_id
        record_id = self.store.insert(SETTINGS, settings.to_record())
        return [{"kind": SETTINGS, "id": record_id}]

    def _migrate_profile(self, legacy: Dict[str, Any], identity: Identity, user_id: str,
                         migration_id: str) -> List[Dict[str, str]]:
        profile = transform_profile(legacy, identity)
        if find_profile(self.store, user_id):
            raise StoreError("profile already exists in target store")
        if profile.username:
            ensure_username_available(self.store, profile.username, user_id)

        profile.migration_id = migration_id
        record_id = self.store.insert(PROFILES, profile.to_record())
        return [{"kind": PROFILES, "id": record_id}]

    def _migrate_project(self, legacy: Dict[str, Any], user_id: str, migration_id: str) -> List[Dict[str, str]]:
        project = transform_project(legacy, user_id)
        project.migration_id = migration_id
        insert_project(self.store, project)
        return [{"kind": PROJECTS, "id": project.id}]
