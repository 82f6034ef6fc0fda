"""
Tests for the migration orchestrator: gates, per-resource writes and the
persisted migration status.
"""

import pytest
from unittest.mock import patch

from datamigrate.core.checksum import artifact_checksum, checksum
from datamigrate.core.exceptions import (
    AuthorizationError,
    DataIntegrityError,
    DuplicateMigrationError,
    ResourceValidationError,
)
from datamigrate.core.identity import Identity
from datamigrate.core.migration import MigrationOrchestrator
from datamigrate.core.projects import get_project_files, get_user_projects
from datamigrate.core.schema import MigrationStatus, TargetProfile
from datamigrate.core.store import MIGRATIONS, PROFILES, PROJECT_FILES, PROJECTS, SETTINGS
from datamigrate.core.users import find_profile, find_settings

TARGET_KINDS = (SETTINGS, PROFILES, PROJECTS, PROJECT_FILES, MIGRATIONS)


def total_records(store):
    return sum(store.count(kind) for kind in TARGET_KINDS)


class TestMigrationGates:
    """Authorization, integrity and duplicate checks run before any write."""

    def test_missing_identity(self, store, bundle):
        """Test that anonymous callers are rejected."""
        with pytest.raises(AuthorizationError, match="Unauthorized"):
            MigrationOrchestrator(store).migrate_user_data(None, "user-1", bundle, checksum(bundle))
        assert total_records(store) == 0

    def test_other_users_data(self, store, bundle):
        """Test that a caller cannot migrate someone else's data."""
        intruder = Identity(subject="user-2")
        with pytest.raises(AuthorizationError):
            MigrationOrchestrator(store).migrate_user_data(intruder, "user-1", bundle, checksum(bundle))
        assert total_records(store) == 0

    @patch('datamigrate.core.migration.audit_event')
    def test_checksum_mismatch(self, mock_audit_event, store, identity, bundle):
        """Test that a tampered bundle fails with no writes."""
        tag = checksum(bundle)
        bundle["settings"]["theme"] = "light"

        with pytest.raises(DataIntegrityError, match="Data integrity check failed"):
            MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, tag)

        assert total_records(store) == 0
        audit_call = mock_audit_event.call_args_list[0]
        assert audit_call[1]["event_type"] == "migration.integrity_failed"

    def test_empty_checksum(self, store, identity, bundle):
        """Test that a missing checksum never verifies."""
        with pytest.raises(DataIntegrityError):
            MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, "")

    def test_duplicate_migration(self, store, identity, bundle):
        """Test that a second migration of the same user is refused."""
        orchestrator = MigrationOrchestrator(store)
        orchestrator.migrate_user_data(identity, "user-1", bundle, checksum(bundle))
        records_after_first = total_records(store)

        with pytest.raises(DuplicateMigrationError, match="already migrated"):
            orchestrator.migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert total_records(store) == records_after_first

    def test_pending_migration_blocks(self, store, identity, bundle):
        """Test that an in-flight migration blocks another one."""
        pending = MigrationStatus(user_id="user-1", migration_id="mig_pending", status="pending",
                                  checksum="x", started_at=1)
        store.insert(MIGRATIONS, pending.to_record(), record_id="mig_pending")

        with pytest.raises(DuplicateMigrationError):
            MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))

    def test_invalid_bundle_shape(self, store, identity):
        """Test that a bundle with a non-list projects section is rejected."""
        bad = {"projects": "not-a-list"}
        with pytest.raises(ResourceValidationError, match="Invalid migration bundle"):
            MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bad, checksum(bad))


class TestMigrationWrites:
    """Per-resource transformation and writes."""

    def test_full_bundle(self, store, identity, bundle):
        """Test that settings, profile and one project all migrate."""
        result = MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert result.migrated == 3
        assert result.errors == []
        assert result.success is True
        assert result.counts == {"settings": 1, "profile": 1, "projects": 1}
        assert result.migration_id.startswith("mig_")

        settings = find_settings(store, "user-1")
        assert settings.theme == "dark"
        assert settings.migration_id == result.migration_id

        profile = find_profile(store, "user-1")
        assert profile.username == "ada_l"
        assert profile.email == "ada@example.com"
        assert profile.migration_id == result.migration_id

        projects = get_user_projects(store, "user-1")
        assert len(projects) == 1
        assert projects[0].legacy_id == "firebase-project-1"
        assert projects[0].migration_id == result.migration_id

    def test_project_file_written(self, store, identity, bundle):
        """Test that each migrated project gets a workspace file record."""
        MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))
        project = get_user_projects(store, "user-1")[0]

        files = get_project_files(store, project.id)
        assert len(files) == 1
        assert files[0].filename == "workspace.xml"
        assert files[0].content_type == "application/xml"
        assert files[0].size == len(project.workspace.encode("utf-8"))
        assert files[0].checksum == artifact_checksum(project.workspace)
        assert files[0].storage_id == f"project-{project.id}-workspace"

    def test_partial_failure(self, store, identity):
        """Test that one malformed project does not stop the others."""
        bundle = {
            "settings": {"theme": "dark"},
            "projects": [{"id": "bad-1", "name": "Broken", "xml": "<block/>"}],
        }
        result = MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert result.migrated == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Project migration failed:")
        assert "bad-1" in result.errors[0]
        assert store.count(PROJECTS) == 0
        assert find_settings(store, "user-1") is not None

    def test_every_resource_fails(self, store, identity):
        """Test that a migration with no successes is recorded as failed and can be retried."""
        orchestrator = MigrationOrchestrator(store)
        bad = {"settings": {"boardType": "esp32"}}
        result = orchestrator.migrate_user_data(identity, "user-1", bad, checksum(bad))

        assert result.migrated == 0
        assert result.errors[0].startswith("Settings migration failed:")
        assert orchestrator.check_migration_status("user-1").status == "failed"

        good = {"settings": {"boardType": "mega"}}
        retry = orchestrator.migrate_user_data(identity, "user-1", good, checksum(good))
        assert retry.migrated == 1

    def test_username_taken(self, store, identity, bundle):
        """Test that a username held by another user fails only the profile."""
        other = TargetProfile(user_id="user-2", email="b@example.com", name="B", username="ada_l")
        store.insert(PROFILES, other.to_record())

        result = MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert result.migrated == 2
        assert result.errors == ["Profile migration failed: Username already taken"]
        assert find_profile(store, "user-1") is None

    def test_empty_bundle(self, store, identity):
        """Test that an empty bundle migrates nothing and records nothing."""
        orchestrator = MigrationOrchestrator(store)
        result = orchestrator.migrate_user_data(identity, "user-1", {}, checksum({}))

        assert result.migrated == 0
        assert result.errors == []
        assert orchestrator.check_migration_status("user-1") is None

    def test_projects_keep_input_order(self, store, identity, bundle):
        """Test that projects are written in bundle order."""
        second = dict(bundle["projects"][0], id="firebase-project-2", name="Fade")
        bundle["projects"].append(second)

        MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        # get_user_projects lists newest first
        names = [p.name for p in get_user_projects(store, "user-1")]
        assert names == ["Fade", "Blink"]


class TestMigrationStatus:
    """Persisted status record."""

    def test_no_migration(self, store):
        """Test status lookup for a user never migrated."""
        assert MigrationOrchestrator(store).check_migration_status("user-1") is None

    def test_completed_status(self, store, identity, bundle):
        """Test the status written after a successful migration."""
        orchestrator = MigrationOrchestrator(store)
        result = orchestrator.migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        status = orchestrator.check_migration_status("user-1")
        assert status.status == "completed"
        assert status.migrated is True
        assert status.migration_id == result.migration_id
        assert status.migrated_count == 3
        assert status.error_count == 0
        assert status.checksum == checksum(bundle)
        assert status.migrated_at is not None
        assert {r["kind"] for r in status.records} == {SETTINGS, PROFILES, PROJECTS}

    def test_get_migration(self, store, identity, bundle):
        """Test lookup by migration id."""
        orchestrator = MigrationOrchestrator(store)
        result = orchestrator.migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert orchestrator.get_migration(result.migration_id).user_id == "user-1"
        assert orchestrator.get_migration("mig_missing") is None


class TestMigrationRobustness:
    """Bad legacy values and unexpected errors never leave a run pending."""

    def test_malformed_timestamp(self, store, identity, bundle):
        """Test that an unparseable legacy timestamp falls back to now."""
        bundle["projects"][0]["created"] = {"seconds": "abc"}
        bundle["projects"][0]["updated"] = float("inf")

        result = MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert result.migrated == 3
        assert result.errors == []
        assert get_user_projects(store, "user-1")[0].created > 0

    def test_unexpected_resource_error(self, store, identity, bundle):
        """Test that an unexpected error fails only its own resource."""
        with patch('datamigrate.core.migration.transform_project', side_effect=RuntimeError("boom")):
            result = MigrationOrchestrator(store).migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert result.migrated == 2
        assert result.errors == ["Project migration failed: RuntimeError: boom"]
        assert find_settings(store, "user-1") is not None
        assert MigrationOrchestrator(store).check_migration_status("user-1").status == "completed"

    def test_aborted_run_is_marked_failed(self, store, identity, bundle):
        """Test that a run aborted mid-way is closed as failed and can be retried."""
        orchestrator = MigrationOrchestrator(store)
        with patch.object(MigrationOrchestrator, "_run", side_effect=RuntimeError("crash")):
            with pytest.raises(RuntimeError):
                orchestrator.migrate_user_data(identity, "user-1", bundle, checksum(bundle))

        assert orchestrator.check_migration_status("user-1").status == "failed"

        retry = orchestrator.migrate_user_data(identity, "user-1", bundle, checksum(bundle))
        assert retry.migrated == 3
