"""
HTTP tests for the migration API.
"""

import os
import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

import datamigrate.api.main as api_main
from datamigrate.api.main import app, get_legacy_store, get_target_store
from datamigrate.core.checksum import checksum

OWNER = {"X-User-Id": "user-1", "X-User-Email": "ada@example.com", "X-User-Name": "Ada Lovelace"}
ADMIN = {"X-User-Id": "admin-1"}


@pytest.fixture
def client(store, seeded_legacy):
    app.dependency_overrides[get_target_store] = lambda: store
    app.dependency_overrides[get_legacy_store] = lambda: seeded_legacy
    api_main._resolver = None
    yield TestClient(app)
    app.dependency_overrides.clear()
    api_main._resolver = None


def migrate(client, bundle, headers=OWNER, **extra):
    body = {"bundle": bundle, "checksum": checksum(bundle)}
    body.update(extra)
    return client.post("/migration/migrate", json=body, headers=headers)


class TestHealth:

    def test_health(self, client):
        """Test the health endpoint with both stores up."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["target_health"] is True
        assert data["legacy_health"] is True


class TestMigrateEndpoint:

    def test_migrate(self, client, bundle):
        """Test a full migration over HTTP."""
        response = migrate(client, bundle)
        assert response.status_code == 200
        data = response.json()
        assert data["migrated"] == 3
        assert data["errors"] == []
        assert data["success"] is True

    def test_anonymous(self, client, bundle):
        """Test that missing identity headers give 401."""
        assert migrate(client, bundle, headers={}).status_code == 401

    def test_other_user(self, client, bundle):
        """Test that migrating another user's data gives 403."""
        response = migrate(client, bundle, user_id="user-2")
        assert response.status_code == 403
        assert response.json()["error_type"] == "AuthorizationError"

    def test_checksum_mismatch(self, client, bundle):
        """Test that a bad checksum gives 422."""
        response = client.post("/migration/migrate", json={"bundle": bundle, "checksum": "deadbeef"}, headers=OWNER)
        assert response.status_code == 422
        assert "Data integrity check failed" in response.json()["message"]

    def test_duplicate(self, client, bundle):
        """Test that a second migration gives 409."""
        migrate(client, bundle)
        response = migrate(client, bundle)
        assert response.status_code == 409
        assert "already migrated" in response.json()["message"]

    def test_partial_failure(self, client):
        """Test that per-resource failures come back in the body."""
        bundle = {"settings": {}, "projects": [{"id": "bad-1", "xml": "nope"}]}
        data = migrate(client, bundle).json()
        assert data["migrated"] == 1
        assert data["success"] is False
        assert data["errors"][0].startswith("Project migration failed:")

    def test_status(self, client, bundle):
        """Test the migration status endpoint."""
        assert client.get("/migration/status/user-1", headers=OWNER).json()["migrated"] is False

        migration_id = migrate(client, bundle).json()["migration_id"]
        data = client.get("/migration/status/user-1", headers=OWNER).json()
        assert data["migrated"] is True
        assert data["status"] == "completed"
        assert data["migration_id"] == migration_id
        assert data["migrated_count"] == 3

    def test_status_of_other_user(self, client):
        """Test that users cannot read each other's migration status."""
        assert client.get("/migration/status/user-2", headers=OWNER).status_code == 403


@patch.dict(os.environ, {"ADMIN_USER_IDS": "admin-1"})
class TestRollbackEndpoint:

    def test_owner_forbidden(self, client, bundle):
        """Test that a non-admin rollback gives 403."""
        migration_id = migrate(client, bundle).json()["migration_id"]
        response = client.post("/migration/rollback", json={"user_id": "user-1", "migration_id": migration_id},
                               headers=OWNER)
        assert response.status_code == 403

    def test_admin_rollback(self, client, bundle):
        """Test an admin rollback over HTTP."""
        migration_id = migrate(client, bundle).json()["migration_id"]
        response = client.post("/migration/rollback", json={"user_id": "user-1", "migration_id": migration_id},
                               headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["rolled_back"] == {"settings": 1, "profile": 1, "projects": 1}

        status = client.get("/migration/status/user-1", headers=OWNER).json()
        assert status["status"] == "rolled_back"

    def test_unknown_migration(self, client):
        """Test that an unknown migration gives 404."""
        response = client.post("/migration/rollback", json={"user_id": "user-1", "migration_id": "mig_missing"},
                               headers=ADMIN)
        assert response.status_code == 404


class TestTransformEndpoint:

    def test_preview_project(self, client):
        """Test a transform preview writes nothing."""
        xml = "<xml><block/></xml>"
        response = client.post("/migration/transform/project", json={"id": "p9", "xml": xml}, headers=OWNER)
        assert response.status_code == 200
        record = response.json()["record"]
        assert record["workspace"] == xml
        assert record["legacy_id"] == "p9"
        assert record["user_id"] == "user-1"

    def test_invalid_record(self, client):
        """Test that validation failures give 400 with the field."""
        response = client.post("/migration/transform/project", json={"id": "p9", "xml": "<block/>"}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["details"]["field"] == "xml"

    def test_unknown_kind(self, client):
        """Test that unknown kinds give 404."""
        assert client.post("/migration/transform/photos", json={}, headers=OWNER).status_code == 404


class TestDualReadEndpoint:

    def test_fallback_then_target(self, client):
        """Test that the first read falls back and migrates."""
        first = client.get("/users/user-1/profile", headers=OWNER).json()
        assert first["source"] == "legacy"
        assert first["migration"]["migrated"] == 3

        second = client.get("/users/user-1/profile", headers=OWNER).json()
        assert second["source"] == "target"
        assert second["data"]["username"] == "ada_l"

    def test_no_data(self, client):
        """Test that a user with no data anywhere gets an empty result."""
        headers = {"X-User-Id": "user-9"}
        data = client.get("/users/user-9/settings", headers=headers).json()
        assert data["source"] == "none"
        assert data["data"] is None

    def test_unknown_kind(self, client):
        """Test that unknown read kinds give 404."""
        assert client.get("/users/user-1/photos", headers=OWNER).status_code == 404


class TestProfileEndpoint:

    def test_update_profile(self, client):
        """Test creating a profile through the API."""
        response = client.put("/users/me/profile", json={"username": "maker", "bio": "Hi"}, headers=OWNER)
        assert response.status_code == 200
        data = response.json()
        assert data["username"] == "maker"
        assert data["is_public"] is False
        assert data["email"] == "ada@example.com"

    def test_username_taken(self, client):
        """Test that a taken username gives 400."""
        client.put("/users/me/profile", json={"username": "maker"}, headers={"X-User-Id": "user-2"})
        response = client.put("/users/me/profile", json={"username": "maker"}, headers=OWNER)
        assert response.status_code == 400
        assert response.json()["message"] == "Username already taken"
