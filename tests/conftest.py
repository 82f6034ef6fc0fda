"""
Shared fixtures: throwaway SQLite stores and a representative legacy bundle.
"""

import pytest

from datamigrate.core.identity import Identity
from datamigrate.core.store import LegacyStore, SQLiteRecordStore

VALID_XML = '<xml xmlns="https://developers.google.com/blockly/xml"><block type="arduino_setup"></block></xml>'


@pytest.fixture
def store(tmp_path):
    return SQLiteRecordStore(str(tmp_path / "target.db"))


@pytest.fixture
def legacy(tmp_path):
    return LegacyStore(SQLiteRecordStore(str(tmp_path / "legacy.db")))


@pytest.fixture
def identity():
    return Identity(subject="user-1", email="ada@example.com", name="Ada Lovelace")


@pytest.fixture
def bundle():
    return {
        "settings": {
            "boardType": "uno",
            "theme": "dark",
            "language": "en",
            "autoSave": True,
        },
        "profile": {
            "uid": "user-1",
            "email": "ada@example.com",
            "displayName": "Ada Lovelace",
            "username": "ada_l",
            "bio": "Arduino tinkerer",
            "website": "https://example.com",
        },
        "projects": [
            {
                "id": "firebase-project-1",
                "name": "Blink",
                "description": "Blink the onboard LED",
                "xml": VALID_XML,
                "boardType": "uno",
                "created": "2024-01-01T00:00:00Z",
                "updated": "2024-01-02T00:00:00Z",
            }
        ],
    }


@pytest.fixture
def seeded_legacy(legacy):
    """Legacy store holding one user with settings, profile and a project."""
    legacy.put_user({
        "uid": "user-1",
        "email": "ada@example.com",
        "displayName": "Ada Lovelace",
        "created": "2023-06-01T12:00:00Z",
        "profile": {"username": "ada_l", "bio": "Arduino tinkerer"},
        "settings": {"boardType": "nano", "theme": "light"},
    })
    legacy.put_project({
        "id": "p1",
        "userId": "user-1",
        "name": "Traffic light",
        "xml": VALID_XML,
        "boardType": "nano",
    })
    return legacy
