"""
Error taxonomy for the migration service.

Gate errors (authorization, integrity, duplicate) abort a call before any
write. ResourceValidationError is scoped to one sub-resource and is turned
into an `errors` entry while a migration runs.
"""


class MigrationServiceError(Exception):
    """Base exception for migration service operations."""


class AuthorizationError(MigrationServiceError):
    """Caller identity missing, mismatched, or lacking the admin capability."""


class DataIntegrityError(MigrationServiceError):
    """Bundle checksum does not match the recomputed tag."""


class DuplicateMigrationError(MigrationServiceError):
    """A migration is already recorded for the user."""


class ResourceValidationError(MigrationServiceError):
    """A single record failed validation (XML, name length, enum, username, URL)."""

    def __init__(self, message: str, field: str = None, resource_id: str = None):
        super().__init__(message)
        self.field = field
        self.resource_id = resource_id


class MigrationNotFoundError(MigrationServiceError):
    """No migration with the given identifier exists for the user."""


class StoreError(MigrationServiceError):
    """A record store operation failed."""
