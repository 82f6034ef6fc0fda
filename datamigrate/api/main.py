"""
HTTP surface for the migration service.

Caller identity is read from X-User-* headers, which the fronting identity
provider is expected to set after verifying the caller.
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from .schemas import (
    HealthResponse,
    MigrateRequest,
    MigrationResultResponse,
    MigrationStatusResponse,
    RollbackRequest,
    RollbackResponse,
    TransformResponse,
    DualReadResponse,
    ProfileUpdateRequest,
    ProfileResponse,
    ErrorResponse,
)
from util.logging import logger
from ..core.config import VERSION, DB_PATH, LEGACY_DB_PATH, debug_enabled, validate_config
from ..core.dual_read import READ_KINDS, DualReadResolver
from ..core.exceptions import (
    MigrationServiceError,
    AuthorizationError,
    DataIntegrityError,
    DuplicateMigrationError,
    ResourceValidationError,
    MigrationNotFoundError,
    StoreError,
)
from ..core.identity import HeaderIdentityProvider, Identity, is_admin, require_identity
from ..core.migration import MigrationOrchestrator
from ..core.rollback import rollback_user_migration
from ..core.store import LegacyStore, RecordStore, SQLiteRecordStore
from ..core.transformers import RESOURCE_KINDS, transform_resource
from ..core.users import update_user_profile

app = FastAPI(
    title="Data Migration API",
    version=VERSION,
    description="Legacy to target user data migration with integrity checks",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

for issue in validate_config():
    logger.warning(f"Configuration issue: {issue}")

_target_store: Optional[RecordStore] = None
_legacy_store: Optional[LegacyStore] = None
_resolver: Optional[DualReadResolver] = None


def get_target_store() -> RecordStore:
    global _target_store
    if _target_store is None:
        _target_store = SQLiteRecordStore(DB_PATH)
    return _target_store


def get_legacy_store() -> LegacyStore:
    global _legacy_store
    if _legacy_store is None:
        _legacy_store = LegacyStore(SQLiteRecordStore(LEGACY_DB_PATH))
    return _legacy_store


def get_resolver(target: RecordStore = Depends(get_target_store),
                 legacy: LegacyStore = Depends(get_legacy_store)) -> DualReadResolver:
    # One resolver per store pair so its read cache survives across requests
    global _resolver
    if _resolver is None or _resolver.target is not target or _resolver.legacy is not legacy:
        _resolver = DualReadResolver(target, legacy)
    return _resolver


def get_identity(request: Request) -> Optional[Identity]:
    """Caller identity from the provider headers, or None when anonymous."""
    return HeaderIdentityProvider(request.headers).get_user_identity()


def _require_owner_or_admin(identity: Optional[Identity], user_id: str) -> Identity:
    identity = require_identity(identity)
    if identity.subject != user_id and not is_admin(identity):
        raise AuthorizationError("Unauthorized: caller does not own this resource")
    return identity


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(resolver: DualReadResolver = Depends(get_resolver)):
    """Check both stores."""
    health = resolver.health()
    return HealthResponse(
        status="healthy" if health["healthy"] else "unhealthy",
        version=VERSION,
        target_health=health["target"],
        legacy_health=health["legacy"]
    )


@app.post("/migration/migrate", response_model=MigrationResultResponse)
def migrate_endpoint(
    req: MigrateRequest,
    identity: Optional[Identity] = Depends(get_identity),
    store: RecordStore = Depends(get_target_store)
):
    user_id = req.user_id or (identity.subject if identity else None)
    result = MigrationOrchestrator(store).migrate_user_data(identity, user_id, req.bundle, req.checksum)
    return MigrationResultResponse(**result.to_dict())


@app.get("/migration/status/{user_id}", response_model=MigrationStatusResponse)
def migration_status_endpoint(
    user_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    store: RecordStore = Depends(get_target_store)
):
    _require_owner_or_admin(identity, user_id)
    status = MigrationOrchestrator(store).check_migration_status(user_id)
    if status is None:
        return MigrationStatusResponse(user_id=user_id, migrated=False)

    return MigrationStatusResponse(
        user_id=user_id,
        migrated=status.migrated,
        status=status.status,
        migration_id=status.migration_id,
        migrated_at=status.migrated_at,
        migrated_count=status.migrated_count,
        error_count=status.error_count,
        errors=status.errors,
        counts=status.counts
    )


@app.post("/migration/rollback", response_model=RollbackResponse)
def rollback_endpoint(
    req: RollbackRequest,
    identity: Optional[Identity] = Depends(get_identity),
    resolver: DualReadResolver = Depends(get_resolver)
):
    result = rollback_user_migration(resolver.target, identity, req.user_id, req.migration_id)
    resolver.clear_cache(req.user_id)
    return RollbackResponse(**result.to_dict())


@app.post("/migration/transform/{kind}", response_model=TransformResponse)
def transform_endpoint(
    kind: str,
    payload: dict,
    identity: Optional[Identity] = Depends(get_identity)
):
    """Preview the target record for one legacy record; nothing is written."""
    identity = require_identity(identity)
    if kind not in RESOURCE_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown resource kind: {kind}")

    record = transform_resource(kind, payload, identity.subject, identity)
    return TransformResponse(kind=kind, record=record.to_record())


@app.get("/users/{user_id}/{kind}", response_model=DualReadResponse)
def dual_read_endpoint(
    user_id: str,
    kind: str,
    identity: Optional[Identity] = Depends(get_identity),
    resolver: DualReadResolver = Depends(get_resolver)
):
    _require_owner_or_admin(identity, user_id)
    if kind not in READ_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown read kind: {kind}")

    result = resolver.read(user_id, kind, identity)
    return DualReadResponse(**result.to_dict())


@app.put("/users/me/profile", response_model=ProfileResponse)
def update_profile_endpoint(
    req: ProfileUpdateRequest,
    identity: Optional[Identity] = Depends(get_identity),
    store: RecordStore = Depends(get_target_store)
):
    profile = update_user_profile(store, identity, **req.model_dump())
    return ProfileResponse(**profile.to_record())


ERROR_STATUS = {
    DataIntegrityError: 422,
    DuplicateMigrationError: 409,
    ResourceValidationError: 400,
    MigrationNotFoundError: 404,
    StoreError: 503,
}


@app.exception_handler(MigrationServiceError)
async def migration_error_handler(request: Request, exc: MigrationServiceError):
    """Map service errors to HTTP statuses."""
    if isinstance(exc, AuthorizationError):
        # Anonymous callers are unauthenticated; known callers are forbidden
        status_code = 401 if not request.headers.get("x-user-id") else 403
    else:
        status_code = next(
            (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
            500
        )

    details = None
    if isinstance(exc, ResourceValidationError) and exc.field:
        details = {"field": exc.field, "resource_id": exc.resource_id}

    error = ErrorResponse(error_type=type(exc).__name__, message=str(exc), details=details)
    return JSONResponse(status_code=status_code, content=error.model_dump(mode="json"))


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logging.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(status_code=500, content=content)
