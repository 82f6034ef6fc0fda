"""
Project records and their workspace integrity files.

A ProjectFile is written whenever a project's workspace changes and is
removed before its project is.
"""

from typing import Any, Dict, List, Optional

from util.logging import logger
from .checksum import artifact_checksum
from .exceptions import AuthorizationError, ResourceValidationError
from .identity import Identity, require_identity
from .schema import (
    BOARD_TYPES,
    PROJECT_NAME_MAX,
    WORKSPACE_CONTENT_TYPE,
    WORKSPACE_FILENAME,
    ProjectFile,
    TargetProject,
    now_ms,
)
from .store import PROJECT_FILES, PROJECTS, RecordStore
from .transformers import validate_workspace_xml


def _validate_name(name: str):
    if not name or len(name) > PROJECT_NAME_MAX:
        raise ResourceValidationError(f"Project name must be between 1 and {PROJECT_NAME_MAX} characters", field="name")


def _validate_board_type(board_type: str):
    if board_type not in BOARD_TYPES:
        raise ResourceValidationError(f"Invalid board type: {board_type}", field="boardType")


def _validate_workspace(workspace: str):
    if not validate_workspace_xml(workspace):
        raise ResourceValidationError("Invalid XML format: malformed Blockly workspace", field="xml")


def get_project_files(store: RecordStore, project_id: str) -> List[ProjectFile]:
    records = store.filter(PROJECT_FILES, lambda r: r.get("project_id") == project_id)
    return [ProjectFile.from_record(record) for record in records]


def remove_project_files(store: RecordStore, project_id: str) -> int:
    """Delete every file record of a project. Returns how many were removed."""
    removed = 0
    for project_file in get_project_files(store, project_id):
        if store.delete(project_file.id):
            removed += 1
    return removed


def save_project_file(store: RecordStore, project_id: str, workspace: str, user_id: str,
                      migration_id: str = None) -> ProjectFile:
    """
    Create or replace the integrity record for a project's workspace.

    Raises:
        ResourceValidationError: workspace fails the XML check
    """
    _validate_workspace(workspace)

    remove_project_files(store, project_id)

    project_file = ProjectFile(
        project_id=project_id,
        user_id=user_id,
        filename=WORKSPACE_FILENAME,
        content_type=WORKSPACE_CONTENT_TYPE,
        size=len(workspace.encode("utf-8", "surrogatepass")),
        checksum=artifact_checksum(workspace),
        storage_id=f"project-{project_id}-workspace",
        uploaded_at=now_ms(),
        migration_id=migration_id,
    )
    project_file.id = store.insert(PROJECT_FILES, project_file.to_record())
    return project_file


def insert_project(store: RecordStore, project: TargetProject) -> TargetProject:
    """
    Write a new project together with its workspace file.

    If the file cannot be written the project insert is undone, so the pair
    is applied as one unit.
    """
    _validate_workspace(project.workspace)
    project.id = store.insert(PROJECTS, project.to_record())
    try:
        save_project_file(store, project.id, project.workspace, project.user_id, project.migration_id)
    except Exception:
        store.delete(project.id)
        raise
    return project


def _owned_project(store: RecordStore, identity: Identity, project_id: str) -> TargetProject:
    record = store.get(project_id)
    if not record or record.get("_kind") != PROJECTS or record.get("user_id") != identity.subject:
        raise AuthorizationError("Project not found or access denied")
    return TargetProject.from_record(record)


def create_project(store: RecordStore, identity: Optional[Identity], name: str, workspace: str,
                   board_type: str = "uno", description: str = None, tags: List[str] = None) -> TargetProject:
    """Create a project owned by the caller."""
    identity = require_identity(identity)
    _validate_name(name)
    _validate_board_type(board_type)

    now = now_ms()
    project = TargetProject(
        user_id=identity.subject,
        name=name,
        workspace=workspace,
        board_type=board_type,
        description=description,
        tags=tags,
        created=now,
        updated=now,
    )
    insert_project(store, project)
    logger.log_operation("project.create", "success", {"project_id": project.id, "user_id": identity.subject})
    return project


def update_project(store: RecordStore, identity: Optional[Identity], project_id: str,
                   **changes: Any) -> TargetProject:
    """
    Patch an owned project. `xml` (or `workspace`) replaces the workspace and
    refreshes its integrity file.
    """
    identity = require_identity(identity)
    _owned_project(store, identity, project_id)

    if "xml" in changes:
        changes["workspace"] = changes.pop("xml")

    allowed = {"name", "description", "workspace", "board_type", "is_public", "tags"}
    unknown = set(changes) - allowed
    if unknown:
        raise ResourceValidationError(f"Unknown project fields: {', '.join(sorted(unknown))}")

    updates: Dict[str, Any] = {k: v for k, v in changes.items() if v is not None}
    if "name" in updates:
        _validate_name(updates["name"])
    if "board_type" in updates:
        _validate_board_type(updates["board_type"])
    if "workspace" in updates:
        _validate_workspace(updates["workspace"])

    updates["updated"] = now_ms()
    store.patch(project_id, updates)

    if "workspace" in updates:
        save_project_file(store, project_id, updates["workspace"], identity.subject)

    return TargetProject.from_record(store.get(project_id))


def delete_project_records(store: RecordStore, project_id: str) -> int:
    """Delete a project and its files (files first). Returns files removed."""
    removed = remove_project_files(store, project_id)
    store.delete(project_id)
    return removed


def delete_project(store: RecordStore, identity: Optional[Identity], project_id: str) -> None:
    """Delete an owned project and all of its file records."""
    identity = require_identity(identity)
    _owned_project(store, identity, project_id)
    removed = delete_project_records(store, project_id)
    logger.log_operation("project.delete", "success", {"project_id": project_id, "files_removed": removed})


def get_project(store: RecordStore, identity: Optional[Identity], project_id: str) -> Optional[TargetProject]:
    """Get a project visible to the caller (owner, or anyone when public)."""
    record = store.get(project_id)
    if not record or record.get("_kind") != PROJECTS:
        return None

    project = TargetProject.from_record(record)
    subject = identity.subject if identity else None
    if project.user_id != subject and not project.is_public:
        return None
    return project


def get_user_projects(store: RecordStore, user_id: str) -> List[TargetProject]:
    """All projects of a user, newest first."""
    records = store.filter(PROJECTS, lambda r: r.get("user_id") == user_id)
    return [TargetProject.from_record(record) for record in reversed(records)]
