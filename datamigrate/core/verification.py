"""
Post-import integrity check: recompute workspace checksums against the
ProjectFile records written alongside each project.
"""

from typing import Dict, List

from util.logging import logger
from .checksum import verify_artifact
from .projects import get_project_files, get_user_projects
from .store import RecordStore


def verify_import_integrity(store: RecordStore, user_id: str) -> Dict[str, List[str]]:
    """
    Check every project of `user_id` against its latest workspace file.

    Returns:
        {"missing_files": [project ids without a file],
         "corrupted_files": [project ids whose workspace no longer matches]}
    """
    missing_files: List[str] = []
    corrupted_files: List[str] = []

    for project in get_user_projects(store, user_id):
        files = get_project_files(store, project.id)
        if not files:
            missing_files.append(project.id)
            continue

        latest = max(files, key=lambda f: f.uploaded_at)
        if not verify_artifact(project.workspace, latest.checksum):
            corrupted_files.append(project.id)

    if missing_files or corrupted_files:
        logger.log_operation("verify.import", "failed", {
            "user_id": user_id,
            "missing_files": missing_files,
            "corrupted_files": corrupted_files,
        })
    else:
        logger.debug(f"Import integrity verified for {user_id}")

    return {"missing_files": missing_files, "corrupted_files": corrupted_files}
