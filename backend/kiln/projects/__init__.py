"""
Projects — registered source directories and their file records.

Public API:
    ProjectManager — Add / delete / refresh projects, edit file settings
    Project / FileRecord / FileUpdate — Data models
    ProjectError and subclasses — Synchronous operation failures
"""

from .models import BuildStatus, FileRecord, FileUpdate, Project, file_id_for, new_project_id
from .errors import (
    ProjectError,
    InvalidPathError,
    DuplicateProjectError,
    NotFoundError,
    ProjectNotFoundError,
    FileRecordNotFoundError,
    InvalidOutputError,
)
from .manager import ProjectManager

__all__ = [
    # Models
    "BuildStatus",
    "FileRecord",
    "FileUpdate",
    "Project",
    "file_id_for",
    "new_project_id",
    # Errors
    "ProjectError",
    "InvalidPathError",
    "DuplicateProjectError",
    "NotFoundError",
    "ProjectNotFoundError",
    "FileRecordNotFoundError",
    "InvalidOutputError",
    # Manager
    "ProjectManager",
]
