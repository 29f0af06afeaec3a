"""
Project endpoints.

HTTP adapter over ProjectManager and BuildCoordinator. Mutations are
synchronous and all-or-nothing; compile requests are fire-and-forget and
their outcome is observed through /events.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict

from ..persistence.errors import PersistenceError
from ..projects.errors import (
    DuplicateProjectError,
    InvalidOutputError,
    InvalidPathError,
    NotFoundError,
    ProjectError,
)
from ..projects.models import BuildStatus, FileRecord, FileUpdate, Project

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


# ============================================================================
# API MODELS
# ============================================================================

class AddProjectRequest(BaseModel):
    """Request body for registering a project."""

    model_config = ConfigDict(extra="forbid")

    path: str


class CompileToggleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool


class FileView(BaseModel):
    """A file record plus its resolved build target."""

    model_config = ConfigDict(extra="forbid")

    id: str
    source_path: str
    kind: str
    output_path: str
    resolved_output_path: str
    compile_enabled: bool
    last_status: BuildStatus
    last_error: Optional[str] = None
    last_built_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileView":
        return cls(
            id=record.id,
            source_path=record.source_path,
            kind=record.kind.value,
            output_path=record.output_path,
            resolved_output_path=record.resolved_output_path,
            compile_enabled=record.compile_enabled,
            last_status=record.last_status,
            last_error=record.last_error,
            last_built_at=record.last_built_at,
        )


class ProjectSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    root_path: str
    created_at: datetime
    file_count: int
    error_count: int


class ProjectDetail(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    root_path: str
    created_at: datetime
    files: List[FileView]

    @classmethod
    def from_project(cls, project: Project) -> "ProjectDetail":
        return cls(
            id=project.id,
            name=project.name,
            root_path=project.root_path,
            created_at=project.created_at,
            files=[FileView.from_record(r) for r in project.sorted_files()],
        )


class CompileResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    queued: List[str]


class OperationResponse(BaseModel):
    """Generic response for project operations."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str


def _http_error(e: Exception) -> HTTPException:
    """Map a core error to an HTTP status."""
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DuplicateProjectError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (InvalidPathError, InvalidOutputError, ProjectError)):
        return HTTPException(status_code=400, detail=str(e))
    logger.error(f"Project operation failed: {e}")
    return HTTPException(status_code=500, detail=f"Project operation failed: {e}")


# ============================================================================
# PROJECTS
# ============================================================================

@router.get("", response_model=List[ProjectSummary])
def list_projects(request: Request):
    manager = request.app.state.project_manager
    return [
        ProjectSummary(
            id=p.id,
            name=p.name,
            root_path=p.root_path,
            created_at=p.created_at,
            file_count=len(p.files),
            error_count=sum(1 for f in p.files.values() if f.last_status == BuildStatus.ERROR),
        )
        for p in manager.list_projects()
    ]


@router.post("", response_model=ProjectDetail, status_code=201)
def add_project(body: AddProjectRequest, request: Request):
    """
    Register a directory as a project.

    Raises:
        400: Path missing or not a directory
        409: Already registered
    """
    manager = request.app.state.project_manager
    try:
        project = manager.add_project(body.path)
    except (ProjectError, PersistenceError) as e:
        raise _http_error(e)
    return ProjectDetail.from_project(project)


@router.get("/{project_id}", response_model=ProjectDetail)
def get_project(project_id: str, request: Request):
    manager = request.app.state.project_manager
    try:
        return ProjectDetail.from_project(manager.get_project(project_id))
    except ProjectError as e:
        raise _http_error(e)


@router.delete("/{project_id}", response_model=OperationResponse)
def delete_project(project_id: str, request: Request):
    """Unregister a project. Files on disk are left alone."""
    manager = request.app.state.project_manager
    try:
        manager.delete_project(project_id)
    except (ProjectError, PersistenceError) as e:
        raise _http_error(e)
    return OperationResponse(success=True, message=f"Project {project_id} removed")


@router.post("/{project_id}/refresh", response_model=List[FileView])
def refresh_project(project_id: str, request: Request):
    manager = request.app.state.project_manager
    try:
        records = manager.refresh_project(project_id)
    except (ProjectError, PersistenceError) as e:
        raise _http_error(e)
    return [FileView.from_record(r) for r in records]


@router.post("/{project_id}/compile", response_model=CompileResponse, status_code=202)
def compile_project(project_id: str, request: Request):
    """Queue a build of every file in the project."""
    manager = request.app.state.project_manager
    coordinator = request.app.state.build_coordinator
    try:
        manager.get_project(project_id)
    except ProjectError as e:
        raise _http_error(e)
    return CompileResponse(queued=coordinator.request_project_build(project_id))


# ============================================================================
# FILES
# ============================================================================

@router.get("/{project_id}/files", response_model=List[FileView])
def list_files(project_id: str, request: Request):
    manager = request.app.state.project_manager
    try:
        project = manager.get_project(project_id)
    except ProjectError as e:
        raise _http_error(e)
    return [FileView.from_record(r) for r in project.sorted_files()]


@router.get("/{project_id}/files/{file_id}", response_model=FileView)
def get_file(project_id: str, file_id: str, request: Request):
    manager = request.app.state.project_manager
    try:
        return FileView.from_record(manager.get_file(project_id, file_id))
    except ProjectError as e:
        raise _http_error(e)


@router.patch("/{project_id}/files/{file_id}", response_model=FileView)
def update_file(project_id: str, file_id: str, body: FileUpdate, request: Request):
    """
    Change a file's output path and/or compile flag.

    Raises:
        400: Output path rejected
        404: Project or file not found
    """
    manager = request.app.state.project_manager
    try:
        record = manager.update_file(project_id, file_id, body)
    except (ProjectError, PersistenceError) as e:
        raise _http_error(e)
    return FileView.from_record(record)


@router.put("/{project_id}/files/{file_id}/compile", response_model=FileView)
def change_file_compile(project_id: str, file_id: str, body: CompileToggleRequest, request: Request):
    manager = request.app.state.project_manager
    try:
        record = manager.change_file_compile(project_id, file_id, body.enabled)
    except (ProjectError, PersistenceError) as e:
        raise _http_error(e)
    return FileView.from_record(record)


@router.post("/{project_id}/files/{file_id}/compile", response_model=CompileResponse, status_code=202)
def compile_file(project_id: str, file_id: str, request: Request):
    """Queue a build of one file."""
    manager = request.app.state.project_manager
    coordinator = request.app.state.build_coordinator
    try:
        manager.get_file(project_id, file_id)
    except ProjectError as e:
        raise _http_error(e)
    target = coordinator.request_build(project_id, file_id)
    return CompileResponse(queued=[target] if target else [])
