"""
Project and FileRecord data models.

A Project is a registered root directory; its FileRecords are the
compilable sources found under it. Records are keyed by an ID derived from
the owning project and the source path, so the same file keeps its ID
across refreshes.

All models use Pydantic with extra fields forbidden.
"""

import hashlib
import os
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..catalog.classifier import FileKind, normalize_output_path, resolve_output_path


class BuildStatus(str, Enum):
    """Outcome of the most recent build of a file."""

    UNBUILT = "unbuilt"  # Never built since it was discovered
    OK = "ok"  # Last build succeeded
    ERROR = "error"  # Last build failed, see last_error


def new_project_id() -> str:
    return uuid.uuid4().hex


def file_id_for(project_id: str, source_path: str) -> str:
    """
    Derive a FileRecord ID.

    Identity is by (project, path), never by content. Including the
    project keeps IDs unique when two project roots overlap.
    """
    digest = hashlib.sha1(f"{project_id}\0{source_path}".encode("utf-8")).hexdigest()
    return digest[:16]


class FileRecord(BaseModel):
    """
    Compilation settings and last build state for one source file.

    output_path is empty when the default (same directory, swapped
    extension) applies.
    """

    model_config = ConfigDict(extra="forbid")

    # Identity
    id: str
    source_path: str
    kind: FileKind

    # Settings
    output_path: str = ""
    compile_enabled: bool = True

    # Build state
    last_status: BuildStatus = BuildStatus.UNBUILT
    last_error: Optional[str] = None
    last_built_at: Optional[datetime] = None

    @field_validator("output_path")
    @classmethod
    def normalize_output(cls, v: str) -> str:
        return normalize_output_path(v)

    @property
    def resolved_output_path(self) -> str:
        """The build target: explicit override, or the default path."""
        return resolve_output_path(self.source_path, self.output_path)


class Project(BaseModel):
    """A registered source directory and its files."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_project_id)
    root_path: str
    name: str = ""
    created_at: datetime = Field(default_factory=datetime.now)

    files: Dict[str, FileRecord] = Field(default_factory=dict)

    def model_post_init(self, __context) -> None:
        if not self.name:
            self.name = os.path.basename(self.root_path.rstrip(os.sep)) or self.root_path

    def file_by_path(self, source_path: str) -> Optional[FileRecord]:
        return self.files.get(file_id_for(self.id, source_path))

    def sorted_files(self):
        """Files ordered by source path."""
        return sorted(self.files.values(), key=lambda f: f.source_path)


class FileUpdate(BaseModel):
    """
    Partial update for a FileRecord's user-editable settings.

    Fields left as None are not changed. An empty output_path resets the
    file to its default output.
    """

    model_config = ConfigDict(extra="forbid")

    output_path: Optional[str] = None
    compile_enabled: Optional[bool] = None
