"""
JSON-backed project store.

Single source of truth for registered projects and their file records.
The whole mapping is persisted as one JSON document:

    {"version": 1, "projects": {"<project id>": {...Project...}}}

Writes go to a temp file in the same directory, are fsynced, then
os.replace()d over the store, so a crash never leaves a half-written
document behind.

Concurrency:
- All mutations are serialized by a single writer lock
- Every mutation persists before returning
- Readers get deep copies, taken under short critical sections
"""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from ..projects.models import BuildStatus, FileRecord, Project
from .errors import CorruptStoreError, SaveError

logger = logging.getLogger(__name__)

STORE_VERSION = 1

ProjectMutator = Callable[[Project], Project]


class ProjectStore:
    """
    Durable mapping of project ID → Project.

    Lifecycle:
        store = ProjectStore(path)
        store.load()     # raises CorruptStoreError on unreadable content
        ...
        store.close()    # final flush
    """

    def __init__(self, path: str):
        """
        Args:
            path: Location of the JSON document (created on first save)
        """
        self.path = Path(path)
        self._projects: Dict[str, Project] = {}
        self._lock = threading.RLock()
        self._loaded = False

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load(self) -> None:
        """
        Load the persisted document into memory.

        A missing file is an empty store.

        Raises:
            CorruptStoreError: If the file is not valid JSON or does not
                               match the project schema
        """
        with self._lock:
            if not self.path.exists():
                logger.info(f"No project store at {self.path}, starting empty")
                self._projects = {}
                self._loaded = True
                return

            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    document = json.load(f)
            except json.JSONDecodeError as e:
                raise CorruptStoreError(str(self.path), f"invalid JSON: {e}") from e
            except OSError as e:
                raise CorruptStoreError(str(self.path), f"unreadable: {e}") from e

            self._projects = self._parse(document)
            self._loaded = True
            logger.info(f"Loaded {len(self._projects)} project(s) from {self.path}")

    def _parse(self, document) -> Dict[str, Project]:
        if not isinstance(document, dict) or not isinstance(document.get("projects"), dict):
            raise CorruptStoreError(str(self.path), "missing 'projects' mapping")

        version = document.get("version")
        if version != STORE_VERSION:
            raise CorruptStoreError(str(self.path), f"unsupported store version: {version!r}")

        projects: Dict[str, Project] = {}
        for project_id, data in document["projects"].items():
            try:
                project = Project.model_validate(data)
            except ValidationError as e:
                raise CorruptStoreError(str(self.path), f"project {project_id}: {e}") from e
            if project.id != project_id:
                raise CorruptStoreError(
                    str(self.path), f"project key {project_id} does not match id {project.id}"
                )
            projects[project_id] = project
        return projects

    def save(self) -> None:
        """Persist the current in-memory mapping."""
        with self._lock:
            self._write(self._projects)

    def close(self) -> None:
        """Flush to disk. The store may still be used afterwards."""
        with self._lock:
            if self._loaded:
                self._write(self._projects)

    def _write(self, projects: Dict[str, Project]) -> None:
        document = {
            "version": STORE_VERSION,
            "projects": {pid: p.model_dump(mode="json") for pid, p in projects.items()},
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
        except OSError as e:
            raise SaveError(f"Failed to save project store {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise SaveError(f"Failed to save project store {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, project_id: str) -> Optional[Project]:
        """Return a copy of a project, or None if unknown."""
        with self._lock:
            project = self._projects.get(project_id)
            return project.model_copy(deep=True) if project else None

    def all(self) -> List[Project]:
        """Return copies of all projects, oldest first."""
        with self._lock:
            projects = [p.model_copy(deep=True) for p in self._projects.values()]
        return sorted(projects, key=lambda p: p.created_at)

    def find_by_root(self, root_path: str) -> Optional[Project]:
        with self._lock:
            for project in self._projects.values():
                if project.root_path == root_path:
                    return project.model_copy(deep=True)
        return None

    def __contains__(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._projects

    # ------------------------------------------------------------------
    # Mutations (each one persists before returning)
    # ------------------------------------------------------------------

    def upsert(self, project: Project) -> None:
        """Insert or replace a project and persist."""
        with self._lock:
            updated = dict(self._projects)
            updated[project.id] = project.model_copy(deep=True)
            self._write(updated)
            self._projects = updated

    def remove(self, project_id: str) -> bool:
        """
        Remove a project and all its records, then persist.

        Returns:
            True if the project existed
        """
        with self._lock:
            if project_id not in self._projects:
                return False
            updated = dict(self._projects)
            del updated[project_id]
            self._write(updated)
            self._projects = updated
            return True

    def update(self, project_id: str, mutator: ProjectMutator) -> Optional[Project]:
        """
        Atomic read-modify-write of one project.

        The mutator receives a deep copy and returns the new project. If it
        raises, nothing is written and the exception propagates.

        Returns:
            Copy of the stored project, or None if project_id is unknown
        """
        with self._lock:
            current = self._projects.get(project_id)
            if current is None:
                return None
            changed = mutator(current.model_copy(deep=True))
            updated = dict(self._projects)
            updated[project_id] = changed
            self._write(updated)
            self._projects = updated
            return changed.model_copy(deep=True)

    def record_build(
        self,
        project_id: str,
        file_id: str,
        status: BuildStatus,
        error: Optional[str] = None,
    ) -> Optional[FileRecord]:
        """
        Record a build outcome on a file.

        Writes to a project or record that no longer exists are dropped.

        Returns:
            Updated record copy, or None if the write was dropped
        """
        with self._lock:
            project = self._projects.get(project_id)
            if project is None or file_id not in project.files:
                logger.debug(f"Dropping build status for removed file {file_id} (project {project_id})")
                return None

            def apply(p: Project) -> Project:
                record = p.files[file_id]
                record.last_status = status
                record.last_error = error if status == BuildStatus.ERROR else None
                record.last_built_at = datetime.now()
                return p

            updated = self.update(project_id, apply)
            return updated.files[file_id] if updated else None
