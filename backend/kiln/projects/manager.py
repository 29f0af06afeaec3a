"""
Project manager: lifecycle of projects and their file records.

ProjectManager is the only writer of Project structure. It runs the
catalog over a root on add and refresh, validates per-file settings, and
keeps the watcher and build coordinator in step with the store.

Every mutating operation either fully succeeds (and is persisted before
returning) or raises a ProjectError leaving the store unchanged.
"""

import logging
import os
import threading
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional

from ..catalog.classifier import (
    classify,
    normalize_output_path,
    output_extension_matches,
    required_output_extension,
    resolve_output_path,
    target_key,
)
from ..catalog.scanner import list_files
from ..events import EventBus, EventType
from .errors import (
    DuplicateProjectError,
    FileRecordNotFoundError,
    InvalidOutputError,
    InvalidPathError,
    ProjectNotFoundError,
)
from .models import FileRecord, FileUpdate, Project, file_id_for

if TYPE_CHECKING:
    from ..build.coordinator import BuildCoordinator
    from ..persistence.store import ProjectStore
    from ..watch.watcher import ProjectWatcher

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIR_NAMES = (".git", ".hg", ".svn", "node_modules", "__pycache__")


class ProjectManager:
    """
    Add, remove, refresh and edit projects.

    Args:
        store: Loaded ProjectStore
        event_bus: Optional event sink
        watcher: Optional ProjectWatcher kept in step with the store
        coordinator: Optional BuildCoordinator, drained on delete
        ignored_dir_names: Directory names never descended into
    """

    def __init__(
        self,
        store: "ProjectStore",
        event_bus: Optional[EventBus] = None,
        watcher: Optional["ProjectWatcher"] = None,
        coordinator: Optional["BuildCoordinator"] = None,
        ignored_dir_names: Iterable[str] = DEFAULT_IGNORED_DIR_NAMES,
    ):
        self.store = store
        self.event_bus = event_bus
        self.watcher = watcher
        self.coordinator = coordinator
        self.ignored_dir_names = frozenset(ignored_dir_names)
        # Serializes add, delete and refresh
        self._lifecycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _discover(self, project_id: str, root_path: str) -> List[FileRecord]:
        paths = list_files(root_path, exclude=lambda path, name: name in self.ignored_dir_names)
        records = []
        for path in paths:
            kind = classify(path)
            if kind is None:
                continue
            records.append(FileRecord(id=file_id_for(project_id, path), source_path=path, kind=kind))
        return records

    def _taken_targets(self, exclude_project_id: Optional[str] = None) -> Dict[str, str]:
        """target key -> source path, over every record in the store."""
        taken: Dict[str, str] = {}
        for project in self.store.all():
            if project.id == exclude_project_id:
                continue
            for record in project.files.values():
                taken.setdefault(target_key(record.resolved_output_path), record.source_path)
        return taken

    @staticmethod
    def _claim_targets(records: Iterable[FileRecord], taken: Dict[str, str]) -> None:
        """
        Register new records' targets in `taken`. A record whose target
        already belongs to another source is added with compilation
        disabled, so two sources never build into one artifact.
        """
        for record in records:
            key = target_key(record.resolved_output_path)
            owner = taken.get(key)
            if owner is not None and owner != record.source_path:
                record.compile_enabled = False
                logger.warning(
                    f"{record.source_path} would build into {record.resolved_output_path}, "
                    f"already the output of {owner}; compilation disabled"
                )
                continue
            taken[key] = record.source_path

    @staticmethod
    def _resolve_root(path: str) -> str:
        if not path:
            raise InvalidPathError(path, "empty path")
        root = os.path.realpath(os.path.expanduser(path))
        if not os.path.exists(root):
            raise InvalidPathError(path, "does not exist")
        if not os.path.isdir(root):
            raise InvalidPathError(path, "not a directory")
        return root

    # ------------------------------------------------------------------
    # Project lifecycle
    # ------------------------------------------------------------------

    def add_project(self, path: str) -> Project:
        """
        Register a directory as a project.

        Raises:
            InvalidPathError: If path does not exist or is not a directory
            DuplicateProjectError: If a project already has this root
        """
        root = self._resolve_root(path)

        with self._lifecycle_lock:
            existing = self.store.find_by_root(root)
            if existing is not None:
                raise DuplicateProjectError(root, existing.id)

            project = Project(root_path=root)
            records = self._discover(project.id, root)
            self._claim_targets(records, self._taken_targets())
            for record in records:
                project.files[record.id] = record
            self.store.upsert(project)

        logger.info(f"Added project {project.id} at {root} ({len(project.files)} file(s))")

        if self.watcher is not None:
            self.watcher.watch(project)
        self._publish(EventType.PROJECT_ADDED, project.id, root_path=root, name=project.name)
        return project

    def delete_project(self, project_id: str) -> None:
        """
        Unregister a project. Files on disk are not touched.

        The watcher subscription goes first, then queued and in-flight
        builds are cancelled, then the records are removed. From the
        cancellation on, the coordinator refuses new builds for the project.

        Raises:
            ProjectNotFoundError: If project_id is unknown
        """
        with self._lifecycle_lock:
            if project_id not in self.store:
                raise ProjectNotFoundError(project_id)

            if self.watcher is not None:
                self.watcher.unwatch(project_id)
            if self.coordinator is not None:
                self.coordinator.cancel_project(project_id)

            try:
                removed = self.store.remove(project_id)
            except Exception:
                # Still registered: builds may run again
                if self.coordinator is not None:
                    self.coordinator.resume_project(project_id)
                raise
            if not removed:
                raise ProjectNotFoundError(project_id)

        logger.info(f"Removed project {project_id}")
        self._publish(EventType.PROJECT_REMOVED, project_id)

    def refresh_project(self, project_id: str) -> List[FileRecord]:
        """
        Re-scan a project's root.

        Records whose source vanished are removed; newly found sources get
        default records. Existing records are never modified. A new source
        whose default output is already another file's output is added
        with compilation disabled.

        Returns:
            The resulting file records, sorted by source path

        Raises:
            ProjectNotFoundError: If project_id is unknown
        """
        with self._lifecycle_lock:
            project = self.store.get(project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)

            discovered = {r.id: r for r in self._discover(project_id, project.root_path)}
            taken = self._taken_targets(exclude_project_id=project_id)
            changes = {"added": 0, "removed": 0}

            def apply(p: Project) -> Project:
                for file_id in list(p.files):
                    if file_id not in discovered:
                        del p.files[file_id]
                        changes["removed"] += 1
                for existing in p.files.values():
                    taken.setdefault(target_key(existing.resolved_output_path), existing.source_path)
                added = [
                    r for r in sorted(discovered.values(), key=lambda r: r.source_path)
                    if r.id not in p.files
                ]
                self._claim_targets(added, taken)
                for record in added:
                    p.files[record.id] = record
                    changes["added"] += 1
                return p

            updated = self.store.update(project_id, apply)
            if updated is None:
                raise ProjectNotFoundError(project_id)

            if changes["added"] or changes["removed"]:
                logger.info(
                    f"Refreshed project {project_id}: "
                    f"+{changes['added']} / -{changes['removed']} file(s)"
                )
                self._publish(
                    EventType.FILE_LIST_CHANGED, project_id,
                    added=changes["added"], removed=changes["removed"],
                )
        return updated.sorted_files()

    # ------------------------------------------------------------------
    # File settings
    # ------------------------------------------------------------------

    def update_file(self, project_id: str, file_id: str, update: FileUpdate) -> FileRecord:
        """
        Change a file's output path and/or compile flag.

        An empty output_path resets the file to its default output. Output
        paths are stored normalized.

        Raises:
            ProjectNotFoundError / FileRecordNotFoundError: If unknown
            InvalidOutputError: If output_path is relative, has the wrong
                                extension for the file's kind, or is
                                already another file's build target; or if
                                enabling the file would build into another
                                enabled file's target
        """
        record = self.get_file(project_id, file_id)

        output_path = update.output_path
        if output_path:
            output_path = normalize_output_path(output_path)
            self._validate_output(record, output_path)

        enabled = record.compile_enabled if update.compile_enabled is None else update.compile_enabled
        retargeted = output_path == "" and record.output_path != ""
        if enabled and (retargeted or not record.compile_enabled):
            target = resolve_output_path(
                record.source_path, record.output_path if output_path is None else output_path
            )
            owner = self._output_owner(record, target, enabled_only=True)
            if owner is not None:
                raise InvalidOutputError(target, f"already the output of {owner.source_path}")

        def apply(p: Project) -> Project:
            if file_id not in p.files:
                raise FileRecordNotFoundError(project_id, file_id)
            target = p.files[file_id]
            if output_path is not None:
                target.output_path = output_path
            if update.compile_enabled is not None:
                target.compile_enabled = update.compile_enabled
            return p

        updated = self.store.update(project_id, apply)
        if updated is None:
            raise ProjectNotFoundError(project_id)

        logger.info(f"Updated file {file_id} in project {project_id}")
        return updated.files[file_id]

    def _output_owner(
        self, record: FileRecord, output_path: str, enabled_only: bool = False
    ) -> Optional[FileRecord]:
        """Another record whose build target is output_path, if any."""
        key = target_key(output_path)
        for project in self.store.all():
            for other in project.files.values():
                if other.id == record.id or (enabled_only and not other.compile_enabled):
                    continue
                if target_key(other.resolved_output_path) == key:
                    return other
        return None

    def _validate_output(self, record: FileRecord, output_path: str) -> None:
        if not os.path.isabs(output_path):
            raise InvalidOutputError(output_path, "must be an absolute path")
        if not output_extension_matches(output_path, record.kind):
            raise InvalidOutputError(
                output_path,
                f"{record.kind.value} output must end in {required_output_extension(record.kind)}",
            )
        if target_key(output_path) == target_key(record.source_path):
            raise InvalidOutputError(output_path, "output cannot overwrite the source file")

        owner = self._output_owner(record, output_path)
        if owner is not None:
            raise InvalidOutputError(output_path, f"already the output of {owner.source_path}")

    def change_file_compile(self, project_id: str, file_id: str, enabled: bool) -> FileRecord:
        """
        Enable or disable compilation of one file.

        Raises:
            ProjectNotFoundError / FileRecordNotFoundError: If unknown
        """
        record = self.update_file(project_id, file_id, FileUpdate(compile_enabled=enabled))
        logger.info(f"Compilation {'enabled' if enabled else 'disabled'} for {record.source_path}")
        return record

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_project(self, project_id: str) -> Project:
        project = self.store.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def list_projects(self) -> List[Project]:
        return self.store.all()

    def get_file(self, project_id: str, file_id: str) -> FileRecord:
        project = self.get_project(project_id)
        record = project.files.get(file_id)
        if record is None:
            raise FileRecordNotFoundError(project_id, file_id)
        return record

    def _publish(self, event_type: EventType, project_id: str, **payload) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event_type, project_id, **payload)
