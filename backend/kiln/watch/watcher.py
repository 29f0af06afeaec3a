"""
Filesystem watcher for project roots.

One recursive watchdog subscription per project. Raw events are filtered
(directories of OS noise, ignored directories, non-source files), then
debounced per path, then turned into ChangeIntents for the build
coordinator.

The watcher only reads projects from the store to resolve file IDs; it
never mutates them.
"""

import logging
import os
import threading
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..catalog.classifier import is_source_file
from ..catalog.scanner import is_os_dir, is_os_file
from ..persistence.store import ProjectStore
from ..projects.models import Project, file_id_for
from .debounce import Debouncer
from .models import ChangeIntent, ChangeKind

logger = logging.getLogger(__name__)

IntentHandler = Callable[[ChangeIntent], None]


class _ProjectEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for one project root."""

    def __init__(self, watcher: "ProjectWatcher", project_id: str):
        super().__init__()
        self._watcher = watcher
        self._project_id = project_id

    def on_created(self, event: FileSystemEvent) -> None:
        self._watcher.notify(self._project_id, event.src_path, ChangeKind.CREATED, event.is_directory)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory mtime changes accompany every create/delete inside it
        if event.is_directory:
            return
        self._watcher.notify(self._project_id, event.src_path, ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._watcher.notify(self._project_id, event.src_path, ChangeKind.REMOVED, event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._watcher.notify(self._project_id, event.src_path, ChangeKind.REMOVED, event.is_directory)
        self._watcher.notify(self._project_id, event.dest_path, ChangeKind.CREATED, event.is_directory)


class ProjectWatcher:
    """
    Watches registered project roots and emits debounced change intents.

    Args:
        store: Project store (read-only use)
        on_intent: Receives every ChangeIntent
        debounce_seconds: Per-path quiet period
        ignored_dir_names: Directory names whose contents are ignored
        observer_factory: Builds the watchdog observer
    """

    def __init__(
        self,
        store: ProjectStore,
        on_intent: IntentHandler,
        debounce_seconds: float = 0.3,
        ignored_dir_names: Iterable[str] = (),
        observer_factory: Callable[[], object] = Observer,
    ):
        self.store = store
        self._on_intent = on_intent
        self._ignored: Set[str] = set(ignored_dir_names)
        self._observer_factory = observer_factory
        self._observer = None
        self._roots: Dict[str, str] = {}  # project_id -> root path
        self._handles: Dict[str, object] = {}  # project_id -> ObservedWatch
        self._lock = threading.Lock()
        self._debouncer: Debouncer[Tuple[str, str], ChangeKind] = Debouncer(
            debounce_seconds, self._emit
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the observer thread and schedule any projects already watched."""
        with self._lock:
            if self._observer is not None:
                return
            self._observer = self._observer_factory()
            for project_id, root in self._roots.items():
                self._schedule(project_id, root)
            self._observer.start()
        logger.info(f"[Watcher] Started ({len(self._roots)} project(s))")

    def stop(self) -> None:
        """Deliver pending changes and stop the observer."""
        self._debouncer.flush()
        with self._lock:
            observer = self._observer
            self._observer = None
            self._handles.clear()
        if observer is not None:
            observer.stop()
            observer.join(timeout=5.0)
            logger.info("[Watcher] Stopped")

    @property
    def running(self) -> bool:
        return self._observer is not None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def watch(self, project: Project) -> None:
        """Subscribe to changes under a project's root. Idempotent."""
        with self._lock:
            if project.id in self._roots:
                return
            self._roots[project.id] = project.root_path
            if self._observer is not None:
                self._schedule(project.id, project.root_path)
        logger.info(f"[Watcher] Watching project {project.id}: {project.root_path}")

    def watch_all(self, projects: Iterable[Project]) -> None:
        for project in projects:
            self.watch(project)

    def unwatch(self, project_id: str) -> None:
        """
        Drop a project's subscription and any of its pending changes.

        Does not raise if the project is not watched.
        """
        with self._lock:
            self._roots.pop(project_id, None)
            handle = self._handles.pop(project_id, None)
            if handle is not None and self._observer is not None:
                try:
                    self._observer.unschedule(handle)
                except (KeyError, ValueError) as e:
                    logger.debug(f"[Watcher] Unschedule failed for {project_id}: {e}")
        dropped = self._debouncer.discard(lambda key: key[0] == project_id)
        logger.info(f"[Watcher] Unwatched project {project_id} ({dropped} pending change(s) dropped)")

    def watched_project_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._roots)

    def _schedule(self, project_id: str, root: str) -> None:
        if not os.path.isdir(root):
            logger.warning(f"[Watcher] Project root missing, not watching: {root}")
            return
        handler = _ProjectEventHandler(self, project_id)
        self._handles[project_id] = self._observer.schedule(handler, root, recursive=True)

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def notify(self, project_id: str, path: str, kind: ChangeKind, is_directory: bool = False) -> None:
        """
        Feed one raw change into the debouncer.

        Called by watchdog handlers; also usable directly by pollers and
        tests.
        """
        with self._lock:
            root = self._roots.get(project_id)
        if root is None:
            return

        path = os.path.abspath(path)
        if not self._is_relevant(root, path, is_directory):
            return
        self._debouncer.push((project_id, path), kind)

    def flush(self) -> int:
        """Deliver pending changes immediately."""
        return self._debouncer.flush()

    def _is_relevant(self, root: str, path: str, is_directory: bool) -> bool:
        rel = os.path.relpath(path, root)
        if rel.startswith(os.pardir):
            return False

        parts = rel.split(os.sep)
        dir_parts = parts if is_directory else parts[:-1]
        for part in dir_parts:
            if is_os_dir(part) or part in self._ignored:
                return False

        if is_directory:
            return rel != os.curdir
        name = parts[-1]
        return not is_os_file(name) and is_source_file(path)

    def _emit(self, key: Tuple[str, str], kind: ChangeKind) -> None:
        project_id, path = key
        with self._lock:
            if project_id not in self._roots:
                return

        project = self.store.get(project_id)
        if project is None:
            return

        file_id: Optional[str] = file_id_for(project_id, path)
        if file_id not in project.files:
            file_id = None

        intent = ChangeIntent(project_id=project_id, file_id=file_id, path=path, change_kind=kind)
        logger.debug(f"[Watcher] {kind.value}: {path}")
        self._on_intent(intent)
