"""
Build coordinator: per-target scheduling of compiles.

Every build request is keyed by its target: the resolved output path of
the file being built. Each target runs its own small state machine
(see state.py):

    IDLE → QUEUED → COMPILING → IDLE

Rules:
- At most one COMPILING per target, ever
- A request while QUEUED collapses into the queued build
- A request while COMPILING sets a single pending rebuild; when the
  current compile ends the target is queued once more with the latest
  requester. Nothing else accumulates.
- Distinct targets build in parallel, bounded by max_workers
- Requests are fire-and-forget; outcomes are reported as events and
  recorded on the FileRecord
- A failing compile affects its own target only

Delete-project ordering is supported by cancel_project(). Queued builds are
dropped and in-flight compiles are cancelled and drained. Later requests
for the project are refused and nothing about it is published afterwards.

Targets are compared by target_key(), so two spellings of one output path
share a slot.
"""

import logging
import os
import tempfile
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from ..catalog.classifier import target_key
from ..compilers.base import CompileOptions, Compiler
from ..compilers.errors import CompileError
from ..events import EventBus, EventType
from ..persistence.errors import PersistenceError
from ..persistence.store import ProjectStore
from ..projects.models import BuildStatus, FileRecord, file_id_for
from ..watch.models import ChangeIntent, ChangeKind
from .imports import dependents_of
from .models import BuildOutcome, BuildResult, TargetState
from .state import validate_target_transition

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4
RESULT_HISTORY_SIZE = 200

FileListListener = Callable[[str], object]


@dataclass
class _Target:
    """Scheduling state of one output path. Guarded by the coordinator lock."""

    output_path: str
    key: str  # target_key(output_path)
    project_id: str
    file_id: str
    state: TargetState = TargetState.IDLE
    pending: Optional[Tuple[str, str]] = None  # (project_id, file_id) of a collapsed rebuild
    reroute: Optional[Tuple[str, str, str]] = None  # (target, project_id, file_id)
    cancelled: bool = False
    future: Optional[Future] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)


class BuildCoordinator:
    """
    Schedules compiles per output target over a bounded worker pool.

    Args:
        store: Project store; records are read fresh for every build
        compiler: Compiler capability (usually a CompilerRegistry)
        event_bus: Optional event sink
        max_workers: Worker pool size
        compile_timeout_seconds: Time box passed to every compile
        on_file_list_change: Called with a project ID when a change intent
                             means the project's file list must be refreshed
    """

    def __init__(
        self,
        store: ProjectStore,
        compiler: Compiler,
        event_bus: Optional[EventBus] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        compile_timeout_seconds: float = 60.0,
        on_file_list_change: Optional[FileListListener] = None,
    ):
        self.store = store
        self.compiler = compiler
        self.event_bus = event_bus
        self.max_workers = max_workers
        self.compile_timeout_seconds = compile_timeout_seconds
        self.on_file_list_change = on_file_list_change

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="kiln-build")
        self._targets: Dict[str, _Target] = {}
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._results: Deque[BuildResult] = deque(maxlen=RESULT_HISTORY_SIZE)
        # Projects being deleted: no new builds, no more events
        self._cancelled_projects: Set[str] = set()
        self._closed = False

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def request_build(self, project_id: str, file_id: str) -> Optional[str]:
        """
        Ask for a file to be built. Never blocks on the build itself.

        Returns:
            The target (resolved output path), or None if the project or
            file is unknown, the project is being deleted, or the
            coordinator is shut down
        """
        project = self.store.get(project_id)
        if project is None or file_id not in project.files:
            logger.debug(f"[Build] Ignoring request for unknown file {file_id} (project {project_id})")
            return None

        target = project.files[file_id].resolved_output_path
        with self._lock:
            if self._closed or project_id in self._cancelled_projects:
                return None
            self._enqueue_locked(target, project_id, file_id)
        return target

    def request_project_build(self, project_id: str) -> List[str]:
        """Ask for every file in a project to be built. Returns the targets."""
        project = self.store.get(project_id)
        if project is None:
            return []
        targets = []
        for record in project.sorted_files():
            target = self.request_build(project_id, record.id)
            if target is not None:
                targets.append(target)
        return targets

    def handle_intent(self, intent: ChangeIntent) -> None:
        """
        Turn a watcher change intent into builds.

        New paths and removals first refresh the project's file list; a
        changed stylesheet also rebuilds every stylesheet importing it.
        """
        project_id = intent.project_id
        file_id = intent.file_id

        if file_id is None or intent.change_kind == ChangeKind.REMOVED:
            self._notify_file_list_change(project_id)
            if intent.change_kind != ChangeKind.REMOVED:
                project = self.store.get(project_id)
                candidate = file_id_for(project_id, intent.path)
                file_id = candidate if project and candidate in project.files else None

        if file_id is not None and intent.change_kind != ChangeKind.REMOVED:
            self.request_build(project_id, file_id)

        self._request_dependents(project_id, intent.path)

    def _notify_file_list_change(self, project_id: str) -> None:
        if self.on_file_list_change is None:
            return
        try:
            self.on_file_list_change(project_id)
        except Exception as e:
            logger.warning(f"[Build] File list refresh failed for project {project_id}: {e}")

    def _request_dependents(self, project_id: str, changed_path: str) -> None:
        project = self.store.get(project_id)
        if project is None:
            return
        for record in dependents_of(changed_path, project.files.values()):
            logger.debug(f"[Build] {record.source_path} imports {changed_path}, rebuilding")
            self.request_build(project_id, record.id)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, slot: _Target, to_state: TargetState) -> None:
        validate_target_transition(slot.output_path, slot.state, to_state)
        slot.state = to_state
        self._changed.notify_all()

    def _enqueue_locked(self, target: str, project_id: str, file_id: str) -> None:
        if project_id in self._cancelled_projects:
            logger.debug(f"[Build] Refusing {target}: project {project_id} is being removed")
            return
        key = target_key(target)
        slot = self._targets.get(key)
        if slot is None:
            slot = _Target(output_path=target, key=key, project_id=project_id, file_id=file_id)
            self._targets[key] = slot

        if slot.state == TargetState.IDLE:
            self._submit_locked(slot)
            logger.debug(f"[Build] Queued {target}")
        elif slot.state == TargetState.QUEUED:
            slot.project_id, slot.file_id = project_id, file_id
            slot.cancelled = False
            logger.debug(f"[Build] {target} already queued, request collapsed")
        else:
            slot.pending = (project_id, file_id)
            logger.debug(f"[Build] {target} compiling, rebuild pending")

    def _submit_locked(self, slot: _Target) -> None:
        self._transition(slot, TargetState.QUEUED)
        slot.cancelled = False
        slot.cancel_event = threading.Event()
        slot.future = self._executor.submit(self._run, slot)

    def _retire_locked(self, slot: _Target) -> None:
        self._transition(slot, TargetState.IDLE)
        if self._targets.get(slot.key) is slot:
            del self._targets[slot.key]

    def _run(self, slot: _Target) -> Optional[BuildResult]:
        with self._lock:
            if slot.cancelled:
                self._retire_locked(slot)
                return None
            self._transition(slot, TargetState.COMPILING)
            project_id, file_id = slot.project_id, slot.file_id

        result: Optional[BuildResult] = None
        try:
            result = self._process(slot, project_id, file_id)
        except Exception as e:
            logger.exception(f"[Build] Unexpected error building {slot.output_path}: {e}")

        with self._lock:
            if result is not None:
                self._results.append(result)
            reroute, slot.reroute = slot.reroute, None
            if reroute is not None and not slot.cancelled and not self._closed:
                self._enqueue_locked(*reroute)
            if slot.pending is not None and slot.pending[0] in self._cancelled_projects:
                slot.pending = None
            if slot.pending is not None and not self._closed:
                slot.project_id, slot.file_id = slot.pending
                slot.pending = None
                self._submit_locked(slot)
            else:
                slot.pending = None
                self._retire_locked(slot)
        return result

    # ------------------------------------------------------------------
    # Processing one target
    # ------------------------------------------------------------------

    def _process(self, slot: _Target, project_id: str, file_id: str) -> Optional[BuildResult]:
        target = slot.output_path
        project = self.store.get(project_id)
        record: Optional[FileRecord] = project.files.get(file_id) if project else None

        if record is None:
            logger.debug(f"[Build] File {file_id} removed before build of {target}")
            return None

        if target_key(record.resolved_output_path) != slot.key:
            # Output re-pointed since the request; build the new target instead
            logger.debug(f"[Build] {record.source_path} now targets {record.resolved_output_path}")
            slot.reroute = (record.resolved_output_path, project_id, file_id)
            return None

        result = BuildResult(
            project_id=project_id,
            file_id=file_id,
            source_path=record.source_path,
            output_path=target,
            outcome=BuildOutcome.SKIPPED,
        )

        if not record.compile_enabled:
            result.completed_at = datetime.now()
            with self._lock:
                if self._dropped_locked(slot, project_id):
                    result.outcome = BuildOutcome.CANCELLED
                    return result
                self._publish(
                    EventType.BUILD_SKIPPED, project_id, file_id,
                    source_path=record.source_path, output_path=target,
                    reason="compilation disabled",
                )
            logger.debug(f"[Build] Skipped {record.source_path} (compilation disabled)")
            return result

        with self._lock:
            if self._dropped_locked(slot, project_id):
                result.outcome = BuildOutcome.CANCELLED
                return result
            self._publish(
                EventType.BUILD_STARTED, project_id, file_id,
                source_path=record.source_path, output_path=target,
            )

        logger.info(f"[Build] Compiling {record.source_path} -> {target}")
        options = CompileOptions(
            timeout_seconds=self.compile_timeout_seconds,
            cancel_event=slot.cancel_event,
        )
        error: Optional[CompileError] = None
        try:
            output = self.compiler.compile(record.source_path, target, record.kind, options)
            write_output(target, output)
        except CompileError as e:
            error = e
        except OSError as e:
            error = CompileError(f"Cannot write output {target}: {e}")
        result.completed_at = datetime.now()

        with self._lock:
            dropped = self._dropped_locked(slot, project_id)
        if dropped:
            result.outcome = BuildOutcome.CANCELLED
            logger.info(f"[Build] Cancelled {record.source_path}")
            return result

        if error is None:
            result.outcome = BuildOutcome.SUCCEEDED
        else:
            result.outcome = BuildOutcome.FAILED
            result.error = error.message
            result.line = error.line
            result.column = error.column
        self._record(project_id, file_id, error)

        with self._lock:
            if self._dropped_locked(slot, project_id):
                result.outcome = BuildOutcome.CANCELLED
                return result
            if error is None:
                self._publish(
                    EventType.BUILD_SUCCEEDED, project_id, file_id,
                    output_path=target, duration_seconds=result.duration_seconds(),
                )
            else:
                self._publish(
                    EventType.BUILD_FAILED, project_id, file_id,
                    output_path=target, message=error.message,
                    line=error.line, column=error.column,
                )

        if error is None:
            logger.info(f"[Build] Built {target} in {result.duration_seconds():.2f}s")
        else:
            logger.warning(f"[Build] Failed {record.source_path}: {error.message}")
        return result

    def _record(self, project_id: str, file_id: str, error: Optional[CompileError]) -> None:
        try:
            if error is None:
                self.store.record_build(project_id, file_id, BuildStatus.OK)
            else:
                self.store.record_build(project_id, file_id, BuildStatus.ERROR, error.message)
        except PersistenceError as e:
            # The build outcome is still reported
            logger.error(f"[Build] Could not record build status for {file_id}: {e}")

    def _dropped_locked(self, slot: _Target, project_id: str) -> bool:
        return slot.cancelled or project_id in self._cancelled_projects

    def _publish(self, event_type: EventType, project_id: str, file_id: str, **payload) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event_type, project_id, file_id, **payload)

    # ------------------------------------------------------------------
    # Cancellation and lifecycle
    # ------------------------------------------------------------------

    def cancel_project(self, project_id: str, timeout: float = 10.0) -> bool:
        """
        Drop queued builds and cancel in-flight compiles for a project.

        From the call on, new requests for the project are refused and no
        build event about it is published; resume_project() lifts this.
        Blocks until none of the project's targets is compiling, or the
        timeout expires.

        Returns:
            True if the project's builds drained within the timeout
        """
        to_cancel: List[str] = []
        with self._lock:
            self._cancelled_projects.add(project_id)
            for slot in list(self._targets.values()):
                if slot.pending is not None and slot.pending[0] == project_id:
                    slot.pending = None
                if slot.project_id != project_id:
                    continue
                slot.cancelled = True
                slot.cancel_event.set()
                if slot.state == TargetState.QUEUED and slot.future is not None and slot.future.cancel():
                    self._retire_locked(slot)
                elif slot.state == TargetState.COMPILING:
                    to_cancel.append(slot.output_path)

        for target in to_cancel:
            try:
                self.compiler.cancel(target)
            except Exception as e:
                logger.warning(f"[Build] Cancel failed for {target}: {e}")

        with self._lock:
            drained = self._changed.wait_for(
                lambda: not any(s.project_id == project_id for s in self._targets.values()),
                timeout=timeout,
            )
        if not drained:
            logger.warning(f"[Build] Builds for project {project_id} did not drain within {timeout}s")
        logger.info(f"[Build] Cancelled builds for project {project_id}")
        return drained

    def resume_project(self, project_id: str) -> None:
        """Accept builds for a project again after cancel_project()."""
        with self._lock:
            self._cancelled_projects.discard(project_id)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no target is queued or compiling."""
        with self._lock:
            return self._changed.wait_for(lambda: not self._targets, timeout=timeout)

    def target_state(self, target: str) -> TargetState:
        with self._lock:
            slot = self._targets.get(target_key(target))
            return slot.state if slot else TargetState.IDLE

    def active_targets(self) -> Dict[str, TargetState]:
        with self._lock:
            return {s.output_path: s.state for s in self._targets.values()}

    def recent_results(self) -> List[BuildResult]:
        with self._lock:
            return list(self._results)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting requests and finish (or drop) outstanding work."""
        with self._lock:
            self._closed = True
            for slot in self._targets.values():
                slot.pending = None
        self._executor.shutdown(wait=wait)
        logger.info("[Build] Coordinator shut down")


def write_output(output_path: str, data: bytes) -> None:
    """Write a compiled artifact via temp file + rename, creating parents."""
    directory = os.path.dirname(output_path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".kiln-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, output_path)
    except OSError:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
