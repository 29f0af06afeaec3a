"""
Tests for project watching: debounce and change intents.

These tests verify:
1. Bursts for the same path collapse to one change carrying the latest kind
2. Irrelevant paths (OS noise, ignored directories, non-sources) are dropped
3. Intents carry the file ID when the path has a record, None otherwise
4. unwatch stops delivery and drops pending changes
5. watchdog events map onto created / modified / removed
"""

import os
import threading
import time
from pathlib import Path
from typing import List

import pytest
from watchdog.events import DirModifiedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from kiln.persistence.store import ProjectStore
from kiln.projects import ProjectManager
from kiln.watch import ChangeIntent, ChangeKind, Debouncer, ProjectWatcher
from kiln.watch.watcher import _ProjectEventHandler


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# -----------------------------------------------------------------------------
# Debouncer
# -----------------------------------------------------------------------------

class TestDebouncer:

    def test_zero_delay_delivers_synchronously(self):
        delivered = []
        debouncer = Debouncer(0, lambda k, v: delivered.append((k, v)))

        debouncer.push("a", 1)

        assert delivered == [("a", 1)]
        assert debouncer.pending_count == 0

    def test_burst_collapses_to_latest_value(self):
        """
        GIVEN a 50ms debounce window
        WHEN five values are pushed for one key in quick succession
        THEN exactly one delivery happens, carrying the last value
        """
        delivered = []
        debouncer = Debouncer(0.05, lambda k, v: delivered.append((k, v)))

        for i in range(5):
            debouncer.push("a.less", i)

        assert _wait_for(lambda: delivered)
        time.sleep(0.15)
        assert delivered == [("a.less", 4)]

    def test_keys_are_independent(self):
        delivered = []
        lock = threading.Lock()

        def collect(k, v):
            with lock:
                delivered.append(k)

        debouncer = Debouncer(0.02, collect)
        debouncer.push("a", 1)
        debouncer.push("b", 1)

        assert _wait_for(lambda: len(delivered) == 2)
        assert sorted(delivered) == ["a", "b"]

    def test_flush_delivers_now(self):
        delivered = []
        debouncer = Debouncer(60.0, lambda k, v: delivered.append((k, v)))
        debouncer.push("a", "x")
        debouncer.push("b", "y")

        assert debouncer.flush() == 2
        assert sorted(delivered) == [("a", "x"), ("b", "y")]
        assert debouncer.pending_count == 0

    def test_discard_drops_matching(self):
        delivered = []
        debouncer = Debouncer(60.0, lambda k, v: delivered.append(k))
        debouncer.push(("p1", "/a"), 1)
        debouncer.push(("p2", "/b"), 1)

        assert debouncer.discard(lambda key: key[0] == "p1") == 1
        debouncer.flush()
        assert delivered == [("p2", "/b")]

    def test_callback_failure_is_logged(self, caplog):
        def explode(k, v):
            raise RuntimeError("boom")

        debouncer = Debouncer(0, explode)
        debouncer.push("a", 1)

        assert "Debounced callback failed" in caplog.text


# -----------------------------------------------------------------------------
# ProjectWatcher
# -----------------------------------------------------------------------------

class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.unscheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        handle = (path, recursive)
        self.scheduled.append(handle)
        return handle

    def unschedule(self, handle):
        self.unscheduled.append(handle)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


@pytest.fixture
def intents() -> List[ChangeIntent]:
    return []


@pytest.fixture
def watched(store: ProjectStore, project_dir: Path, intents):
    """A watcher with one project, long debounce (flushed explicitly)."""
    manager = ProjectManager(store)
    project = manager.add_project(str(project_dir))
    watcher = ProjectWatcher(
        store,
        intents.append,
        debounce_seconds=60.0,
        ignored_dir_names=["node_modules", ".git"],
        observer_factory=FakeObserver,
    )
    watcher.watch(project)
    return watcher, project, Path(project.root_path)


class TestProjectWatcher:

    def test_modified_known_file_carries_file_id(self, watched, intents):
        watcher, project, root = watched
        path = str(root / "a.less")

        watcher.notify(project.id, path, ChangeKind.MODIFIED)
        watcher.flush()

        assert intents == [ChangeIntent(
            project_id=project.id,
            file_id=project.file_by_path(path).id,
            path=path,
            change_kind=ChangeKind.MODIFIED,
        )]

    def test_new_file_has_no_file_id(self, watched, intents):
        watcher, project, root = watched

        watcher.notify(project.id, str(root / "new.scss"), ChangeKind.CREATED)
        watcher.flush()

        assert len(intents) == 1
        assert intents[0].file_id is None
        assert intents[0].change_kind == ChangeKind.CREATED

    def test_burst_collapses_to_latest_kind(self, watched, intents):
        """
        GIVEN an editor save sequence (removed, created, modified, modified)
        WHEN the burst lands within one debounce window
        THEN one intent is emitted with the latest kind
        """
        watcher, project, root = watched
        path = str(root / "a.less")

        for kind in (ChangeKind.REMOVED, ChangeKind.CREATED, ChangeKind.MODIFIED, ChangeKind.MODIFIED):
            watcher.notify(project.id, path, kind)
        watcher.flush()

        assert [i.change_kind for i in intents] == [ChangeKind.MODIFIED]

    @pytest.mark.parametrize("relative", [
        "README.md",
        "a.css",
        "node_modules/lib/x.less",
        ".git/hooks/y.scss",
        ".Trashes/a.less",
        "styles/.DS_Store",
        "styles/._main.scss",
    ])
    def test_irrelevant_paths_dropped(self, watched, intents, relative):
        watcher, project, root = watched

        watcher.notify(project.id, str(root / relative), ChangeKind.MODIFIED)
        watcher.flush()

        assert intents == []

    def test_paths_outside_root_dropped(self, watched, intents, tmp_path: Path):
        watcher, project, _ = watched

        watcher.notify(project.id, str(tmp_path / "elsewhere.less"), ChangeKind.MODIFIED)
        watcher.flush()

        assert intents == []

    def test_directory_changes_pass_through(self, watched, intents):
        watcher, project, root = watched

        watcher.notify(project.id, str(root / "styles"), ChangeKind.REMOVED, is_directory=True)
        watcher.flush()

        assert [(i.path, i.file_id) for i in intents] == [(str(root / "styles"), None)]

    def test_unknown_project_ignored(self, watched, intents, project_dir: Path):
        watcher, _, root = watched

        watcher.notify("not-watched", str(root / "a.less"), ChangeKind.MODIFIED)
        watcher.flush()

        assert intents == []

    def test_unwatch_drops_pending_and_later_changes(self, watched, intents):
        watcher, project, root = watched
        watcher.notify(project.id, str(root / "a.less"), ChangeKind.MODIFIED)

        watcher.unwatch(project.id)
        watcher.notify(project.id, str(root / "a.less"), ChangeKind.MODIFIED)
        watcher.flush()

        assert intents == []
        assert watcher.watched_project_ids() == []

    def test_start_schedules_recursive_subscriptions(self, watched):
        watcher, project, root = watched

        watcher.start()
        observer = watcher._observer

        assert observer.started
        assert observer.scheduled == [(str(root), True)]
        assert watcher.running

        watcher.unwatch(project.id)
        assert observer.unscheduled == [(str(root), True)]

        watcher.stop()
        assert observer.stopped
        assert not watcher.running

    def test_watch_is_idempotent(self, watched):
        watcher, project, _ = watched
        watcher.watch(project)
        assert watcher.watched_project_ids() == [project.id]

    def test_stop_flushes_pending(self, watched, intents):
        watcher, project, root = watched
        watcher.start()
        watcher.notify(project.id, str(root / "a.less"), ChangeKind.MODIFIED)

        watcher.stop()

        assert len(intents) == 1


class TestWatchdogEventMapping:

    def _handler(self, watched):
        watcher, project, root = watched
        return _ProjectEventHandler(watcher, project.id), watcher, root

    def test_file_events(self, watched, intents):
        handler, watcher, root = self._handler(watched)

        handler.on_created(FileCreatedEvent(str(root / "b.less")))
        handler.on_modified(FileModifiedEvent(str(root / "a.less")))
        watcher.flush()

        kinds = {os.path.basename(i.path): i.change_kind for i in intents}
        assert kinds == {"b.less": ChangeKind.CREATED, "a.less": ChangeKind.MODIFIED}

    def test_directory_modified_ignored(self, watched, intents):
        handler, watcher, root = self._handler(watched)

        handler.on_modified(DirModifiedEvent(str(root / "styles")))
        watcher.flush()

        assert intents == []

    def test_move_is_remove_plus_create(self, watched, intents):
        handler, watcher, root = self._handler(watched)

        handler.on_moved(FileMovedEvent(str(root / "a.less"), str(root / "b.less")))
        watcher.flush()

        kinds = {os.path.basename(i.path): i.change_kind for i in intents}
        assert kinds == {"a.less": ChangeKind.REMOVED, "b.less": ChangeKind.CREATED}


@pytest.mark.slow
class TestRealObserver:

    def test_file_write_produces_intent(self, store: ProjectStore, project_dir: Path):
        """
        GIVEN a watcher running a real watchdog observer
        WHEN a source file is rewritten
        THEN a modified (or created) intent for that file arrives
        """
        received: List[ChangeIntent] = []
        manager = ProjectManager(store)
        project = manager.add_project(str(project_dir))
        watcher = ProjectWatcher(store, received.append, debounce_seconds=0.05)
        watcher.watch(project)
        watcher.start()
        try:
            time.sleep(0.2)
            target = Path(project.root_path) / "a.less"
            target.write_text("body { color: blue; }\n")

            assert _wait_for(lambda: any(i.path == str(target) for i in received))
        finally:
            watcher.stop()
