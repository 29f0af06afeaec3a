"""
Tests for the JSON project store.

These tests verify:
1. Missing store file loads as empty; saved state loads back
2. Corrupt content raises CorruptStoreError instead of resetting
3. Saves replace the file atomically and leave no temp files behind
4. Reads return copies; failed mutations write nothing
5. Build status writes to removed records are dropped
"""

import json
from pathlib import Path

import pytest

from kiln.catalog.classifier import FileKind
from kiln.persistence import CorruptStoreError, ProjectStore, SaveError, STORE_VERSION
from kiln.projects.models import BuildStatus, FileRecord, Project, file_id_for


def _project(root: str = "/tmp/p1", sources=("a.less",)) -> Project:
    project = Project(root_path=root)
    for name in sources:
        path = f"{root}/{name}"
        kind = FileKind.SCRIPT if name.endswith(".coffee") else FileKind.STYLESHEET
        record = FileRecord(id=file_id_for(project.id, path), source_path=path, kind=kind)
        project.files[record.id] = record
    return project


# -----------------------------------------------------------------------------
# Load / save
# -----------------------------------------------------------------------------

class TestLoadSave:

    def test_missing_file_is_empty_store(self, tmp_path: Path):
        store = ProjectStore(str(tmp_path / "projects.json"))
        store.load()
        assert store.all() == []

    def test_roundtrip_through_disk(self, tmp_path: Path):
        path = tmp_path / "projects.json"
        store = ProjectStore(str(path))
        store.load()
        project = _project(sources=("a.less", "js/app.coffee"))
        store.upsert(project)

        reloaded = ProjectStore(str(path))
        reloaded.load()

        assert reloaded.get(project.id) == project

    def test_document_layout(self, tmp_path: Path):
        path = tmp_path / "projects.json"
        store = ProjectStore(str(path))
        store.load()
        project = _project()
        store.upsert(project)

        document = json.loads(path.read_text())

        assert document["version"] == STORE_VERSION
        stored = document["projects"][project.id]
        assert stored["root_path"] == "/tmp/p1"
        record = next(iter(stored["files"].values()))
        assert record["kind"] == "stylesheet"
        assert record["output_path"] == ""
        assert record["compile_enabled"] is True
        assert record["last_status"] == "unbuilt"

    def test_save_leaves_no_temp_files(self, tmp_path: Path):
        store = ProjectStore(str(tmp_path / "projects.json"))
        store.load()
        for _ in range(3):
            store.upsert(_project())

        assert [p.name for p in tmp_path.iterdir()] == ["projects.json"]

    def test_creates_parent_directory(self, tmp_path: Path):
        path = tmp_path / "deep" / "data" / "projects.json"
        store = ProjectStore(str(path))
        store.load()
        store.upsert(_project())
        assert path.exists()


class TestCorruptStore:
    """A damaged store must be surfaced, never silently reset."""

    @pytest.mark.parametrize("content", [
        "{not json",
        "[]",
        '{"version": 1}',
        '{"version": 99, "projects": {}}',
        '{"version": 1, "projects": {"abc": {"root_path": 5}}}',
    ])
    def test_load_raises(self, tmp_path: Path, content: str):
        path = tmp_path / "projects.json"
        path.write_text(content)
        store = ProjectStore(str(path))

        with pytest.raises(CorruptStoreError):
            store.load()

        # The damaged file is left in place for the operator
        assert path.read_text() == content

    def test_key_must_match_project_id(self, tmp_path: Path):
        project = _project()
        path = tmp_path / "projects.json"
        path.write_text(json.dumps({
            "version": 1,
            "projects": {"other-id": project.model_dump(mode="json")},
        }))

        with pytest.raises(CorruptStoreError) as exc_info:
            ProjectStore(str(path)).load()
        assert "does not match" in str(exc_info.value)

    def test_unwritable_location_raises_save_error(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file where a directory should be")
        store = ProjectStore(str(blocker / "projects.json"))
        store.load()

        with pytest.raises(SaveError):
            store.upsert(_project())
        assert store.all() == []


# -----------------------------------------------------------------------------
# Reads and mutations
# -----------------------------------------------------------------------------

class TestReadsAndMutations:

    def test_get_returns_copy(self, store: ProjectStore):
        project = _project()
        store.upsert(project)

        copy = store.get(project.id)
        copy.files.clear()

        assert len(store.get(project.id).files) == 1

    def test_find_by_root_and_contains(self, store: ProjectStore):
        project = _project(root="/tmp/p2")
        store.upsert(project)

        assert store.find_by_root("/tmp/p2").id == project.id
        assert store.find_by_root("/tmp/other") is None
        assert project.id in store
        assert "missing" not in store

    def test_all_is_oldest_first(self, store: ProjectStore):
        first, second = _project(root="/a"), _project(root="/b")
        store.upsert(second)
        store.upsert(first)

        ids = [p.id for p in store.all()]
        expected = [p.id for p in sorted([first, second], key=lambda p: p.created_at)]
        assert ids == expected

    def test_remove(self, store: ProjectStore):
        project = _project()
        store.upsert(project)

        assert store.remove(project.id) is True
        assert store.remove(project.id) is False
        assert store.get(project.id) is None

    def test_update_unknown_project_returns_none(self, store: ProjectStore):
        assert store.update("missing", lambda p: p) is None

    def test_failed_mutator_writes_nothing(self, store: ProjectStore):
        """
        GIVEN a stored project
        WHEN an update's mutator raises
        THEN the exception propagates and neither memory nor disk changes
        """
        project = _project()
        store.upsert(project)
        before = store.path.read_text()

        def explode(p: Project) -> Project:
            p.files.clear()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update(project.id, explode)

        assert store.get(project.id) == project
        assert store.path.read_text() == before


class TestRecordBuild:

    def test_records_error_then_clears_on_success(self, store: ProjectStore):
        project = _project()
        store.upsert(project)
        file_id = next(iter(project.files))

        failed = store.record_build(project.id, file_id, BuildStatus.ERROR, "boom on line 2")
        assert failed.last_status == BuildStatus.ERROR
        assert failed.last_error == "boom on line 2"
        assert failed.last_built_at is not None

        ok = store.record_build(project.id, file_id, BuildStatus.OK)
        assert ok.last_status == BuildStatus.OK
        assert ok.last_error is None

    def test_writes_to_removed_records_are_dropped(self, store: ProjectStore):
        project = _project()
        store.upsert(project)
        file_id = next(iter(project.files))
        store.remove(project.id)

        assert store.record_build(project.id, file_id, BuildStatus.OK) is None
        assert store.record_build("nope", "nope", BuildStatus.OK) is None
        assert store.all() == []
