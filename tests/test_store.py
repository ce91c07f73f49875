"""Tests for the task store."""

import json
import os
import stat
import sys

import pytest

from feature_harness.exceptions import DuplicateTaskError, StoreNotFoundError, TaskStoreError
from feature_harness.models import Task, TaskCategory, TaskList
from feature_harness.store import TaskStore

from conftest import make_task, write_feature_list


class TestTaskStoreLoad:
    def test_load(self, project):
        task_list = TaskStore(project).load()
        assert task_list.project_name == "Test Project"
        assert [t.id for t in task_list.features] == ["F001", "F002"]

    def test_missing_file(self, tmp_path):
        store = TaskStore(tmp_path)
        assert not store.exists()
        with pytest.raises(StoreNotFoundError):
            store.load()

    def test_invalid_json(self, tmp_path):
        (tmp_path / "feature_list.json").write_text("{broken")
        with pytest.raises(TaskStoreError) as exc_info:
            TaskStore(tmp_path).load()
        assert "not valid JSON" in str(exc_info.value)

    def test_invalid_shape(self, tmp_path):
        (tmp_path / "feature_list.json").write_text('{"features": "nope"}')
        with pytest.raises(TaskStoreError):
            TaskStore(tmp_path).load()

    def test_reads_edits_made_behind_its_back(self, project):
        """Every call goes back to disk."""
        store = TaskStore(project)
        assert store.next_task().id == "F001"

        data = json.loads((project / "feature_list.json").read_text())
        data["features"][0]["passes"] = True
        (project / "feature_list.json").write_text(json.dumps(data))

        assert store.next_task().id == "F002"


class TestTaskStoreSelection:
    def test_fifo_across_categories(self, tmp_path):
        write_feature_list(tmp_path, [
            make_task("F001", passes=True),
            make_task("B001", task_type="bugfix"),
            make_task("F002"),
        ])
        store = TaskStore(tmp_path)
        assert store.next_task().id == "B001"
        assert store.next_task(TaskCategory.FEATURE).id == "F002"

    def test_none_when_all_pass(self, tmp_path):
        write_feature_list(tmp_path, [make_task("F001", passes=True)])
        assert TaskStore(tmp_path).next_task() is None


class TestTaskStoreWrite:
    def test_create_and_refuse_overwrite(self, tmp_path):
        store = TaskStore(tmp_path)
        store.create(TaskList(project_name="New"))
        assert store.load().project_name == "New"

        with pytest.raises(TaskStoreError):
            store.create(TaskList(project_name="Other"))

        store.create(TaskList(project_name="Other"), overwrite=True)
        assert store.load().project_name == "Other"

    def test_save_leaves_no_temp_files(self, project):
        store = TaskStore(project)
        store.save(store.load())
        leftovers = [p.name for p in project.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_append_task(self, project):
        store = TaskStore(project)
        store.append_task(Task.model_validate(make_task("B001", task_type="bugfix")))

        ids = [t.id for t in store.load().features]
        assert ids == ["F001", "F002", "B001"]

    def test_append_preserves_unknown_fields(self, tmp_path):
        write_feature_list(tmp_path, [make_task("F001", notes="keep me")], owner="team-a")
        store = TaskStore(tmp_path)
        store.append_task(Task.model_validate(make_task("F002")))

        data = json.loads((tmp_path / "feature_list.json").read_text())
        assert data["owner"] == "team-a"
        assert data["features"][0]["notes"] == "keep me"

    def test_duplicate_batch_writes_nothing(self, project):
        path = project / "feature_list.json"
        before = path.read_bytes()

        batch = [
            Task.model_validate(make_task("F003")),
            Task.model_validate(make_task("F001")),
        ]
        with pytest.raises(DuplicateTaskError) as exc_info:
            TaskStore(project).append_tasks(batch)

        assert exc_info.value.duplicate_ids == ["F001"]
        assert path.read_bytes() == before

    def test_duplicate_inside_batch(self, project):
        batch = [
            Task.model_validate(make_task("F003")),
            Task.model_validate(make_task("F003")),
        ]
        with pytest.raises(DuplicateTaskError):
            TaskStore(project).append_tasks(batch)
        assert len(TaskStore(project).load().features) == 2

    def test_reset_all(self, tmp_path):
        write_feature_list(tmp_path, [
            make_task("F001", passes=True),
            make_task("F002", passes=True),
            make_task("F003"),
        ])
        store = TaskStore(tmp_path)
        assert store.reset_all() == 2
        assert all(not t.done for t in store.load().features)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
class TestTaskStorePermissions:
    def test_save_keeps_existing_mode(self, project):
        path = project / "feature_list.json"
        os.chmod(path, 0o644)

        store = TaskStore(project)
        store.save(store.load())

        assert stat.S_IMODE(path.stat().st_mode) == 0o644

    def test_reset_keeps_group_writable_mode(self, project):
        path = project / "feature_list.json"
        os.chmod(path, 0o664)

        TaskStore(project).reset_all()

        assert stat.S_IMODE(path.stat().st_mode) == 0o664

    def test_new_file_follows_umask(self, tmp_path):
        old_umask = os.umask(0o022)
        try:
            TaskStore(tmp_path).create(TaskList(project_name="New"))
        finally:
            os.umask(old_umask)

        assert stat.S_IMODE((tmp_path / "feature_list.json").stat().st_mode) == 0o644
