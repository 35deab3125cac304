"""Tests for the filesystem run store."""

import pytest

from sdlcflow.infrastructure.persistence.run_store import FilesystemRunStore


@pytest.fixture
def store(tmp_path) -> FilesystemRunStore:
    return FilesystemRunStore(tmp_path)


class TestFilesystemRunStore:
    def test_save_and_load(self, store, tmp_path):
        record = {"run_id": "run-1", "status": "running", "state": {"tasks": {}}}

        store.save("run-1", record)

        assert (tmp_path / "runs" / "run-1.json").exists()
        assert store.load("run-1") == record

    def test_save_replaces_previous_record(self, store):
        store.save("run-1", {"status": "running"})
        store.save("run-1", {"status": "completed"})

        assert store.load("run-1") == {"status": "completed"}

    def test_no_temp_files_left_behind(self, store, tmp_path):
        store.save("run-1", {"status": "running"})

        assert list((tmp_path / "runs").glob("*.tmp")) == []

    def test_list_runs_sorted(self, store):
        for run_id in ["run-b", "run-a", "run-c"]:
            store.save(run_id, {})

        assert store.list_runs() == ["run-a", "run-b", "run-c"]

    def test_missing_run(self, store):
        with pytest.raises(KeyError, match="ghost"):
            store.load("ghost")

    def test_survives_reopen(self, store, tmp_path):
        store.save("run-1", {"status": "paused"})

        assert FilesystemRunStore(tmp_path).load("run-1") == {"status": "paused"}
