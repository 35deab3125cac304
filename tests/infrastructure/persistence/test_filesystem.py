"""Tests for the artifact stores (in-memory and filesystem)."""

import json
import threading

import pytest

from sdlcflow.infrastructure.persistence.filesystem import FilesystemArtifactStore
from sdlcflow.infrastructure.persistence.memory import InMemoryArtifactStore


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):  # noqa: ANN001
    """Each artifact store implementation behind the same port."""
    if request.param == "memory":
        return InMemoryArtifactStore()
    return FilesystemArtifactStore(tmp_path / "state")


class TestArtifactStoreContract:
    """Behaviour every ArtifactStoreInterface implementation shares."""

    def test_put_assigns_increasing_versions(self, store) -> None:  # noqa: ANN001
        first = store.put("run-1", "spec", "v1 text", "spec-task")
        second = store.put("run-1", "spec", "v2 text", "spec-task")

        assert (first.version, second.version) == (1, 2)
        assert store.versions("run-1", "spec") == [1, 2]

    def test_get_latest_and_exact_version(self, store) -> None:  # noqa: ANN001
        store.put("run-1", "spec", "old", "a")
        store.put("run-1", "spec", "new", "a")

        assert store.get("run-1", "spec").content == "new"
        old = store.get("run-1", "spec", 1)
        assert old.content == "old"
        assert old.producer_task_id == "a"
        assert old.namespace == "run-1"

    def test_versions_are_immutable(self, store) -> None:  # noqa: ANN001
        store.put("run-1", "spec", "original", "a")
        store.put("run-1", "spec", "rewrite", "a")

        assert store.get("run-1", "spec", 1).content == "original"

    def test_missing_key_or_version(self, store) -> None:  # noqa: ANN001
        store.put("run-1", "spec", "text", "a")

        with pytest.raises(KeyError):
            store.get("run-1", "design")
        with pytest.raises(KeyError):
            store.get("run-1", "spec", 2)
        with pytest.raises(KeyError):
            store.get("run-1", "spec", 0)

    def test_exists(self, store) -> None:  # noqa: ANN001
        assert not store.exists("run-1", "spec")
        store.put("run-1", "spec", "text", "a")

        assert store.exists("run-1", "spec")
        assert store.exists("run-1", "spec", 1)
        assert not store.exists("run-1", "spec", 2)

    def test_namespaces_are_isolated(self, store) -> None:  # noqa: ANN001
        store.put("run-1", "spec", "one", "a")
        store.put("run-2", "spec", "two", "a")

        assert store.get("run-2", "spec").version == 1
        assert store.get("run-1", "spec").content == "one"

    def test_content_hash_is_sha256(self, store) -> None:  # noqa: ANN001
        artifact = store.put("run-1", "spec", "hello", "a")

        assert artifact.content_hash == (
            "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
        )

    def test_concurrent_puts_get_distinct_versions(self, store) -> None:  # noqa: ANN001
        """Versions are assigned atomically per key."""
        threads = [
            threading.Thread(
                target=store.put, args=("run-1", "log", f"entry {i}", "a")
            )
            for i in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.versions("run-1", "log") == list(range(1, 21))


class TestFilesystemArtifactStore:
    """Filesystem-specific persistence behaviour."""

    def test_init_creates_layout(self, tmp_path) -> None:  # noqa: ANN001
        FilesystemArtifactStore(tmp_path / "state")

        assert (tmp_path / "state" / "objects").is_dir()

    def test_survives_reopen(self, tmp_path) -> None:  # noqa: ANN001
        """A new store on the same directory sees every version."""
        FilesystemArtifactStore(tmp_path).put("run-1", "spec", "persisted", "a")

        reopened = FilesystemArtifactStore(tmp_path)

        assert reopened.get("run-1", "spec").content == "persisted"
        assert reopened.versions("run-1", "spec") == [1]

    def test_identical_content_shares_one_blob(self, tmp_path) -> None:  # noqa: ANN001
        store = FilesystemArtifactStore(tmp_path)

        first = store.put("run-1", "spec", "same", "a")
        store.put("run-2", "notes", "same", "b")

        blobs = list((tmp_path / "objects").rglob("*.json"))
        assert len(blobs) == 1
        assert blobs[0].name == f"{first.content_hash}.json"

    def test_index_records_versions(self, tmp_path) -> None:  # noqa: ANN001
        store = FilesystemArtifactStore(tmp_path)
        store.put("run-1", "spec", "text", "spec-task")

        with open(tmp_path / "index.json") as f:
            index = json.load(f)

        entry = index["keys"]["run-1/spec"][0]
        assert entry["version"] == 1
        assert entry["producer_task_id"] == "spec-task"
        assert not list(tmp_path.rglob("*.tmp"))
