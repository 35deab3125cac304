"""
Filesystem implementation of the Artifact Store.

Blobs are content-addressed (sha256) under prefix directories and shared
by every version that carries the same content. An index maps each
``namespace/key`` to its ordered versions.

Directory structure:
{base_dir}/
    objects/
        {hash[:2]}/{hash}.json
    index.json
"""

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sdlcflow.domain.interfaces import ArtifactStoreInterface
from sdlcflow.domain.models import Artifact
from sdlcflow.infrastructure.persistence.memory import content_hash


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON using write-to-temp + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    with open(temp_path, "w") as f:
        json.dump(data, f, indent=2)
    temp_path.replace(path)  # Atomic on POSIX


class FilesystemArtifactStore(ArtifactStoreInterface):
    """
    Persistent, append-only artifact repository.

    Versions are assigned under a lock and published by an atomic index
    update, so a reader never observes a version whose blob is missing.
    """

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)
        self._objects_dir = self._base_dir / "objects"
        self._index_path = self._base_dir / "index.json"
        self._lock = threading.Lock()
        self._index: dict[str, Any] = self._load_or_create_index()

    def _load_or_create_index(self) -> dict[str, Any]:
        """Load existing index or create new one."""
        self._objects_dir.mkdir(parents=True, exist_ok=True)

        if self._index_path.exists():
            with open(self._index_path) as f:
                result: dict[str, Any] = json.load(f)
                return result

        return {"version": "1.0", "keys": {}}

    @staticmethod
    def _index_key(namespace: str, key: str) -> str:
        return f"{namespace}/{key}"

    def _object_path(self, digest: str) -> Path:
        return self._objects_dir / digest[:2] / f"{digest}.json"

    def put(
        self, namespace: str, key: str, content: str, producer_task_id: str
    ) -> Artifact:
        digest = content_hash(content)
        with self._lock:
            object_path = self._object_path(digest)
            if not object_path.exists():
                write_json_atomic(object_path, {"content": content})

            entries = self._index["keys"].setdefault(self._index_key(namespace, key), [])
            entry = {
                "version": len(entries) + 1,
                "content_hash": digest,
                "producer_task_id": producer_task_id,
                "created_at": datetime.now(UTC).isoformat(),
            }
            entries.append(entry)
            write_json_atomic(self._index_path, self._index)
        return self._to_artifact(namespace, key, entry, content)

    def get(self, namespace: str, key: str, version: int | None = None) -> Artifact:
        with self._lock:
            entries = self._index["keys"].get(self._index_key(namespace, key))
            if not entries:
                raise KeyError(f"Artifact not found: {namespace}/{key}")
            if version is None:
                entry = entries[-1]
            elif 1 <= version <= len(entries):
                entry = entries[version - 1]
            else:
                raise KeyError(f"Artifact not found: {namespace}/{key}@v{version}")
            with open(self._object_path(entry["content_hash"])) as f:
                content = json.load(f)["content"]
        return self._to_artifact(namespace, key, entry, content)

    def versions(self, namespace: str, key: str) -> list[int]:
        with self._lock:
            entries = self._index["keys"].get(self._index_key(namespace, key), [])
            return [e["version"] for e in entries]

    def exists(self, namespace: str, key: str, version: int | None = None) -> bool:
        count = len(self.versions(namespace, key))
        if version is None:
            return count > 0
        return 1 <= version <= count

    @staticmethod
    def _to_artifact(
        namespace: str, key: str, entry: dict[str, Any], content: str
    ) -> Artifact:
        return Artifact(
            namespace=namespace,
            key=key,
            version=entry["version"],
            content=content,
            content_hash=entry["content_hash"],
            producer_task_id=entry["producer_task_id"],
            created_at=entry["created_at"],
        )
