"""
In-memory implementations of the persistence ports.

Useful for testing and ephemeral runs. Each store guards its state with a
lock so that concurrent runs and worker threads can share it.
"""

import copy
import hashlib
import threading
from datetime import UTC, datetime
from typing import Any

from sdlcflow.domain.interfaces import (
    ArtifactStoreInterface,
    CheckpointLogInterface,
    RunEventStoreInterface,
    RunStoreInterface,
)
from sdlcflow.domain.models import Artifact, Checkpoint
from sdlcflow.domain.run_event import RunEvent, RunEventType


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class InMemoryArtifactStore(ArtifactStoreInterface):
    """Versioned key -> blob store held in a dict."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._artifacts: dict[tuple[str, str], list[Artifact]] = {}

    def put(
        self, namespace: str, key: str, content: str, producer_task_id: str
    ) -> Artifact:
        with self._lock:
            versions = self._artifacts.setdefault((namespace, key), [])
            artifact = Artifact(
                namespace=namespace,
                key=key,
                version=len(versions) + 1,
                content=content,
                content_hash=content_hash(content),
                producer_task_id=producer_task_id,
                created_at=datetime.now(UTC).isoformat(),
            )
            versions.append(artifact)
            return artifact

    def get(self, namespace: str, key: str, version: int | None = None) -> Artifact:
        with self._lock:
            versions = self._artifacts.get((namespace, key))
            if not versions:
                raise KeyError(f"Artifact not found: {namespace}/{key}")
            if version is None:
                return versions[-1]
            if not 1 <= version <= len(versions):
                raise KeyError(f"Artifact not found: {namespace}/{key}@v{version}")
            return versions[version - 1]

    def versions(self, namespace: str, key: str) -> list[int]:
        with self._lock:
            return [a.version for a in self._artifacts.get((namespace, key), [])]

    def exists(self, namespace: str, key: str, version: int | None = None) -> bool:
        with self._lock:
            count = len(self._artifacts.get((namespace, key), []))
        if version is None:
            return count > 0
        return 1 <= version <= count


class InMemoryCheckpointLog(CheckpointLogInterface):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._checkpoints: dict[str, Checkpoint] = {}

    def append(self, checkpoint: Checkpoint) -> str:
        with self._lock:
            if checkpoint.checkpoint_id in self._checkpoints:
                raise ValueError(f"Checkpoint already recorded: {checkpoint.checkpoint_id}")
            self._checkpoints[checkpoint.checkpoint_id] = checkpoint
        return checkpoint.checkpoint_id

    def get(self, checkpoint_id: str) -> Checkpoint:
        with self._lock:
            if checkpoint_id not in self._checkpoints:
                raise KeyError(f"Checkpoint not found: {checkpoint_id}")
            return self._checkpoints[checkpoint_id]

    def list_for_run(self, run_id: str) -> list[Checkpoint]:
        with self._lock:
            return [c for c in self._checkpoints.values() if c.run_id == run_id]


class InMemoryRunEventStore(RunEventStoreInterface):
    """In-memory implementation for testing."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[RunEvent] = []

    def store_event(self, event: RunEvent) -> str:
        with self._lock:
            self._events.append(event)
        return event.event_id

    def get_events(
        self,
        run_id: str,
        event_type: RunEventType | None = None,
        subject_id: str | None = None,
    ) -> list[RunEvent]:
        with self._lock:
            return [
                e
                for e in self._events
                if e.run_id == run_id
                and (event_type is None or e.event_type == event_type)
                and (subject_id is None or e.subject_id == subject_id)
            ]


class InMemoryRunStore(RunStoreInterface):
    """Keeps deep copies of run records so later mutation cannot leak in."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, dict[str, Any]] = {}

    def save(self, run_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._records[run_id] = copy.deepcopy(record)

    def load(self, run_id: str) -> dict[str, Any]:
        with self._lock:
            if run_id not in self._records:
                raise KeyError(f"Run not found: {run_id}")
            return copy.deepcopy(self._records[run_id])

    def list_runs(self) -> list[str]:
        with self._lock:
            return sorted(self._records)
