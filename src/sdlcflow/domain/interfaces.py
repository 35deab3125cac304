"""
Domain interfaces (Ports) for the SDLC orchestration core.

These abstract base classes define the contracts that adapters must satisfy.
They have no external dependencies and represent the core domain boundaries.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sdlcflow.domain.models import (
        Artifact,
        Checkpoint,
        TaskAssignment,
        TaskOutcome,
    )
    from sdlcflow.domain.run_event import RunEvent, RunEventType


class WorkerInterface(ABC):
    """
    Port for task execution.

    A worker is polymorphic over capability tags: new roles (security audit,
    database design, ...) are added by registering a worker for a new tag,
    never by subclassing a role hierarchy.

    Note (Side Effects & Idempotency):
        Workers write their declared outputs to the artifact store before
        returning. A retried attempt writes new versions; readers only ever
        see the version pinned when the task transitions to done.
    """

    @abstractmethod
    def execute(
        self, assignment: "TaskAssignment", artifacts: "ArtifactStoreInterface"
    ) -> "TaskOutcome":
        """
        Execute one attempt of a task.

        Args:
            assignment: Task definition, attempt number and resolved input refs
            artifacts: Store to read inputs from and write outputs to

        Returns:
            TaskOutcome with success flag, (key, version) outputs and a cause
        """
        pass


class ArtifactStoreInterface(ABC):
    """
    Port for artifact persistence.

    Append-only and versioned: every put creates a new version of the key.
    Implementations must assign versions atomically per key.
    """

    @abstractmethod
    def put(
        self, namespace: str, key: str, content: str, producer_task_id: str
    ) -> "Artifact":
        """
        Store a new version of an artifact.

        Args:
            namespace: Run id owning the artifact
            key: Artifact key declared by the producing task
            content: Blob content
            producer_task_id: Task writing this version

        Returns:
            The stored artifact with its assigned version
        """
        pass

    @abstractmethod
    def get(self, namespace: str, key: str, version: int | None = None) -> "Artifact":
        """
        Retrieve an artifact version (latest if version is None).

        Raises:
            KeyError: If key or version not found
        """
        pass

    @abstractmethod
    def versions(self, namespace: str, key: str) -> list[int]:
        """List stored versions of a key, oldest first (empty if unknown)."""
        pass

    @abstractmethod
    def exists(self, namespace: str, key: str, version: int | None = None) -> bool:
        """Check whether a key (or a specific version of it) is stored."""
        pass


class CheckpointLogInterface(ABC):
    """Port for the append-only checkpoint log used by rollback."""

    @abstractmethod
    def append(self, checkpoint: "Checkpoint") -> str:
        """Append a checkpoint and return its id."""
        pass

    @abstractmethod
    def get(self, checkpoint_id: str) -> "Checkpoint":
        """
        Retrieve a checkpoint by id.

        Raises:
            KeyError: If checkpoint not found
        """
        pass

    @abstractmethod
    def list_for_run(self, run_id: str) -> list["Checkpoint"]:
        """List checkpoints of a run in append order."""
        pass


class RunEventStoreInterface(ABC):
    """Port for the audit trail of run events."""

    @abstractmethod
    def store_event(self, event: "RunEvent") -> str:
        """Store an event and return its id."""
        pass

    @abstractmethod
    def get_events(
        self,
        run_id: str,
        event_type: "RunEventType | None" = None,
        subject_id: str | None = None,
    ) -> list["RunEvent"]:
        """Get events of a run, optionally filtered, in creation order."""
        pass


class RunStoreInterface(ABC):
    """Port for the durable per-run record."""

    @abstractmethod
    def save(self, run_id: str, record: dict[str, Any]) -> None:
        """Replace the stored record of a run atomically."""
        pass

    @abstractmethod
    def load(self, run_id: str) -> dict[str, Any]:
        """
        Load the stored record of a run.

        Raises:
            KeyError: If no record exists
        """
        pass

    @abstractmethod
    def list_runs(self) -> list[str]:
        """List ids of all stored runs."""
        pass
