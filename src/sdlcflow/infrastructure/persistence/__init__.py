"""
Persistence adapters for artifacts, checkpoints, run events and run records.
"""

from sdlcflow.infrastructure.persistence.checkpoint import FilesystemCheckpointLog
from sdlcflow.infrastructure.persistence.filesystem import FilesystemArtifactStore
from sdlcflow.infrastructure.persistence.memory import (
    InMemoryArtifactStore,
    InMemoryCheckpointLog,
    InMemoryRunEventStore,
    InMemoryRunStore,
)
from sdlcflow.infrastructure.persistence.run_events import FilesystemRunEventStore
from sdlcflow.infrastructure.persistence.run_store import FilesystemRunStore

__all__ = [
    "InMemoryArtifactStore",
    "FilesystemArtifactStore",
    "InMemoryCheckpointLog",
    "FilesystemCheckpointLog",
    "InMemoryRunEventStore",
    "FilesystemRunEventStore",
    "InMemoryRunStore",
    "FilesystemRunStore",
]
