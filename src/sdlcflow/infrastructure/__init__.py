"""
Infrastructure layer for the SDLC orchestration core.

Contains adapters for persistence, workers, configuration loading and
interactive gate review.
"""

from sdlcflow.infrastructure.config import (
    config_from_document,
    definition_from_document,
    load_config,
    load_definition,
)
from sdlcflow.infrastructure.interactive import ConsoleGateReviewer
from sdlcflow.infrastructure.persistence import (
    FilesystemArtifactStore,
    FilesystemCheckpointLog,
    FilesystemRunEventStore,
    FilesystemRunStore,
    InMemoryArtifactStore,
    InMemoryCheckpointLog,
    InMemoryRunEventStore,
    InMemoryRunStore,
)
from sdlcflow.infrastructure.registry import WorkerRegistry
from sdlcflow.infrastructure.workers import CallableWorker, ScriptedWorker

__all__ = [
    # Persistence
    "InMemoryArtifactStore",
    "FilesystemArtifactStore",
    "InMemoryCheckpointLog",
    "FilesystemCheckpointLog",
    "InMemoryRunEventStore",
    "FilesystemRunEventStore",
    "InMemoryRunStore",
    "FilesystemRunStore",
    # Workers
    "CallableWorker",
    "ScriptedWorker",
    "WorkerRegistry",
    # Configuration
    "load_definition",
    "load_config",
    "definition_from_document",
    "config_from_document",
    # Interactive
    "ConsoleGateReviewer",
]
