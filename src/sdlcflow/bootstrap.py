"""
Wiring of a WorkflowSupervisor with concrete adapters.

In-memory stores by default; with a state directory every store is
file-backed and runs survive a restart (see WorkflowSupervisor.load_run).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sdlcflow.application.supervisor import WorkflowSupervisor
from sdlcflow.domain.config import OrchestratorConfig
from sdlcflow.infrastructure.config import definition_from_document
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

logger = logging.getLogger(__name__)


def build_supervisor(
    config: OrchestratorConfig | None = None,
    state_dir: str | Path | None = None,
    **kwargs: Any,
) -> WorkflowSupervisor:
    """Build a supervisor whose definition workers come from the registry.

    Args:
        config: Orchestrator policy (defaults if None)
        state_dir: Root directory for file-backed stores; in-memory if None
        **kwargs: Passed through to WorkflowSupervisor (clock, rng,
            executor, notifiers, definition parser)

    Returns:
        The configured supervisor.
    """
    if state_dir is None:
        artifacts = InMemoryArtifactStore()
        checkpoints = InMemoryCheckpointLog()
        events = InMemoryRunEventStore()
        runs = InMemoryRunStore()
    else:
        root = Path(state_dir)
        artifacts = FilesystemArtifactStore(root)
        checkpoints = FilesystemCheckpointLog(root)
        events = FilesystemRunEventStore(root)
        runs = FilesystemRunStore(root)
        logger.debug("File-backed state under %s", root)

    kwargs.setdefault("worker_factory", WorkerRegistry.handler_for)
    kwargs.setdefault("definition_parser", definition_from_document)
    return WorkflowSupervisor(
        artifacts=artifacts,
        checkpoint_log=checkpoints,
        event_store=events,
        config=config,
        run_store=runs,
        **kwargs,
    )
