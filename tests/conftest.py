"""Shared pytest fixtures for sdlcflow tests."""

import pytest
from helpers import FakeClock, InlineExecutor

from sdlcflow.application.supervisor import WorkflowSupervisor
from sdlcflow.domain.config import OrchestratorConfig, RetryPolicy, SprintPolicy
from sdlcflow.infrastructure.config import definition_from_document
from sdlcflow.infrastructure.persistence.memory import (
    InMemoryArtifactStore,
    InMemoryCheckpointLog,
    InMemoryRunEventStore,
    InMemoryRunStore,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def artifacts() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


@pytest.fixture
def events() -> InMemoryRunEventStore:
    return InMemoryRunEventStore()


@pytest.fixture
def checkpoint_log() -> InMemoryCheckpointLog:
    return InMemoryCheckpointLog()


@pytest.fixture
def run_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def config() -> OrchestratorConfig:
    """Deterministic policy: no jitter, seed capacity for sprints."""
    return OrchestratorConfig(
        retry=RetryPolicy(
            max_retries=3, base_delay_seconds=1.0, max_delay_seconds=60.0, jitter=0.0
        ),
        sprints=SprintPolicy(seed_capacity=20),
    )


@pytest.fixture
def supervisor(
    artifacts: InMemoryArtifactStore,
    checkpoint_log: InMemoryCheckpointLog,
    events: InMemoryRunEventStore,
    run_store: InMemoryRunStore,
    config: OrchestratorConfig,
    clock: FakeClock,
) -> WorkflowSupervisor:
    """Supervisor running workers inline under a fake clock."""
    return WorkflowSupervisor(
        artifacts=artifacts,
        checkpoint_log=checkpoint_log,
        event_store=events,
        config=config,
        run_store=run_store,
        executor=InlineExecutor(),
        clock=clock,
        definition_parser=definition_from_document,
    )
