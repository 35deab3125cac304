"""
Domain layer for the SDLC orchestration core.

Contains core business rules with no external dependencies.
"""

from sdlcflow.domain.config import (
    GatePolicy,
    IncidentPolicy,
    OrchestratorConfig,
    RetryPolicy,
    SprintPolicy,
)
from sdlcflow.domain.definition import parse_definition
from sdlcflow.domain.exceptions import (
    CapacityUnavailable,
    ConfigError,
    GateInvalidTransition,
    IncidentClosed,
    InvalidIncidentTransition,
    InvalidTaskTransition,
    NoCapableWorker,
    OrchestrationError,
    ReworkScopeRequired,
    RollbackTargetMissing,
    RunNotActive,
    RunNotFound,
    SprintPlanningError,
    TaskExecutionFailure,
)
from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.interfaces import (
    ArtifactStoreInterface,
    CheckpointLogInterface,
    RunEventStoreInterface,
    RunStoreInterface,
    WorkerInterface,
)
from sdlcflow.domain.models import (
    PHASE_ORDER,
    Artifact,
    ArtifactRef,
    Checkpoint,
    CheckpointReason,
    ErrorKind,
    Gate,
    GateDecision,
    GateDefinition,
    GateState,
    Incident,
    IncidentState,
    Phase,
    PhaseDefinition,
    RunStatus,
    RunStatusReport,
    Severity,
    Sprint,
    SprintReport,
    TaskAssignment,
    TaskDefinition,
    TaskOutcome,
    TaskState,
    TaskStatus,
    WorkerRegistration,
    WorkflowDefinition,
    WorkflowRun,
)
from sdlcflow.domain.run_event import RunEvent, RunEventType

__all__ = [
    # Models
    "PHASE_ORDER",
    "Artifact",
    "ArtifactRef",
    "Checkpoint",
    "CheckpointReason",
    "ErrorKind",
    "Gate",
    "GateDecision",
    "GateDefinition",
    "GateState",
    "Incident",
    "IncidentState",
    "Phase",
    "PhaseDefinition",
    "RunStatus",
    "RunStatusReport",
    "Severity",
    "Sprint",
    "SprintReport",
    "TaskAssignment",
    "TaskDefinition",
    "TaskOutcome",
    "TaskState",
    "TaskStatus",
    "WorkerRegistration",
    "WorkflowDefinition",
    "WorkflowRun",
    "RunEvent",
    "RunEventType",
    # Graph and definitions
    "TaskGraph",
    "parse_definition",
    # Configuration
    "OrchestratorConfig",
    "RetryPolicy",
    "IncidentPolicy",
    "GatePolicy",
    "SprintPolicy",
    # Interfaces
    "WorkerInterface",
    "ArtifactStoreInterface",
    "CheckpointLogInterface",
    "RunEventStoreInterface",
    "RunStoreInterface",
    # Exceptions
    "OrchestrationError",
    "ConfigError",
    "CapacityUnavailable",
    "NoCapableWorker",
    "TaskExecutionFailure",
    "InvalidTaskTransition",
    "GateInvalidTransition",
    "ReworkScopeRequired",
    "RollbackTargetMissing",
    "InvalidIncidentTransition",
    "IncidentClosed",
    "RunNotFound",
    "RunNotActive",
    "SprintPlanningError",
]
