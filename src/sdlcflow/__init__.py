"""
sdlcflow: Multi-agent SDLC workflow orchestration.

Drives a software project through fixed lifecycle phases by dispatching
tasks to capability-tagged workers, enforcing approval gates between
phases, planning implementation sprints from measured velocity, and
recording incidents with checkpoint-based rollback.

Example:
    from sdlcflow import ScriptedWorker, build_supervisor

    supervisor = build_supervisor()
    run_id = supervisor.start_run(document, handlers={"dev-1": ScriptedWorker()})
    supervisor.wait_until_quiescent(run_id)
    print(supervisor.get_run_status(run_id).task_states)
"""

# Application layer (orchestration)
from sdlcflow.application import (
    CapabilityRouter,
    SafetyNetTicker,
    WorkflowSupervisor,
    select_commitment,
)
from sdlcflow.bootstrap import build_supervisor

# Domain configuration
from sdlcflow.domain.config import (
    GatePolicy,
    IncidentPolicy,
    OrchestratorConfig,
    RetryPolicy,
    SprintPolicy,
)
from sdlcflow.domain.definition import parse_definition

# Domain exceptions
from sdlcflow.domain.exceptions import (
    CapacityUnavailable,
    ConfigError,
    GateInvalidTransition,
    NoCapableWorker,
    OrchestrationError,
    RollbackTargetMissing,
    TaskExecutionFailure,
)
from sdlcflow.domain.graph import TaskGraph

# Domain interfaces (for custom workers and stores)
from sdlcflow.domain.interfaces import (
    ArtifactStoreInterface,
    CheckpointLogInterface,
    RunEventStoreInterface,
    RunStoreInterface,
    WorkerInterface,
)

# Domain models (most commonly used)
from sdlcflow.domain.models import (
    GateDecision,
    Phase,
    RunStatus,
    Severity,
    TaskAssignment,
    TaskOutcome,
    TaskStatus,
    WorkerRegistration,
    WorkflowDefinition,
)

# Infrastructure (adapters)
from sdlcflow.infrastructure import (
    CallableWorker,
    ScriptedWorker,
    WorkerRegistry,
    load_config,
    load_definition,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Application
    "WorkflowSupervisor",
    "CapabilityRouter",
    "SafetyNetTicker",
    "select_commitment",
    "build_supervisor",
    # Configuration
    "OrchestratorConfig",
    "RetryPolicy",
    "IncidentPolicy",
    "GatePolicy",
    "SprintPolicy",
    "parse_definition",
    "TaskGraph",
    # Models
    "GateDecision",
    "Phase",
    "RunStatus",
    "Severity",
    "TaskAssignment",
    "TaskOutcome",
    "TaskStatus",
    "WorkerRegistration",
    "WorkflowDefinition",
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
    "GateInvalidTransition",
    "RollbackTargetMissing",
    # Infrastructure
    "CallableWorker",
    "ScriptedWorker",
    "WorkerRegistry",
    "load_definition",
    "load_config",
]
