"""
Domain models for the SDLC orchestration core.

Definitions, artifacts, incidents, checkpoints and reports are immutable
(frozen dataclasses). The run-state records that the Supervisor mutates
under its per-run lock (WorkflowRun, TaskState, Gate, Sprint) are plain
dataclasses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# =============================================================================
# ENUMERATIONS
# =============================================================================


class Phase(str, Enum):
    """Fixed SDLC phase model, declared in canonical order."""

    DISCOVERY = "discovery"
    ARCHITECTURE = "architecture"
    IMPLEMENTATION = "implementation"
    INTEGRATION = "integration"
    DEPLOY_PREP = "deploy_prep"
    DEPLOY = "deploy"
    POST_LAUNCH = "post_launch"


PHASE_ORDER: tuple[Phase, ...] = tuple(Phase)


class TaskStatus(str, Enum):
    """Lifecycle of a single task."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    BLOCKED = "blocked"
    DONE = "done"
    FAILED = "failed"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.FAILED})


class RunStatus(str, Enum):
    """Terminal status of a workflow run."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"


class GateState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class GateDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class Severity(str, Enum):
    """Incident severity, SEV1 most severe."""

    SEV1 = "SEV1"
    SEV2 = "SEV2"
    SEV3 = "SEV3"
    SEV4 = "SEV4"


class IncidentState(str, Enum):
    DETECTED = "detected"
    TRIAGED = "triaged"
    MITIGATING = "mitigating"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class CheckpointReason(str, Enum):
    GATE_APPROVED = "gate_approved"
    SPRINT_CLOSED = "sprint_closed"


class ErrorKind(str, Enum):
    """Structured error kind recorded next to a human-readable cause."""

    CONFIG = "ConfigError"
    CAPACITY_UNAVAILABLE = "CapacityUnavailable"
    NO_CAPABLE_WORKER = "NoCapableWorker"
    TASK_EXECUTION_FAILURE = "TaskExecutionFailure"
    CANCELLED = "Cancelled"
    BLOCKED_BY_FAILURE = "BlockedByFailure"
    RUN_CANCELLED = "RunCancelled"


# =============================================================================
# WORKFLOW DEFINITION
# =============================================================================


@dataclass(frozen=True)
class TaskDefinition:
    """Declarative description of one unit of work."""

    task_id: str
    phase: Phase
    capability: str  # Capability tag a worker must carry
    inputs: tuple[str, ...] = ()  # Artifact keys read
    outputs: tuple[str, ...] = ()  # Artifact keys written
    estimate: int = 0  # Story points
    priority: int = 100  # Lower is more urgent
    requires: tuple[str, ...] = ()  # Predecessor task ids
    redo_on_reject: bool = False
    max_retries: int | None = None  # Overrides the retry policy
    severity: Severity | None = None  # Overrides incident severity on failure


@dataclass(frozen=True)
class GateDefinition:
    gate_id: str
    phase: Phase
    escalate_after_seconds: float | None = None


@dataclass(frozen=True)
class PhaseDefinition:
    name: Phase
    tasks: tuple[TaskDefinition, ...] = ()
    gate: GateDefinition | None = None


@dataclass(frozen=True)
class WorkerRegistration:
    """A capability-tagged executor known to the router."""

    worker_id: str
    capabilities: tuple[str, ...]
    concurrency: int = 1
    priority: int = 0  # Higher is preferred
    kind: str = "external"
    options: tuple[tuple[str, Any], ...] = ()


@dataclass(frozen=True)
class WorkflowDefinition:
    """Validated workflow definition (see definition.parse_definition)."""

    name: str
    phases: tuple[PhaseDefinition, ...]
    workers: tuple[WorkerRegistration, ...] = ()
    seed_capacity: int | None = None
    sprint_duration_seconds: float | None = None
    document: Any = None  # Raw source document, kept for persistence

    @property
    def phase_names(self) -> tuple[Phase, ...]:
        return tuple(p.name for p in self.phases)

    @property
    def tasks(self) -> tuple[TaskDefinition, ...]:
        return tuple(t for p in self.phases for t in p.tasks)

    def task(self, task_id: str) -> TaskDefinition:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        raise KeyError(f"Task not found: {task_id}")

    def phase(self, name: Phase) -> PhaseDefinition:
        for phase in self.phases:
            if phase.name == name:
                return phase
        raise KeyError(f"Phase not in definition: {name.value}")

    def gate_for(self, name: Phase) -> GateDefinition | None:
        return self.phase(name).gate


# =============================================================================
# ARTIFACTS
# =============================================================================


@dataclass(frozen=True)
class Artifact:
    """Immutable, versioned named blob produced by a task."""

    namespace: str  # Run id the artifact belongs to
    key: str
    version: int  # 1-based, assigned by the store
    content: str
    content_hash: str  # sha256 of content
    producer_task_id: str
    created_at: str


@dataclass(frozen=True)
class ArtifactRef:
    """Reader-side reference to an exact artifact version."""

    key: str
    version: int
    task_id: str


# =============================================================================
# WORKER HAND-OFF
# =============================================================================


@dataclass(frozen=True)
class TaskAssignment:
    """Everything a worker receives for one attempt."""

    run_id: str
    task: TaskDefinition
    worker_id: str
    attempt: int
    inputs: tuple[ArtifactRef, ...] = ()


@dataclass(frozen=True)
class TaskOutcome:
    """Result reported by a worker for one attempt."""

    success: bool
    outputs: tuple[tuple[str, int], ...] = ()  # (artifact key, version)
    cause: str = ""


# =============================================================================
# RUN STATE (mutable, guarded by the per-run lock)
# =============================================================================


@dataclass
class TaskState:
    task_id: str
    phase: Phase
    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = 0
    worker_id: str | None = None
    sprint_id: str | None = None
    retry_at: str | None = None  # Earliest dispatch time after a failure
    cause: str = ""
    error_kind: ErrorKind | None = None
    output_refs: dict[str, int] = field(default_factory=dict)
    started_at: str | None = None
    finished_at: str | None = None
    overridden: bool = False
    assignment_history: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class GateDecisionRecord:
    """One actor-attributed decision on a gate."""

    decision: GateDecision
    actor: str
    rationale: str
    decided_at: str
    round: int
    rework_scope: tuple[str, ...] = ()


@dataclass
class Gate:
    gate_id: str
    phase: Phase
    state: GateState = GateState.PENDING
    created_at: str = ""
    decided_at: str | None = None
    actor: str | None = None  # Opaque external id
    rationale: str = ""
    rework_scope: tuple[str, ...] = ()
    round: int = 1
    opened_at: str = ""  # Start of the current pending round
    escalated_at: str | None = None
    history: list[GateDecisionRecord] = field(default_factory=list)


@dataclass
class Sprint:
    sprint_id: str
    ordinal: int
    capacity: int
    committed: tuple[str, ...] = ()
    committed_points: int = 0
    started_at: str = ""
    ends_at: str = ""
    closed_at: str | None = None
    completed_points: int = 0
    velocity: float | None = None

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None


@dataclass(frozen=True)
class Incident:
    """Failure or alert record. Replaced, never edited, on each transition."""

    incident_id: str
    run_id: str
    severity: Severity
    source: str  # Task id or external monitor name
    details: str
    state: IncidentState
    detected_at: str
    triaged_at: str | None = None
    mitigation_started_at: str | None = None
    escalated_at: str | None = None
    resolved_at: str | None = None
    rollback_target: str | None = None  # Checkpoint id
    caused_by: str | None = None  # Incident that led to this one
    supersedes: str | None = None  # Incident this record corrects

    @property
    def is_open(self) -> bool:
        return self.state != IncidentState.RESOLVED


@dataclass(frozen=True)
class Checkpoint:
    """Durable snapshot taken at gate approvals and sprint closes."""

    checkpoint_id: str
    run_id: str
    created_at: str
    reason: CheckpointReason
    source_id: str  # Gate id or sprint id
    snapshot: dict[str, Any]  # JSON-compatible state tables


@dataclass
class WorkflowRun:
    """One execution of the phase sequence, owned by the Supervisor."""

    run_id: str
    definition: WorkflowDefinition
    phases: tuple[Phase, ...]
    current_phase: Phase
    status: RunStatus = RunStatus.RUNNING
    created_at: str = ""
    started_at: str | None = None
    ended_at: str | None = None
    tasks: dict[str, TaskState] = field(default_factory=dict)
    gates: dict[str, Gate] = field(default_factory=dict)
    sprints: dict[str, Sprint] = field(default_factory=dict)
    current_sprint_id: str | None = None
    incidents: dict[str, Incident] = field(default_factory=dict)
    checkpoint_ids: list[str] = field(default_factory=list)
    status_reason: str = ""

    def tasks_in_phase(self, phase: Phase) -> list[TaskState]:
        return [t for t in self.tasks.values() if t.phase == phase]

    @property
    def current_sprint(self) -> Sprint | None:
        if self.current_sprint_id is None:
            return None
        return self.sprints.get(self.current_sprint_id)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.ABORTED)


# =============================================================================
# OBSERVATION
# =============================================================================


@dataclass(frozen=True)
class TaskStatusView:
    task_id: str
    phase: Phase
    status: TaskStatus
    retry_count: int
    worker_id: str | None
    cause: str = ""
    error_kind: ErrorKind | None = None


@dataclass(frozen=True)
class RunStatusReport:
    run_id: str
    status: RunStatus
    phase: Phase
    tasks: tuple[TaskStatusView, ...]
    open_incidents: tuple[Incident, ...]
    open_gates: tuple[str, ...]
    current_sprint_id: str | None = None
    status_reason: str = ""

    def task(self, task_id: str) -> TaskStatusView:
        for view in self.tasks:
            if view.task_id == task_id:
                return view
        raise KeyError(f"Task not found: {task_id}")

    @property
    def task_states(self) -> dict[str, TaskStatus]:
        return {view.task_id: view.status for view in self.tasks}


@dataclass(frozen=True)
class SprintReport:
    sprint_id: str
    ordinal: int
    capacity: int
    committed_points: int
    completed_points: int
    velocity: float | None
    committed: tuple[str, ...] = ()
    closed: bool = False
