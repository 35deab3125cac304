"""Run audit trail models."""

from dataclasses import dataclass
from enum import Enum


class RunEventType(str, Enum):
    """Types of run events."""

    RUN_STARTED = "RUN_STARTED"
    RUN_PAUSED = "RUN_PAUSED"
    RUN_RESUMED = "RUN_RESUMED"
    RUN_CANCELLED = "RUN_CANCELLED"
    RUN_COMPLETED = "RUN_COMPLETED"
    PHASE_ADVANCED = "PHASE_ADVANCED"
    TASK_STARTED = "TASK_STARTED"
    TASK_DONE = "TASK_DONE"
    TASK_RETRY = "TASK_RETRY"
    TASK_FAILED = "TASK_FAILED"
    TASK_BLOCKED = "TASK_BLOCKED"
    TASK_CANCELLED = "TASK_CANCELLED"
    TASK_REOPENED = "TASK_REOPENED"
    TASK_OVERRIDDEN = "TASK_OVERRIDDEN"
    TASK_RETRIED_BY_OPERATOR = "TASK_RETRIED_BY_OPERATOR"
    GATE_OPENED = "GATE_OPENED"
    GATE_DECIDED = "GATE_DECIDED"
    GATE_ESCALATED = "GATE_ESCALATED"
    SPRINT_PLANNED = "SPRINT_PLANNED"
    SPRINT_CLOSED = "SPRINT_CLOSED"
    INCIDENT_OPENED = "INCIDENT_OPENED"
    INCIDENT_TRANSITION = "INCIDENT_TRANSITION"
    INCIDENT_ESCALATED = "INCIDENT_ESCALATED"
    CHECKPOINT = "CHECKPOINT"
    ROLLBACK = "ROLLBACK"


@dataclass(frozen=True)
class RunEvent:
    """Single auditable state transition of a run."""

    event_id: str
    event_type: RunEventType
    run_id: str
    subject_id: str  # Task, gate, sprint, incident or checkpoint id
    actor: str = "system"
    summary: str = ""
    created_at: str = ""  # ISO 8601
