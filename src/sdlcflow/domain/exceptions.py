"""
Domain exceptions for the SDLC orchestration core.

Configuration and rollback-target errors halt the operation and surface to
the caller. Capacity errors are transient and recovered by requeueing.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sdlcflow.domain.models import ErrorKind


class OrchestrationError(Exception):
    """Base class for all orchestration errors."""


class ConfigError(OrchestrationError):
    """
    Raised when a workflow definition or configuration is invalid.

    Fatal at load time, never retried.
    """

    def __init__(self, message: str, cycle: tuple[str, ...] | None = None):
        """
        Args:
            message: Human-readable error message
            cycle: Task ids along an offending dependency cycle, first id repeated last
        """
        super().__init__(message)
        self.cycle = cycle


class CapacityUnavailable(OrchestrationError):
    """Capable workers exist but none is free. Causes requeue, not failure."""

    def __init__(self, capability: str):
        super().__init__(f"No free worker for capability '{capability}'")
        self.capability = capability


class NoCapableWorker(OrchestrationError):
    """No registered worker carries the required capability."""

    def __init__(self, capability: str):
        super().__init__(f"No worker registered for capability '{capability}'")
        self.capability = capability


class TaskExecutionFailure(OrchestrationError):
    """Worker reported failure or declared outputs failed validation."""

    def __init__(self, task_id: str, cause: str, kind: "ErrorKind | None" = None):
        super().__init__(f"Task '{task_id}' failed: {cause}")
        self.task_id = task_id
        self.cause = cause
        self.kind = kind


class InvalidTaskTransition(OrchestrationError):
    """Operator action not allowed in the task's current state."""


class GateInvalidTransition(OrchestrationError):
    """Decision attempted on a gate that is missing or not pending."""


class ReworkScopeRequired(GateInvalidTransition):
    """A rejection resolved to an empty rework scope."""


class RollbackTargetMissing(OrchestrationError):
    """Requested checkpoint does not exist for the run."""

    def __init__(self, checkpoint_id: str):
        super().__init__(f"Checkpoint not found: {checkpoint_id}")
        self.checkpoint_id = checkpoint_id


class InvalidIncidentTransition(OrchestrationError):
    """Incident transition not allowed by the incident state machine."""


class IncidentClosed(InvalidIncidentTransition):
    """Resolved incidents are immutable; corrections create a new record."""


class SprintPlanningError(OrchestrationError):
    """Sprint cannot be planned: one is already open or the backlog is empty."""


class RunNotFound(OrchestrationError):
    """No run with the given id is owned by this supervisor."""

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class RunNotActive(OrchestrationError):
    """Operation needs a running or paused run, but the run is terminal."""
