"""
Incident & Rollback Controller.

Incidents are immutable records: every transition stores a replacement
record under the same id, and a resolved incident is never replaced again.
Corrections to a resolved incident become a new record linked through
``supersedes``.

Rollback restores a run to a checkpoint recorded at a gate approval or a
sprint close. The target is always chosen by an operator.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from sdlcflow.application.clock import Clock, seconds_between, system_clock, to_iso
from sdlcflow.application.run_event_emitter import RunEventEmitter
from sdlcflow.domain.config import IncidentPolicy
from sdlcflow.domain.exceptions import IncidentClosed, InvalidIncidentTransition
from sdlcflow.domain.models import (
    Incident,
    IncidentState,
    RunStatus,
    Severity,
    WorkflowRun,
)
from sdlcflow.domain.run_event import RunEventType

if TYPE_CHECKING:
    from sdlcflow.application.checkpoint_service import CheckpointService
    from sdlcflow.application.scheduler import TaskScheduler
    from sdlcflow.domain.interfaces import RunEventStoreInterface

logger = logging.getLogger(__name__)

EscalationNotifier = Callable[[WorkflowRun, Incident], None]

ALLOWED_TRANSITIONS: dict[IncidentState, frozenset[IncidentState]] = {
    IncidentState.DETECTED: frozenset({IncidentState.TRIAGED, IncidentState.ESCALATED}),
    IncidentState.TRIAGED: frozenset(
        {IncidentState.MITIGATING, IncidentState.ESCALATED}
    ),
    IncidentState.MITIGATING: frozenset(
        {IncidentState.RESOLVED, IncidentState.ESCALATED}
    ),
    IncidentState.ESCALATED: frozenset(
        {IncidentState.MITIGATING, IncidentState.RESOLVED}
    ),
    IncidentState.RESOLVED: frozenset(),
}


class IncidentController:
    """Drives the incident state machine, escalation timers and rollbacks."""

    def __init__(
        self,
        policy: IncidentPolicy,
        event_store: RunEventStoreInterface,
        checkpoints: CheckpointService,
        clock: Clock = system_clock,
        notifier: EscalationNotifier | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            policy: Response budgets and severity defaults.
            event_store: Audit trail for incident transitions.
            checkpoints: Source of rollback targets.
            clock: Source of the current time.
            notifier: Paging callback invoked on escalation.
        """
        self._policy = policy
        self._events = event_store
        self._checkpoints = checkpoints
        self._clock = clock
        self._notifier = notifier

    @property
    def policy(self) -> IncidentPolicy:
        return self._policy

    def _emitter(self, run: WorkflowRun) -> RunEventEmitter:
        return RunEventEmitter(self._events, run.run_id, self._clock)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def report(
        self,
        run: WorkflowRun,
        source: str,
        severity: Severity | None,
        details: str,
        rollback_target: str | None = None,
        caused_by: str | None = None,
        supersedes: str | None = None,
    ) -> str:
        """Record a new incident in the ``detected`` state.

        Args:
            run: Run the incident belongs to.
            source: Task id or external monitor name.
            severity: Classification; the policy default when None.
            details: Human-readable description.
            rollback_target: Checkpoint id, for rollback incidents.
            caused_by: Incident that led to this one.
            supersedes: Resolved incident this record corrects.

        Returns:
            The new incident id.
        """
        incident = Incident(
            incident_id=str(uuid.uuid4()),
            run_id=run.run_id,
            severity=severity or self._policy.default_severity,
            source=source,
            details=details,
            state=IncidentState.DETECTED,
            detected_at=to_iso(self._clock()),
            rollback_target=rollback_target,
            caused_by=caused_by,
            supersedes=supersedes,
        )
        run.incidents[incident.incident_id] = incident
        self._emitter(run).emit(
            RunEventType.INCIDENT_OPENED,
            incident.incident_id,
            f"{incident.severity.value} from {source}: {details}",
        )
        logger.warning(
            "Incident %s (%s) opened for run %s: %s",
            incident.incident_id,
            incident.severity.value,
            run.run_id,
            details,
        )
        return incident.incident_id

    def get(self, run: WorkflowRun, incident_id: str) -> Incident:
        if incident_id not in run.incidents:
            raise KeyError(f"Incident not found: {incident_id}")
        return run.incidents[incident_id]

    def open_incidents(self, run: WorkflowRun) -> list[Incident]:
        return sorted(
            (i for i in run.incidents.values() if i.is_open),
            key=lambda i: (i.detected_at, i.incident_id),
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        run: WorkflowRun,
        incident_id: str,
        target: IncidentState,
        actor: str = "system",
        **changes: object,
    ) -> Incident:
        current = self.get(run, incident_id)
        if current.state == IncidentState.RESOLVED:
            raise IncidentClosed(f"Incident {incident_id} is resolved")
        if target not in ALLOWED_TRANSITIONS[current.state]:
            raise InvalidIncidentTransition(
                f"Incident {incident_id}: {current.state.value} -> {target.value} "
                "is not allowed"
            )
        updated = dataclasses.replace(current, state=target, **changes)
        run.incidents[incident_id] = updated
        self._emitter(run).emit(
            RunEventType.INCIDENT_TRANSITION,
            incident_id,
            f"{current.state.value} -> {target.value}",
            actor=actor,
        )
        logger.info(
            "Incident %s: %s -> %s", incident_id, current.state.value, target.value
        )
        return updated

    def triage(
        self,
        run: WorkflowRun,
        incident_id: str,
        severity: Severity | None = None,
        actor: str = "system",
    ) -> Incident:
        """Move to ``triaged``, optionally reclassifying severity."""
        current = self.get(run, incident_id)
        return self._transition(
            run,
            incident_id,
            IncidentState.TRIAGED,
            actor,
            severity=severity or current.severity,
            triaged_at=to_iso(self._clock()),
        )

    def start_mitigation(
        self, run: WorkflowRun, incident_id: str, actor: str = "system"
    ) -> Incident:
        return self._transition(
            run,
            incident_id,
            IncidentState.MITIGATING,
            actor,
            mitigation_started_at=to_iso(self._clock()),
        )

    def resolve(
        self, run: WorkflowRun, incident_id: str, actor: str = "system"
    ) -> Incident:
        return self._transition(
            run,
            incident_id,
            IncidentState.RESOLVED,
            actor,
            resolved_at=to_iso(self._clock()),
        )

    def escalate(
        self, run: WorkflowRun, incident_id: str, actor: str = "system"
    ) -> Incident:
        """Move to ``escalated`` and page through the notifier.

        Escalation only notifies; it takes no corrective action.
        """
        incident = self._transition(
            run,
            incident_id,
            IncidentState.ESCALATED,
            actor,
            escalated_at=to_iso(self._clock()),
        )
        self._emitter(run).emit(
            RunEventType.INCIDENT_ESCALATED,
            incident_id,
            f"{incident.severity.value} escalated",
            actor=actor,
        )
        logger.warning(
            "Incident %s (%s) escalated for run %s",
            incident_id,
            incident.severity.value,
            run.run_id,
        )
        if self._notifier is not None:
            try:
                self._notifier(run, incident)
            except Exception:
                logger.exception("Escalation notifier failed for %s", incident_id)
        return incident

    def check_escalations(
        self, run: WorkflowRun, now: datetime | None = None
    ) -> list[str]:
        """Escalate incidents that exceeded their response budget.

        Only severities listed as escalating are considered. An incident
        already escalated or resolved is left alone.

        Returns:
            Ids of the incidents escalated by this call.
        """
        now = now or self._clock()
        escalated: list[str] = []
        for incident in list(run.incidents.values()):
            if incident.state in (IncidentState.ESCALATED, IncidentState.RESOLVED):
                continue
            if incident.severity not in self._policy.escalating_severities:
                continue
            budget = self._policy.budget_for(incident.severity)
            if budget is None:
                continue
            if seconds_between(incident.detected_at, now) >= budget:
                self.escalate(run, incident.incident_id)
                escalated.append(incident.incident_id)
        return escalated

    def amend(
        self,
        run: WorkflowRun,
        incident_id: str,
        details: str | None = None,
        severity: Severity | None = None,
        actor: str = "system",
    ) -> str:
        """Correct an incident by creating a new record that supersedes it.

        The new record starts in the state of the original; the original is
        left untouched.

        Returns:
            The id of the new record.
        """
        original = self.get(run, incident_id)
        amended = dataclasses.replace(
            original,
            incident_id=str(uuid.uuid4()),
            details=details if details is not None else original.details,
            severity=severity or original.severity,
            supersedes=original.incident_id,
        )
        run.incidents[amended.incident_id] = amended
        self._emitter(run).emit(
            RunEventType.INCIDENT_OPENED,
            amended.incident_id,
            f"amends {original.incident_id}",
            actor=actor,
        )
        return amended.incident_id

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    def trigger_rollback(
        self,
        run: WorkflowRun,
        scheduler: TaskScheduler,
        checkpoint_id: str,
        actor: str,
        cause_incident_id: str | None = None,
    ) -> str:
        """Pause the run and restore it to a recorded checkpoint.

        Args:
            run: Run to roll back.
            scheduler: The run's scheduler; running work is released.
            checkpoint_id: Rollback target chosen by the operator.
            actor: Operator performing the rollback.
            cause_incident_id: Incident that motivated the rollback.

        Returns:
            Id of the incident recording the rollback.

        Raises:
            RollbackTargetMissing: The checkpoint does not exist for this run.
        """
        checkpoint = self._checkpoints.get_checkpoint(run, checkpoint_id)
        cause = self.get(run, cause_incident_id) if cause_incident_id else None

        released = scheduler.release_running("rolled back")
        run.status = RunStatus.PAUSED
        run.status_reason = f"rolled back to checkpoint {checkpoint_id}"
        self._checkpoints.restore(run, checkpoint)

        self._emitter(run).emit(
            RunEventType.ROLLBACK,
            checkpoint_id,
            f"{checkpoint.reason.value} {checkpoint.source_id}; "
            f"released {len(released)} running task(s)",
            actor=actor,
        )
        logger.warning(
            "Run %s rolled back to checkpoint %s by %s",
            run.run_id,
            checkpoint_id,
            actor,
        )
        return self.report(
            run,
            source="rollback",
            severity=cause.severity if cause else None,
            details=f"Rollback to {checkpoint_id} by {actor}",
            rollback_target=checkpoint_id,
            caused_by=cause_incident_id,
        )
