"""Application service for checkpoint operations.

Snapshots the mutable state tables of a run (phase, tasks, gates, sprints)
into JSON-compatible dicts, appends them to the checkpoint log at gate
approvals and sprint closes, and restores them on rollback. The same
serialization backs the durable per-run record.
"""

from __future__ import annotations

import copy
import logging
import uuid
from typing import TYPE_CHECKING, Any

from sdlcflow.application.clock import Clock, system_clock, to_iso
from sdlcflow.domain.exceptions import RollbackTargetMissing
from sdlcflow.domain.models import (
    Checkpoint,
    CheckpointReason,
    ErrorKind,
    Gate,
    GateDecision,
    GateDecisionRecord,
    GateState,
    Incident,
    IncidentState,
    Phase,
    RunStatus,
    Severity,
    Sprint,
    TaskState,
    TaskStatus,
    WorkflowRun,
)

if TYPE_CHECKING:
    from sdlcflow.domain.interfaces import CheckpointLogInterface
    from sdlcflow.domain.models import WorkflowDefinition

logger = logging.getLogger(__name__)

# =============================================================================
# TABLE SERIALIZATION
# =============================================================================


def _task_to_dict(task: TaskState) -> dict[str, Any]:
    return {
        "task_id": task.task_id,
        "phase": task.phase.value,
        "status": task.status.value,
        "retry_count": task.retry_count,
        "worker_id": task.worker_id,
        "sprint_id": task.sprint_id,
        "retry_at": task.retry_at,
        "cause": task.cause,
        "error_kind": task.error_kind.value if task.error_kind else None,
        "output_refs": dict(task.output_refs),
        "started_at": task.started_at,
        "finished_at": task.finished_at,
        "overridden": task.overridden,
        "assignment_history": list(task.assignment_history),
    }


def _dict_to_task(data: dict[str, Any]) -> TaskState:
    return TaskState(
        task_id=data["task_id"],
        phase=Phase(data["phase"]),
        status=TaskStatus(data["status"]),
        retry_count=data["retry_count"],
        worker_id=data.get("worker_id"),
        sprint_id=data.get("sprint_id"),
        retry_at=data.get("retry_at"),
        cause=data.get("cause", ""),
        error_kind=ErrorKind(data["error_kind"]) if data.get("error_kind") else None,
        output_refs=dict(data.get("output_refs", {})),
        started_at=data.get("started_at"),
        finished_at=data.get("finished_at"),
        overridden=data.get("overridden", False),
        assignment_history=list(data.get("assignment_history", [])),
    )


def _gate_to_dict(gate: Gate) -> dict[str, Any]:
    return {
        "gate_id": gate.gate_id,
        "phase": gate.phase.value,
        "state": gate.state.value,
        "created_at": gate.created_at,
        "decided_at": gate.decided_at,
        "actor": gate.actor,
        "rationale": gate.rationale,
        "rework_scope": list(gate.rework_scope),
        "round": gate.round,
        "opened_at": gate.opened_at,
        "escalated_at": gate.escalated_at,
        "history": [
            {
                "decision": r.decision.value,
                "actor": r.actor,
                "rationale": r.rationale,
                "decided_at": r.decided_at,
                "round": r.round,
                "rework_scope": list(r.rework_scope),
            }
            for r in gate.history
        ],
    }


def _dict_to_gate(data: dict[str, Any]) -> Gate:
    return Gate(
        gate_id=data["gate_id"],
        phase=Phase(data["phase"]),
        state=GateState(data["state"]),
        created_at=data["created_at"],
        decided_at=data.get("decided_at"),
        actor=data.get("actor"),
        rationale=data.get("rationale", ""),
        rework_scope=tuple(data.get("rework_scope", ())),
        round=data.get("round", 1),
        opened_at=data.get("opened_at", data["created_at"]),
        escalated_at=data.get("escalated_at"),
        history=[
            GateDecisionRecord(
                decision=GateDecision(r["decision"]),
                actor=r["actor"],
                rationale=r["rationale"],
                decided_at=r["decided_at"],
                round=r["round"],
                rework_scope=tuple(r.get("rework_scope", ())),
            )
            for r in data.get("history", [])
        ],
    )


def _sprint_to_dict(sprint: Sprint) -> dict[str, Any]:
    return {
        "sprint_id": sprint.sprint_id,
        "ordinal": sprint.ordinal,
        "capacity": sprint.capacity,
        "committed": list(sprint.committed),
        "committed_points": sprint.committed_points,
        "started_at": sprint.started_at,
        "ends_at": sprint.ends_at,
        "closed_at": sprint.closed_at,
        "completed_points": sprint.completed_points,
        "velocity": sprint.velocity,
    }


def _dict_to_sprint(data: dict[str, Any]) -> Sprint:
    return Sprint(
        sprint_id=data["sprint_id"],
        ordinal=data["ordinal"],
        capacity=data["capacity"],
        committed=tuple(data["committed"]),
        committed_points=data["committed_points"],
        started_at=data["started_at"],
        ends_at=data["ends_at"],
        closed_at=data.get("closed_at"),
        completed_points=data.get("completed_points", 0),
        velocity=data.get("velocity"),
    )


def incident_to_dict(incident: Incident) -> dict[str, Any]:
    return {
        "incident_id": incident.incident_id,
        "run_id": incident.run_id,
        "severity": incident.severity.value,
        "source": incident.source,
        "details": incident.details,
        "state": incident.state.value,
        "detected_at": incident.detected_at,
        "triaged_at": incident.triaged_at,
        "mitigation_started_at": incident.mitigation_started_at,
        "escalated_at": incident.escalated_at,
        "resolved_at": incident.resolved_at,
        "rollback_target": incident.rollback_target,
        "caused_by": incident.caused_by,
        "supersedes": incident.supersedes,
    }


def dict_to_incident(data: dict[str, Any]) -> Incident:
    return Incident(
        incident_id=data["incident_id"],
        run_id=data["run_id"],
        severity=Severity(data["severity"]),
        source=data["source"],
        details=data["details"],
        state=IncidentState(data["state"]),
        detected_at=data["detected_at"],
        triaged_at=data.get("triaged_at"),
        mitigation_started_at=data.get("mitigation_started_at"),
        escalated_at=data.get("escalated_at"),
        resolved_at=data.get("resolved_at"),
        rollback_target=data.get("rollback_target"),
        caused_by=data.get("caused_by"),
        supersedes=data.get("supersedes"),
    )


def snapshot_run(run: WorkflowRun) -> dict[str, Any]:
    """JSON-compatible copy of the phase/task/gate/sprint tables of a run."""
    return {
        "current_phase": run.current_phase.value,
        "current_sprint_id": run.current_sprint_id,
        "tasks": {tid: _task_to_dict(t) for tid, t in sorted(run.tasks.items())},
        "gates": {gid: _gate_to_dict(g) for gid, g in sorted(run.gates.items())},
        "sprints": [_sprint_to_dict(s) for s in run.sprints.values()],
    }


def apply_snapshot(run: WorkflowRun, snapshot: dict[str, Any]) -> None:
    """Replace the state tables of a run with those of a snapshot."""
    data = copy.deepcopy(snapshot)
    run.current_phase = Phase(data["current_phase"])
    run.current_sprint_id = data.get("current_sprint_id")
    run.tasks = {tid: _dict_to_task(t) for tid, t in data["tasks"].items()}
    run.gates = {gid: _dict_to_gate(g) for gid, g in data["gates"].items()}
    run.sprints = {}
    for raw in data["sprints"]:
        sprint = _dict_to_sprint(raw)
        run.sprints[sprint.sprint_id] = sprint


# =============================================================================
# SERVICE
# =============================================================================


class CheckpointService:
    """Application service for creating, listing and restoring checkpoints."""

    def __init__(
        self,
        checkpoint_log: CheckpointLogInterface,
        clock: Clock = system_clock,
    ) -> None:
        """Initialize checkpoint service.

        Args:
            checkpoint_log: Append-only log storing checkpoints.
            clock: Source of the current time.
        """
        self._log = checkpoint_log
        self._clock = clock

    def snapshot(self, run: WorkflowRun) -> dict[str, Any]:
        return snapshot_run(run)

    def create_checkpoint(
        self, run: WorkflowRun, reason: CheckpointReason, source_id: str
    ) -> Checkpoint:
        """Snapshot the run and append the checkpoint to the log.

        Args:
            run: Run to snapshot.
            reason: Gate approval or sprint close.
            source_id: Id of the approved gate or closed sprint.

        Returns:
            The stored Checkpoint.
        """
        checkpoint = Checkpoint(
            checkpoint_id=str(uuid.uuid4()),
            run_id=run.run_id,
            created_at=to_iso(self._clock()),
            reason=reason,
            source_id=source_id,
            snapshot=snapshot_run(run),
        )
        self._log.append(checkpoint)
        run.checkpoint_ids.append(checkpoint.checkpoint_id)
        logger.info(
            "Checkpoint %s for run %s (%s %s)",
            checkpoint.checkpoint_id,
            run.run_id,
            reason.value,
            source_id,
        )
        return checkpoint

    def get_checkpoint(self, run: WorkflowRun, checkpoint_id: str) -> Checkpoint:
        """Retrieve a checkpoint of this run.

        Raises:
            RollbackTargetMissing: If absent or recorded for another run.
        """
        try:
            checkpoint = self._log.get(checkpoint_id)
        except KeyError as e:
            raise RollbackTargetMissing(checkpoint_id) from e
        if checkpoint.run_id != run.run_id:
            raise RollbackTargetMissing(checkpoint_id)
        return checkpoint

    def list_checkpoints(self, run_id: str) -> list[Checkpoint]:
        return self._log.list_for_run(run_id)

    def restore(self, run: WorkflowRun, checkpoint: Checkpoint) -> None:
        """Restore phase/task/gate/sprint state from a checkpoint.

        Tasks recorded as running have no live worker after a restore, so
        they return to pending.
        """
        apply_snapshot(run, checkpoint.snapshot)
        for task in run.tasks.values():
            if task.status == TaskStatus.RUNNING:
                task.status = TaskStatus.PENDING
                task.worker_id = None

    # ------------------------------------------------------------------
    # Durable run record
    # ------------------------------------------------------------------

    @staticmethod
    def serialize_run(run: WorkflowRun) -> dict[str, Any]:
        """Full durable record: run metadata, state tables and incidents."""
        return {
            "run_id": run.run_id,
            "definition": run.definition.document,
            "status": run.status.value,
            "status_reason": run.status_reason,
            "created_at": run.created_at,
            "started_at": run.started_at,
            "ended_at": run.ended_at,
            "checkpoint_ids": list(run.checkpoint_ids),
            "incidents": [incident_to_dict(i) for i in run.incidents.values()],
            "state": snapshot_run(run),
        }

    @staticmethod
    def restore_run(
        record: dict[str, Any], definition: WorkflowDefinition
    ) -> WorkflowRun:
        """Rebuild a WorkflowRun from its durable record."""
        state = record["state"]
        run = WorkflowRun(
            run_id=record["run_id"],
            definition=definition,
            phases=definition.phase_names,
            current_phase=Phase(state["current_phase"]),
            status=RunStatus(record["status"]),
            created_at=record["created_at"],
            started_at=record.get("started_at"),
            ended_at=record.get("ended_at"),
            checkpoint_ids=list(record.get("checkpoint_ids", [])),
            status_reason=record.get("status_reason", ""),
        )
        apply_snapshot(run, state)
        for raw in record.get("incidents", []):
            incident = dict_to_incident(raw)
            run.incidents[incident.incident_id] = incident
        return run
