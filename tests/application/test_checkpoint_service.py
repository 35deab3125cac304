"""Tests for checkpoint snapshots, restore and the durable run record."""

import json

import pytest
from helpers import document, make_run, phase, task

from sdlcflow.application.checkpoint_service import CheckpointService
from sdlcflow.domain.exceptions import RollbackTargetMissing
from sdlcflow.domain.models import (
    CheckpointReason,
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
    TaskStatus,
)


@pytest.fixture
def run():
    return make_run(
        document(
            phase("discovery", task("spec", outputs=["requirements"]), gate=True),
            phase("implementation", task("api", estimate=3, requires=["spec"])),
        )
    )


@pytest.fixture
def service(checkpoint_log, clock) -> CheckpointService:
    return CheckpointService(checkpoint_log, clock)


def approve_discovery(run) -> None:
    spec = run.tasks["spec"]
    spec.status = TaskStatus.DONE
    spec.output_refs = {"requirements": 2}
    spec.assignment_history = ["w1", "w1"]
    run.gates["discovery-gate"] = Gate(
        gate_id="discovery-gate",
        phase=Phase.DISCOVERY,
        state=GateState.APPROVED,
        created_at="2025-01-06T09:00:00+00:00",
        opened_at="2025-01-06T09:30:00+00:00",
        round=2,
        history=[
            GateDecisionRecord(
                GateDecision.REJECT, "lead", "thin", "2025-01-06T09:10:00+00:00", 1, ("spec",)
            ),
            GateDecisionRecord(
                GateDecision.APPROVE, "lead", "ok", "2025-01-06T09:40:00+00:00", 2
            ),
        ],
    )


class TestCheckpoints:
    def test_create_appends_to_log_and_run(self, run, service):
        approve_discovery(run)

        checkpoint = service.create_checkpoint(
            run, CheckpointReason.GATE_APPROVED, "discovery-gate"
        )

        assert run.checkpoint_ids == [checkpoint.checkpoint_id]
        assert service.list_checkpoints("run-1") == [checkpoint]
        assert checkpoint.source_id == "discovery-gate"
        assert checkpoint.snapshot["tasks"]["spec"]["status"] == "done"

    def test_snapshot_is_json_compatible_and_detached(self, run, service):
        approve_discovery(run)
        checkpoint = service.create_checkpoint(
            run, CheckpointReason.GATE_APPROVED, "discovery-gate"
        )

        run.tasks["spec"].output_refs["requirements"] = 9
        run.current_phase = Phase.IMPLEMENTATION

        json.dumps(checkpoint.snapshot)
        assert checkpoint.snapshot["tasks"]["spec"]["output_refs"] == {"requirements": 2}
        assert checkpoint.snapshot["current_phase"] == "discovery"

    def test_restore_returns_to_recorded_tables(self, run, service):
        approve_discovery(run)
        checkpoint = service.create_checkpoint(
            run, CheckpointReason.GATE_APPROVED, "discovery-gate"
        )
        run.current_phase = Phase.IMPLEMENTATION
        run.sprints["sprint-1"] = Sprint("sprint-1", 1, capacity=5, committed=("api",))
        run.current_sprint_id = "sprint-1"
        run.tasks["api"].status = TaskStatus.DONE

        service.restore(run, checkpoint)

        assert run.current_phase == Phase.DISCOVERY
        assert run.sprints == {}
        assert run.current_sprint_id is None
        assert run.tasks["api"].status == TaskStatus.PENDING
        gate = run.gates["discovery-gate"]
        assert gate.round == 2
        assert [r.decision for r in gate.history] == [
            GateDecision.REJECT,
            GateDecision.APPROVE,
        ]
        assert gate.history[0].rework_scope == ("spec",)

    def test_running_tasks_restore_as_pending(self, run, service):
        run.tasks["spec"].status = TaskStatus.RUNNING
        run.tasks["spec"].worker_id = "w1"
        checkpoint = service.create_checkpoint(run, CheckpointReason.SPRINT_CLOSED, "s")

        service.restore(run, checkpoint)

        assert run.tasks["spec"].status == TaskStatus.PENDING
        assert run.tasks["spec"].worker_id is None

    def test_missing_target(self, run, service):
        with pytest.raises(RollbackTargetMissing) as exc:
            service.get_checkpoint(run, "no-such-checkpoint")

        assert exc.value.checkpoint_id == "no-such-checkpoint"

    def test_checkpoint_of_another_run_is_missing(self, run, service):
        other = make_run(document(phase("discovery", task("x"))), run_id="run-2")
        checkpoint = service.create_checkpoint(other, CheckpointReason.SPRINT_CLOSED, "s")

        with pytest.raises(RollbackTargetMissing):
            service.get_checkpoint(run, checkpoint.checkpoint_id)


class TestRunRecord:
    def test_round_trip(self, run, service):
        approve_discovery(run)
        run.status = RunStatus.PAUSED
        run.status_reason = "operator pause"
        run.created_at = "2025-01-06T09:00:00+00:00"
        run.current_phase = Phase.IMPLEMENTATION
        run.sprints["sprint-1"] = Sprint(
            "sprint-1", 1, capacity=5, committed=("api",), committed_points=3
        )
        run.current_sprint_id = "sprint-1"
        run.tasks["api"].sprint_id = "sprint-1"
        run.incidents["i1"] = Incident(
            incident_id="i1",
            run_id="run-1",
            severity=Severity.SEV2,
            source="api",
            details="flaky",
            state=IncidentState.TRIAGED,
            detected_at="2025-01-06T09:00:00+00:00",
            triaged_at="2025-01-06T09:01:00+00:00",
        )
        service.create_checkpoint(run, CheckpointReason.GATE_APPROVED, "discovery-gate")

        record = json.loads(json.dumps(service.serialize_run(run)))
        restored = CheckpointService.restore_run(record, run.definition)

        assert restored.status == RunStatus.PAUSED
        assert restored.status_reason == "operator pause"
        assert restored.current_phase == Phase.IMPLEMENTATION
        assert restored.current_sprint is not None
        assert restored.current_sprint.committed == ("api",)
        assert restored.tasks == run.tasks
        assert restored.gates == run.gates
        assert restored.incidents == run.incidents
        assert restored.checkpoint_ids == run.checkpoint_ids

    def test_record_keeps_source_document(self, run, service):
        record = service.serialize_run(run)

        assert record["definition"]["name"] == "test-flow"
        assert record["run_id"] == "run-1"
