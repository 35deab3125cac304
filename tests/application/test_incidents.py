"""Tests for the incident state machine and escalation timers."""

import logging

import pytest
from helpers import document, make_run, phase, task

from sdlcflow.application.checkpoint_service import CheckpointService
from sdlcflow.application.incidents import IncidentController
from sdlcflow.domain.config import IncidentPolicy
from sdlcflow.domain.exceptions import IncidentClosed, InvalidIncidentTransition
from sdlcflow.domain.models import IncidentState, Severity
from sdlcflow.domain.run_event import RunEventType


@pytest.fixture
def run():
    return make_run(document(phase("deploy", task("release"))))


@pytest.fixture
def paged() -> list[str]:
    return []


@pytest.fixture
def incidents(events, checkpoint_log, clock, paged) -> IncidentController:
    return IncidentController(
        IncidentPolicy(),
        events,
        CheckpointService(checkpoint_log, clock),
        clock,
        notifier=lambda run, incident: paged.append(incident.incident_id),
    )


class TestReport:
    def test_new_incident_is_detected(self, run, incidents, events, clock):
        incident_id = incidents.report(run, "release", Severity.SEV2, "deploy failed")

        incident = incidents.get(run, incident_id)
        assert incident.state == IncidentState.DETECTED
        assert incident.severity == Severity.SEV2
        assert incident.source == "release"
        assert incident.run_id == "run-1"
        assert incident.detected_at == clock.now.isoformat()
        assert incidents.open_incidents(run) == [incident]
        opened = events.get_events("run-1", RunEventType.INCIDENT_OPENED)
        assert opened[0].subject_id == incident_id

    def test_default_severity(self, run, incidents):
        incident_id = incidents.report(run, "monitor", None, "latency alert")

        assert incidents.get(run, incident_id).severity == Severity.SEV3

    def test_unknown_incident(self, run, incidents):
        with pytest.raises(KeyError):
            incidents.get(run, "nope")


class TestTransitions:
    def test_full_lifecycle(self, run, incidents, clock):
        incident_id = incidents.report(run, "release", Severity.SEV3, "boom")

        incidents.triage(run, incident_id, severity=Severity.SEV2, actor="oncall")
        clock.advance(60)
        incidents.start_mitigation(run, incident_id, actor="oncall")
        clock.advance(60)
        resolved = incidents.resolve(run, incident_id, actor="oncall")

        assert resolved.state == IncidentState.RESOLVED
        assert resolved.severity == Severity.SEV2
        assert resolved.triaged_at is not None
        assert resolved.mitigation_started_at is not None
        assert resolved.resolved_at == clock.now.isoformat()
        assert incidents.open_incidents(run) == []

    def test_transitions_replace_the_record(self, run, incidents):
        incident_id = incidents.report(run, "release", Severity.SEV3, "boom")
        original = incidents.get(run, incident_id)

        incidents.triage(run, incident_id)

        assert original.state == IncidentState.DETECTED
        assert incidents.get(run, incident_id).state == IncidentState.TRIAGED

    @pytest.mark.parametrize(
        "steps",
        [
            ["start_mitigation"],
            ["resolve"],
            ["triage", "resolve"],
            ["triage", "triage"],
        ],
    )
    def test_illegal_transitions(self, run, incidents, steps):
        incident_id = incidents.report(run, "release", Severity.SEV3, "boom")
        *allowed, illegal = steps
        for step in allowed:
            getattr(incidents, step)(run, incident_id)

        with pytest.raises(InvalidIncidentTransition):
            getattr(incidents, illegal)(run, incident_id)

    def test_resolved_incident_is_closed(self, run, incidents, events):
        incident_id = incidents.report(run, "release", Severity.SEV3, "boom")
        incidents.triage(run, incident_id)
        incidents.start_mitigation(run, incident_id)
        incidents.resolve(run, incident_id)

        with pytest.raises(IncidentClosed):
            incidents.escalate(run, incident_id)
        with pytest.raises(IncidentClosed):
            incidents.start_mitigation(run, incident_id)

        transitions = events.get_events("run-1", RunEventType.INCIDENT_TRANSITION)
        assert len(transitions) == 3

    def test_escalated_incident_can_still_be_worked(self, run, incidents, paged):
        incident_id = incidents.report(run, "release", Severity.SEV1, "outage")

        incidents.escalate(run, incident_id, actor="oncall")
        incidents.start_mitigation(run, incident_id)
        incidents.resolve(run, incident_id)

        assert paged == [incident_id]


class TestAmend:
    def test_amend_creates_superseding_record(self, run, incidents):
        incident_id = incidents.report(run, "release", Severity.SEV3, "boom")
        incidents.triage(run, incident_id)
        incidents.start_mitigation(run, incident_id)
        incidents.resolve(run, incident_id)

        amended_id = incidents.amend(
            run, incident_id, details="root cause: expired cert", severity=Severity.SEV2
        )

        original = incidents.get(run, incident_id)
        amended = incidents.get(run, amended_id)
        assert amended_id != incident_id
        assert amended.supersedes == incident_id
        assert amended.details == "root cause: expired cert"
        assert amended.severity == Severity.SEV2
        assert amended.state == IncidentState.RESOLVED
        assert original.details == "boom"
        assert original.supersedes is None


class TestEscalation:
    def test_sev1_escalates_after_budget(self, run, incidents, clock, paged, events):
        incident_id = incidents.report(run, "release", Severity.SEV1, "outage")

        clock.advance(299)
        assert incidents.check_escalations(run) == []
        clock.advance(1)
        assert incidents.check_escalations(run) == [incident_id]

        incident = incidents.get(run, incident_id)
        assert incident.state == IncidentState.ESCALATED
        assert incident.escalated_at == clock.now.isoformat()
        assert paged == [incident_id]
        assert len(events.get_events("run-1", RunEventType.INCIDENT_ESCALATED)) == 1

    def test_escalates_only_once(self, run, incidents, clock, paged):
        incidents.report(run, "release", Severity.SEV1, "outage")
        clock.advance(300)
        incidents.check_escalations(run)
        clock.advance(3600)

        assert incidents.check_escalations(run) == []
        assert len(paged) == 1

    def test_budget_runs_from_detection_not_triage(self, run, incidents, clock):
        incident_id = incidents.report(run, "release", Severity.SEV2, "errors")
        clock.advance(600)
        incidents.triage(run, incident_id)
        incidents.start_mitigation(run, incident_id)
        clock.advance(300)

        assert incidents.check_escalations(run) == [incident_id]

    def test_non_escalating_severities_are_left_alone(self, run, incidents, clock):
        incidents.report(run, "docs", Severity.SEV3, "typo")
        incidents.report(run, "docs", Severity.SEV4, "style")
        clock.advance(7 * 24 * 3600)

        assert incidents.check_escalations(run) == []

    def test_resolved_incident_never_escalates(self, run, incidents, clock):
        incident_id = incidents.report(run, "release", Severity.SEV1, "outage")
        incidents.triage(run, incident_id)
        incidents.start_mitigation(run, incident_id)
        incidents.resolve(run, incident_id)
        clock.advance(3600)

        assert incidents.check_escalations(run) == []

    def test_notifier_failure_is_logged(self, run, events, checkpoint_log, clock, caplog):
        def broken(run, incident):
            raise ConnectionError("pager unreachable")

        incidents = IncidentController(
            IncidentPolicy(),
            events,
            CheckpointService(checkpoint_log, clock),
            clock,
            notifier=broken,
        )
        incident_id = incidents.report(run, "release", Severity.SEV1, "outage")
        clock.advance(300)

        with caplog.at_level(logging.ERROR, logger="sdlcflow.application.incidents"):
            assert incidents.check_escalations(run) == [incident_id]

        assert "notifier failed" in caplog.text
