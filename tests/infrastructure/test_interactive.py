"""Tests for console gate review."""

import io
from collections.abc import Iterator

import pytest
from helpers import document, phase, task
from rich.console import Console

from sdlcflow.domain.models import GateDecision, GateState
from sdlcflow.infrastructure import interactive
from sdlcflow.infrastructure.interactive import ConsoleGateReviewer
from sdlcflow.infrastructure.workers import ScriptedWorker

GATE = "discovery-gate"


@pytest.fixture
def run_id(supervisor) -> str:
    """Run waiting at its discovery gate."""
    flow = document(
        phase(
            "discovery",
            task("spec", outputs=["requirements"], redo_on_reject=True),
            task("research"),
            gate=True,
        ),
        phase("architecture", task("design", requires=["spec"])),
    )
    run_id = supervisor.start_run(flow, run_id="r1", handlers={"w1": ScriptedWorker()})
    assert supervisor.get_run_status(run_id).open_gates == (GATE,)
    return run_id


@pytest.fixture
def output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def reviewer(output) -> ConsoleGateReviewer:
    return ConsoleGateReviewer("lead", console=Console(file=output, width=120))


def answer(monkeypatch, *answers: str) -> None:  # noqa: ANN001
    replies: Iterator[str] = iter(answers)
    monkeypatch.setattr(interactive.Prompt, "ask", lambda *a, **kw: next(replies))


class TestConsoleGateReviewer:
    def test_approve(self, supervisor, run_id, reviewer, output, monkeypatch):
        answer(monkeypatch, "y", "looks complete")

        assert reviewer.review(supervisor, run_id) == 1

        gate = supervisor.get_run(run_id).gates[GATE]
        assert gate.state == GateState.APPROVED
        assert gate.history[-1].actor == "lead"
        assert gate.history[-1].rationale == "looks complete"
        shown = output.getvalue()
        assert "GATE REVIEW REQUIRED" in shown
        assert "requirements@v1" in shown

    def test_reject_with_scope(self, supervisor, run_id, reviewer, monkeypatch):
        answer(monkeypatch, "n", "research is thin", "research")

        reopened = reviewer.review_gate(supervisor, run_id, GATE)

        assert reopened == ("research",)
        record = supervisor.get_run(run_id).gates[GATE].history[0]
        assert record.decision == GateDecision.REJECT
        assert record.rework_scope == ("research",)

    def test_blank_scope_uses_rework_defaults(
        self, supervisor, run_id, reviewer, monkeypatch
    ):
        answer(monkeypatch, "n", "needs detail", "")

        assert reviewer.review_gate(supervisor, run_id, GATE) == ("spec",)

    def test_unknown_tasks_are_dropped(
        self, supervisor, run_id, reviewer, output, monkeypatch
    ):
        answer(monkeypatch, "n", "redo", "spec, design, ghost")

        assert reviewer.review_gate(supervisor, run_id, GATE) == ("spec",)
        assert "Ignoring tasks not done in this phase: design, ghost" in output.getvalue()

    def test_no_open_gates(self, supervisor, run_id, reviewer, monkeypatch):
        answer(monkeypatch, "y", "")
        reviewer.review(supervisor, run_id)

        assert reviewer.review(supervisor, run_id) == 0
