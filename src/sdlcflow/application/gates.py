"""
Approval Gate Controller.

A gate is explicit state plus an external decision call. It is created only
once every task of its phase is done, blocks phase advancement until an
actor decides, and never decides on its own. Rejections reopen an explicit
or definition-declared rework scope; when the phase completes again the
gate starts a new pending round.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from sdlcflow.application.clock import Clock, seconds_between, system_clock, to_iso
from sdlcflow.application.run_event_emitter import RunEventEmitter
from sdlcflow.domain.config import GatePolicy
from sdlcflow.domain.exceptions import GateInvalidTransition, ReworkScopeRequired
from sdlcflow.domain.models import (
    Gate,
    GateDecision,
    GateDecisionRecord,
    GateState,
    Phase,
    TaskStatus,
    WorkflowRun,
)
from sdlcflow.domain.run_event import RunEventType

if TYPE_CHECKING:
    from sdlcflow.domain.interfaces import RunEventStoreInterface

logger = logging.getLogger(__name__)

GateEscalationCallback = Callable[[WorkflowRun, Gate], None]


class GateController:
    """Creates gates, records decisions and pages on long-pending gates."""

    def __init__(
        self,
        policy: GatePolicy,
        event_store: RunEventStoreInterface,
        clock: Clock = system_clock,
        on_escalation: GateEscalationCallback | None = None,
    ) -> None:
        self._policy = policy
        self._events = event_store
        self._clock = clock
        self._on_escalation = on_escalation

    def _emitter(self, run: WorkflowRun) -> RunEventEmitter:
        return RunEventEmitter(self._events, run.run_id, self._clock)

    def open_gate(self, run: WorkflowRun, phase: Phase) -> Gate:
        """Create the phase's gate, or start a new round after a rejection.

        Opening a gate that is already pending returns it unchanged.

        Raises:
            GateInvalidTransition: The phase has no gate, its tasks are not
                all done, or the gate was already approved.
        """
        definition = run.definition.gate_for(phase)
        if definition is None:
            raise GateInvalidTransition(f"Phase {phase.value} has no gate")

        unfinished = sorted(
            t.task_id for t in run.tasks_in_phase(phase) if t.status != TaskStatus.DONE
        )
        if unfinished:
            raise GateInvalidTransition(
                f"Gate {definition.gate_id} cannot open; unfinished tasks: "
                + ", ".join(unfinished)
            )

        now = to_iso(self._clock())
        gate = run.gates.get(definition.gate_id)
        if gate is None:
            gate = Gate(
                gate_id=definition.gate_id,
                phase=phase,
                created_at=now,
                opened_at=now,
            )
            run.gates[gate.gate_id] = gate
        elif gate.state == GateState.PENDING:
            return gate
        elif gate.state == GateState.APPROVED:
            raise GateInvalidTransition(f"Gate {gate.gate_id} is already approved")
        else:
            gate.state = GateState.PENDING
            gate.round += 1
            gate.opened_at = now
            gate.escalated_at = None

        self._emitter(run).emit(
            RunEventType.GATE_OPENED, gate.gate_id, f"round {gate.round}"
        )
        logger.info(
            "Gate %s opened for run %s (round %d)", gate.gate_id, run.run_id, gate.round
        )
        return gate

    def decide(
        self,
        run: WorkflowRun,
        gate_id: str,
        decision: GateDecision | str,
        actor: str,
        rationale: str = "",
        rework_scope: Iterable[str] | None = None,
    ) -> tuple[str, ...]:
        """Record an actor-attributed decision on a pending gate.

        Args:
            run: Run owning the gate.
            gate_id: Gate to decide.
            decision: ``approve`` or ``reject``.
            actor: Opaque external id of the decider.
            rationale: Free-text justification.
            rework_scope: Tasks of the gate's phase to re-run on rejection.

        Returns:
            The task ids to reopen; empty on approval.

        Raises:
            GateInvalidTransition: Unknown, not-yet-created or decided gate,
                or a rework scope naming tasks outside the phase.
            ReworkScopeRequired: A rejection with neither an explicit scope
                nor ``redo_on_reject`` tasks in the phase.
        """
        gate = run.gates.get(gate_id)
        if gate is None:
            raise GateInvalidTransition(f"Gate {gate_id} has not been created")
        if gate.state != GateState.PENDING:
            raise GateInvalidTransition(
                f"Gate {gate_id} is {gate.state.value}, not pending"
            )
        decision = GateDecision(decision)

        scope: tuple[str, ...] = ()
        if decision == GateDecision.REJECT:
            scope = self._rework_scope(run, gate, rework_scope)

        now = to_iso(self._clock())
        gate.state = (
            GateState.APPROVED if decision == GateDecision.APPROVE else GateState.REJECTED
        )
        gate.decided_at = now
        gate.actor = actor
        gate.rationale = rationale
        gate.rework_scope = scope
        gate.history.append(
            GateDecisionRecord(
                decision=decision,
                actor=actor,
                rationale=rationale,
                decided_at=now,
                round=gate.round,
                rework_scope=scope,
            )
        )

        summary = decision.value
        if scope:
            summary += f"; rework {', '.join(scope)}"
        if rationale:
            summary += f": {rationale}"
        self._emitter(run).emit(RunEventType.GATE_DECIDED, gate_id, summary, actor=actor)
        logger.info("Gate %s %s by %s", gate_id, gate.state.value, actor)
        return scope

    def _rework_scope(
        self, run: WorkflowRun, gate: Gate, requested: Iterable[str] | None
    ) -> tuple[str, ...]:
        phase_tasks = run.definition.phase(gate.phase).tasks
        scope = set(requested or ())
        if scope:
            outside = scope - {t.task_id for t in phase_tasks}
            if outside:
                raise GateInvalidTransition(
                    f"Rework scope names tasks outside phase {gate.phase.value}: "
                    + ", ".join(sorted(outside))
                )
        else:
            scope = {t.task_id for t in phase_tasks if t.redo_on_reject}
        if not scope:
            raise ReworkScopeRequired(
                f"Rejecting gate {gate.gate_id} needs an explicit rework scope"
            )
        return tuple(sorted(scope))

    def status_of(self, run: WorkflowRun, gate_id: str) -> GateState | None:
        """State of a gate, or None if it has not been created yet."""
        gate = run.gates.get(gate_id)
        return gate.state if gate else None

    def open_gates(self, run: WorkflowRun) -> list[str]:
        return sorted(
            g.gate_id for g in run.gates.values() if g.state == GateState.PENDING
        )

    def check_escalations(
        self, run: WorkflowRun, now: datetime | None = None
    ) -> list[str]:
        """Page once per round for gates pending longer than allowed.

        Returns:
            Ids of the gates escalated by this call.
        """
        now = now or self._clock()
        escalated: list[str] = []
        for gate in run.gates.values():
            if gate.state != GateState.PENDING or gate.escalated_at is not None:
                continue
            definition = run.definition.gate_for(gate.phase)
            threshold = (
                definition.escalate_after_seconds
                if definition and definition.escalate_after_seconds is not None
                else self._policy.escalate_after_seconds
            )
            if threshold is None:
                continue
            if seconds_between(gate.opened_at, now) < threshold:
                continue

            gate.escalated_at = to_iso(now)
            escalated.append(gate.gate_id)
            self._emitter(run).emit(
                RunEventType.GATE_ESCALATED,
                gate.gate_id,
                f"pending longer than {threshold:.0f}s",
            )
            logger.warning(
                "Gate %s pending for run %s longer than %.0fs",
                gate.gate_id,
                run.run_id,
                threshold,
            )
            if self._on_escalation is not None:
                try:
                    self._on_escalation(run, gate)
                except Exception:
                    logger.exception("Gate escalation callback failed for %s", gate.gate_id)
        return escalated
