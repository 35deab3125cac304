"""
Human-in-the-loop gate review.

Prompts an approver on the console for each pending gate of a run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from sdlcflow.domain.models import GateDecision, TaskStatus

if TYPE_CHECKING:
    from sdlcflow.application.supervisor import WorkflowSupervisor


class ConsoleGateReviewer:
    """
    Decides gates through CLI prompts.

    Shows the phase's tasks and their pinned outputs, then asks for a
    decision. A rejection asks for the tasks to rework; leaving the scope
    empty falls back to the tasks the definition marks for rework.
    """

    def __init__(
        self,
        actor: str,
        console: Console | None = None,
        prompt_title: str = "GATE REVIEW REQUIRED",
    ):
        """
        Args:
            actor: Identity recorded on every decision
            console: Output console (a new one if None)
            prompt_title: Title displayed above each review
        """
        self.actor = actor
        self.prompt_title = prompt_title
        self.console = console or Console()

    def review(self, supervisor: WorkflowSupervisor, run_id: str) -> int:
        """Prompt for every open gate of a run.

        Returns:
            Number of gates decided.
        """
        decided = 0
        for gate_id in supervisor.get_run_status(run_id).open_gates:
            self.review_gate(supervisor, run_id, gate_id)
            decided += 1
        return decided

    def review_gate(
        self, supervisor: WorkflowSupervisor, run_id: str, gate_id: str
    ) -> tuple[str, ...]:
        """Show one gate, prompt for a decision and apply it.

        Returns:
            Reopened task ids (empty on approval).
        """
        run = supervisor.get_run(run_id)
        gate = run.gates[gate_id]
        self.console.print(f"\n[bold yellow]═══ {self.prompt_title} ═══[/bold yellow]")
        self.console.print(f"[dim]Gate: {gate_id} (round {gate.round})[/dim]")
        self.console.print(f"[dim]Phase: {gate.phase.value}[/dim]\n")

        table = Table(show_header=True, box=None)
        table.add_column("Task", style="cyan")
        table.add_column("Status")
        table.add_column("Outputs", style="dim")
        phase_tasks = sorted(run.tasks_in_phase(gate.phase), key=lambda t: t.task_id)
        for task in phase_tasks:
            outputs = ", ".join(f"{k}@v{v}" for k, v in sorted(task.output_refs.items()))
            status = task.status.value + (" (overridden)" if task.overridden else "")
            table.add_row(task.task_id, status, outputs)
        self.console.print(table)

        decision = Prompt.ask(
            "\n[bold]Approve this phase?[/bold]", choices=["y", "n"], console=self.console
        )
        if decision == "y":
            rationale = Prompt.ask(
                "[bold]Rationale[/bold]", default="", console=self.console
            )
            return supervisor.decide_gate(
                run_id, gate_id, GateDecision.APPROVE, self.actor, rationale
            )

        rationale = Prompt.ask("[bold]Rejection reason[/bold]", console=self.console)
        done = [t.task_id for t in phase_tasks if t.status == TaskStatus.DONE]
        raw_scope = Prompt.ask(
            "[bold]Tasks to rework[/bold] (comma separated, blank for the defaults)",
            default="",
            console=self.console,
        )
        scope = [tid.strip() for tid in raw_scope.split(",") if tid.strip()]
        unknown = sorted(set(scope) - set(done))
        if unknown:
            self.console.print(
                f"[yellow]Ignoring tasks not done in this phase: {', '.join(unknown)}[/yellow]"
            )
            scope = [tid for tid in scope if tid in done]
        return supervisor.decide_gate(
            run_id, gate_id, GateDecision.REJECT, self.actor, rationale, scope or None
        )
