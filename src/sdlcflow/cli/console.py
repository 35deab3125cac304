"""Rich console output for the sdlcflow command line."""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.models import (
    RunStatusReport,
    SprintReport,
    TaskDefinition,
    TaskStatus,
    WorkflowDefinition,
)

# Shared console instances
console = Console()
error_console = Console(stderr=True)

_STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.READY: "cyan",
    TaskStatus.RUNNING: "yellow",
    TaskStatus.BLOCKED: "magenta",
    TaskStatus.DONE: "green",
    TaskStatus.FAILED: "bold red",
}


def print_header(title: str, subtitle: str | None = None) -> None:
    """Print a styled header panel."""
    content = Text(title, style="bold blue")
    if subtitle:
        content.append(f"\n{subtitle}", style="dim")
    console.print(Panel(content, expand=False))


def print_error(message: str, hint: str | None = None) -> None:
    """Print formatted error message to stderr."""
    content = Text(f"ERROR: {message}", style="bold red")
    if hint:
        content.append(f"\n\nHint: {hint}", style="yellow")
    error_console.print(Panel(content, title="Error", border_style="red"))


def print_success(message: str) -> None:
    console.print(Panel(message, title="Success", border_style="green"))


def print_failure(message: str, details: str | None = None) -> None:
    content = Text(message, style="bold red")
    if details:
        content.append(f"\n{details}", style="dim")
    console.print(Panel(content, title="Failed", border_style="red"))


def print_definition(definition: WorkflowDefinition) -> None:
    """Print phases, gates, tasks and workers of a definition."""
    table = Table(show_header=True, box=None)
    table.add_column("Phase", style="cyan")
    table.add_column("Task", style="magenta")
    table.add_column("Capability", style="yellow")
    table.add_column("Points", justify="right")
    table.add_column("Requires", style="dim")
    for phase in definition.phases:
        gate = f" [gate: {phase.gate.gate_id}]" if phase.gate else ""
        if not phase.tasks:
            table.add_row(phase.name.value + gate, "-", "", "", "")
        for i, task in enumerate(phase.tasks):
            table.add_row(
                phase.name.value + gate if i == 0 else "",
                task.task_id,
                task.capability,
                str(task.estimate),
                ", ".join(task.requires),
            )
    console.print(table)

    if definition.workers:
        console.print("\n[bold]Workers:[/bold]")
        for worker in definition.workers:
            console.print(
                f"  {worker.worker_id} ({worker.kind}, x{worker.concurrency}): "
                f"{', '.join(worker.capabilities)}"
            )


def print_topological_order(graph: TaskGraph) -> None:
    console.print("\n[bold]Execution order:[/bold]")
    console.print("  " + " -> ".join(graph.topological_order()))


def print_commitment(
    candidates: Sequence[TaskDefinition], selected: Sequence[str], capacity: int
) -> None:
    """Print a sprint commitment against its backlog."""
    estimates = {t.task_id: t.estimate for t in candidates}
    points = sum(estimates[tid] for tid in selected)
    table = Table(show_header=True, box=None)
    table.add_column("Task", style="magenta")
    table.add_column("Priority", justify="right")
    table.add_column("Points", justify="right")
    table.add_column("Committed")
    for task in sorted(candidates, key=lambda t: (t.priority, t.task_id)):
        chosen = task.task_id in selected
        table.add_row(
            task.task_id,
            str(task.priority),
            str(task.estimate),
            "[green]yes[/green]" if chosen else "[dim]no[/dim]",
        )
    console.print(table)
    console.print(f"\nCommitted {points}/{capacity} point(s): {', '.join(selected)}")


def print_run_status(report: RunStatusReport) -> None:
    """Print the task table, open gates and open incidents of a run."""
    console.print(
        f"\n[bold]Run {report.run_id}[/bold]: {report.status.value} "
        f"(phase {report.phase.value})"
    )
    if report.status_reason:
        console.print(f"[dim]{report.status_reason}[/dim]")

    table = Table(show_header=True, box=None)
    table.add_column("Task", style="magenta")
    table.add_column("Phase", style="cyan")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Cause", style="dim")
    for view in report.tasks:
        style = _STATUS_STYLES.get(view.status, "")
        table.add_row(
            view.task_id,
            view.phase.value,
            f"[{style}]{view.status.value}[/{style}]" if style else view.status.value,
            str(view.retry_count),
            view.cause,
        )
    console.print(table)

    if report.open_gates:
        console.print(f"\n[yellow]Open gates:[/yellow] {', '.join(report.open_gates)}")
    if report.open_incidents:
        console.print("\n[bold red]Open incidents:[/bold red]")
        for incident in report.open_incidents:
            console.print(
                f"  {incident.incident_id[:8]} {incident.severity.value} "
                f"{incident.state.value} [{incident.source}] {incident.details}"
            )


def print_sprints(reports: Sequence[SprintReport]) -> None:
    if not reports:
        return
    table = Table(show_header=True, box=None, title="Sprints")
    table.add_column("Sprint", style="cyan")
    table.add_column("Capacity", justify="right")
    table.add_column("Committed", justify="right")
    table.add_column("Completed", justify="right")
    table.add_column("Velocity", justify="right")
    for report in reports:
        table.add_row(
            report.sprint_id,
            str(report.capacity),
            str(report.committed_points),
            str(report.completed_points),
            "-" if report.velocity is None else f"{report.velocity:.2f}",
        )
    console.print(table)
