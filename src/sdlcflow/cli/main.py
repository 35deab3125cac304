"""sdlcflow command line: validate, plan and simulate workflow definitions."""

from __future__ import annotations

import logging
import sys

import click

from sdlcflow.application.checkpoint_service import CheckpointService
from sdlcflow.application.sprints import select_commitment
from sdlcflow.application.supervisor import WorkflowSupervisor
from sdlcflow.application.ticker import SafetyNetTicker
from sdlcflow.bootstrap import build_supervisor
from sdlcflow.cli.console import (
    console,
    print_commitment,
    print_definition,
    print_error,
    print_failure,
    print_header,
    print_run_status,
    print_sprints,
    print_success,
    print_topological_order,
)
from sdlcflow.cli.logging_setup import setup_logging
from sdlcflow.cli.options import common_options, review_options
from sdlcflow.domain.exceptions import ConfigError, OrchestrationError
from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.models import (
    GateDecision,
    GateState,
    Phase,
    RunStatus,
    RunStatusReport,
)
from sdlcflow.infrastructure.config import (
    definition_from_document,
    load_config,
    load_definition,
)
from sdlcflow.infrastructure.interactive import ConsoleGateReviewer
from sdlcflow.infrastructure.persistence import FilesystemRunStore

logger = logging.getLogger(__name__)


@click.group()
@click.version_option(package_name="sdlcflow")
def main() -> None:
    """Multi-agent SDLC workflow orchestration."""


@main.command()
@click.argument("definition_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Also validate an orchestrator configuration JSON",
)
def validate(definition_path: str, config_path: str | None) -> None:
    """Check a workflow definition and print its execution order."""
    try:
        definition = load_definition(definition_path)
        if config_path:
            load_config(config_path)
    except ConfigError as e:
        print_error(str(e), "Fix the definition and validate again.")
        sys.exit(1)

    print_header(f"Workflow: {definition.name}", definition_path)
    print_definition(definition)
    print_topological_order(TaskGraph.from_definitions(definition.tasks))
    print_success("Definition is valid")


@main.command()
@click.argument("definition_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--capacity",
    type=click.IntRange(min=1),
    default=None,
    help="Story points of the sprint (default: the definition's seed capacity)",
)
def plan(definition_path: str, capacity: int | None) -> None:
    """Show the first sprint commitment of the implementation backlog."""
    try:
        definition = load_definition(definition_path)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    capacity = capacity or definition.seed_capacity
    if capacity is None:
        print_error(
            "No sprint capacity", "Pass --capacity or set seed_capacity in the definition."
        )
        sys.exit(1)

    if Phase.IMPLEMENTATION not in definition.phase_names:
        print_failure("The definition has no implementation phase")
        sys.exit(1)
    backlog = definition.phase(Phase.IMPLEMENTATION).tasks
    graph = TaskGraph.from_definitions(definition.tasks)
    selected = select_commitment(backlog, graph, capacity)

    print_header(f"Sprint plan: {definition.name}", f"capacity {capacity}")
    print_commitment(backlog, selected, capacity)


@main.command()
@click.argument("definition_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--run-id", default=None, help="Run id (default: a new UUID)")
@common_options
@review_options
def simulate(
    definition_path: str,
    run_id: str | None,
    config_path: str | None,
    state_dir: str | None,
    log_file: str | None,
    verbose: bool,
    approve_all: bool,
    actor: str,
) -> None:
    """Run a workflow with the workers its definition declares.

    Workers of kind ``scripted`` run in process; gates are decided on the
    console unless --approve-all is given.
    """
    setup_logging(log_file, verbose)
    try:
        definition = load_definition(definition_path)
        config = load_config(config_path)
    except ConfigError as e:
        print_error(str(e), "Run 'sdlcflow validate' on the definition.")
        sys.exit(1)

    print_header(f"Workflow: {definition.name}", definition_path)
    print_definition(definition)

    with build_supervisor(config, state_dir) as supervisor:
        try:
            run_id = supervisor.start_run(definition, run_id=run_id)
        except ConfigError as e:
            print_error(str(e))
            sys.exit(1)
        console.print(f"\nStarted run [bold]{run_id}[/bold]")
        sys.exit(_drive_and_report(supervisor, run_id, approve_all, actor))


@main.command()
@click.argument("run_id")
@common_options
@review_options
def resume(
    run_id: str,
    config_path: str | None,
    state_dir: str | None,
    log_file: str | None,
    verbose: bool,
    approve_all: bool,
    actor: str,
) -> None:
    """Continue a run recorded under --state-dir."""
    setup_logging(log_file, verbose)
    if state_dir is None:
        print_error("resume needs --state-dir")
        sys.exit(2)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    with build_supervisor(config, state_dir) as supervisor:
        try:
            supervisor.load_run(run_id)
            supervisor.resume_run(run_id, actor=actor)
        except OrchestrationError as e:
            print_error(str(e))
            sys.exit(1)
        console.print(f"Resumed run [bold]{run_id}[/bold]")
        sys.exit(_drive_and_report(supervisor, run_id, approve_all, actor))


@main.command()
@click.argument("run_id")
@click.option(
    "--state-dir",
    required=True,
    type=click.Path(exists=True, file_okay=False),
    help="Directory holding the run records",
)
def status(run_id: str, state_dir: str) -> None:
    """Show the recorded state of a run without stepping it."""
    try:
        record = FilesystemRunStore(state_dir).load(run_id)
    except KeyError:
        print_error(f"No run {run_id} under {state_dir}")
        sys.exit(1)
    definition = definition_from_document(record["definition"])
    run = CheckpointService.restore_run(record, definition)
    console.print(f"[bold]{definition.name}[/bold] run {run.run_id}: {run.status.value}")
    for task in sorted(run.tasks.values(), key=lambda t: t.task_id):
        console.print(f"  {task.task_id:<24} {task.status.value:<8} {task.cause}")
    open_gates = sorted(g.gate_id for g in run.gates.values() if g.state == GateState.PENDING)
    if open_gates:
        console.print(f"[yellow]Open gates:[/yellow] {', '.join(open_gates)}")


def _drive_and_report(
    supervisor: WorkflowSupervisor, run_id: str, approve_all: bool, actor: str
) -> int:
    """Drive a run until it settles, print its state and return an exit code."""
    reviewer = None if approve_all else ConsoleGateReviewer(actor, console=console)
    try:
        with SafetyNetTicker(supervisor, supervisor.config.tick_interval_seconds):
            report = _drive(supervisor, run_id, reviewer, actor)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        supervisor.pause_run(run_id, actor=actor, reason="interrupted")
        click.echo("\n\nInterrupted by user.")
        return 130

    print_run_status(report)
    run = supervisor.get_run(run_id)
    print_sprints(
        [supervisor.get_sprint_report(run_id, sid) for sid in sorted(run.sprints)]
    )
    if report.status == RunStatus.COMPLETED:
        print_success(f"Run {run_id} completed")
        return 0
    print_failure(
        f"Run {run_id} stopped: {report.status.value}",
        report.status_reason or "Tasks are waiting on workers or operator action.",
    )
    return 1


def _drive(
    supervisor: WorkflowSupervisor,
    run_id: str,
    reviewer: ConsoleGateReviewer | None,
    actor: str,
) -> RunStatusReport:
    while True:
        supervisor.wait_until_quiescent(run_id)
        report = supervisor.get_run_status(run_id)
        if report.status in (RunStatus.COMPLETED, RunStatus.ABORTED):
            return report
        if not report.open_gates:
            return report
        if reviewer is not None:
            reviewer.review(supervisor, run_id)
            continue
        for gate_id in report.open_gates:
            supervisor.decide_gate(
                run_id, gate_id, GateDecision.APPROVE, actor, "approved by --approve-all"
            )
