"""
Workflow Supervisor: owns workflow runs and exposes the control and
observation interface.

Each run lives in a RunContext holding its graph, its scheduler and a
re-entrant lock. Every bookkeeping step (status writes, readiness, gate
decisions, sprint open/close, rollback) happens under that lock; worker
execution happens on an executor outside it. Runs share only the artifact
store and the capability router.
"""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from sdlcflow.application.checkpoint_service import CheckpointService
from sdlcflow.application.clock import Clock, parse_iso, system_clock, to_iso
from sdlcflow.application.gates import GateController, GateEscalationCallback
from sdlcflow.application.incidents import EscalationNotifier, IncidentController
from sdlcflow.application.router import CapabilityRouter
from sdlcflow.application.run_event_emitter import RunEventEmitter
from sdlcflow.application.scheduler import Dispatch, TaskScheduler
from sdlcflow.application.sprints import SprintPlanner
from sdlcflow.domain.config import OrchestratorConfig
from sdlcflow.domain.definition import parse_definition
from sdlcflow.domain.exceptions import (
    ConfigError,
    RunNotActive,
    RunNotFound,
    SprintPlanningError,
)
from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.interfaces import (
    ArtifactStoreInterface,
    CheckpointLogInterface,
    RunEventStoreInterface,
    RunStoreInterface,
    WorkerInterface,
)
from sdlcflow.domain.models import (
    Checkpoint,
    CheckpointReason,
    GateDecision,
    GateState,
    Phase,
    RunStatus,
    RunStatusReport,
    Severity,
    SprintReport,
    TaskOutcome,
    TaskState,
    TaskStatus,
    TaskStatusView,
    WorkerRegistration,
    WorkflowDefinition,
    WorkflowRun,
)
from sdlcflow.domain.run_event import RunEvent, RunEventType

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[WorkerRegistration], WorkerInterface | None]
DefinitionParser = Callable[[Mapping[str, Any]], WorkflowDefinition]


@dataclass
class RunContext:
    """Everything the supervisor keeps per run."""

    run: WorkflowRun
    graph: TaskGraph
    scheduler: TaskScheduler
    emitter: RunEventEmitter
    lock: threading.RLock = field(default_factory=threading.RLock)
    condition: threading.Condition = field(init=False)
    inflight: int = 0  # In-process dispatches not yet applied

    def __post_init__(self) -> None:
        self.condition = threading.Condition(self.lock)


class WorkflowSupervisor:
    """
    Composes resolver, router, scheduler, gates, sprints and incidents.

    Runs are values passed by reference to every component; several runs
    may coexist in one supervisor.
    """

    def __init__(
        self,
        artifacts: ArtifactStoreInterface,
        checkpoint_log: CheckpointLogInterface,
        event_store: RunEventStoreInterface,
        config: OrchestratorConfig | None = None,
        router: CapabilityRouter | None = None,
        run_store: RunStoreInterface | None = None,
        executor: Executor | None = None,
        clock: Clock = system_clock,
        rng: random.Random | None = None,
        worker_factory: WorkerFactory | None = None,
        escalation_notifier: EscalationNotifier | None = None,
        gate_escalation_callback: GateEscalationCallback | None = None,
        definition_parser: DefinitionParser = parse_definition,
    ) -> None:
        """
        Args:
            artifacts: Shared, versioned artifact store
            checkpoint_log: Append-only checkpoint log used for rollback
            event_store: Audit trail of every run
            config: Retry, incident, gate and sprint policy
            router: Shared worker registry (a new one if None)
            run_store: Durable per-run records; runs are not persisted if None
            executor: Runs in-process workers (a thread pool if None)
            clock: Source of the current time
            rng: Backoff jitter source
            worker_factory: Builds in-process handlers for registrations
                declared in a definition; None means they are external
            escalation_notifier: Pages on incident escalation
            gate_escalation_callback: Pages on long-pending gates
            definition_parser: Turns raw definition documents into
                definitions, both on start and on reload; the composition
                root passes the schema-checking loader
        """
        self._config = config or OrchestratorConfig()
        self._artifacts = artifacts
        self._events = event_store
        self._router = router or CapabilityRouter()
        self._run_store = run_store
        self._clock = clock
        self._rng = rng or random.Random()
        self._worker_factory = worker_factory
        self._parse_definition = definition_parser

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._config.max_parallel_tasks,
            thread_name_prefix="sdlcflow-worker",
        )

        self._checkpoints = CheckpointService(checkpoint_log, clock)
        self._incidents = IncidentController(
            self._config.incidents,
            event_store,
            self._checkpoints,
            clock,
            escalation_notifier,
        )
        self._gates = GateController(
            self._config.gates, event_store, clock, gate_escalation_callback
        )
        self._sprints = SprintPlanner(
            self._config.sprints, event_store, clock, self._router.release
        )

        self._runs: dict[str, RunContext] = {}
        self._runs_lock = threading.Lock()

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def router(self) -> CapabilityRouter:
        return self._router

    @property
    def artifacts(self) -> ArtifactStoreInterface:
        return self._artifacts

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def gates(self) -> GateController:
        return self._gates

    @property
    def sprints(self) -> SprintPlanner:
        return self._sprints

    @property
    def incidents(self) -> IncidentController:
        return self._incidents

    def _context(self, run_id: str) -> RunContext:
        with self._runs_lock:
            ctx = self._runs.get(run_id)
        if ctx is None:
            raise RunNotFound(run_id)
        return ctx

    def _contexts(self) -> list[RunContext]:
        with self._runs_lock:
            return list(self._runs.values())

    def list_runs(self) -> list[str]:
        with self._runs_lock:
            return sorted(self._runs)

    def get_run(self, run_id: str) -> WorkflowRun:
        """Live run object. Read it only while no step is in progress."""
        return self._context(run_id).run

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    def start_run(
        self,
        definition: WorkflowDefinition | Mapping[str, Any],
        run_id: str | None = None,
        handlers: Mapping[str, WorkerInterface] | None = None,
    ) -> str:
        """Start a run of a workflow definition.

        Args:
            definition: Parsed definition or raw definition document.
            run_id: Explicit id; a UUID if None.
            handlers: In-process handlers by worker id, overriding the
                worker factory.

        Returns:
            The run id.

        Raises:
            ConfigError: Invalid definition, or implementation tasks without
                a seed sprint capacity.
        """
        if not isinstance(definition, WorkflowDefinition):
            definition = self._parse_definition(definition)
        self._check_sprint_seed(definition)

        run_id = run_id or str(uuid.uuid4())
        with self._runs_lock:
            if run_id in self._runs:
                raise ConfigError(f"Run id already in use: {run_id}")

        self._register_definition_workers(definition, handlers)

        now = to_iso(self._clock())
        run = WorkflowRun(
            run_id=run_id,
            definition=definition,
            phases=definition.phase_names,
            current_phase=definition.phase_names[0],
            status=RunStatus.RUNNING,
            created_at=now,
            started_at=now,
            tasks={
                t.task_id: TaskState(task_id=t.task_id, phase=t.phase)
                for t in definition.tasks
            },
        )
        ctx = self._add_context(run, TaskGraph.from_definitions(definition.tasks))
        ctx.emitter.emit(
            RunEventType.RUN_STARTED,
            run_id,
            f"{definition.name}: {len(run.tasks)} task(s) over "
            f"{len(run.phases)} phase(s)",
        )
        logger.info("Started run %s (%s)", run_id, definition.name)
        self._advance(ctx)
        return run_id

    def _check_sprint_seed(self, definition: WorkflowDefinition) -> None:
        if Phase.IMPLEMENTATION not in definition.phase_names:
            return
        if not definition.phase(Phase.IMPLEMENTATION).tasks:
            return
        if definition.seed_capacity is None and self._config.sprints.seed_capacity is None:
            raise ConfigError(
                "Implementation tasks need a seed sprint capacity "
                "(definition seed_capacity or sprints.seed_capacity)"
            )

    def _register_definition_workers(
        self,
        definition: WorkflowDefinition,
        handlers: Mapping[str, WorkerInterface] | None,
    ) -> None:
        for registration in definition.workers:
            handler = (handlers or {}).get(registration.worker_id)
            if handler is None and self._worker_factory is not None:
                handler = self._worker_factory(registration)
            self._router.register(registration, handler)

    def _add_context(self, run: WorkflowRun, graph: TaskGraph) -> RunContext:
        emitter = RunEventEmitter(self._events, run.run_id, self._clock)
        scheduler = TaskScheduler(
            run,
            graph,
            self._router,
            self._artifacts,
            emitter,
            self._incidents,
            self._config.retry,
            self._clock,
            self._rng,
        )
        ctx = RunContext(run=run, graph=graph, scheduler=scheduler, emitter=emitter)
        with self._runs_lock:
            self._runs[run.run_id] = ctx
        return ctx

    def load_run(
        self, run_id: str, handlers: Mapping[str, WorkerInterface] | None = None
    ) -> str:
        """Rehydrate a run from the run store.

        Tasks recorded as running lost their workers and return to pending.
        The run keeps its recorded status; a running run resumes stepping.

        Raises:
            RunNotFound: No run store, or no record for the id.
        """
        if self._run_store is None:
            raise RunNotFound(run_id)
        try:
            record = self._run_store.load(run_id)
        except KeyError as e:
            raise RunNotFound(run_id) from e

        definition = self._parse_definition(record["definition"])
        self._register_definition_workers(definition, handlers)
        run = CheckpointService.restore_run(record, definition)
        for task in run.tasks.values():
            if task.status == TaskStatus.RUNNING:
                task.status = TaskStatus.PENDING
                task.worker_id = None
                task.cause = "recovered after restart"
        ctx = self._add_context(run, TaskGraph.from_definitions(definition.tasks))
        logger.info("Loaded run %s (%s)", run_id, run.status.value)
        self._advance(ctx)
        return run_id

    def cancel_run(self, run_id: str, actor: str = "operator") -> None:
        """Abort a run: every non-terminal task is blocked, artifacts stay.

        Raises:
            RunNotActive: The run already completed or was cancelled.
        """
        ctx = self._context(run_id)
        with ctx.lock:
            self._require_active(ctx)
            run = ctx.run
            blocked = ctx.scheduler.block_all("run cancelled")
            run.status = RunStatus.ABORTED
            run.status_reason = f"cancelled by {actor}"
            run.ended_at = to_iso(self._clock())
            ctx.emitter.operator_action(
                RunEventType.RUN_CANCELLED,
                run_id,
                actor,
                f"{len(blocked)} task(s) blocked",
            )
            logger.warning("Run %s cancelled by %s", run_id, actor)
            self._persist(ctx)
            ctx.condition.notify_all()

    def pause_run(self, run_id: str, actor: str = "operator", reason: str = "") -> None:
        """Freeze scheduling. Running tasks may still report back."""
        ctx = self._context(run_id)
        with ctx.lock:
            self._require_active(ctx)
            if ctx.run.status == RunStatus.PAUSED:
                return
            ctx.run.status = RunStatus.PAUSED
            ctx.run.status_reason = reason or f"paused by {actor}"
            ctx.emitter.operator_action(RunEventType.RUN_PAUSED, run_id, actor, reason)
            logger.info("Run %s paused by %s", run_id, actor)
            self._persist(ctx)

    def resume_run(self, run_id: str, actor: str = "operator") -> None:
        ctx = self._context(run_id)
        with ctx.lock:
            self._require_active(ctx)
            if ctx.run.status != RunStatus.PAUSED:
                return
            ctx.run.status = RunStatus.RUNNING
            ctx.run.status_reason = ""
            ctx.emitter.operator_action(RunEventType.RUN_RESUMED, run_id, actor, "")
            logger.info("Run %s resumed by %s", run_id, actor)
        self._advance(ctx)

    @staticmethod
    def _require_active(ctx: RunContext) -> None:
        if ctx.run.is_terminal:
            raise RunNotActive(f"Run {ctx.run.run_id} is {ctx.run.status.value}")

    # =========================================================================
    # Gates
    # =========================================================================

    def decide_gate(
        self,
        run_id: str,
        gate_id: str,
        decision: GateDecision | str,
        actor: str,
        rationale: str = "",
        rework_scope: Iterable[str] | None = None,
    ) -> tuple[str, ...]:
        """Approve or reject a pending gate.

        Approval checkpoints the run; rejection reopens the rework scope.

        Returns:
            The reopened task ids (empty on approval).
        """
        ctx = self._context(run_id)
        with ctx.lock:
            self._require_active(ctx)
            run = ctx.run
            scope = self._gates.decide(
                run, gate_id, decision, actor, rationale, rework_scope
            )
            if run.gates[gate_id].state == GateState.APPROVED:
                self._checkpoint(ctx, CheckpointReason.GATE_APPROVED, gate_id)
            else:
                ctx.scheduler.reopen(scope, f"rework requested at {gate_id} by {actor}")
        self._advance(ctx)
        return scope

    # =========================================================================
    # Task results and operator actions
    # =========================================================================

    def report_task_result(
        self,
        run_id: str,
        task_id: str,
        success: bool,
        output_refs: Mapping[str, int] | None = None,
        cause: str = "",
        worker_id: str | None = None,
    ) -> bool:
        """Hand-off point for external workers.

        Args:
            worker_id: The reporting worker. When given, a result from a
                worker that no longer holds the task is ignored.

        Returns:
            True if applied; False for a task that is no longer running or
            is held by another worker.
        """
        ctx = self._context(run_id)
        outcome = TaskOutcome(
            success=success,
            outputs=tuple(sorted((output_refs or {}).items())),
            cause=cause,
        )
        with ctx.lock:
            applied = ctx.scheduler.complete(task_id, outcome, worker_id=worker_id)
        self._advance(ctx)
        return applied

    def cancel_task(self, run_id: str, task_id: str, actor: str = "operator") -> None:
        ctx = self._context(run_id)
        with ctx.lock:
            self._require_active(ctx)
            ctx.scheduler.cancel_task(task_id, actor)
        self._advance(ctx)

    def retry_task(self, run_id: str, task_id: str, actor: str = "operator") -> list[str]:
        ctx = self._context(run_id)
        with ctx.lock:
            self._require_active(ctx)
            released = ctx.scheduler.retry_task(task_id, actor)
        self._advance(ctx)
        return released

    def override_task(
        self, run_id: str, task_id: str, actor: str, rationale: str = ""
    ) -> list[str]:
        ctx = self._context(run_id)
        with ctx.lock:
            self._require_active(ctx)
            released = ctx.scheduler.override_task(task_id, actor, rationale)
        self._advance(ctx)
        return released

    # =========================================================================
    # Incidents and rollback
    # =========================================================================

    def report_incident(
        self,
        run_id: str,
        source: str,
        severity: Severity | str | None,
        details: str,
    ) -> str:
        """Ingest an alert from an external monitor or the scheduler."""
        ctx = self._context(run_id)
        with ctx.lock:
            incident_id = self._incidents.report(
                ctx.run, source, Severity(severity) if severity else None, details
            )
            self._persist(ctx)
        return incident_id

    def triage_incident(
        self,
        run_id: str,
        incident_id: str,
        severity: Severity | str | None = None,
        actor: str = "operator",
    ) -> None:
        ctx = self._context(run_id)
        with ctx.lock:
            self._incidents.triage(
                ctx.run, incident_id, Severity(severity) if severity else None, actor
            )
            self._persist(ctx)

    def mitigate_incident(
        self, run_id: str, incident_id: str, actor: str = "operator"
    ) -> None:
        ctx = self._context(run_id)
        with ctx.lock:
            self._incidents.start_mitigation(ctx.run, incident_id, actor)
            self._persist(ctx)

    def resolve_incident(
        self, run_id: str, incident_id: str, actor: str = "operator"
    ) -> None:
        ctx = self._context(run_id)
        with ctx.lock:
            self._incidents.resolve(ctx.run, incident_id, actor)
            self._persist(ctx)

    def escalate_incident(
        self, run_id: str, incident_id: str, actor: str = "operator"
    ) -> None:
        ctx = self._context(run_id)
        with ctx.lock:
            self._incidents.escalate(ctx.run, incident_id, actor)
            self._persist(ctx)

    def amend_incident(
        self,
        run_id: str,
        incident_id: str,
        details: str | None = None,
        severity: Severity | str | None = None,
        actor: str = "operator",
    ) -> str:
        ctx = self._context(run_id)
        with ctx.lock:
            new_id = self._incidents.amend(
                ctx.run,
                incident_id,
                details,
                Severity(severity) if severity else None,
                actor,
            )
            self._persist(ctx)
        return new_id

    def trigger_rollback(
        self,
        run_id: str,
        checkpoint_id: str,
        actor: str,
        cause_incident_id: str | None = None,
    ) -> str:
        """Restore a run to a checkpoint; the run is left paused.

        Returns:
            Id of the incident recording the rollback.

        Raises:
            RollbackTargetMissing: The checkpoint is absent for this run.
        """
        ctx = self._context(run_id)
        with ctx.lock:
            incident_id = self._incidents.trigger_rollback(
                ctx.run, ctx.scheduler, checkpoint_id, actor, cause_incident_id
            )
            ctx.run.ended_at = None
            self._persist(ctx)
            ctx.condition.notify_all()
        return incident_id

    def list_checkpoints(self, run_id: str) -> list[Checkpoint]:
        self._context(run_id)
        return self._checkpoints.list_checkpoints(run_id)

    def _checkpoint(
        self, ctx: RunContext, reason: CheckpointReason, source_id: str
    ) -> Checkpoint:
        checkpoint = self._checkpoints.create_checkpoint(ctx.run, reason, source_id)
        ctx.emitter.emit(
            RunEventType.CHECKPOINT,
            checkpoint.checkpoint_id,
            f"{reason.value} {source_id}",
        )
        return checkpoint

    # =========================================================================
    # Workers
    # =========================================================================

    def register_worker(
        self, registration: WorkerRegistration, handler: WorkerInterface | None = None
    ) -> None:
        """Register a worker and give waiting runs a chance to use it."""
        self._router.register(registration, handler)
        self.tick()

    def set_worker_available(self, worker_id: str, available: bool) -> None:
        self._router.set_available(worker_id, available)
        if available:
            self.tick()

    # =========================================================================
    # Observation
    # =========================================================================

    def get_run_status(self, run_id: str) -> RunStatusReport:
        ctx = self._context(run_id)
        with ctx.lock:
            run = ctx.run
            return RunStatusReport(
                run_id=run.run_id,
                status=run.status,
                phase=run.current_phase,
                tasks=tuple(
                    TaskStatusView(
                        task_id=t.task_id,
                        phase=t.phase,
                        status=t.status,
                        retry_count=t.retry_count,
                        worker_id=t.worker_id,
                        cause=t.cause,
                        error_kind=t.error_kind,
                    )
                    for t in sorted(run.tasks.values(), key=lambda t: t.task_id)
                ),
                open_incidents=tuple(self._incidents.open_incidents(run)),
                open_gates=tuple(self._gates.open_gates(run)),
                current_sprint_id=run.current_sprint_id,
                status_reason=run.status_reason,
            )

    def get_sprint_report(self, run_id: str, sprint_id: str) -> SprintReport:
        ctx = self._context(run_id)
        with ctx.lock:
            return self._sprints.sprint_report(ctx.run, sprint_id)

    def get_events(
        self, run_id: str, event_type: RunEventType | None = None
    ) -> list[RunEvent]:
        self._context(run_id)
        return self._events.get_events(run_id, event_type=event_type)

    # =========================================================================
    # Stepping
    # =========================================================================

    def tick(self, run_id: str | None = None) -> None:
        """Check escalation timers and step one run, or every run.

        Driven by task completion and worker availability changes, and by
        the safety-net ticker for time-based transitions (retry backoff,
        sprint time boxes, escalations).
        """
        contexts = [self._context(run_id)] if run_id else self._contexts()
        for ctx in contexts:
            with ctx.lock:
                if ctx.run.is_terminal:
                    continue
                now = self._clock()
                self._incidents.check_escalations(ctx.run, now)
                self._gates.check_escalations(ctx.run, now)
            self._advance(ctx)

    def _advance(self, ctx: RunContext) -> int:
        """Step under the run lock, then hand dispatches to workers.

        Returns:
            Number of tasks started.
        """
        with ctx.lock:
            dispatches = self._step(ctx)
            ctx.inflight += sum(1 for d in dispatches if d.handler is not None)
            self._persist(ctx)
            ctx.condition.notify_all()
        self._submit(ctx, dispatches)
        return len(dispatches)

    def _step(self, ctx: RunContext) -> list[Dispatch]:
        run = ctx.run
        if run.status != RunStatus.RUNNING:
            return []

        while True:
            phase = run.current_phase
            if phase == Phase.IMPLEMENTATION:
                self._step_sprints(ctx)
            if not self._phase_exit_ready(ctx, phase):
                break
            gate = run.definition.gate_for(phase)
            if gate is not None:
                state = self._gates.status_of(run, gate.gate_id)
                if state != GateState.APPROVED:
                    if state != GateState.PENDING:
                        self._gates.open_gate(run, phase)
                    break
            if not self._advance_phase(ctx):
                return []

        running = len(ctx.scheduler.running_tasks())
        return ctx.scheduler.tick(limit=max(0, self._config.max_parallel_tasks - running))

    def _phase_exit_ready(self, ctx: RunContext, phase: Phase) -> bool:
        if not ctx.scheduler.phase_complete(phase):
            return False
        if phase == Phase.IMPLEMENTATION:
            return ctx.run.current_sprint is None and not self._sprints.backlog(ctx.run)
        return True

    def _step_sprints(self, ctx: RunContext) -> None:
        run = ctx.run
        sprint = run.current_sprint
        if sprint is not None and self._sprints.should_close(run, sprint):
            self._sprints.close_sprint(run, ctx.graph, sprint.sprint_id)
            self._checkpoint(ctx, CheckpointReason.SPRINT_CLOSED, sprint.sprint_id)
        if run.current_sprint is None and self._sprints.backlog(run):
            try:
                self._sprints.plan_sprint(run, ctx.graph)
            except SprintPlanningError as e:
                run.status_reason = str(e)
                logger.warning("Cannot plan sprint for run %s: %s", run.run_id, e)

    def _advance_phase(self, ctx: RunContext) -> bool:
        """Move to the next phase, or complete the run after the last one."""
        run = ctx.run
        index = run.phases.index(run.current_phase)
        if index + 1 >= len(run.phases):
            run.status = RunStatus.COMPLETED
            run.ended_at = to_iso(self._clock())
            ctx.emitter.emit(RunEventType.RUN_COMPLETED, run.run_id, "all phases done")
            logger.info("Run %s completed", run.run_id)
            return False
        previous = run.current_phase
        run.current_phase = run.phases[index + 1]
        ctx.emitter.emit(
            RunEventType.PHASE_ADVANCED,
            run.run_id,
            f"{previous.value} -> {run.current_phase.value}",
        )
        logger.info(
            "Run %s advanced %s -> %s",
            run.run_id,
            previous.value,
            run.current_phase.value,
        )
        return True

    def _persist(self, ctx: RunContext) -> None:
        if self._run_store is not None:
            self._run_store.save(ctx.run.run_id, CheckpointService.serialize_run(ctx.run))

    # =========================================================================
    # In-process execution
    # =========================================================================

    def _submit(self, ctx: RunContext, dispatches: list[Dispatch]) -> None:
        for dispatch in dispatches:
            if dispatch.handler is None:
                logger.debug(
                    "Awaiting external result for %s from %s",
                    dispatch.assignment.task.task_id,
                    dispatch.assignment.worker_id,
                )
                continue
            future = self._executor.submit(
                self._execute, ctx, dispatch, dispatch.handler
            )
            future.add_done_callback(_log_crash)

    def _execute(
        self, ctx: RunContext, dispatch: Dispatch, handler: WorkerInterface
    ) -> None:
        assignment = dispatch.assignment
        try:
            outcome = handler.execute(assignment, self._artifacts)
        except Exception as e:
            logger.warning(
                "Worker %s raised on %s: %s",
                assignment.worker_id,
                assignment.task.task_id,
                e,
            )
            outcome = TaskOutcome(success=False, cause=f"{type(e).__name__}: {e}")

        with ctx.lock:
            ctx.inflight -= 1
            ctx.scheduler.complete(assignment.task.task_id, outcome, dispatch.token)
        self._advance(ctx)
        # The freed worker slot may be what another run is waiting on
        for other in self._contexts():
            if other is not ctx and not other.run.is_terminal:
                self._advance(other)

    def wait_until_quiescent(self, run_id: str, timeout: float | None = None) -> bool:
        """Block until no in-process work is outstanding and no retry is due.

        Pending retries are stepped when their backoff elapses, so a run
        with in-process workers settles at a gate, a terminal status, or
        on work owned by external workers.

        Returns:
            False if ``timeout`` elapsed first.
        """
        ctx = self._context(run_id)
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with ctx.lock:
                retry_wait = None
                if ctx.inflight == 0:
                    retry_wait = self._retry_wait(ctx)
                    if retry_wait is None:
                        return True
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                due = retry_wait == 0
                if not due:
                    waits = [w for w in (retry_wait, remaining) if w is not None]
                    ctx.condition.wait(min(waits) if waits else None)
            # A due retry that cannot be dispatched waits on capacity, not time
            if due and self._advance(ctx) == 0:
                return True

    def _retry_wait(self, ctx: RunContext) -> float | None:
        if ctx.run.status != RunStatus.RUNNING:
            return None
        retry_at = ctx.scheduler.next_retry_at()
        if retry_at is None:
            return None
        return max(0.0, (parse_iso(retry_at) - self._clock()).total_seconds())

    # =========================================================================
    # Shutdown
    # =========================================================================

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> WorkflowSupervisor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


def _log_crash(future: Future[None]) -> None:
    error = future.exception()
    if error is not None:
        logger.error("Worker thread crashed", exc_info=error)
