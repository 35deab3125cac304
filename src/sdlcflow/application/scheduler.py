"""
Task Scheduler: the execution core of one workflow run.

The scheduler owns every task status write of its run. It is not
thread-safe on its own; the Supervisor calls it under the run lock and
executes the returned dispatches outside that lock.

A tick promotes eligible ready tasks, then asks the router for a worker for
each ready task whose retry time has passed. Completion validates declared
outputs against the artifact store, pins the versions the successors will
read, and recomputes readiness incrementally.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta

from sdlcflow.application.clock import Clock, parse_iso, system_clock, to_iso
from sdlcflow.application.incidents import IncidentController
from sdlcflow.application.router import CapabilityRouter
from sdlcflow.application.run_event_emitter import RunEventEmitter
from sdlcflow.domain.config import RetryPolicy
from sdlcflow.domain.exceptions import (
    CapacityUnavailable,
    InvalidTaskTransition,
    NoCapableWorker,
    TaskExecutionFailure,
)
from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.interfaces import ArtifactStoreInterface, WorkerInterface
from sdlcflow.domain.models import (
    TERMINAL_TASK_STATUSES,
    ArtifactRef,
    ErrorKind,
    Phase,
    TaskAssignment,
    TaskDefinition,
    TaskOutcome,
    TaskState,
    TaskStatus,
    WorkflowRun,
)
from sdlcflow.domain.run_event import RunEventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Dispatch:
    """A task handed to a worker, to be executed outside the run lock."""

    assignment: TaskAssignment
    handler: WorkerInterface | None  # None: external worker reports back
    token: int  # Identifies this attempt; stale results carry an old token


class TaskScheduler:
    """Per-run state machine for task readiness, dispatch, retry and failure."""

    def __init__(
        self,
        run: WorkflowRun,
        graph: TaskGraph,
        router: CapabilityRouter,
        artifacts: ArtifactStoreInterface,
        emitter: RunEventEmitter,
        incidents: IncidentController,
        retry: RetryPolicy | None = None,
        clock: Clock = system_clock,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            run: Run whose tasks this scheduler drives.
            graph: Validated dependency graph of the run's tasks.
            router: Shared capability router.
            artifacts: Shared artifact store.
            emitter: Audit trail of the run.
            incidents: Receives permanent task failures.
            retry: Backoff and retry limits.
            clock: Source of the current time.
            rng: Jitter source; seed it for reproducible backoff.
        """
        self._run = run
        self._graph = graph
        self._router = router
        self._artifacts = artifacts
        self._emitter = emitter
        self._incidents = incidents
        self._retry = retry or RetryPolicy()
        self._clock = clock
        self._rng = rng or random.Random()
        self._tokens: dict[str, int] = {}
        self._next_token = 0

    @property
    def run(self) -> WorkflowRun:
        return self._run

    @property
    def graph(self) -> TaskGraph:
        return self._graph

    def _state(self, task_id: str) -> TaskState:
        if task_id not in self._run.tasks:
            raise KeyError(f"Task not found: {task_id}")
        return self._run.tasks[task_id]

    def _statuses(self) -> dict[str, TaskStatus]:
        return {tid: t.status for tid, t in self._run.tasks.items()}

    # =========================================================================
    # Tick
    # =========================================================================

    def eligible_tasks(self) -> list[str]:
        """Tasks the run may start now: current phase, open sprint only."""
        phase = self._run.current_phase
        tasks = self._run.tasks_in_phase(phase)
        if phase == Phase.IMPLEMENTATION:
            sprint = self._run.current_sprint
            if sprint is None or sprint.is_closed:
                return []
            return sorted(t.task_id for t in tasks if t.sprint_id == sprint.sprint_id)
        return sorted(t.task_id for t in tasks)

    def promote_ready(self) -> list[str]:
        """Move eligible pending tasks with all predecessors done to ready."""
        ready = self._graph.ready_tasks(self._statuses(), among=self.eligible_tasks())
        for tid in ready:
            self._run.tasks[tid].status = TaskStatus.READY
        return ready

    def tick(self, limit: int | None = None) -> list[Dispatch]:
        """Run one scheduling iteration.

        Args:
            limit: Maximum number of tasks to start in this tick.

        Returns:
            Dispatches for the tasks moved to running.
        """
        self.promote_ready()
        now = self._clock()
        eligible = set(self.eligible_tasks())
        dispatches: list[Dispatch] = []
        for tid in sorted(eligible):
            if limit is not None and len(dispatches) >= limit:
                break
            task = self._run.tasks[tid]
            if task.status != TaskStatus.READY:
                continue
            if task.retry_at is not None and parse_iso(task.retry_at) > now:
                continue
            definition = self._run.definition.task(tid)
            try:
                worker_id = self._router.assign(definition)
            except CapacityUnavailable:
                logger.debug("Backpressure on %s: %s busy", tid, definition.capability)
                continue
            except NoCapableWorker as e:
                if task.error_kind != ErrorKind.NO_CAPABLE_WORKER:
                    logger.warning("Task %s waiting: %s", tid, e)
                task.cause = str(e)
                task.error_kind = ErrorKind.NO_CAPABLE_WORKER
                continue
            dispatches.append(self._start(task, definition, worker_id))
        return dispatches

    def _start(
        self, task: TaskState, definition: TaskDefinition, worker_id: str
    ) -> Dispatch:
        task.status = TaskStatus.RUNNING
        task.worker_id = worker_id
        task.retry_at = None
        task.cause = ""
        task.error_kind = None
        task.started_at = to_iso(self._clock())
        task.assignment_history.append(worker_id)

        self._next_token += 1
        token = self._next_token
        self._tokens[task.task_id] = token

        attempt = task.retry_count + 1
        assignment = TaskAssignment(
            run_id=self._run.run_id,
            task=definition,
            worker_id=worker_id,
            attempt=attempt,
            inputs=self.resolve_inputs(definition),
        )
        self._emitter.task_started(task.task_id, worker_id, attempt)
        logger.info(
            "Started %s on %s (attempt %d)", task.task_id, worker_id, attempt
        )
        return Dispatch(
            assignment=assignment,
            handler=self._router.handler(worker_id),
            token=token,
        )

    def resolve_inputs(self, definition: TaskDefinition) -> tuple[ArtifactRef, ...]:
        """Exact artifact versions a task reads.

        An input produced by an ancestor resolves to the version pinned at
        that ancestor's completion; an input nobody produces resolves to the
        latest stored version (an external seed), when one exists.
        """
        producers = {
            key: tid
            for tid in self._graph.ancestors(definition.task_id)
            for key in self._run.definition.task(tid).outputs
        }
        refs: list[ArtifactRef] = []
        for key in definition.inputs:
            producer = producers.get(key)
            if producer is not None:
                version = self._run.tasks[producer].output_refs.get(key)
                if version is not None:
                    refs.append(ArtifactRef(key=key, version=version, task_id=producer))
                continue
            versions = self._artifacts.versions(self._run.run_id, key)
            if versions:
                seed = self._artifacts.get(self._run.run_id, key, versions[-1])
                refs.append(
                    ArtifactRef(
                        key=key, version=seed.version, task_id=seed.producer_task_id
                    )
                )
        return tuple(refs)

    # =========================================================================
    # Completion
    # =========================================================================

    def complete(
        self,
        task_id: str,
        outcome: TaskOutcome,
        token: int | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """Apply a worker's result.

        Results for tasks that are no longer running, that belong to an
        earlier attempt, or that come from a worker other than the one
        holding the task are ignored.

        Returns:
            True if the result was applied.
        """
        task = self._state(task_id)
        if task.status != TaskStatus.RUNNING or (
            token is not None and self._tokens.get(task_id) != token
        ):
            logger.warning(
                "Ignoring late result for %s (status %s)", task_id, task.status.value
            )
            return False
        if worker_id is not None and worker_id != task.worker_id:
            logger.warning(
                "Ignoring result for %s from %s; the task is held by %s",
                task_id,
                worker_id,
                task.worker_id,
            )
            return False

        self._tokens.pop(task_id, None)
        if task.worker_id:
            self._router.release(task.worker_id)

        if not outcome.success:
            self._record_failure(
                task,
                TaskExecutionFailure(
                    task_id,
                    outcome.cause or "worker reported failure",
                    ErrorKind.TASK_EXECUTION_FAILURE,
                ),
            )
            return True

        try:
            pinned = self._validate_outputs(task_id, dict(outcome.outputs))
        except TaskExecutionFailure as e:
            self._record_failure(task, e)
            return True

        task.status = TaskStatus.DONE
        task.output_refs = pinned
        task.cause = ""
        task.error_kind = None
        task.retry_at = None
        task.finished_at = to_iso(self._clock())
        self._emitter.task_done(task_id, pinned)
        ready = self._graph.on_task_done(task_id, self._statuses())
        logger.info(
            "Task %s done%s",
            task_id,
            f"; now ready: {', '.join(ready)}" if ready else "",
        )
        return True

    def _validate_outputs(
        self, task_id: str, reported: dict[str, int]
    ) -> dict[str, int]:
        """Check that every declared output exists at the reported version.

        An output the worker did not report falls back to the latest version
        this task produced.
        """
        namespace = self._run.run_id
        pinned: dict[str, int] = {}
        for key in self._run.definition.task(task_id).outputs:
            version = reported.get(key)
            if version is None:
                own = [
                    v
                    for v in self._artifacts.versions(namespace, key)
                    if self._artifacts.get(namespace, key, v).producer_task_id
                    == task_id
                ]
                if not own:
                    raise TaskExecutionFailure(
                        task_id,
                        f"declared output '{key}' was not produced",
                        ErrorKind.TASK_EXECUTION_FAILURE,
                    )
                version = own[-1]
            elif not self._artifacts.exists(namespace, key, version):
                raise TaskExecutionFailure(
                    task_id,
                    f"output '{key}' v{version} not found in artifact store",
                    ErrorKind.TASK_EXECUTION_FAILURE,
                )
            pinned[key] = version
        return pinned

    def _record_failure(self, task: TaskState, failure: TaskExecutionFailure) -> None:
        definition = self._run.definition.task(task.task_id)
        limit = (
            definition.max_retries
            if definition.max_retries is not None
            else self._retry.max_retries
        )
        task.retry_count += 1
        task.worker_id = None
        task.cause = failure.cause
        task.error_kind = failure.kind or ErrorKind.TASK_EXECUTION_FAILURE
        task.finished_at = to_iso(self._clock())

        if task.retry_count >= limit:
            self._fail_permanently(task, definition)
            return

        delay = self.backoff_delay(task.retry_count)
        task.status = TaskStatus.READY
        task.retry_at = to_iso(self._clock() + timedelta(seconds=delay))
        self._emitter.task_retry(task.task_id, task.retry_count, failure.cause, delay)
        logger.warning(
            "Task %s failed (attempt %d/%d): %s; retrying in %.2fs",
            task.task_id,
            task.retry_count,
            limit,
            failure.cause,
            delay,
        )

    def backoff_delay(self, failure_number: int) -> float:
        """Jittered delay before the next attempt."""
        base = self._retry.delay_for(failure_number)
        if not self._retry.jitter:
            return base
        spread = base * self._retry.jitter
        return max(0.0, base + self._rng.uniform(-spread, spread))

    def _fail_permanently(self, task: TaskState, definition: TaskDefinition) -> None:
        task.status = TaskStatus.FAILED
        task.retry_at = None
        self._emitter.task_failed(task.task_id, task.cause)
        logger.warning(
            "Task %s failed permanently after %d attempt(s): %s",
            task.task_id,
            task.retry_count,
            task.cause,
        )
        severity = definition.severity or self._incidents.policy.severity_for_capability(
            definition.capability
        )
        self._incidents.report(
            self._run,
            source=task.task_id,
            severity=severity,
            details=f"Task {task.task_id} failed: {task.cause}",
        )
        self._block_descendants(task.task_id)

    def _block_descendants(self, task_id: str) -> None:
        cause = f"blocked by failed task {task_id}"
        for tid in sorted(self._graph.descendants(task_id)):
            successor = self._run.tasks[tid]
            if successor.status in (TaskStatus.PENDING, TaskStatus.READY):
                successor.status = TaskStatus.BLOCKED
                successor.retry_at = None
                successor.cause = cause
                successor.error_kind = ErrorKind.BLOCKED_BY_FAILURE
                self._emitter.task_blocked(tid, cause)

    def _unblock_descendants(self, task_id: str) -> list[str]:
        """Return blocked successors to pending once no failure holds them."""
        released: list[str] = []
        for tid in sorted(self._graph.descendants(task_id)):
            successor = self._run.tasks[tid]
            if successor.status != TaskStatus.BLOCKED:
                continue
            if successor.error_kind == ErrorKind.RUN_CANCELLED:
                continue
            if any(
                self._run.tasks[a].status == TaskStatus.FAILED
                for a in self._graph.ancestors(tid)
            ):
                continue
            successor.status = TaskStatus.PENDING
            successor.cause = ""
            successor.error_kind = None
            released.append(tid)
        return released

    # =========================================================================
    # Operator actions
    # =========================================================================

    def cancel_task(self, task_id: str, actor: str) -> None:
        """Cancel a running task: it fails with cause ``cancelled``.

        The cancellation counts as an attempt and raises an incident like
        any permanent failure. ``retry_task`` brings the task back.

        Raises:
            InvalidTaskTransition: The task is not running.
        """
        task = self._state(task_id)
        if task.status != TaskStatus.RUNNING:
            raise InvalidTaskTransition(
                f"Task {task_id} is {task.status.value}; only running tasks can be cancelled"
            )
        self._tokens.pop(task_id, None)
        if task.worker_id:
            self._router.release(task.worker_id)
        self._emitter.operator_action(
            RunEventType.TASK_CANCELLED, task_id, actor, "cancelled"
        )
        task.retry_count += 1
        task.worker_id = None
        task.cause = "cancelled"
        task.error_kind = ErrorKind.CANCELLED
        task.finished_at = to_iso(self._clock())
        self._fail_permanently(task, self._run.definition.task(task_id))

    def retry_task(self, task_id: str, actor: str) -> list[str]:
        """Give a permanently failed task a fresh retry budget.

        Returns:
            Successors released from ``blocked``.

        Raises:
            InvalidTaskTransition: The task is not failed.
        """
        task = self._state(task_id)
        if task.status != TaskStatus.FAILED:
            raise InvalidTaskTransition(
                f"Task {task_id} is {task.status.value}; only failed tasks can be retried"
            )
        task.status = TaskStatus.PENDING
        task.retry_count = 0
        task.retry_at = None
        task.cause = ""
        task.error_kind = None
        self._emitter.operator_action(
            RunEventType.TASK_RETRIED_BY_OPERATOR, task_id, actor, "retry budget reset"
        )
        logger.info("Task %s reset for retry by %s", task_id, actor)
        return self._unblock_descendants(task_id)

    def override_task(self, task_id: str, actor: str, rationale: str = "") -> list[str]:
        """Force a failed or blocked task to done. Audited.

        Declared outputs that exist are pinned at their latest version.

        Returns:
            Successors released from ``blocked``.

        Raises:
            InvalidTaskTransition: The task is neither failed nor blocked.
        """
        task = self._state(task_id)
        if task.status not in (TaskStatus.FAILED, TaskStatus.BLOCKED):
            raise InvalidTaskTransition(
                f"Task {task_id} is {task.status.value}; only failed or blocked "
                "tasks can be overridden"
            )
        namespace = self._run.run_id
        pinned: dict[str, int] = {}
        for key in self._run.definition.task(task_id).outputs:
            versions = self._artifacts.versions(namespace, key)
            if versions:
                pinned[key] = versions[-1]
        task.output_refs = pinned
        task.status = TaskStatus.DONE
        task.overridden = True
        task.retry_at = None
        task.cause = f"overridden by {actor}" + (f": {rationale}" if rationale else "")
        task.error_kind = None
        task.finished_at = to_iso(self._clock())
        self._emitter.operator_action(
            RunEventType.TASK_OVERRIDDEN, task_id, actor, rationale or "forced done"
        )
        logger.warning("Task %s overridden to done by %s", task_id, actor)
        return self._unblock_descendants(task_id)

    def reopen(self, task_ids: Iterable[str], cause: str) -> list[str]:
        """Reset tasks to pending for rework, keeping produced artifacts."""
        reopened: list[str] = []
        for tid in sorted(set(task_ids)):
            task = self._state(tid)
            if task.status == TaskStatus.RUNNING and task.worker_id:
                self._router.release(task.worker_id)
            self._tokens.pop(tid, None)
            task.status = TaskStatus.PENDING
            task.retry_count = 0
            task.retry_at = None
            task.worker_id = None
            task.sprint_id = None
            task.overridden = False
            task.cause = cause
            task.error_kind = None
            self._emitter.emit(RunEventType.TASK_REOPENED, tid, cause)
            reopened.append(tid)
        if reopened:
            logger.info("Reopened %s: %s", ", ".join(reopened), cause)
        return reopened

    def release_running(self, cause: str) -> list[str]:
        """Free the workers of every running task and return them to pending."""
        released: list[str] = []
        for task in self._run.tasks.values():
            if task.status != TaskStatus.RUNNING:
                continue
            if task.worker_id:
                self._router.release(task.worker_id)
            self._tokens.pop(task.task_id, None)
            task.status = TaskStatus.PENDING
            task.worker_id = None
            task.cause = cause
            released.append(task.task_id)
        return sorted(released)

    def block_all(self, cause: str) -> list[str]:
        """Block every non-terminal task (run cancellation)."""
        blocked: list[str] = []
        for task in self._run.tasks.values():
            if task.status in TERMINAL_TASK_STATUSES:
                continue
            if task.status == TaskStatus.RUNNING and task.worker_id:
                self._router.release(task.worker_id)
            self._tokens.pop(task.task_id, None)
            task.status = TaskStatus.BLOCKED
            task.worker_id = None
            task.retry_at = None
            task.cause = cause
            task.error_kind = ErrorKind.RUN_CANCELLED
            blocked.append(task.task_id)
        return sorted(blocked)

    # =========================================================================
    # Queries
    # =========================================================================

    def phase_complete(self, phase: Phase) -> bool:
        """Every task of the phase is done."""
        return all(t.status == TaskStatus.DONE for t in self._run.tasks_in_phase(phase))

    def running_tasks(self) -> list[str]:
        return sorted(
            tid for tid, t in self._run.tasks.items() if t.status == TaskStatus.RUNNING
        )

    def next_retry_at(self) -> str | None:
        """Earliest pending retry time among ready tasks, if any."""
        times = [
            t.retry_at
            for t in self._run.tasks.values()
            if t.status == TaskStatus.READY and t.retry_at is not None
        ]
        return min(times, key=parse_iso) if times else None
