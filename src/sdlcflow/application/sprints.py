"""
Sprint/Backlog Planner.

The implementation phase runs as a sequence of capacity-bounded sprints.
Capacity comes from the rolling average of recently completed points, or
from a seed for the first sprint. Unfinished work rolls back into the
backlog when a sprint closes; failed work and the tasks it blocks stay out
of it until an operator retries or overrides the failure.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sdlcflow.application.clock import Clock, parse_iso, system_clock, to_iso
from sdlcflow.application.run_event_emitter import RunEventEmitter
from sdlcflow.domain.config import SprintPolicy
from sdlcflow.domain.exceptions import ConfigError, SprintPlanningError
from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.models import (
    Phase,
    Sprint,
    SprintReport,
    TaskDefinition,
    TaskStatus,
    WorkflowRun,
)
from sdlcflow.domain.run_event import RunEventType

if TYPE_CHECKING:
    from sdlcflow.domain.interfaces import RunEventStoreInterface

logger = logging.getLogger(__name__)

# Statuses in which a committed task can make no further progress this sprint
SETTLED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.FAILED, TaskStatus.BLOCKED})

# Held out of the backlog until an operator retries or overrides the failure
HELD_STATUSES = frozenset({TaskStatus.FAILED, TaskStatus.BLOCKED})


def select_commitment(
    candidates: Sequence[TaskDefinition],
    graph: TaskGraph,
    capacity: int,
) -> list[str]:
    """Choose the tasks of the next sprint.

    Candidates are taken by priority, then by how many tasks they unblock
    (most first), then by id, until the next one would exceed ``capacity``.
    A candidate waits until its backlog predecessors are selected. If the
    first selectable candidate alone exceeds capacity it is committed alone.

    Args:
        candidates: Backlog task definitions.
        graph: Dependency graph of the run.
        capacity: Story points available.

    Returns:
        Selected task ids in selection order.
    """
    backlog = {t.task_id for t in candidates}
    ordered = sorted(
        candidates,
        key=lambda t: (t.priority, -graph.unblock_weight(t.task_id), t.task_id),
    )
    selected: list[str] = []
    chosen: set[str] = set()
    points = 0
    remaining = list(ordered)
    progress = True
    while progress and remaining:
        progress = False
        for task in list(remaining):
            if any(p in backlog and p not in chosen for p in graph.predecessors(task.task_id)):
                continue
            if selected and points + task.estimate > capacity:
                return selected
            selected.append(task.task_id)
            chosen.add(task.task_id)
            points += task.estimate
            remaining.remove(task)
            progress = True
    return selected


class SprintPlanner:
    """Plans, closes and reports sprints of the implementation phase."""

    def __init__(
        self,
        policy: SprintPolicy,
        event_store: RunEventStoreInterface,
        clock: Clock = system_clock,
        release_worker: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the planner.

        Args:
            policy: Seed capacity, time box and velocity window.
            event_store: Audit trail for sprint events.
            clock: Source of the current time.
            release_worker: Called with the worker id of each running task
                returned to the backlog on close.
        """
        self._policy = policy
        self._events = event_store
        self._clock = clock
        self._release_worker = release_worker

    def _emitter(self, run: WorkflowRun) -> RunEventEmitter:
        return RunEventEmitter(self._events, run.run_id, self._clock)

    def backlog(self, run: WorkflowRun) -> list[str]:
        """Implementation tasks not done, not held and not committed to a sprint."""
        return sorted(
            t.task_id
            for t in run.tasks_in_phase(Phase.IMPLEMENTATION)
            if t.status != TaskStatus.DONE
            and t.status not in HELD_STATUSES
            and t.sprint_id is None
        )

    def capacity_for_next(self, run: WorkflowRun) -> int:
        """Rolling average of completed points, or the seed capacity.

        Raises:
            ConfigError: No sprint has closed yet and no seed is configured.
        """
        closed = sorted(
            (s for s in run.sprints.values() if s.is_closed), key=lambda s: s.ordinal
        )
        recent = closed[-self._policy.velocity_window :]
        if recent:
            average = sum(s.completed_points for s in recent) / len(recent)
            return max(1, round(average))

        seed = run.definition.seed_capacity or self._policy.seed_capacity
        if seed is None:
            raise ConfigError("No seed capacity configured for the first sprint")
        return seed

    def plan_sprint(
        self, run: WorkflowRun, graph: TaskGraph, capacity: int | None = None
    ) -> Sprint:
        """Open the next sprint with a capacity-bounded commitment.

        Raises:
            SprintPlanningError: A sprint is already open, the backlog is
                empty, or no backlog task is selectable.
            ConfigError: No capacity given and none can be derived.
        """
        current = run.current_sprint
        if current is not None and not current.is_closed:
            raise SprintPlanningError(f"Sprint {current.sprint_id} is still open")
        backlog = self.backlog(run)
        if not backlog:
            raise SprintPlanningError("Backlog is empty")
        if capacity is None:
            capacity = self.capacity_for_next(run)
        if capacity < 1:
            raise SprintPlanningError(f"Sprint capacity must be positive, got {capacity}")

        definitions = [run.definition.task(tid) for tid in backlog]
        committed = select_commitment(definitions, graph, capacity)
        if not committed:
            raise SprintPlanningError("No backlog task has its predecessors satisfied")

        estimates = {d.task_id: d.estimate for d in definitions}
        now = self._clock()
        duration = run.definition.sprint_duration_seconds or self._policy.duration_seconds
        ordinal = len(run.sprints) + 1
        sprint = Sprint(
            sprint_id=f"sprint-{ordinal}",
            ordinal=ordinal,
            capacity=capacity,
            committed=tuple(committed),
            committed_points=sum(estimates[tid] for tid in committed),
            started_at=to_iso(now),
            ends_at=to_iso(now + timedelta(seconds=duration)),
        )
        for tid in committed:
            run.tasks[tid].sprint_id = sprint.sprint_id
        run.sprints[sprint.sprint_id] = sprint
        run.current_sprint_id = sprint.sprint_id

        self._emitter(run).emit(
            RunEventType.SPRINT_PLANNED,
            sprint.sprint_id,
            f"capacity={capacity} committed={sprint.committed_points} "
            f"tasks={', '.join(committed)}",
        )
        logger.info(
            "Planned %s for run %s: %d/%d points, %d task(s)",
            sprint.sprint_id,
            run.run_id,
            sprint.committed_points,
            capacity,
            len(committed),
        )
        return sprint

    def should_close(
        self, run: WorkflowRun, sprint: Sprint, now: datetime | None = None
    ) -> bool:
        """Time box elapsed, or no committed task can still progress."""
        if sprint.is_closed:
            return False
        now = now or self._clock()
        if now >= parse_iso(sprint.ends_at):
            return True
        return all(run.tasks[tid].status in SETTLED_STATUSES for tid in sprint.committed)

    def close_sprint(
        self, run: WorkflowRun, graph: TaskGraph, sprint_id: str
    ) -> SprintReport:
        """Close a sprint and return unfinished work to the backlog.

        Failed and blocked tasks leave the sprint but keep their status, so
        they stay out of the backlog until ``retry_task`` or
        ``override_task`` releases them. Closing an already-closed sprint
        changes nothing.
        """
        sprint = self._sprint(run, sprint_id)
        if sprint.is_closed:
            logger.debug("Sprint %s already closed", sprint_id)
            return self.sprint_report(run, sprint_id)

        completed = 0
        returned: list[str] = []
        held: list[str] = []
        for tid in sprint.committed:
            task = run.tasks[tid]
            if task.status == TaskStatus.DONE:
                completed += run.definition.task(tid).estimate
                continue
            if task.status in HELD_STATUSES:
                task.sprint_id = None
                held.append(tid)
                continue
            if (
                task.status == TaskStatus.RUNNING
                and task.worker_id
                and self._release_worker is not None
            ):
                self._release_worker(task.worker_id)
            task.status = TaskStatus.PENDING
            task.retry_count = 0
            task.retry_at = None
            task.worker_id = None
            task.sprint_id = None
            task.cause = f"returned to backlog from {sprint_id}"
            task.error_kind = None
            returned.append(tid)

        sprint.completed_points = completed
        sprint.velocity = (
            completed / sprint.committed_points if sprint.committed_points else 0.0
        )
        sprint.closed_at = to_iso(self._clock())
        if run.current_sprint_id == sprint_id:
            run.current_sprint_id = None

        self._emitter(run).emit(
            RunEventType.SPRINT_CLOSED,
            sprint_id,
            f"completed={completed}/{sprint.committed_points} "
            f"velocity={sprint.velocity:.2f} returned={len(returned)} held={len(held)}",
        )
        logger.info(
            "Closed %s for run %s: velocity %.2f, %d task(s) returned to backlog",
            sprint_id,
            run.run_id,
            sprint.velocity,
            len(returned),
        )
        if held:
            logger.warning(
                "Sprint %s left %s failed or blocked pending operator action",
                sprint_id,
                ", ".join(held),
            )
        return self.sprint_report(run, sprint_id)

    @staticmethod
    def _sprint(run: WorkflowRun, sprint_id: str) -> Sprint:
        if sprint_id not in run.sprints:
            raise KeyError(f"Sprint not found: {sprint_id}")
        return run.sprints[sprint_id]

    def sprint_report(self, run: WorkflowRun, sprint_id: str) -> SprintReport:
        sprint = self._sprint(run, sprint_id)
        return SprintReport(
            sprint_id=sprint.sprint_id,
            ordinal=sprint.ordinal,
            capacity=sprint.capacity,
            committed_points=sprint.committed_points,
            completed_points=sprint.completed_points,
            velocity=sprint.velocity,
            committed=sprint.committed,
            closed=sprint.is_closed,
        )
