"""
Dependency Graph Resolver.

Builds the task DAG from a declarative task list and answers readiness
questions. Cyclic or dangling definitions are configuration errors raised
at load time, never runtime faults.

All query results are sorted by task id so that scheduling is reproducible
for identical inputs.
"""

from __future__ import annotations

import heapq
from collections import deque
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from sdlcflow.domain.exceptions import ConfigError
from sdlcflow.domain.models import TaskStatus

if TYPE_CHECKING:
    from sdlcflow.domain.models import TaskDefinition

_WHITE, _GRAY, _BLACK = 0, 1, 2


class TaskGraph:
    """Immutable task DAG with predecessor and successor indexes."""

    def __init__(self, predecessors: Mapping[str, Iterable[str]]) -> None:
        """
        Args:
            predecessors: task id -> predecessor ids. Use load() to get validation.
        """
        self._preds: dict[str, tuple[str, ...]] = {
            tid: tuple(sorted(set(preds))) for tid, preds in predecessors.items()
        }
        succs: dict[str, list[str]] = {tid: [] for tid in self._preds}
        for tid, preds in self._preds.items():
            for pred in preds:
                succs[pred].append(tid)
        self._succs: dict[str, tuple[str, ...]] = {
            tid: tuple(sorted(s)) for tid, s in succs.items()
        }
        self._order = tuple(sorted(self._preds))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def load(
        cls, task_ids: Iterable[str], edges: Iterable[tuple[str, str]]
    ) -> TaskGraph:
        """Build and validate a DAG.

        Args:
            task_ids: All task ids of the workflow.
            edges: (from_task, to_task) pairs; to_task requires from_task done.

        Returns:
            The validated graph.

        Raises:
            ConfigError: On duplicate ids, dangling edge endpoints or a cycle.
                For cycles, ``error.cycle`` holds the path through the cycle.
        """
        preds: dict[str, set[str]] = {}
        for tid in task_ids:
            if tid in preds:
                raise ConfigError(f"Duplicate task id: {tid}")
            preds[tid] = set()

        for src, dst in edges:
            for endpoint in (src, dst):
                if endpoint not in preds:
                    raise ConfigError(
                        f"Dependency {src} -> {dst} references unknown task '{endpoint}'"
                    )
            preds[dst].add(src)

        graph = cls(preds)
        cycle = graph._find_cycle()
        if cycle is not None:
            raise ConfigError(f"Dependency cycle: {' -> '.join(cycle)}", cycle=cycle)
        return graph

    @classmethod
    def from_definitions(cls, tasks: Iterable[TaskDefinition]) -> TaskGraph:
        """Build a DAG from task definitions using their ``requires`` lists."""
        tasks = list(tasks)
        edges = [(req, t.task_id) for t in tasks for req in t.requires]
        return cls.load((t.task_id for t in tasks), edges)

    def _find_cycle(self) -> tuple[str, ...] | None:
        """Iterative DFS; returns the first cycle found, closed on its start."""
        color = dict.fromkeys(self._preds, _WHITE)
        for root in self._order:
            if color[root] != _WHITE:
                continue
            color[root] = _GRAY
            path = [root]
            stack = [iter(self._succs[root])]
            while stack:
                advanced = False
                for nxt in stack[-1]:
                    if color[nxt] == _GRAY:
                        start = path.index(nxt)
                        return tuple(path[start:]) + (nxt,)
                    if color[nxt] == _WHITE:
                        color[nxt] = _GRAY
                        path.append(nxt)
                        stack.append(iter(self._succs[nxt]))
                        advanced = True
                        break
                if not advanced:
                    color[path.pop()] = _BLACK
                    stack.pop()
        return None

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def task_ids(self) -> tuple[str, ...]:
        return self._order

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._preds

    def __len__(self) -> int:
        return len(self._preds)

    def predecessors(self, task_id: str) -> tuple[str, ...]:
        return self._preds[task_id]

    def successors(self, task_id: str) -> tuple[str, ...]:
        return self._succs[task_id]

    def descendants(self, task_id: str) -> set[str]:
        """All transitive successors of a task."""
        return self._reach(task_id, self._succs)

    def ancestors(self, task_id: str) -> set[str]:
        """All transitive predecessors of a task."""
        return self._reach(task_id, self._preds)

    def unblock_weight(self, task_id: str) -> int:
        """Number of tasks that transitively depend on this one."""
        return len(self.descendants(task_id))

    def topological_order(self) -> list[str]:
        """Kahn's algorithm, smallest id first among ready nodes."""
        indegree = {tid: len(preds) for tid, preds in self._preds.items()}
        heap = [tid for tid, deg in indegree.items() if deg == 0]
        heapq.heapify(heap)
        order: list[str] = []
        while heap:
            tid = heapq.heappop(heap)
            order.append(tid)
            for succ in self._succs[tid]:
                indegree[succ] -= 1
                if indegree[succ] == 0:
                    heapq.heappush(heap, succ)
        return order

    @staticmethod
    def _reach(task_id: str, index: Mapping[str, tuple[str, ...]]) -> set[str]:
        seen: set[str] = set()
        queue = deque(index[task_id])
        while queue:
            tid = queue.popleft()
            if tid in seen:
                continue
            seen.add(tid)
            queue.extend(index[tid])
        return seen

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def is_ready(self, task_id: str, states: Mapping[str, TaskStatus]) -> bool:
        """Own state pending and every predecessor done."""
        if states.get(task_id) != TaskStatus.PENDING:
            return False
        return all(states.get(p) == TaskStatus.DONE for p in self._preds[task_id])

    def ready_tasks(
        self,
        states: Mapping[str, TaskStatus],
        among: Iterable[str] | None = None,
    ) -> list[str]:
        """Tasks whose predecessors are all done and whose own state is pending.

        Args:
            states: Current status of every task.
            among: Optional restriction of the candidate set.

        Returns:
            Ready task ids sorted by id.
        """
        candidates = self._order if among is None else sorted(set(among))
        return [tid for tid in candidates if self.is_ready(tid, states)]

    def on_task_done(
        self, task_id: str, states: Mapping[str, TaskStatus]
    ) -> list[str]:
        """Incremental readiness after ``task_id`` completed.

        Only the direct successors of ``task_id`` are examined.

        Returns:
            Successor ids that became ready, sorted by id.
        """
        return [s for s in self._succs[task_id] if self.is_ready(s, states)]
