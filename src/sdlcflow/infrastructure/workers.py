"""
In-process worker adapters.

Workers carry no state between tasks that the core relies on. These
adapters cover embedding plain callables and scripted behaviour for tests
and simulations.
"""

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from sdlcflow.domain.interfaces import ArtifactStoreInterface, WorkerInterface
from sdlcflow.domain.models import TaskAssignment, TaskOutcome

logger = logging.getLogger(__name__)

TaskFunction = Callable[[TaskAssignment, ArtifactStoreInterface], Mapping[str, str]]


class CallableWorker(WorkerInterface):
    """
    Wraps a function returning ``{output key: content}``.

    The adapter stores each returned output as a new artifact version and
    reports those versions. An exception from the function is a failed
    attempt.
    """

    def __init__(self, func: TaskFunction):
        self._func = func

    def execute(
        self, assignment: TaskAssignment, artifacts: ArtifactStoreInterface
    ) -> TaskOutcome:
        try:
            produced = self._func(assignment, artifacts)
        except Exception as e:
            return TaskOutcome(success=False, cause=f"{type(e).__name__}: {e}")

        outputs = []
        for key, content in produced.items():
            artifact = artifacts.put(
                assignment.run_id, key, content, assignment.task.task_id
            )
            outputs.append((key, artifact.version))
        return TaskOutcome(success=True, outputs=tuple(outputs))


class ScriptedWorker(WorkerInterface):
    """
    Deterministic worker for tests and simulations.

    Writes placeholder content for every declared output. Failures can be
    scripted per task id as a sequence of booleans consumed attempt by
    attempt (``False`` fails the attempt); once a script is exhausted the
    task succeeds.
    """

    def __init__(
        self,
        script: Mapping[str, Sequence[bool]] | None = None,
        delay_seconds: float = 0.0,
    ):
        """
        Args:
            script: Per-task attempt results, e.g. ``{"build": [False, True]}``
            delay_seconds: Simulated work time per attempt
        """
        self._script = {tid: list(results) for tid, results in (script or {}).items()}
        self._delay = delay_seconds
        self._lock = threading.Lock()
        self._calls: list[tuple[str, int]] = []
        self._pause = threading.Event()

    @classmethod
    def from_options(cls, **options: Any) -> "ScriptedWorker":
        """Build from definition ``options`` (``script``, ``delay_seconds``)."""
        return cls(
            script=options.get("script"),
            delay_seconds=float(options.get("delay_seconds", 0.0)),
        )

    @property
    def calls(self) -> list[tuple[str, int]]:
        """(task id, attempt) of every execution, in call order."""
        with self._lock:
            return list(self._calls)

    def execute(
        self, assignment: TaskAssignment, artifacts: ArtifactStoreInterface
    ) -> TaskOutcome:
        task = assignment.task
        with self._lock:
            self._calls.append((task.task_id, assignment.attempt))
            script = self._script.get(task.task_id)
            succeed = script.pop(0) if script else True
        if self._delay:
            self._pause.wait(self._delay)

        if not succeed:
            logger.debug("Scripted failure for %s", task.task_id)
            return TaskOutcome(
                success=False,
                cause=f"scripted failure on attempt {assignment.attempt}",
            )

        inputs = ", ".join(f"{r.key}@v{r.version}" for r in assignment.inputs)
        outputs = []
        for key in task.outputs:
            artifact = artifacts.put(
                assignment.run_id,
                key,
                f"{key} by {task.task_id} via {assignment.worker_id}"
                + (f" from {inputs}" if inputs else ""),
                task.task_id,
            )
            outputs.append((key, artifact.version))
        return TaskOutcome(success=True, outputs=tuple(outputs))
