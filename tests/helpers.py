"""Test doubles and workflow document builders."""

from concurrent.futures import Executor, Future
from datetime import UTC, datetime, timedelta
from typing import Any

from sdlcflow.domain.definition import parse_definition
from sdlcflow.domain.models import TaskState, WorkflowRun


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 6, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InlineExecutor(Executor):
    """Runs submitted work immediately on the calling thread."""

    def submit(self, fn, /, *args, **kwargs):  # type: ignore[no-untyped-def]
        future: Future[Any] = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


def task(task_id: str, capability: str = "dev", **fields: Any) -> dict[str, Any]:
    return {"id": task_id, "capability": capability, **fields}


def worker(worker_id: str, *capabilities: str, **fields: Any) -> dict[str, Any]:
    return {"id": worker_id, "capabilities": list(capabilities or ("dev",)), **fields}


def phase(name: str, *tasks: dict[str, Any], gate: bool = False) -> dict[str, Any]:
    data: dict[str, Any] = {"name": name, "tasks": list(tasks)}
    if gate:
        data["gate"] = {"id": f"{name}-gate"}
    return data


def document(*phases: dict[str, Any], **fields: Any) -> dict[str, Any]:
    """Workflow document; one worker ``w1`` with capability ``dev`` by default."""
    fields.setdefault("workers", [worker("w1", concurrency=4)])
    return {"name": fields.pop("name", "test-flow"), "phases": list(phases), **fields}


def make_run(doc: dict[str, Any], run_id: str = "run-1") -> WorkflowRun:
    """Fresh run of a workflow document, positioned on its first phase."""
    definition = parse_definition(doc)
    return WorkflowRun(
        run_id=run_id,
        definition=definition,
        phases=definition.phase_names,
        current_phase=definition.phase_names[0],
        tasks={t.task_id: TaskState(t.task_id, t.phase) for t in definition.tasks},
    )
