"""
Workflow definition parsing and structural validation.

Turns a plain document (as loaded from JSON) into an immutable
WorkflowDefinition. Every rule here is checked before any execution begins;
violations are ConfigError.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sdlcflow.domain.exceptions import ConfigError
from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.models import (
    PHASE_ORDER,
    GateDefinition,
    Phase,
    PhaseDefinition,
    Severity,
    TaskDefinition,
    WorkerRegistration,
    WorkflowDefinition,
)


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigError(message)


def _str_tuple(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    _require(
        isinstance(value, list | tuple) and all(isinstance(v, str) for v in value),
        f"{where}: expected a list of strings",
    )
    return tuple(value)


def _int(value: Any, where: str, minimum: int | None = None) -> int:
    _require(
        isinstance(value, int) and not isinstance(value, bool),
        f"{where}: expected an integer",
    )
    if minimum is not None:
        _require(value >= minimum, f"{where}: must be >= {minimum}")
    return int(value)


def _phase(value: Any, where: str) -> Phase:
    try:
        return Phase(value)
    except ValueError as e:
        valid = ", ".join(p.value for p in PHASE_ORDER)
        raise ConfigError(f"{where}: unknown phase '{value}' (valid: {valid})") from e


def _severity(value: Any, where: str) -> Severity:
    try:
        return Severity(value)
    except ValueError as e:
        raise ConfigError(f"{where}: unknown severity '{value}'") from e


def _parse_task(data: Any, phase: Phase) -> TaskDefinition:
    _require(isinstance(data, Mapping), f"phase '{phase.value}': task must be an object")
    task_id = data.get("id")
    _require(isinstance(task_id, str) and bool(task_id), "task missing 'id'")
    where = f"task '{task_id}'"
    capability = data.get("capability")
    _require(
        isinstance(capability, str) and bool(capability),
        f"{where}: missing 'capability'",
    )
    max_retries = data.get("max_retries")
    severity = data.get("severity")
    return TaskDefinition(
        task_id=task_id,
        phase=phase,
        capability=capability,
        inputs=_str_tuple(data.get("inputs"), f"{where}.inputs"),
        outputs=_str_tuple(data.get("outputs"), f"{where}.outputs"),
        estimate=_int(data.get("estimate", 0), f"{where}.estimate", minimum=0),
        priority=_int(data.get("priority", 100), f"{where}.priority"),
        requires=_str_tuple(data.get("requires"), f"{where}.requires"),
        redo_on_reject=bool(data.get("redo_on_reject", False)),
        max_retries=(
            None
            if max_retries is None
            else _int(max_retries, f"{where}.max_retries", minimum=1)
        ),
        severity=None if severity is None else _severity(severity, f"{where}.severity"),
    )


def _parse_gate(data: Any, phase: Phase) -> GateDefinition | None:
    if data is None:
        return None
    _require(isinstance(data, Mapping), f"phase '{phase.value}': gate must be an object")
    gate_id = data.get("id") or f"{phase.value}-gate"
    escalate_after = data.get("escalate_after_seconds")
    if escalate_after is not None:
        _require(
            isinstance(escalate_after, int | float) and escalate_after > 0,
            f"gate '{gate_id}': escalate_after_seconds must be positive",
        )
    return GateDefinition(
        gate_id=str(gate_id),
        phase=phase,
        escalate_after_seconds=None if escalate_after is None else float(escalate_after),
    )


def _parse_worker(data: Any) -> WorkerRegistration:
    _require(isinstance(data, Mapping), "worker must be an object")
    worker_id = data.get("id")
    _require(isinstance(worker_id, str) and bool(worker_id), "worker missing 'id'")
    capabilities = _str_tuple(data.get("capabilities"), f"worker '{worker_id}'.capabilities")
    _require(bool(capabilities), f"worker '{worker_id}': needs at least one capability")
    options = data.get("options") or {}
    _require(isinstance(options, Mapping), f"worker '{worker_id}': options must be an object")
    return WorkerRegistration(
        worker_id=worker_id,
        capabilities=capabilities,
        concurrency=_int(data.get("concurrency", 1), f"worker '{worker_id}'.concurrency", minimum=1),
        priority=_int(data.get("priority", 0), f"worker '{worker_id}'.priority"),
        kind=str(data.get("kind", "external")),
        options=tuple(sorted(options.items())),
    )


def _check_phase_order(phases: list[PhaseDefinition]) -> None:
    positions = [PHASE_ORDER.index(p.name) for p in phases]
    _require(len(set(positions)) == len(positions), "phases must not repeat")
    _require(
        positions == sorted(positions),
        "phases must follow the canonical order: "
        + " -> ".join(p.value for p in PHASE_ORDER),
    )


def _check_dependencies(definition: WorkflowDefinition) -> TaskGraph:
    tasks = {t.task_id: t for t in definition.tasks}
    position = {p: i for i, p in enumerate(PHASE_ORDER)}
    for task in tasks.values():
        for req in task.requires:
            _require(req in tasks, f"task '{task.task_id}' requires unknown task '{req}'")
            _require(
                position[tasks[req].phase] <= position[task.phase],
                f"task '{task.task_id}' ({task.phase.value}) cannot depend on "
                f"'{req}' from the later phase {tasks[req].phase.value}",
            )

    graph = TaskGraph.from_definitions(tasks.values())

    producers: dict[str, str] = {}
    for task in tasks.values():
        for key in task.outputs:
            _require(
                key not in producers,
                f"artifact '{key}' is produced by both '{producers.get(key)}' "
                f"and '{task.task_id}'",
            )
            producers[key] = task.task_id
    for task in tasks.values():
        ancestors = graph.ancestors(task.task_id)
        for key in task.inputs:
            producer = producers.get(key)
            _require(
                producer is None or producer in ancestors,
                f"task '{task.task_id}' reads '{key}' but its producer "
                f"'{producer}' is not one of its predecessors",
            )
    return graph


def parse_definition(document: Mapping[str, Any]) -> WorkflowDefinition:
    """Parse and validate a workflow definition document.

    Args:
        document: Mapping with ``name``, ``phases`` and optional ``workers``,
            ``seed_capacity`` and ``sprint_duration_seconds``.

    Returns:
        The validated WorkflowDefinition.

    Raises:
        ConfigError: On any structural problem (unknown or misordered phases,
            duplicate ids, dangling references, forward cross-phase
            dependencies, ambiguous artifact producers, or cycles).
    """
    _require(isinstance(document, Mapping), "workflow definition must be an object")
    name = document.get("name")
    _require(isinstance(name, str) and bool(name), "workflow definition missing 'name'")

    raw_phases = document.get("phases")
    _require(
        isinstance(raw_phases, list) and bool(raw_phases),
        "workflow definition needs a non-empty 'phases' list",
    )

    phases: list[PhaseDefinition] = []
    seen_tasks: set[str] = set()
    seen_gates: set[str] = set()
    for raw in raw_phases:
        _require(isinstance(raw, Mapping), "phase must be an object")
        phase = _phase(raw.get("name"), "phase")
        tasks = tuple(_parse_task(t, phase) for t in raw.get("tasks") or [])
        for task in tasks:
            _require(task.task_id not in seen_tasks, f"duplicate task id '{task.task_id}'")
            seen_tasks.add(task.task_id)
        gate = _parse_gate(raw.get("gate"), phase)
        if gate is not None:
            _require(gate.gate_id not in seen_gates, f"duplicate gate id '{gate.gate_id}'")
            seen_gates.add(gate.gate_id)
        phases.append(PhaseDefinition(name=phase, tasks=tasks, gate=gate))
    _check_phase_order(phases)

    workers = tuple(_parse_worker(w) for w in document.get("workers") or [])
    worker_ids = [w.worker_id for w in workers]
    _require(len(set(worker_ids)) == len(worker_ids), "duplicate worker id")

    seed = document.get("seed_capacity")
    duration = document.get("sprint_duration_seconds")
    if duration is not None:
        _require(
            isinstance(duration, int | float) and duration > 0,
            "sprint_duration_seconds must be positive",
        )

    definition = WorkflowDefinition(
        name=name,
        phases=tuple(phases),
        workers=workers,
        seed_capacity=None if seed is None else _int(seed, "seed_capacity", minimum=1),
        sprint_duration_seconds=None if duration is None else float(duration),
        document=document,
    )
    _check_dependencies(definition)
    return definition
