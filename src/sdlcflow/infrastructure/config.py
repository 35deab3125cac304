"""
Loaders for workflow definitions and orchestrator configuration.

Documents are JSON, checked against the bundled JSON Schemas and then
converted into domain objects. Every problem surfaces as ConfigError.
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema

from sdlcflow.domain.config import (
    DEFAULT_RESPONSE_BUDGETS,
    GatePolicy,
    IncidentPolicy,
    OrchestratorConfig,
    RetryPolicy,
    SprintPolicy,
)
from sdlcflow.domain.definition import parse_definition
from sdlcflow.domain.exceptions import ConfigError
from sdlcflow.domain.models import Severity, WorkflowDefinition
from sdlcflow.schemas import validate_config, validate_workflow

logger = logging.getLogger(__name__)


def _read_json(path: str | Path) -> Any:
    path = Path(path)
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"File not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON ({e})") from e


def _schema_error(what: str, error: jsonschema.ValidationError) -> ConfigError:
    location = "/".join(str(p) for p in error.absolute_path) or "(root)"
    return ConfigError(f"{what} invalid at {location}: {error.message}")


def definition_from_document(document: Mapping[str, Any]) -> WorkflowDefinition:
    """Schema-check and parse a workflow definition document.

    Raises:
        ConfigError: Schema violation or structural problem
    """
    try:
        validate_workflow(dict(document))
    except jsonschema.ValidationError as e:
        raise _schema_error("Workflow definition", e) from e
    return parse_definition(document)


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Load a workflow definition from a JSON file."""
    definition = definition_from_document(_read_json(path))
    logger.debug(
        "Loaded workflow %s from %s (%d tasks)",
        definition.name,
        path,
        len(definition.tasks),
    )
    return definition


def config_from_document(document: Mapping[str, Any]) -> OrchestratorConfig:
    """Build an OrchestratorConfig; absent fields keep their defaults.

    Raises:
        ConfigError: Schema violation
    """
    try:
        validate_config(dict(document))
    except jsonschema.ValidationError as e:
        raise _schema_error("Configuration", e) from e

    defaults = OrchestratorConfig()
    retry = document.get("retry", {})
    incidents = document.get("incidents", {})
    gates = document.get("gates", {})
    sprints = document.get("sprints", {})

    budgets = dict(DEFAULT_RESPONSE_BUDGETS)
    for name, seconds in incidents.get("response_budgets_seconds", {}).items():
        budgets[Severity(name)] = None if seconds is None else float(seconds)

    incident_defaults = defaults.incidents
    return OrchestratorConfig(
        retry=RetryPolicy(
            max_retries=retry.get("max_retries", defaults.retry.max_retries),
            base_delay_seconds=float(
                retry.get("base_delay_seconds", defaults.retry.base_delay_seconds)
            ),
            max_delay_seconds=float(
                retry.get("max_delay_seconds", defaults.retry.max_delay_seconds)
            ),
            jitter=float(retry.get("jitter", defaults.retry.jitter)),
        ),
        incidents=IncidentPolicy(
            response_budgets_seconds=tuple(
                (severity, budgets[severity]) for severity in Severity
            ),
            escalating_severities=tuple(
                Severity(s)
                for s in incidents.get(
                    "escalating_severities",
                    [s.value for s in incident_defaults.escalating_severities],
                )
            ),
            default_severity=Severity(
                incidents.get("default_severity", incident_defaults.default_severity)
            ),
            severity_by_capability=tuple(
                sorted(
                    (capability, Severity(s))
                    for capability, s in incidents.get(
                        "severity_by_capability", {}
                    ).items()
                )
            ),
        ),
        gates=GatePolicy(
            escalate_after_seconds=gates.get(
                "escalate_after_seconds", defaults.gates.escalate_after_seconds
            )
        ),
        sprints=SprintPolicy(
            seed_capacity=sprints.get("seed_capacity", defaults.sprints.seed_capacity),
            duration_seconds=float(
                sprints.get("duration_seconds", defaults.sprints.duration_seconds)
            ),
            velocity_window=sprints.get(
                "velocity_window", defaults.sprints.velocity_window
            ),
        ),
        tick_interval_seconds=float(
            document.get("tick_interval_seconds", defaults.tick_interval_seconds)
        ),
        max_parallel_tasks=document.get(
            "max_parallel_tasks", defaults.max_parallel_tasks
        ),
    )


def load_config(path: str | Path | None = None) -> OrchestratorConfig:
    """Load configuration from a JSON file, or the defaults when no path."""
    if path is None:
        return OrchestratorConfig()
    return config_from_document(_read_json(path))
