"""sdlcflow JSON Schema definitions and validation utilities.

Schemas:
    - workflow.schema.json: Workflow definition (phases, tasks, gates, workers)
    - config.schema.json: Orchestrator policy (retry, incidents, gates, sprints)

Usage:
    from sdlcflow.schemas import validate_workflow

    with open("workflow.json") as f:
        data = json.load(f)
    validate_workflow(data)  # Raises jsonschema.ValidationError if invalid

Schema validation covers document shape only. Graph rules (cycles,
dangling references, phase order) are checked by parse_definition.
"""

from __future__ import annotations

import json
from importlib.resources import files
from typing import Any

import jsonschema


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema from the schemas package.

    Args:
        name: Schema filename (e.g., 'workflow.schema.json')

    Returns:
        Parsed JSON schema as a dictionary
    """
    schema_text = files("sdlcflow.schemas").joinpath(name).read_text()
    result: dict[str, Any] = json.loads(schema_text)
    return result


def get_workflow_schema() -> dict[str, Any]:
    return _load_schema("workflow.schema.json")


def get_config_schema() -> dict[str, Any]:
    return _load_schema("config.schema.json")


def validate_workflow(data: dict[str, Any]) -> None:
    """Validate a workflow definition against the schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_workflow_schema())


def validate_config(data: dict[str, Any]) -> None:
    """Validate an orchestrator configuration against the schema.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_config_schema())


__all__ = [
    "get_workflow_schema",
    "get_config_schema",
    "validate_workflow",
    "validate_config",
]
