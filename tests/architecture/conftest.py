"""Shared fixtures for architecture tests."""

import os

import pytest
from pytestarch import (
    EvaluableArchitecture,
    LayeredArchitecture,
    get_evaluable_architecture,
)


@pytest.fixture(scope="session")
def evaluable() -> EvaluableArchitecture:
    """Build evaluable architecture from src/sdlcflow."""
    src_dir = os.path.abspath(
        os.path.join(os.path.dirname(__file__), "..", "..", "src")
    )
    project_path = os.path.join(src_dir, "sdlcflow")
    return get_evaluable_architecture(src_dir, project_path)


@pytest.fixture(scope="session")
def layers() -> LayeredArchitecture:
    """Define the three DDD layers plus schemas, composition root and CLI.

    PyTestArch resolves module names relative to the source root,
    so modules appear as 'src.sdlcflow.domain', etc.
    """
    return (
        LayeredArchitecture()
        .layer("domain")
        .containing_modules(["src.sdlcflow.domain"])
        .layer("application")
        .containing_modules(["src.sdlcflow.application"])
        .layer("infrastructure")
        .containing_modules(["src.sdlcflow.infrastructure"])
        .layer("schemas")
        .containing_modules(["src.sdlcflow.schemas"])
        .layer("composition")
        .containing_modules(["src.sdlcflow.bootstrap"])
        .layer("cli")
        .containing_modules(["src.sdlcflow.cli"])
    )
