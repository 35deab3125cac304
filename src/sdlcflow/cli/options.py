"""Click option groups shared by sdlcflow commands."""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

import click

F = TypeVar("F", bound=Callable[..., Any])


def common_options(func: F) -> F:
    """
    Decorator adding the options of commands that drive a run.

    Options added:
        --config: Path to an orchestrator configuration JSON
        --state-dir: Directory for file-backed run state
        --log-file: Path to log file
        -v/--verbose: Enable verbose logging
    """

    @click.option(
        "--config",
        "config_path",
        default=None,
        type=click.Path(exists=True, dir_okay=False),
        help="Path to orchestrator configuration JSON (default: built-in policy)",
    )
    @click.option(
        "--state-dir",
        default=None,
        type=click.Path(file_okay=False),
        help="Directory for artifacts, checkpoints, events and run records",
    )
    @click.option(
        "--log-file",
        default=None,
        type=click.Path(dir_okay=False),
        help="Path to log file",
    )
    @click.option(
        "-v",
        "--verbose",
        is_flag=True,
        help="Enable verbose (DEBUG) logging to console",
    )
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def review_options(func: F) -> F:
    """
    Decorator adding gate review options.

    Options added:
        --approve-all: Approve every gate without prompting
        --actor: Identity recorded on gate decisions
    """

    @click.option(
        "--approve-all",
        is_flag=True,
        help="Approve every gate automatically instead of prompting",
    )
    @click.option(
        "--actor",
        default="cli",
        show_default=True,
        help="Identity recorded on gate decisions",
    )
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]
