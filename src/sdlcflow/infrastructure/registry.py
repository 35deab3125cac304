"""
Worker Registry with Entry Points Discovery.

Resolves the ``kind`` of a worker registration to a factory building an
in-process handler. External packages can register worker kinds in their
pyproject.toml:

    [project.entry-points."sdlcflow.workers"]
    security-audit = "mypackage.workers:SecurityAuditWorker"

A factory is called with the registration's options as keyword arguments.
The ``external`` kind has no handler: such workers report results through
the control API.
"""

import warnings
from collections.abc import Callable
from importlib.metadata import entry_points
from typing import Any

from sdlcflow.domain.interfaces import WorkerInterface
from sdlcflow.domain.models import WorkerRegistration
from sdlcflow.infrastructure.workers import ScriptedWorker

EXTERNAL_KIND = "external"

WorkerFactory = Callable[..., WorkerInterface]


class WorkerRegistry:
    """
    Registry for WorkerInterface factories keyed by worker kind.

    Discovers kinds via the 'sdlcflow.workers' entry point group.
    Uses lazy loading - entry points are only loaded on first access.

    Example usage:
        handler = WorkerRegistry.handler_for(registration)
    """

    _builtins: dict[str, WorkerFactory] = {"scripted": ScriptedWorker.from_options}
    _factories: dict[str, WorkerFactory] = dict(_builtins)
    _loaded: bool = False

    @classmethod
    def _load_entry_points(cls) -> None:
        """Load worker kinds from entry points (lazy, called once)."""
        if cls._loaded:
            return

        for ep in entry_points(group="sdlcflow.workers"):
            try:
                cls._factories[ep.name] = ep.load()
            except Exception as e:
                warnings.warn(
                    f"Failed to load worker kind '{ep.name}' from entry point: {e}",
                    stacklevel=2,
                )

        cls._loaded = True

    @classmethod
    def register(cls, kind: str, factory: WorkerFactory) -> None:
        """
        Manually register a worker kind.

        Args:
            kind: Name used in the ``kind`` field of worker registrations
            factory: Class or callable building a WorkerInterface
        """
        cls._factories[kind] = factory

    @classmethod
    def get(cls, kind: str) -> WorkerFactory:
        """
        Raises:
            KeyError: If the kind is not registered
        """
        cls._load_entry_points()
        if kind not in cls._factories:
            available = ", ".join(sorted(cls._factories)) or "(none)"
            raise KeyError(f"Worker kind '{kind}' not found. Available kinds: {available}")
        return cls._factories[kind]

    @classmethod
    def create(cls, kind: str, **options: Any) -> WorkerInterface:
        return cls.get(kind)(**options)

    @classmethod
    def handler_for(cls, registration: WorkerRegistration) -> WorkerInterface | None:
        """Build the in-process handler of a registration (None if external)."""
        if registration.kind == EXTERNAL_KIND:
            return None
        return cls.create(registration.kind, **dict(registration.options))

    @classmethod
    def available(cls) -> list[str]:
        cls._load_entry_points()
        return sorted([EXTERNAL_KIND, *cls._factories])

    @classmethod
    def clear(cls) -> None:
        """
        Reset to the built-in kinds (useful for testing).

        Also resets the loaded flag so entry points can be reloaded.
        """
        cls._factories = dict(cls._builtins)
        cls._loaded = False
