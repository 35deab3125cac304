"""Tests for WorkerRegistry - entry points-based worker kind discovery."""

from collections.abc import Iterator

import pytest

from sdlcflow.domain.interfaces import WorkerInterface
from sdlcflow.domain.models import WorkerRegistration
from sdlcflow.infrastructure.registry import WorkerRegistry
from sdlcflow.infrastructure.workers import CallableWorker, ScriptedWorker


@pytest.fixture(autouse=True)
def clean_registry() -> Iterator[None]:
    """Each test starts from (and leaves) the built-in kinds."""
    WorkerRegistry.clear()
    yield
    WorkerRegistry.clear()


class TestEntryPointsLoading:
    """Tests for entry points discovery and loading."""

    def test_available_lists_builtin_kinds(self) -> None:
        """available() includes the scripted and external kinds."""
        available = WorkerRegistry.available()

        assert "scripted" in available
        assert "external" in available

    def test_load_idempotent(self) -> None:
        """Multiple _load_entry_points() calls don't duplicate entries."""
        WorkerRegistry._load_entry_points()
        count_after_first = len(WorkerRegistry._factories)

        WorkerRegistry._load_entry_points()

        assert len(WorkerRegistry._factories) == count_after_first

    def test_lazy_loading(self) -> None:
        """Entry points are only loaded on first access."""
        assert WorkerRegistry._loaded is False

        _ = WorkerRegistry.available()

        assert WorkerRegistry._loaded is True


class TestRegistryOperations:
    """Tests for get/create/handler_for."""

    def test_get_unknown_kind(self) -> None:
        """get() raises KeyError naming the available kinds."""
        with pytest.raises(KeyError, match="Available kinds: .*scripted"):
            WorkerRegistry.get("quantum")

    def test_create_scripted(self) -> None:
        worker = WorkerRegistry.create("scripted", script={"build": [False]})

        assert isinstance(worker, ScriptedWorker)

    def test_register_custom_kind(self) -> None:
        """register() makes a factory available under a new kind."""

        def factory(**options: object) -> WorkerInterface:
            return CallableWorker(lambda a, store: {"notes": str(options["tone"])})

        WorkerRegistry.register("notes", factory)

        assert "notes" in WorkerRegistry.available()
        assert isinstance(WorkerRegistry.create("notes", tone="dry"), CallableWorker)

    def test_clear_drops_registered_kinds(self) -> None:
        WorkerRegistry.register("notes", ScriptedWorker)

        WorkerRegistry.clear()

        with pytest.raises(KeyError):
            WorkerRegistry.get("notes")
        assert WorkerRegistry.get("scripted") == ScriptedWorker.from_options


class TestHandlerFor:
    def test_external_registration_has_no_handler(self) -> None:
        registration = WorkerRegistration("w-ext", ("dev",))

        assert WorkerRegistry.handler_for(registration) is None

    def test_options_become_factory_arguments(self) -> None:
        registration = WorkerRegistration(
            "w-sim",
            ("dev",),
            kind="scripted",
            options=(("delay_seconds", 0.5), ("script", {"build": [False]})),
        )

        handler = WorkerRegistry.handler_for(registration)

        assert isinstance(handler, ScriptedWorker)
        assert handler._delay == 0.5
        assert handler._script == {"build": [False]}

    def test_unknown_kind(self) -> None:
        registration = WorkerRegistration("w-x", ("dev",), kind="quantum")

        with pytest.raises(KeyError):
            WorkerRegistry.handler_for(registration)
