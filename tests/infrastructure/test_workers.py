"""Tests for the in-process worker adapters."""

import pytest

from sdlcflow.domain.models import ArtifactRef, Phase, TaskAssignment, TaskDefinition
from sdlcflow.infrastructure.persistence.memory import InMemoryArtifactStore
from sdlcflow.infrastructure.workers import CallableWorker, ScriptedWorker


def assignment(attempt: int = 1, inputs: tuple[ArtifactRef, ...] = ()) -> TaskAssignment:
    return TaskAssignment(
        run_id="run-1",
        task=TaskDefinition(
            "api", Phase.IMPLEMENTATION, "backend", inputs=("spec",), outputs=("api", "docs")
        ),
        worker_id="w-be",
        attempt=attempt,
        inputs=inputs,
    )


@pytest.fixture
def artifacts() -> InMemoryArtifactStore:
    return InMemoryArtifactStore()


class TestCallableWorker:
    def test_returned_outputs_become_artifact_versions(self, artifacts):
        artifacts.put("run-1", "api", "previous", "api")
        worker = CallableWorker(lambda a, store: {"api": "handlers", "docs": "readme"})

        outcome = worker.execute(assignment(), artifacts)

        assert outcome.success
        assert dict(outcome.outputs) == {"api": 2, "docs": 1}
        assert artifacts.get("run-1", "api").content == "handlers"
        assert artifacts.get("run-1", "api").producer_task_id == "api"

    def test_function_can_read_its_inputs(self, artifacts):
        artifacts.put("run-1", "spec", "use REST", "spec")

        def build(a, store):
            ref = a.inputs[0]
            return {"api": store.get(a.run_id, ref.key, ref.version).content.upper()}

        CallableWorker(build).execute(
            assignment(inputs=(ArtifactRef("spec", 1, "spec"),)), artifacts
        )

        assert artifacts.get("run-1", "api").content == "USE REST"

    def test_exception_is_a_failed_attempt(self, artifacts):
        def broken(a, store):
            raise TimeoutError("upstream timed out")

        outcome = CallableWorker(broken).execute(assignment(), artifacts)

        assert not outcome.success
        assert outcome.cause == "TimeoutError: upstream timed out"
        assert not artifacts.exists("run-1", "api")


class TestScriptedWorker:
    def test_succeeds_by_default(self, artifacts):
        worker = ScriptedWorker()

        outcome = worker.execute(
            assignment(inputs=(ArtifactRef("spec", 3, "spec"),)), artifacts
        )

        assert outcome.success
        assert dict(outcome.outputs) == {"api": 1, "docs": 1}
        assert artifacts.get("run-1", "api").content == "api by api via w-be from spec@v3"
        assert worker.calls == [("api", 1)]

    def test_script_is_consumed_attempt_by_attempt(self, artifacts):
        worker = ScriptedWorker({"api": [False, True, False]})

        results = [worker.execute(assignment(n), artifacts) for n in range(1, 5)]

        assert [r.success for r in results] == [False, True, False, True]
        assert results[0].cause == "scripted failure on attempt 1"
        assert worker.calls == [("api", 1), ("api", 2), ("api", 3), ("api", 4)]

    def test_from_options(self, artifacts):
        worker = ScriptedWorker.from_options(script={"api": [False]}, delay_seconds=0)

        assert not worker.execute(assignment(), artifacts).success
        assert worker.execute(assignment(2), artifacts).success
