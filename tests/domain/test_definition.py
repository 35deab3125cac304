"""Tests for workflow definition parsing and structural validation."""

import pytest
from helpers import document, phase, task, worker

from sdlcflow.domain.definition import parse_definition
from sdlcflow.domain.exceptions import ConfigError
from sdlcflow.domain.models import Phase, Severity


class TestParseDefinition:
    def test_parses_phases_tasks_gates_and_workers(self):
        definition = parse_definition(
            document(
                phase(
                    "discovery",
                    task("spec", "analysis", outputs=["requirements"], estimate=3),
                    gate=True,
                ),
                phase(
                    "architecture",
                    task(
                        "design",
                        "arch",
                        requires=["spec"],
                        inputs=["requirements"],
                        redo_on_reject=True,
                        max_retries=5,
                        severity="SEV2",
                    ),
                ),
                workers=[worker("w1", "analysis", "arch", concurrency=2, priority=3)],
                seed_capacity=13,
            )
        )

        assert definition.name == "test-flow"
        assert definition.phase_names == (Phase.DISCOVERY, Phase.ARCHITECTURE)
        design = definition.task("design")
        assert design.phase == Phase.ARCHITECTURE
        assert design.requires == ("spec",)
        assert design.redo_on_reject is True
        assert design.max_retries == 5
        assert design.severity == Severity.SEV2
        assert definition.gate_for(Phase.DISCOVERY).gate_id == "discovery-gate"
        assert definition.gate_for(Phase.ARCHITECTURE) is None
        assert definition.workers[0].capabilities == ("analysis", "arch")
        assert definition.workers[0].concurrency == 2
        assert definition.seed_capacity == 13

    def test_defaults(self):
        definition = parse_definition(document(phase("discovery", task("a"))))
        a = definition.task("a")

        assert a.estimate == 0
        assert a.priority == 100
        assert a.max_retries is None
        assert definition.workers[0].kind == "external"

    def test_unknown_phase_is_rejected(self):
        with pytest.raises(ConfigError, match="unknown phase 'qa'"):
            parse_definition(document(phase("qa", task("a"))))

    def test_phases_must_follow_canonical_order(self):
        with pytest.raises(ConfigError, match="canonical order"):
            parse_definition(
                document(phase("deploy", task("a")), phase("discovery", task("b")))
            )

    def test_phases_must_not_repeat(self):
        with pytest.raises(ConfigError, match="must not repeat"):
            parse_definition(
                document(phase("discovery", task("a")), phase("discovery", task("b")))
            )

    def test_duplicate_task_id(self):
        with pytest.raises(ConfigError, match="duplicate task id 'a'"):
            parse_definition(
                document(phase("discovery", task("a")), phase("architecture", task("a")))
            )

    def test_dangling_requirement(self):
        with pytest.raises(ConfigError, match="unknown task 'ghost'"):
            parse_definition(document(phase("discovery", task("a", requires=["ghost"]))))

    def test_dependency_on_later_phase(self):
        with pytest.raises(ConfigError, match="later phase"):
            parse_definition(
                document(
                    phase("discovery", task("a", requires=["b"])),
                    phase("architecture", task("b")),
                )
            )

    def test_cycle_is_rejected_before_execution(self):
        with pytest.raises(ConfigError) as exc:
            parse_definition(
                document(
                    phase(
                        "discovery",
                        task("a", requires=["c"]),
                        task("b", requires=["a"]),
                        task("c", requires=["b"]),
                    )
                )
            )

        assert exc.value.cycle is not None

    def test_artifact_with_two_producers(self):
        with pytest.raises(ConfigError, match="produced by both"):
            parse_definition(
                document(
                    phase(
                        "discovery",
                        task("a", outputs=["spec"]),
                        task("b", outputs=["spec"]),
                    )
                )
            )

    def test_input_from_non_predecessor(self):
        with pytest.raises(ConfigError, match="not one of its predecessors"):
            parse_definition(
                document(
                    phase(
                        "discovery",
                        task("a", outputs=["spec"]),
                        task("b", inputs=["spec"]),
                    )
                )
            )

    def test_input_without_producer_is_an_external_seed(self):
        definition = parse_definition(
            document(phase("discovery", task("a", inputs=["brief"])))
        )

        assert definition.task("a").inputs == ("brief",)

    def test_duplicate_worker_id(self):
        with pytest.raises(ConfigError, match="duplicate worker id"):
            parse_definition(
                document(
                    phase("discovery", task("a")),
                    workers=[worker("w1"), worker("w1")],
                )
            )

    def test_worker_needs_a_capability(self):
        with pytest.raises(ConfigError, match="at least one capability"):
            parse_definition(
                document(
                    phase("discovery", task("a")),
                    workers=[{"id": "w1", "capabilities": []}],
                )
            )

    def test_negative_estimate(self):
        with pytest.raises(ConfigError, match="estimate"):
            parse_definition(document(phase("discovery", task("a", estimate=-1))))

    def test_missing_name_and_phases(self):
        with pytest.raises(ConfigError, match="missing 'name'"):
            parse_definition({"phases": [phase("discovery")]})
        with pytest.raises(ConfigError, match="non-empty 'phases'"):
            parse_definition({"name": "x", "phases": []})

    def test_keeps_source_document(self):
        source = document(phase("discovery", task("a")))

        assert parse_definition(source).document is source
