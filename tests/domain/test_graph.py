"""Tests for the dependency graph resolver."""

import random

import pytest

from sdlcflow.domain.exceptions import ConfigError
from sdlcflow.domain.graph import TaskGraph
from sdlcflow.domain.models import Phase, TaskDefinition, TaskStatus

P = TaskStatus.PENDING
D = TaskStatus.DONE


def diamond() -> TaskGraph:
    return TaskGraph.load("abcd", [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")])


def random_dag(rng: random.Random, size: int) -> tuple[list[str], list[tuple[str, str]]]:
    """Random DAG: edges only go from lower to higher index, ids shuffled."""
    ids = [f"t{i:02d}" for i in range(size)]
    rng.shuffle(ids)
    edges = [
        (ids[i], ids[j])
        for j in range(size)
        for i in range(j)
        if rng.random() < 0.25
    ]
    return ids, edges


class TestLoad:
    def test_builds_predecessor_and_successor_indexes(self):
        graph = diamond()

        assert graph.predecessors("d") == ("b", "c")
        assert graph.successors("a") == ("b", "c")
        assert graph.task_ids == ("a", "b", "c", "d")
        assert len(graph) == 4
        assert "a" in graph
        assert "z" not in graph

    def test_cycle_is_config_error_with_path(self):
        """A cycle is reported with the ids along it, closed on its start."""
        with pytest.raises(ConfigError) as exc:
            TaskGraph.load("abc", [("a", "b"), ("b", "c"), ("c", "a")])

        assert exc.value.cycle == ("a", "b", "c", "a")
        assert "a -> b -> c -> a" in str(exc.value)

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(ConfigError) as exc:
            TaskGraph.load(["a"], [("a", "a")])

        assert exc.value.cycle == ("a", "a")

    def test_dangling_reference_is_config_error(self):
        with pytest.raises(ConfigError, match="unknown task 'ghost'"):
            TaskGraph.load(["a"], [("ghost", "a")])

    def test_duplicate_id_is_config_error(self):
        with pytest.raises(ConfigError, match="Duplicate task id"):
            TaskGraph.load(["a", "a"], [])

    def test_from_definitions_uses_requires(self):
        tasks = [
            TaskDefinition("spec", Phase.DISCOVERY, "analysis"),
            TaskDefinition("design", Phase.DISCOVERY, "arch", requires=("spec",)),
        ]

        graph = TaskGraph.from_definitions(tasks)

        assert graph.predecessors("design") == ("spec",)


class TestReadiness:
    def test_task_without_predecessors_is_ready(self):
        graph = diamond()

        assert graph.ready_tasks({"a": P, "b": P, "c": P, "d": P}) == ["a"]

    def test_join_waits_for_every_predecessor(self):
        graph = diamond()
        states = {"a": D, "b": D, "c": P, "d": P}

        assert graph.ready_tasks(states) == ["c"]
        assert not graph.is_ready("d", states)

    def test_only_pending_tasks_are_ready(self):
        graph = diamond()
        states = {"a": D, "b": TaskStatus.RUNNING, "c": TaskStatus.BLOCKED, "d": P}

        assert graph.ready_tasks(states) == []

    def test_ready_tasks_restricted_to_candidates(self):
        graph = diamond()
        states = {"a": D, "b": P, "c": P, "d": P}

        assert graph.ready_tasks(states, among=["c", "d"]) == ["c"]

    def test_on_task_done_examines_direct_successors(self):
        graph = diamond()

        assert graph.on_task_done("a", {"a": D, "b": P, "c": P, "d": P}) == ["b", "c"]
        assert graph.on_task_done("b", {"a": D, "b": D, "c": P, "d": P}) == []
        assert graph.on_task_done("c", {"a": D, "b": D, "c": D, "d": P}) == ["d"]


class TestStructureQueries:
    def test_descendants_and_ancestors_are_transitive(self):
        graph = diamond()

        assert graph.descendants("a") == {"b", "c", "d"}
        assert graph.ancestors("d") == {"a", "b", "c"}
        assert graph.descendants("d") == set()

    def test_unblock_weight_counts_transitive_dependents(self):
        graph = diamond()

        assert graph.unblock_weight("a") == 3
        assert graph.unblock_weight("b") == 1
        assert graph.unblock_weight("d") == 0

    def test_topological_order_prefers_smallest_id(self):
        graph = TaskGraph.load("cba", [])

        assert graph.topological_order() == ["a", "b", "c"]
        assert diamond().topological_order() == ["a", "b", "c", "d"]


class TestRandomGraphs:
    """Properties over seeded random DAGs."""

    @pytest.mark.parametrize("seed", range(25))
    def test_topological_order_respects_every_edge(self, seed):
        ids, edges = random_dag(random.Random(seed), 15)
        graph = TaskGraph.load(ids, edges)

        order = graph.topological_order()
        position = {tid: i for i, tid in enumerate(order)}

        assert sorted(order) == sorted(ids)
        for src, dst in edges:
            assert position[src] < position[dst]

    @pytest.mark.parametrize("seed", range(25))
    def test_ready_means_all_predecessors_done(self, seed):
        rng = random.Random(seed)
        ids, edges = random_dag(rng, 15)
        graph = TaskGraph.load(ids, edges)
        states = {tid: rng.choice([P, D]) for tid in ids}

        ready = graph.ready_tasks(states)

        for tid in ids:
            expected = states[tid] == P and all(
                states[p] == D for p in graph.predecessors(tid)
            )
            assert (tid in ready) == expected

    @pytest.mark.parametrize("seed", range(10))
    def test_completing_in_order_reaches_every_task(self, seed):
        """Completing tasks as they become ready visits the whole graph."""
        ids, edges = random_dag(random.Random(seed), 20)
        graph = TaskGraph.load(ids, edges)
        states = dict.fromkeys(ids, P)

        frontier = graph.ready_tasks(states)
        visited: list[str] = []
        while frontier:
            tid = frontier.pop(0)
            states[tid] = D
            visited.append(tid)
            frontier.extend(graph.on_task_done(tid, states))

        assert sorted(visited) == sorted(ids)

    @pytest.mark.parametrize("seed", range(10))
    def test_back_edge_is_detected(self, seed):
        rng = random.Random(seed)
        ids, edges = random_dag(rng, 12)
        chain = [ids[0], ids[5], ids[11]]
        edges += [(chain[0], chain[1]), (chain[1], chain[2]), (chain[2], chain[0])]

        with pytest.raises(ConfigError) as exc:
            TaskGraph.load(ids, edges)

        cycle = exc.value.cycle
        assert cycle is not None
        assert cycle[0] == cycle[-1]
