"""Tests for dependency graph construction and ordering."""

from __future__ import annotations

import pytest

from ciplan.dag import build_dag, topo_levels
from ciplan.dsl import job, sh
from ciplan.errors import CycleDetected, DuplicateJob, PlanError, UnknownDependency


def _job(name, needs=()):
    return job(name, sh(f"{name} step", f"echo {name}"), needs=list(needs))


def _assert_respects_needs(graph):
    pos = {name: i for i, name in enumerate(graph.order)}
    for name in graph.nodes:
        for dep in graph.dependencies(name):
            assert pos[dep] < pos[name], f"{dep} must come before {name}"


class TestBuildDag:

    def test_order_respects_needs(self, crate_jobs):
        graph = build_dag(crate_jobs)
        assert set(graph.order) == {j.name for j in crate_jobs}
        _assert_respects_needs(graph)

    def test_ties_broken_by_declaration_order(self):
        graph = build_dag([_job("c"), _job("a"), _job("b", ["c"]), _job("d")])
        assert graph.order == ("c", "a", "b", "d")

    def test_dependents_become_available_in_declaration_order(self):
        jobs = [
            _job("late", ["root"]),
            _job("root"),
            _job("early", ["root"]),
        ]
        graph = build_dag(jobs)
        assert graph.order == ("root", "late", "early")

    def test_reference_pipeline_order(self, crate_jobs):
        graph = build_dag(crate_jobs)
        assert graph.order == (
            "codestyle", "lint", "compile", "test", "publish-docs", "publish-crate",
        )
        assert graph.dependencies("test") == ("codestyle", "lint", "compile")
        assert graph.dependents("test") == ["publish-docs", "publish-crate"]

    def test_duplicate_needs_collapsed(self):
        graph = build_dag([_job("a"), _job("b", ["a", "a"])])
        assert graph.dependencies("b") == ("a",)

    def test_many_random_acyclic_graphs(self):
        import random

        rng = random.Random(7)
        for _ in range(50):
            n = rng.randint(1, 12)
            names = [f"j{i}" for i in range(n)]
            jobs = []
            for i, name in enumerate(names):
                needs = [d for d in names[:i] if rng.random() < 0.3]
                jobs.append(_job(name, needs))
            rng.shuffle(jobs)
            _assert_respects_needs(build_dag(jobs))


class TestBuildDagErrors:

    def test_unknown_dependency(self):
        with pytest.raises(UnknownDependency) as exc:
            build_dag([_job("a"), _job("b", ["nope"])])
        assert exc.value.job == "b"
        assert exc.value.missing == "nope"
        assert "nope" in str(exc.value)

    def test_unknown_dependency_checked_before_cycles(self):
        with pytest.raises(UnknownDependency):
            build_dag([_job("a", ["b"]), _job("b", ["a", "ghost"])])

    def test_cycle_members_in_detection_order(self):
        jobs = [_job("a", ["b"]), _job("b", ["c"]), _job("c", ["a"]), _job("d")]
        with pytest.raises(CycleDetected) as exc:
            build_dag(jobs)
        assert exc.value.cycle == ["a", "b", "c"]
        assert "a -> b -> c -> a" in str(exc.value)

    def test_cycle_reported_without_acyclic_prefix(self):
        jobs = [_job("entry", ["x"]), _job("x", ["y"]), _job("y", ["x"])]
        with pytest.raises(CycleDetected) as exc:
            build_dag(jobs)
        assert exc.value.cycle == ["x", "y"]

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CycleDetected) as exc:
            build_dag([_job("a", ["a"])])
        assert exc.value.cycle == ["a"]

    def test_duplicate_names(self):
        with pytest.raises(DuplicateJob) as exc:
            build_dag([_job("a"), _job("a")])
        assert exc.value.names == ["a"]

    def test_errors_share_plan_error_base(self):
        with pytest.raises(PlanError):
            build_dag([_job("a", ["a"])])


class TestTopoLevels:

    def test_levels_group_parallel_jobs(self, crate_jobs):
        levels = topo_levels(build_dag(crate_jobs))
        assert levels == [
            ["codestyle", "lint", "compile"],
            ["test"],
            ["publish-docs", "publish-crate"],
        ]

    def test_level_is_longest_path(self):
        jobs = [_job("a"), _job("b", ["a"]), _job("c", ["a", "b"]), _job("d")]
        assert topo_levels(build_dag(jobs)) == [["a", "d"], ["b"], ["c"]]
