"""Tests for plan building: validation happens before anything runs."""

from __future__ import annotations

import pytest

from ciplan import expr
from ciplan.dsl import job, matrix, sh
from ciplan.errors import CycleDetected, InvalidCondition, InvalidPlan, UnknownDependency
from ciplan.plan import build_plan


def test_reference_pipeline_instances(crate_jobs):
    plan = build_plan(crate_jobs)
    assert [i.label for i in plan.instances] == [
        "codestyle",
        "lint",
        "compile",
        "test (rust=stable)",
        "test (rust=beta)",
        "test (rust=nightly)",
        "publish-docs",
        "publish-crate",
    ]
    assert plan.empty_matrix == []
    assert plan.fail_fast is False


def test_missing_condition_uses_default(crate_jobs):
    plan = build_plan(crate_jobs)
    assert plan.condition_for("test") == expr.DEFAULT_CONDITION


def test_ref_only_condition_still_requires_upstream_success(crate_jobs):
    plan = build_plan(crate_jobs)
    assert plan.condition_for("publish-crate") == expr.And(
        expr.DEFAULT_CONDITION, expr.RefHasPrefix("refs/tags/")
    )


def test_explicit_status_check_is_kept_as_written():
    jobs = [job("a", sh("a", "true")), job("notify", sh("n", "true"), needs=["a"], when="failure()")]
    plan = build_plan(jobs)
    assert plan.condition_for("notify") == expr.AnyUpstreamFailed()


def test_step_conditions_parsed(crate_jobs):
    plan = build_plan(crate_jobs)
    coverage_idx = [s.name for s in plan.templates["test"].steps].index("Coverage")
    assert plan.step_condition("test", coverage_idx) == expr.MatrixEquals("rust", "stable")
    assert plan.step_condition("test", 0) is None


def test_invalid_job_condition_fails_at_build_time():
    jobs = [job("a", sh("a", "true"), when="ref === 'x'")]
    with pytest.raises(InvalidCondition) as exc:
        build_plan(jobs)
    assert exc.value.job == "a"
    assert exc.value.step is None


def test_invalid_step_condition_names_the_step():
    jobs = [job("a", sh("build", "true", when="matrix.os == 'linux'"))]
    with pytest.raises(InvalidCondition) as exc:
        build_plan(jobs)
    assert exc.value.step == "build"
    assert "matrix.os" in str(exc.value)


def test_condition_on_undeclared_dependency_rejected():
    jobs = [
        job("a", sh("a", "true")),
        job("b", sh("b", "true")),
        job("c", sh("c", "true"), needs=["a"], when="needs.b == 'success'"),
    ]
    with pytest.raises(InvalidCondition, match="needs.b"):
        build_plan(jobs)


def test_graph_errors_propagate():
    with pytest.raises(UnknownDependency):
        build_plan([job("a", needs=["missing"])])
    with pytest.raises(CycleDetected):
        build_plan([job("a", needs=["b"]), job("b", needs=["a"])])


def test_non_positive_timeout_rejected():
    with pytest.raises(InvalidPlan, match="timeout"):
        build_plan([job("a", sh("slow", "sleep 1", timeout=0))])


def test_empty_matrix_recorded():
    jobs = [job("a", sh("a", "true")), job("m", sh("m", "true"), matrix=matrix(rust=[]))]
    plan = build_plan(jobs)
    assert plan.empty_matrix == ["m"]
    assert plan.instances_of("m") == []


def test_fail_fast_option_carried():
    assert build_plan([job("a")], fail_fast=True).fail_fast is True
