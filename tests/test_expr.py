"""Tests for gating condition parsing and evaluation."""

from __future__ import annotations

import pytest

from ciplan.context import RunContext
from ciplan.expr import (
    ALL_UPSTREAM,
    DEFAULT_CONDITION,
    Always,
    And,
    AnyUpstreamFailed,
    ConditionSyntaxError,
    EventEquals,
    MatrixEquals,
    Not,
    Or,
    RefEquals,
    RefHasPrefix,
    UpstreamStatus,
    check,
    evaluate,
    has_status_check,
    parse,
)
from ciplan.model import Status

TAG = RunContext(ref="refs/tags/v1.0.0", sha="abc", event="push")
MASTER = RunContext(ref="refs/heads/master", sha="abc", event="push")
PR = RunContext(ref="refs/pull/7/merge", sha="abc", event="pull_request")

OK = {"test": Status.SUCCEEDED}
FAILED = {"test": Status.FAILED}


class TestParse:

    @pytest.mark.parametrize("text, expected", [
        ("ref == 'refs/heads/master'", RefEquals("refs/heads/master")),
        ("github.ref == 'refs/heads/master'", RefEquals("refs/heads/master")),
        ("'refs/heads/master' == ref", RefEquals("refs/heads/master")),
        ("startsWith(github.ref, 'refs/tags/')", RefHasPrefix("refs/tags/")),
        ("event == 'push'", EventEquals("push")),
        ("github.event_name == \"push\"", EventEquals("push")),
        ("matrix.rust == 'stable'", MatrixEquals("rust", "stable")),
        ("needs.test.result == 'success'", UpstreamStatus("test", Status.SUCCEEDED)),
        ("needs.test == 'failure'", UpstreamStatus("test", Status.FAILED)),
        ("needs.publish-docs == 'skipped'", UpstreamStatus("publish-docs", Status.SKIPPED)),
        ("needs.* == 'skipped'", UpstreamStatus(ALL_UPSTREAM, Status.SKIPPED)),
        ("needs.*.result != 'failure'", Not(UpstreamStatus(ALL_UPSTREAM, Status.FAILED))),
        ("success()", UpstreamStatus(ALL_UPSTREAM, Status.SUCCEEDED)),
        ("failure()", AnyUpstreamFailed()),
        ("always()", Always()),
        ("ref != 'refs/heads/master'", Not(RefEquals("refs/heads/master"))),
        ("${{ event == 'push' }}", EventEquals("push")),
    ])
    def test_predicates(self, text, expected):
        assert parse(text) == expected

    def test_precedence_and_binds_tighter_than_or(self):
        node = parse("event == 'push' || event == 'tag' && ref == 'x'")
        assert node == Or(EventEquals("push"), And(EventEquals("tag"), RefEquals("x")))

    def test_parentheses_and_not(self):
        node = parse("!(event == 'push' || success())")
        assert node == Not(Or(EventEquals("push"), UpstreamStatus(ALL_UPSTREAM, Status.SUCCEEDED)))

    def test_escaped_quote_in_string(self):
        assert parse("ref == 'it''s'") == RefEquals("it's")

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "ref",
        "ref ==",
        "ref = 'x'",
        "github.sha == 'x'",
        "contains(ref, 'x')",
        "startsWith(event, 'p')",
        "'a' == 'b'",
        "ref == event",
        "needs.test == 'exploded'",
        "needs.test.* == 'success'",
        "ref.* == 'x'",
        "(event == 'push'",
        "event == 'push')",
        "event == 'push' &&",
        "ref == 'x' # comment",
    ])
    def test_malformed(self, text):
        with pytest.raises(ConditionSyntaxError):
            parse(text)

    def test_non_string_rejected(self):
        with pytest.raises(ConditionSyntaxError):
            parse(True)


class TestCheck:

    def test_unknown_dependency_reference(self):
        with pytest.raises(ConditionSyntaxError, match="needs.deploy"):
            check(parse("needs.deploy == 'success'"), needs=["test"], axes=[])

    def test_unknown_axis_reference(self):
        with pytest.raises(ConditionSyntaxError, match="matrix.os"):
            check(parse("matrix.os == 'linux'"), needs=[], axes=["rust"])

    def test_declared_names_pass(self):
        check(parse("needs.test == 'success' && matrix.rust == 'stable'"), needs=["test"], axes=["rust"])

    def test_has_status_check(self):
        assert not has_status_check(parse("ref == 'refs/heads/master'"))
        assert has_status_check(parse("ref == 'x' && needs.test == 'success'"))
        assert has_status_check(parse("always()"))
        assert has_status_check(parse("!failure()"))


class TestEvaluate:

    def test_ref_predicates(self):
        assert evaluate(parse("startsWith(ref, 'refs/tags/')"), TAG, OK)
        assert not evaluate(parse("startsWith(ref, 'refs/tags/')"), MASTER, OK)
        assert evaluate(parse("ref == 'refs/heads/master'"), MASTER, OK)
        assert not evaluate(parse("ref == 'refs/heads/master'"), TAG, OK)

    def test_event(self):
        assert evaluate(parse("event == 'pull_request'"), PR, {})
        assert not evaluate(parse("event == 'pull_request'"), TAG, {})

    def test_default_condition(self):
        assert evaluate(DEFAULT_CONDITION, TAG, {"a": Status.SUCCEEDED, "b": Status.SUCCEEDED})
        assert not evaluate(DEFAULT_CONDITION, TAG, {"a": Status.SUCCEEDED, "b": Status.FAILED})
        assert not evaluate(DEFAULT_CONDITION, TAG, {"a": Status.SKIPPED})

    def test_default_condition_without_upstream(self):
        assert evaluate(DEFAULT_CONDITION, TAG, {})

    def test_named_upstream(self):
        assert evaluate(parse("needs.test == 'failure'"), TAG, FAILED)
        assert not evaluate(parse("needs.test == 'success'"), TAG, FAILED)

    def test_failure_and_always(self):
        assert evaluate(parse("failure()"), TAG, FAILED)
        assert not evaluate(parse("failure()"), TAG, OK)
        assert evaluate(parse("always()"), TAG, FAILED)

    def test_matrix(self):
        cond = parse("matrix.rust == 'stable'")
        assert evaluate(cond, TAG, {}, {"rust": "stable"})
        assert not evaluate(cond, TAG, {}, {"rust": "beta"})
        assert not evaluate(cond, TAG, {}, {})

    def test_matrix_numbers_compare_as_text(self):
        assert evaluate(parse("matrix.py == '3'"), TAG, {}, {"py": 3})
        assert evaluate(parse("matrix.debug == 'true'"), TAG, {}, {"debug": True})

    def test_composition(self):
        cond = parse("success() && (startsWith(ref, 'refs/tags/') || ref == 'refs/heads/master')")
        assert evaluate(cond, TAG, OK)
        assert evaluate(cond, MASTER, OK)
        assert not evaluate(cond, PR, OK)
        assert not evaluate(cond, TAG, FAILED)

    def test_pure_and_repeatable(self):
        cond = parse("needs.test == 'success' && !(event == 'pull_request')")
        upstream = dict(OK)
        results = {evaluate(cond, TAG, upstream) for _ in range(5)}
        assert results == {True}
        assert upstream == OK

    def test_all_upstream_status(self):
        all_skipped = parse("needs.* == 'skipped'")
        assert evaluate(all_skipped, TAG, {"a": Status.SKIPPED, "b": Status.SKIPPED})
        assert not evaluate(all_skipped, TAG, {"a": Status.SKIPPED, "b": Status.SUCCEEDED})
        all_failed = parse("needs.*.result == 'failure'")
        assert evaluate(all_failed, TAG, {"a": Status.FAILED, "b": Status.FAILED})
        assert not evaluate(all_failed, TAG, {"a": Status.FAILED, "b": Status.SKIPPED})

    def test_all_upstream_passes_check(self):
        check(parse("needs.* == 'skipped'"), needs=["test"], axes=[])
