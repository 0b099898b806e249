# expr.py
"""
Gating conditions.

A condition string is parsed once, at plan-build time, into a small tree of
predicate nodes and then evaluated (purely) against the run context, the
rolled-up status of the job's upstream templates, and the instance's matrix
coordinate.

Grammar (GitHub Actions flavoured, closed set):

    expr     := and ( "||" and )*
    and      := unary ( "&&" unary )*
    unary    := "!" unary | primary
    primary  := "(" expr ")" | call | operand ( "==" | "!=" ) operand
    call     := startsWith(ref, 'prefix') | success() | failure() | always()
    operand  := ref | github.ref | event | github.event_name
              | matrix.<axis> | needs.<job>[.result] | 'string'

    needs.* stands for every declared dependency: needs.* == 'skipped'
    holds when all upstream jobs were skipped.

Examples:
    ref == 'refs/heads/master'
    startsWith(github.ref, 'refs/tags/')
    needs.test.result == 'success' && event == 'push'
    matrix.rust == 'stable'
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .model import Status

ALL_UPSTREAM = "*"


# ---------------------------------------------------------------------
# Predicate nodes
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class RefEquals:
    value: str


@dataclass(frozen=True)
class RefHasPrefix:
    prefix: str


@dataclass(frozen=True)
class EventEquals:
    value: str


@dataclass(frozen=True)
class UpstreamStatus:
    """`name` is a dependency name or ALL_UPSTREAM."""
    name: str
    status: Status


@dataclass(frozen=True)
class AnyUpstreamFailed:
    pass


@dataclass(frozen=True)
class MatrixEquals:
    axis: str
    value: str


@dataclass(frozen=True)
class Always:
    pass


@dataclass(frozen=True)
class Not:
    operand: "Condition"


@dataclass(frozen=True)
class And:
    left: "Condition"
    right: "Condition"


@dataclass(frozen=True)
class Or:
    left: "Condition"
    right: "Condition"


Condition = Union[
    RefEquals, RefHasPrefix, EventEquals, UpstreamStatus, AnyUpstreamFailed,
    MatrixEquals, Always, Not, And, Or,
]

# "run if all declared upstream dependencies succeeded"
DEFAULT_CONDITION: Condition = UpstreamStatus(ALL_UPSTREAM, Status.SUCCEEDED)


class ConditionSyntaxError(ValueError):
    """Raised by parse(); the plan builder rewraps it as InvalidCondition."""


STATUS_LITERALS = {
    "success": Status.SUCCEEDED,
    "succeeded": Status.SUCCEEDED,
    "failure": Status.FAILED,
    "failed": Status.FAILED,
    "skipped": Status.SKIPPED,
}


# ---------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<op>==|!=|&&|\|\||!|\(|\)|,)
      | '(?P<sq>(?:[^']|'')*)'
      | "(?P<dq>[^"]*)"
      | (?P<ident>[A-Za-z_][A-Za-z0-9_\-]*(?:\.(?:[A-Za-z_][A-Za-z0-9_\-]*|\*))*)
    )
    """,
    re.VERBOSE,
)

_WRAPPER_RE = re.compile(r"^\s*\$\{\{(.*)\}\}\s*$", re.DOTALL)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ConditionSyntaxError(f"unexpected character {text[pos:].strip()[:1]!r} at {pos}")
        pos = m.end()
        if m.group("op") is not None:
            tokens.append(("op", m.group("op")))
        elif m.group("sq") is not None:
            tokens.append(("str", m.group("sq").replace("''", "'")))
        elif m.group("dq") is not None:
            tokens.append(("str", m.group("dq")))
        else:
            tokens.append(("ident", m.group("ident")))
    return tokens


# ---------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class _Ref:
    pass


@dataclass(frozen=True)
class _Event:
    pass


@dataclass(frozen=True)
class _Matrix:
    axis: str


@dataclass(frozen=True)
class _Needs:
    job: str


@dataclass(frozen=True)
class _Literal:
    value: str


_Operand = Union[_Ref, _Event, _Matrix, _Needs, _Literal]


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> Tuple[str, str]:
        tok = self.peek()
        if tok is None:
            raise ConditionSyntaxError("unexpected end of expression")
        self.pos += 1
        return tok

    def expect(self, value: str) -> None:
        kind, got = self.take()
        if kind != "op" or got != value:
            raise ConditionSyntaxError(f"expected {value!r}, got {got!r}")

    def at_op(self, value: str) -> bool:
        tok = self.peek()
        return tok is not None and tok == ("op", value)

    def parse(self) -> Condition:
        node = self.parse_or()
        if self.peek() is not None:
            raise ConditionSyntaxError(f"unexpected token {self.peek()[1]!r}")
        return node

    def parse_or(self) -> Condition:
        node = self.parse_and()
        while self.at_op("||"):
            self.take()
            node = Or(node, self.parse_and())
        return node

    def parse_and(self) -> Condition:
        node = self.parse_unary()
        while self.at_op("&&"):
            self.take()
            node = And(node, self.parse_unary())
        return node

    def parse_unary(self) -> Condition:
        if self.at_op("!"):
            self.take()
            return Not(self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> Condition:
        if self.at_op("("):
            self.take()
            node = self.parse_or()
            self.expect(")")
            return node

        tok = self.peek()
        if tok is not None and tok[0] == "ident" and self._next_is_call():
            return self.parse_call()

        left = self.parse_operand()
        kind, op = self.take()
        if kind != "op" or op not in ("==", "!="):
            raise ConditionSyntaxError(f"expected '==' or '!=', got {op!r}")
        right = self.parse_operand()
        node = _compare(left, right)
        return Not(node) if op == "!=" else node

    def _next_is_call(self) -> bool:
        nxt = self.tokens[self.pos + 1] if self.pos + 1 < len(self.tokens) else None
        return nxt == ("op", "(")

    def parse_call(self) -> Condition:
        _, fn = self.take()
        self.expect("(")
        if fn == "startsWith":
            subject = self.parse_operand()
            self.expect(",")
            prefix = self.parse_operand()
            self.expect(")")
            if not isinstance(subject, _Ref) or not isinstance(prefix, _Literal):
                raise ConditionSyntaxError("startsWith() takes (ref, 'prefix')")
            return RefHasPrefix(prefix.value)
        self.expect(")")
        if fn == "success":
            return UpstreamStatus(ALL_UPSTREAM, Status.SUCCEEDED)
        if fn == "failure":
            return AnyUpstreamFailed()
        if fn == "always":
            return Always()
        raise ConditionSyntaxError(f"unknown function {fn}()")

    def parse_operand(self) -> _Operand:
        kind, value = self.take()
        if kind == "str":
            return _Literal(value)
        if kind != "ident":
            raise ConditionSyntaxError(f"unexpected token {value!r}")
        if value in ("ref", "github.ref"):
            return _Ref()
        if value in ("event", "github.event_name"):
            return _Event()
        parts = value.split(".")
        if parts[0] == "matrix" and len(parts) == 2:
            return _Matrix(parts[1])
        # needs.* -> ALL_UPSTREAM
        if parts[0] == "needs" and (len(parts) == 2 or (len(parts) == 3 and parts[2] == "result")):
            return _Needs(parts[1])
        raise ConditionSyntaxError(f"unknown name {value!r}")


def _compare(left: _Operand, right: _Operand) -> Condition:
    if isinstance(left, _Literal) and not isinstance(right, _Literal):
        left, right = right, left
    if not isinstance(right, _Literal):
        raise ConditionSyntaxError("comparisons need one string literal side")
    if isinstance(left, _Ref):
        return RefEquals(right.value)
    if isinstance(left, _Event):
        return EventEquals(right.value)
    if isinstance(left, _Matrix):
        return MatrixEquals(left.axis, right.value)
    if isinstance(left, _Needs):
        status = STATUS_LITERALS.get(right.value)
        if status is None:
            raise ConditionSyntaxError(
                f"unknown status {right.value!r} (expected one of {sorted(STATUS_LITERALS)})"
            )
        return UpstreamStatus(left.job, status)
    raise ConditionSyntaxError("cannot compare two string literals")


def parse(text: str) -> Condition:
    """Parse a condition string into a predicate tree."""
    if not isinstance(text, str):
        raise ConditionSyntaxError(f"condition must be a string, got {type(text).__name__}")
    m = _WRAPPER_RE.match(text)
    if m:
        text = m.group(1)
    tokens = _tokenize(text)
    if not tokens:
        raise ConditionSyntaxError("empty expression")
    return _Parser(tokens).parse()


# ---------------------------------------------------------------------
# Static checks
# ---------------------------------------------------------------------

def walk(node: Condition) -> Iterable[Condition]:
    yield node
    if isinstance(node, Not):
        yield from walk(node.operand)
    elif isinstance(node, (And, Or)):
        yield from walk(node.left)
        yield from walk(node.right)


def has_status_check(node: Condition) -> bool:
    """True if the condition looks at upstream status (or opts out with always())."""
    return any(isinstance(n, (UpstreamStatus, AnyUpstreamFailed, Always)) for n in walk(node))


def check(node: Condition, *, needs: Iterable[str], axes: Iterable[str]) -> None:
    """Reject references to undeclared dependencies or matrix axes."""
    needs = set(needs)
    axes = set(axes)
    for n in walk(node):
        if isinstance(n, UpstreamStatus) and n.name != ALL_UPSTREAM and n.name not in needs:
            raise ConditionSyntaxError(f"needs.{n.name} is not a declared dependency")
        if isinstance(n, MatrixEquals) and n.axis not in axes:
            raise ConditionSyntaxError(f"matrix.{n.axis} is not a declared matrix axis")


# ---------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------

def evaluate(
    expr: Condition,
    ctx: Any,
    upstream: Mapping[str, Status],
    matrix: Optional[Mapping[str, Any]] = None,
) -> bool:
    """
    Evaluate a parsed condition.

    `ctx` is a RunContext (only ref and event are read), `upstream` maps each
    declared dependency to its rolled-up status. Pure: no side effects.
    """
    if isinstance(expr, RefEquals):
        return ctx.ref == expr.value
    if isinstance(expr, RefHasPrefix):
        return (ctx.ref or "").startswith(expr.prefix)
    if isinstance(expr, EventEquals):
        return ctx.event == expr.value
    if isinstance(expr, UpstreamStatus):
        if expr.name == ALL_UPSTREAM:
            return all(status == expr.status for status in upstream.values())
        return upstream.get(expr.name) == expr.status
    if isinstance(expr, AnyUpstreamFailed):
        return any(status == Status.FAILED for status in upstream.values())
    if isinstance(expr, MatrixEquals):
        values: Dict[str, Any] = dict(matrix or {})
        if expr.axis not in values:
            return False
        return _matrix_str(values[expr.axis]) == expr.value
    if isinstance(expr, Always):
        return True
    if isinstance(expr, Not):
        return not evaluate(expr.operand, ctx, upstream, matrix)
    if isinstance(expr, And):
        return evaluate(expr.left, ctx, upstream, matrix) and evaluate(expr.right, ctx, upstream, matrix)
    if isinstance(expr, Or):
        return evaluate(expr.left, ctx, upstream, matrix) or evaluate(expr.right, ctx, upstream, matrix)
    raise TypeError(f"not a condition node: {expr!r}")


def _matrix_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
