# plan.py
"""
Static plan: everything that can be decided before the first job runs.

build_plan() validates the dependency graph, parses and checks every job and
step condition, and expands matrices into job instances. Any PlanError raised
here means the run never starts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from . import expr
from .dag import DependencyGraph, build_dag, topo_levels
from .errors import InvalidCondition, InvalidPlan
from .matrix import check_templates, expand, is_empty_matrix, validate_matrix
from .model import JobInstance, JobTemplate


@dataclass
class Plan:
    templates: Dict[str, JobTemplate]
    graph: DependencyGraph
    instances: List[JobInstance]
    conditions: Dict[str, expr.Condition]
    step_conditions: Dict[Tuple[str, int], expr.Condition] = field(default_factory=dict)
    # templates whose matrix expanded to nothing
    empty_matrix: List[str] = field(default_factory=list)
    fail_fast: bool = False

    def condition_for(self, name: str) -> expr.Condition:
        return self.conditions.get(name, expr.DEFAULT_CONDITION)

    def step_condition(self, name: str, index: int) -> expr.Condition | None:
        return self.step_conditions.get((name, index))

    def instances_of(self, name: str) -> List[JobInstance]:
        return [i for i in self.instances if i.name == name]

    def levels(self) -> List[List[str]]:
        return topo_levels(self.graph)


def _parse_condition(text: str, template: JobTemplate, step: str | None = None) -> expr.Condition:
    try:
        node = expr.parse(text)
        expr.check(node, needs=template.needs, axes=template.axes)
    except expr.ConditionSyntaxError as e:
        raise InvalidCondition(job=template.name, step=step, expression=str(text), message=str(e)) from e
    return node


def build_plan(templates: Iterable[JobTemplate], *, fail_fast: bool = False) -> Plan:
    """Validate templates and materialize job instances in dispatch-priority order."""
    templates = list(templates)
    for t in templates:
        if not isinstance(t.name, str) or not t.name:
            raise InvalidPlan(f"job names must be non-empty strings, got {t.name!r}")
        validate_matrix(t)
        check_templates(t)

    graph = build_dag(templates)
    by_name = {t.name: t for t in templates}

    conditions: Dict[str, expr.Condition] = {}
    step_conditions: Dict[Tuple[str, int], expr.Condition] = {}
    for t in templates:
        if t.condition is not None:
            node = _parse_condition(t.condition, t)
            # a job condition that never looks at upstream status still
            # requires upstream success, e.g. "ref == 'refs/heads/master'"
            if not expr.has_status_check(node):
                node = expr.And(expr.DEFAULT_CONDITION, node)
            conditions[t.name] = node
        for idx, step in enumerate(t.steps):
            if step.condition is not None:
                step_conditions[(t.name, idx)] = _parse_condition(step.condition, t, step=step.name)
            if step.timeout is not None and step.timeout <= 0:
                raise InvalidPlan(f"step '{step.name}' timeout must be positive", job=t.name)

    instances: List[JobInstance] = []
    empty: List[str] = []
    for name in graph.order:
        template = by_name[name]
        if is_empty_matrix(template):
            empty.append(name)
            continue
        instances.extend(expand(template))

    return Plan(
        templates=by_name,
        graph=graph,
        instances=instances,
        conditions=conditions,
        step_conditions=step_conditions,
        empty_matrix=empty,
        fail_fast=fail_fast,
    )
