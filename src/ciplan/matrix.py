# matrix.py
from __future__ import annotations

import itertools
from dataclasses import replace
from typing import Any, Dict, List, Mapping

from jinja2 import BaseLoader, ChainableUndefined, Environment, TemplateError

from .errors import InvalidPlan
from .model import JobInstance, JobTemplate, StepSpec


def validate_matrix(template: JobTemplate) -> None:
    """Matrix must be a mapping of axis name -> list of values."""
    if template.matrix is None:
        return
    if not isinstance(template.matrix, Mapping):
        raise InvalidPlan("matrix must be a mapping of axis -> values", job=template.name)
    for axis, values in template.matrix.items():
        if not isinstance(axis, str) or not axis:
            raise InvalidPlan(f"matrix axis names must be strings, got {axis!r}", job=template.name)
        if not isinstance(values, (list, tuple)):
            raise InvalidPlan(
                f"matrix axis '{axis}' must be a list of values, got {type(values).__name__}",
                job=template.name,
            )
        for v in values:
            if not isinstance(v, (str, int, float, bool)):
                raise InvalidPlan(
                    f"matrix axis '{axis}' values must be scalars, got {v!r}",
                    job=template.name,
                )
        # 1 and True are different matrix values
        if len({(type(v), v) for v in values}) != len(values):
            raise InvalidPlan(f"matrix axis '{axis}' has duplicate values", job=template.name)


def is_empty_matrix(template: JobTemplate) -> bool:
    """True when some declared axis has no values: the template fans out to nothing."""
    return bool(template.matrix) and any(len(v) == 0 for v in template.matrix.values())


def expand(template: JobTemplate) -> List[JobInstance]:
    """
    Expand a template into concrete job instances.

    No axes -> exactly one instance with an empty coordinate.
    Axes -> the Cartesian product, axis-major: declared axis order, then value
    order. {A: [1, 2], B: [x, y]} gives (1,x), (1,y), (2,x), (2,y).
    An axis with zero values gives zero instances.
    """
    validate_matrix(template)
    if not template.matrix:
        return [JobInstance(template=template, coordinate=())]

    axes = list(template.matrix.keys())
    instances: List[JobInstance] = []
    for combo in itertools.product(*(template.matrix[a] for a in axes)):
        instances.append(JobInstance(template=template, coordinate=tuple(zip(axes, combo))))
    return instances


# ---------------------------------------------------------------------
# Binding steps to a coordinate (done at dispatch time)
# ---------------------------------------------------------------------

class _Unresolved(ChainableUndefined):
    """Renders an unknown expression back as written, e.g. ${{ secrets.TOKEN }}."""
    __slots__ = ()

    def __getattr__(self, name: str) -> Any:
        if name[:2] == "__":
            raise AttributeError(name)
        return _Unresolved(name=f"{self._undefined_name}.{name}")

    def __getitem__(self, key: Any) -> Any:
        return _Unresolved(name=f"{self._undefined_name}[{key!r}]")

    def __str__(self) -> str:
        return "${{ %s }}" % self._undefined_name


class _Scope(dict):
    """A named group of template values, e.g. matrix.<axis>."""

    def __init__(self, prefix: str, values: Mapping[str, Any]):
        super().__init__(values)
        self.prefix = prefix


class _StepTemplates(Environment):
    def getattr(self, obj: Any, attribute: str) -> Any:
        # matrix.values is an axis named "values", not dict.values
        if isinstance(obj, _Scope):
            if attribute in obj:
                return obj[attribute]
            return self.undefined(name=f"{obj.prefix}.{attribute}")
        return super().getattr(obj, attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        # matrix['rust-version'] for axis names that are not identifiers
        if isinstance(obj, _Scope):
            if argument in obj:
                return obj[argument]
            return self.undefined(name=f"{obj.prefix}[{argument!r}]")
        return super().getitem(obj, argument)


# only ${{ ... }} is special; shell text like {% or ${#x} passes through
_TEMPLATES = _StepTemplates(
    loader=BaseLoader(),
    autoescape=False,
    undefined=_Unresolved,
    variable_start_string="${{",
    variable_end_string="}}",
    block_start_string="${{%",
    block_end_string="%}}",
    comment_start_string="${{#",
    comment_end_string="#}}",
    keep_trailing_newline=True,
)


def _render(value: Any, context: Dict[str, Any]) -> Any:
    if isinstance(value, str):
        if "${{" not in value:
            return value
        return _TEMPLATES.from_string(value).render(context)
    if isinstance(value, dict):
        return {k: _render(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [_render(v, context) for v in value]
    return value


def _template_strings(value: Any):
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for v in value.values():
            yield from _template_strings(v)
    elif isinstance(value, list):
        for v in value:
            yield from _template_strings(v)


def check_templates(template: JobTemplate) -> None:
    """Compile every ${{ }} expression of the job up front; a bad one is an InvalidPlan."""
    for text in _template_strings(template.env):
        _compile(text, template.name, "env")
    for step in template.steps:
        for text in _template_strings([step.action, step.env, step.with_]):
            _compile(text, template.name, f"step '{step.name}'")


def _compile(text: str, job: str, where: str) -> None:
    if "${{" not in text:
        return
    try:
        _TEMPLATES.from_string(text)
    except TemplateError as e:
        raise InvalidPlan(f"{where}: cannot parse expression in {text!r}: {e}", job=job) from e


def bind_step(step: StepSpec, instance: JobInstance) -> StepSpec:
    """
    Return `step` with ${{ matrix.<axis> }} placeholders filled in and the job
    env merged under the step env. Any other ${{ }} expression is kept as is.
    """
    context = {"matrix": _Scope("matrix", instance.matrix_values)}
    env = {k: str(_render(v, context)) for k, v in instance.template.env.items()}
    env.update({k: str(_render(v, context)) for k, v in step.env.items()})
    return replace(
        step,
        action=_render(step.action, context),
        env=env,
        with_=_render(dict(step.with_), context),
        continue_on_error=step.continue_on_error or instance.template.continue_on_error,
    )
