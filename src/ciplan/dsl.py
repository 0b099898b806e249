# src/ciplan/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .model import JobTemplate, StepSpec


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    when: str | None = None,
    continue_on_error: bool = False,
    timeout: float | None = None,
    env: Optional[Dict[str, str]] = None,
) -> StepSpec:
    """Create a shell step."""
    return StepSpec(
        name=name,
        action=cmd,
        kind="run",
        cwd=cwd,
        condition=when,
        continue_on_error=continue_on_error,
        timeout=timeout,
        env=dict(env or {}),
    )


def uses(
    action: str,
    *,
    name: str | None = None,
    with_: Optional[Dict[str, Any]] = None,
    when: str | None = None,
    continue_on_error: bool = False,
    timeout: float | None = None,
    env: Optional[Dict[str, str]] = None,
) -> StepSpec:
    """Create a step that invokes a named action (e.g. "actions/checkout@v2")."""
    return StepSpec(
        name=name or action,
        action=action,
        kind="uses",
        condition=when,
        continue_on_error=continue_on_error,
        timeout=timeout,
        env=dict(env or {}),
        with_=dict(with_ or {}),
    )


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: StepSpec,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[StepSpec]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    matrix: Optional[Dict[str, Iterable[Any]]] = None,
    when: str | None = None,
    continue_on_error: bool = False,
    env: Optional[Dict[str, str]] = None,
    runs_on: str | None = None,
) -> JobTemplate:
    steps_final: List[StepSpec] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    return JobTemplate(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        matrix={axis: list(values) for axis, values in matrix.items()} if matrix is not None else None,
        condition=when,
        continue_on_error=continue_on_error,
        env=dict(env or {}),
        runs_on=runs_on,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[StepSpec] = []
        self._matrix: Optional[dict[str, list]] = None
        self._condition: str | None = None
        self._continue_on_error = False
        self._env: dict[str, str] = {}

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, *, when: str | None = None,
                    continue_on_error: bool = False):
        self._steps.append(sh(name, run, cwd=cwd, when=when, continue_on_error=continue_on_error))
        return self

    def add_step(self, step: StepSpec):
        self._steps.append(step)
        return self

    def with_matrix(self, **axes: Iterable[Any]):
        self._matrix = dict(self._matrix or {})
        self._matrix.update({k: list(v) for k, v in axes.items()})
        return self

    def when(self, condition: str):
        self._condition = condition
        return self

    def allow_failure(self, enabled: bool = True):
        self._continue_on_error = enabled
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> JobTemplate:
        return JobTemplate(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            matrix=self._matrix,
            condition=self._condition,
            continue_on_error=self._continue_on_error,
            env=dict(self._env),
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(**axes: Iterable[Any]) -> Dict[str, List[Any]]:
    """
    Matrix axes in declaration order.

    Example:
        job("test", sh("Test", "cargo +${{ matrix.rust }} test"),
            matrix=matrix(rust=["stable", "beta", "nightly"]))
    """
    return {axis: list(values) for axis, values in axes.items()}


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: JobTemplate) -> List[JobTemplate]:
    """
    Workflow definition helper.

    Users can write:
        from ciplan import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)
