# loader.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml

from .errors import InvalidPlan
from .model import JobTemplate, StepSpec


@dataclass
class Workflow:
    """A loaded plan document: job templates plus plan-level options."""
    name: str
    jobs: List[JobTemplate] = field(default_factory=list)
    fail_fast: bool = False


# ----------------------------------------------------------------------
# Declarative document (YAML)
# ----------------------------------------------------------------------

def _names(value: Any, job: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise InvalidPlan(f"needs must be a job name or a list of job names, got {value!r}", job=job)


def _condition(value: Any, job: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "always()" if value else "!always()"
    if not isinstance(value, str):
        raise InvalidPlan(f"condition must be a string, got {value!r}", job=job)
    return value


def _flag(value: Any, what: str, job: str | None = None) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise InvalidPlan(f"{what} must be true or false, got {value!r}", job=job)
    return value


def _str_map(value: Any, what: str, job: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise InvalidPlan(f"{what} must be a mapping", job=job)
    return {str(k): str(v) for k, v in value.items()}


def _first(d: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in d:
            return d[k]
    return default


def parse_step(raw: Any, job: str, index: int) -> StepSpec:
    if not isinstance(raw, Mapping):
        raise InvalidPlan(f"step #{index + 1} must be a mapping", job=job)

    actions = [k for k in ("run", "uses", "action") if k in raw]
    if len(actions) != 1:
        raise InvalidPlan(f"step #{index + 1} needs exactly one of run / uses / action", job=job)
    kind = "run" if actions[0] == "run" else "uses"
    action = str(raw[actions[0]])

    name = raw.get("name")
    if name is None:
        name = action.strip().splitlines()[0] if kind == "run" and action.strip() else action

    timeout = raw.get("timeout")
    if timeout is None and raw.get("timeout-minutes") is not None:
        timeout = float(raw["timeout-minutes"]) * 60
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError) as e:
            raise InvalidPlan(f"step '{name}' timeout must be a number", job=job) from e

    with_ = raw.get("with") or {}
    if not isinstance(with_, Mapping):
        raise InvalidPlan(f"step '{name}' with: must be a mapping", job=job)

    return StepSpec(
        name=str(name),
        action=action,
        kind=kind,
        condition=_condition(_first(raw, "if", "condition"), job),
        continue_on_error=_flag(
            _first(raw, "continue-on-error", "continue_on_error"), f"step '{name}' continue-on-error", job
        ),
        timeout=timeout,
        env=_str_map(raw.get("env"), "env", job),
        with_=dict(with_),
        cwd=raw.get("working-directory"),
    )


def parse_job(name: str, raw: Any) -> JobTemplate:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise InvalidPlan("job definition must be a mapping", job=name)

    matrix = raw.get("matrix")
    strategy = raw.get("strategy")
    if matrix is None and isinstance(strategy, Mapping):
        matrix = strategy.get("matrix")
    if isinstance(matrix, Mapping) and ("include" in matrix or "exclude" in matrix):
        raise InvalidPlan("matrix include/exclude is not supported", job=name)
    if matrix is not None and not isinstance(matrix, Mapping):
        raise InvalidPlan("matrix must be a mapping of axis -> values", job=name)

    steps_raw = raw.get("steps") or []
    if not isinstance(steps_raw, list):
        raise InvalidPlan("steps must be a list", job=name)

    return JobTemplate(
        name=name,
        steps=[parse_step(s, name, i) for i, s in enumerate(steps_raw)],
        needs=_names(raw.get("needs"), name),
        matrix=dict(matrix) if matrix is not None else None,
        condition=_condition(_first(raw, "if", "condition"), name),
        continue_on_error=_flag(_first(raw, "continue-on-error", "continue_on_error"), "continue-on-error", name),
        env=_str_map(raw.get("env"), "env", name),
        runs_on=raw.get("runs-on"),
    )


def parse_document(doc: Any, *, default_name: str = "workflow") -> Workflow:
    """Turn a parsed YAML/JSON document into a Workflow."""
    if not isinstance(doc, Mapping):
        raise InvalidPlan("plan document must be a mapping with a 'jobs' key")
    jobs = doc.get("jobs")
    if not isinstance(jobs, Mapping) or not jobs:
        raise InvalidPlan("plan document must define at least one job under 'jobs'")

    return Workflow(
        name=str(doc.get("name") or default_name),
        jobs=[parse_job(str(name), raw) for name, raw in jobs.items()],
        fail_fast=_flag(_first(doc, "fail-fast", "fail_fast"), "fail-fast"),
    )


def loads(text: str, *, default_name: str = "workflow") -> Workflow:
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidPlan(f"could not parse plan document: {e}") from e
    return parse_document(doc, default_name=default_name)


# ----------------------------------------------------------------------
# Python workflow files (workflow() / JOBS)
# ----------------------------------------------------------------------

def _load_python(path: Path) -> Workflow:
    module_name = f"ciplan_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        jobs = globals_dict["workflow"]()
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, list) or not all(isinstance(j, JobTemplate) for j in jobs):
        raise TypeError(
            "Workflow must return/define a List[JobTemplate]. "
            "Define workflow() -> List[JobTemplate] or JOBS = [JobTemplate, ...]."
        )
    return Workflow(
        name=str(globals_dict.get("NAME") or path.stem),
        jobs=jobs,
        fail_fast=bool(globals_dict.get("FAIL_FAST", False)),
    )


def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a file.

    .yml / .yaml / .json: a declarative plan document (jobs: {...}).
    .py: must define either workflow() -> List[JobTemplate] or JOBS.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    if wf_path.suffix in (".yml", ".yaml", ".json"):
        return loads(wf_path.read_text(encoding="utf-8"), default_name=wf_path.stem)
    raise ValueError(f"Workflow must be a .yml, .yaml, .json or .py file, got: {wf_path.name}")
