# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Status(str, Enum):
    """Lifecycle of a job instance (and the outcome of a single step)."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.SUCCEEDED, Status.FAILED, Status.SKIPPED)


# ((axis, value), ...) in declared axis order; () when the job has no matrix
Coordinate = Tuple[Tuple[str, Any], ...]

# (job name, ((axis, type, value), ...)): 1 and True are different coordinates
InstanceKey = Tuple[str, Tuple[Tuple[str, type, Any], ...]]


@dataclass(frozen=True)
class StepSpec:
    """
    A single step inside a CI job.

    `action` is opaque to the scheduler: a shell command when kind == "run",
    an action reference (e.g. "actions/checkout@v2") when kind == "uses".
    """
    name: str
    action: str
    kind: str = "run"
    condition: str | None = None
    continue_on_error: bool = False
    timeout: float | None = None  # seconds
    env: Dict[str, str] = field(default_factory=dict)
    with_: Dict[str, Any] = field(default_factory=dict)
    cwd: str | None = None


@dataclass
class JobTemplate:
    """
    A named job definition prior to matrix expansion.

    `continue_on_error` at job level is sugar for "every step continues on error".
    """
    name: str
    steps: list[StepSpec] = field(default_factory=list)
    needs: list[str] = field(default_factory=list)
    matrix: Optional[Dict[str, List[Any]]] = None
    condition: str | None = None
    continue_on_error: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    runs_on: str | None = None

    @property
    def axes(self) -> list[str]:
        return list(self.matrix or {})


@dataclass
class StepResult:
    """Recorded outcome of one declared step of a job instance."""
    name: str
    status: Status
    logs: str = ""
    exported: Dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    duration: float = 0.0
    # failed, but tolerated by continue_on_error
    continued: bool = False


@dataclass
class Outcome:
    """What a step executor reports back for one step."""
    status: Status
    logs: str = ""
    exported_values: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCEEDED


@dataclass
class JobInstance:
    """
    A job template bound to one matrix coordinate.

    Mutated only by the scheduler (through the ResultStore) while a run is in
    progress.
    """
    template: JobTemplate
    coordinate: Coordinate = ()
    status: Status = Status.PENDING
    steps: list[StepResult] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    reason: str | None = None

    @property
    def name(self) -> str:
        return self.template.name

    @property
    def key(self) -> InstanceKey:
        return (self.template.name, tuple((axis, type(value), value) for axis, value in self.coordinate))

    @property
    def matrix_values(self) -> Dict[str, Any]:
        return dict(self.coordinate)

    @property
    def label(self) -> str:
        if not self.coordinate:
            return self.template.name
        coords = ", ".join(f"{axis}={value}" for axis, value in self.coordinate)
        return f"{self.template.name} ({coords})"
