# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


# ----------------------------------------------------------------------
# Plan-build errors: all raised before any job executes
# ----------------------------------------------------------------------

class PlanError(Exception):
    """Base class for problems detected while building a plan."""
    kind = "plan_error"


@dataclass(eq=False)
class UnknownDependency(PlanError):
    job: str
    missing: str
    known: list[str] = field(default_factory=list)
    kind = "unknown_dependency"

    def __str__(self) -> str:
        return (
            f"Job '{self.job}' needs missing job '{self.missing}'. "
            f"Known jobs: {sorted(self.known)}"
        )


@dataclass(eq=False)
class CycleDetected(PlanError):
    # members in detection order
    cycle: list[str]
    kind = "cycle_detected"

    def __str__(self) -> str:
        path = " -> ".join(self.cycle + self.cycle[:1])
        return f"Dependency cycle detected: {path}"


@dataclass(eq=False)
class InvalidCondition(PlanError):
    job: str
    expression: str
    message: str
    step: str | None = None
    kind = "invalid_condition"

    def __str__(self) -> str:
        where = f"job '{self.job}'"
        if self.step:
            where += f", step '{self.step}'"
        return f"Invalid condition in {where}: {self.message} (in {self.expression!r})"


@dataclass(eq=False)
class DuplicateJob(PlanError):
    names: list[str]
    kind = "duplicate_job"

    def __str__(self) -> str:
        return f"Duplicate job names found: {sorted(self.names)}"


@dataclass(eq=False)
class InvalidPlan(PlanError):
    message: str
    job: str | None = None
    kind = "invalid_plan"

    def __str__(self) -> str:
        if self.job:
            return f"[{self.job}] {self.message}"
        return self.message


# ----------------------------------------------------------------------
# Run-time errors: recovered at the job-instance level
# ----------------------------------------------------------------------

@dataclass(eq=False)
class StepExecutionFailure(Exception):
    step: str
    message: str
    exit_code: int | None = None
    logs: str = ""

    def __str__(self) -> str:
        if self.exit_code is not None:
            return f"step '{self.step}' failed (exit={self.exit_code}): {self.message}"
        return f"step '{self.step}' failed: {self.message}"
