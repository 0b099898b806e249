from .model import JobTemplate, JobInstance, StepSpec, Status, Outcome
from .context import RunContext
from .plan import build_plan, Plan
from .runner import run_plan, RunReport
from .executor import StepExecutor, ShellExecutor, DryRunExecutor
from .loader import load_workflow
from .dsl import job, sh, uses, matrix, wf, JobBuilder, build

__all__ = [
    "job", "sh", "uses", "matrix", "wf", "JobBuilder", "build",
    "JobTemplate", "JobInstance", "StepSpec", "Status", "Outcome",
    "RunContext", "build_plan", "Plan", "run_plan", "RunReport",
    "StepExecutor", "ShellExecutor", "DryRunExecutor", "load_workflow",
]
