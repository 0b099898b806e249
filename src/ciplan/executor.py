# executor.py
from __future__ import annotations

import os
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from .context import RunContext
from .errors import StepExecutionFailure
from .model import Outcome, Status, StepSpec
from .ui.console import get_console

# "::set-output name=version::1.2.3" on stdout exports version=1.2.3
_SET_OUTPUT_RE = re.compile(r"^::set-output name=([^:]+)::(.*)$")

# keep the tail of the output so huge logs don't blow up the report
MAX_LOG_CHARS = 4000


class StepExecutor(ABC):
    """
    Boundary between the scheduler and whatever actually runs a step.

    Called at most once per declared step occurrence; the scheduler never
    retries. Implementations may either return a failed Outcome or raise;
    both are recorded as a failed step.
    """

    @abstractmethod
    def execute(self, step: StepSpec, ctx: RunContext) -> Outcome:
        raise NotImplementedError


ActionHandler = Callable[[StepSpec, RunContext], Outcome]


def parse_exports(stdout: str) -> Dict[str, str]:
    exported: Dict[str, str] = {}
    for line in stdout.splitlines():
        m = _SET_OUTPUT_RE.match(line.strip())
        if m:
            exported[m.group(1).strip()] = m.group(2)
    return exported


class ShellExecutor(StepExecutor):
    """
    Runs `run` steps as shell commands in the repository checkout.

    `uses` steps are looked up in `actions` (action reference without the
    @version suffix); an unknown action is a step failure.
    """

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        actions: Optional[Dict[str, ActionHandler]] = None,
        shell: str | None = None,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.actions = dict(actions or {})
        self.shell = shell

    def execute(self, step: StepSpec, ctx: RunContext) -> Outcome:
        if step.kind == "uses":
            return self._run_action(step, ctx)
        return self._run_shell(step, ctx)

    def _run_action(self, step: StepSpec, ctx: RunContext) -> Outcome:
        ref = step.action.split("@", 1)[0]
        handler = self.actions.get(ref)
        if handler is None:
            raise StepExecutionFailure(step=step.name, message=f"no handler registered for action '{step.action}'")
        return handler(step, ctx)

    def _run_shell(self, step: StepSpec, ctx: RunContext) -> Outcome:
        cwd = (self.repo_root / (step.cwd or ".")).resolve()
        if not cwd.exists():
            raise StepExecutionFailure(step=step.name, message=f"cwd not found: {cwd}")

        env = os.environ.copy()
        env.update(step.env)
        env.update({"CI_REF": ctx.ref, "CI_SHA": ctx.sha, "CI_EVENT": ctx.event})

        try:
            proc = subprocess.run(
                step.action,
                shell=True,
                executable=self.shell,
                cwd=str(cwd),
                env=env,
                text=True,
                capture_output=True,
                timeout=step.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise StepExecutionFailure(
                step=step.name,
                message=f"timed out after {step.timeout}s: {step.action}",
                logs=_text(e.stdout) + _text(e.stderr),
            ) from e

        logs = (proc.stdout + proc.stderr)[-MAX_LOG_CHARS:]
        if proc.returncode != 0:
            raise StepExecutionFailure(
                step=step.name,
                message=step.action,
                exit_code=proc.returncode,
                logs=logs,
            )
        return Outcome(status=Status.SUCCEEDED, logs=logs, exported_values=parse_exports(proc.stdout))


def _text(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


class DryRunExecutor(StepExecutor):
    """
    Executes nothing: every step succeeds, except steps whose name (or
    action) is listed in `fail`. Used by `ciplan run --dry-run` and tests.
    """

    def __init__(self, fail: Iterable[str] = (), *, echo: bool = True):
        self.fail = set(fail)
        self.echo = echo
        self.calls: list[StepSpec] = []

    def execute(self, step: StepSpec, ctx: RunContext) -> Outcome:
        self.calls.append(step)
        if self.echo:
            get_console().print_debug(f"dry-run: {step.kind} {step.action}")
        if step.name in self.fail or step.action in self.fail:
            return Outcome(status=Status.FAILED, logs=f"dry-run: forced failure of '{step.name}'")
        return Outcome(status=Status.SUCCEEDED, logs=f"dry-run: {step.action}")
