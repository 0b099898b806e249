from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from ciplan.context import RunContext
from ciplan.executor import StepExecutor
from ciplan.loader import load_workflow
from ciplan.model import Outcome, Status, StepSpec
from ciplan.ui.console import Console, set_console

REPO_ROOT = Path(__file__).resolve().parent.parent
CRATE_PIPELINE = REPO_ROOT / "crate_pipeline.yml"


@pytest.fixture(autouse=True)
def fresh_console():
    # CLI tests swap the global console; start every test from a plain one
    set_console(Console())
    yield


@pytest.fixture
def crate_jobs():
    return load_workflow(CRATE_PIPELINE).jobs


def tag_push() -> RunContext:
    return RunContext(ref="refs/tags/v1.0.0", sha="c0ffee", event="push")


def master_push() -> RunContext:
    return RunContext(ref="refs/heads/master", sha="c0ffee", event="push")


class RecordingExecutor(StepExecutor):
    """
    Records (action, start, end) for every executed step.

    `fail` lists actions that return a failed outcome, `raise_on` actions that
    raise, `delay` maps actions to a sleep in seconds.
    """

    def __init__(self, fail=(), raise_on=(), delay=None, exports=None):
        self.fail = set(fail)
        self.raise_on = set(raise_on)
        self.delay = dict(delay or {})
        self.exports = dict(exports or {})
        self.lock = threading.Lock()
        self.calls: list[tuple[str, float, float]] = []

    @property
    def actions(self) -> list[str]:
        with self.lock:
            return [a for a, _, _ in self.calls]

    def window(self, action: str) -> tuple[float, float]:
        with self.lock:
            for a, start, end in self.calls:
                if a == action:
                    return start, end
        raise KeyError(action)

    def execute(self, step: StepSpec, ctx: RunContext) -> Outcome:
        start = time.monotonic()
        try:
            if step.action in self.delay:
                time.sleep(self.delay[step.action])
            if step.action in self.raise_on:
                raise RuntimeError(f"boom in {step.action}")
            if step.action in self.fail:
                return Outcome(status=Status.FAILED, logs=f"{step.action} failed")
            return Outcome(
                status=Status.SUCCEEDED,
                logs=step.action,
                exported_values=self.exports.get(step.action, {}),
            )
        finally:
            with self.lock:
                self.calls.append((step.action, start, time.monotonic()))
