# runner.py
from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from concurrent.futures import wait as futures_wait
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from . import expr
from .context import InstanceKey, ResultStore, RunContext, rollup
from .errors import StepExecutionFailure
from .executor import StepExecutor
from .matrix import bind_step
from .model import JobInstance, Outcome, Status, StepResult, StepSpec
from .plan import Plan
from .ui.console import get_console

logger = logging.getLogger(__name__)

FAIL_FAST_REASON = "cancelled (fail-fast)"
CONDITION_FALSE_REASON = "condition false"


def plan_status(statuses: Iterable[Status]) -> Status:
    """FAILED if anything failed; else SUCCEEDED if anything succeeded; else SKIPPED."""
    statuses = list(statuses)
    if Status.FAILED in statuses:
        return Status.FAILED
    if Status.SUCCEEDED in statuses:
        return Status.SUCCEEDED
    return Status.SKIPPED


# ----------------------------------------------------------------------
# Report
# ----------------------------------------------------------------------

@dataclass
class RunReport:
    """Per-instance outcome of a run plus the overall plan status."""
    status: Status
    instances: List[JobInstance]
    empty_matrix: List[str] = field(default_factory=list)
    context: Optional[RunContext] = None

    def find(self, name: str, **coords: Any) -> JobInstance:
        """Instance of template `name` at the given matrix coordinate."""
        for inst in self.instances:
            if inst.name == name and inst.matrix_values == coords:
                return inst
        raise KeyError(f"no instance {name} {coords or ''}".rstrip())

    def instances_of(self, name: str) -> List[JobInstance]:
        return [i for i in self.instances if i.name == name]

    def template_status(self, name: str) -> Status:
        return rollup(i.status for i in self.instances_of(name))

    @property
    def statuses(self) -> Dict[str, Status]:
        out = {i.label: i.status for i in self.instances}
        out.update({name: Status.SKIPPED for name in self.empty_matrix})
        return out

    def to_dict(self) -> dict:
        jobs = []
        for inst in self.instances:
            jobs.append({
                "job": inst.name,
                "label": inst.label,
                "matrix": inst.matrix_values,
                "status": inst.status.value,
                "reason": inst.reason,
                "outputs": dict(inst.outputs),
                "steps": [
                    {
                        "name": s.name,
                        "status": s.status.value,
                        "continued": s.continued,
                        "error": s.error,
                        "duration": round(s.duration, 3),
                        "exported": dict(s.exported),
                    }
                    for s in inst.steps
                ],
            })
        for name in self.empty_matrix:
            jobs.append({
                "job": name,
                "label": name,
                "matrix": {},
                "status": Status.SKIPPED.value,
                "reason": "empty matrix",
                "outputs": {},
                "steps": [],
            })
        data: dict = {"status": self.status.value, "jobs": jobs}
        if self.context is not None:
            data["ref"] = self.context.ref
            data["sha"] = self.context.sha
            data["event"] = self.context.event
        return data


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

def default_workers() -> int:
    c = os.cpu_count() or 2
    return max(1, c - 1)


class Scheduler:
    """
    Runs one plan.

    The calling thread is the coordinator: it promotes Pending instances to
    Ready once every instance of every upstream template is terminal, gates
    them on their condition, and hands runnable ones to a bounded worker
    pool. Between transitions it sleeps on the ResultStore's condition
    variable. Workers run one instance each, steps strictly in order.
    """

    def __init__(
        self,
        plan: Plan,
        ctx: RunContext,
        executor: StepExecutor,
        *,
        max_workers: int | None = None,
        fail_fast: bool | None = None,
    ):
        self.plan = plan
        self.ctx = ctx
        self.executor = executor
        self.max_workers = max_workers or default_workers()
        self.fail_fast = plan.fail_fast if fail_fast is None else fail_fast
        # fresh records per run; the plan itself stays reusable
        self.instances = [JobInstance(template=i.template, coordinate=i.coordinate) for i in plan.instances]
        self.store = ResultStore(self.instances)
        self.console = get_console()

    # ---- upstream view ----
    def upstream(self, name: str) -> Dict[str, Status]:
        return {dep: self.store.template_status(dep) for dep in self.plan.graph.dependencies(name)}

    def _upstream_terminal(self, name: str) -> bool:
        return all(self.store.template_terminal(dep) for dep in self.plan.graph.dependencies(name))

    # ---- coordinator ----
    def run(self) -> RunReport:
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="ciplan") as pool:
            with self.store.cond:
                while not self.store.all_terminal():
                    if not self._dispatch_ready(pool):
                        self.store.cond.wait()

        instances = self.store.instances()
        statuses = [i.status for i in instances] + [Status.SKIPPED] * len(self.plan.empty_matrix)
        report = RunReport(
            status=plan_status(statuses),
            instances=instances,
            empty_matrix=list(self.plan.empty_matrix),
            context=self.ctx,
        )
        logger.debug("plan finished: %s", report.status.value)
        return report

    def _dispatch_ready(self, pool: ThreadPoolExecutor) -> bool:
        """One pass over Pending instances in dispatch-priority order. Caller holds store.cond."""
        progressed = False
        for inst in self.instances:
            if self.store.status(inst.key) != Status.PENDING:
                continue
            if not self._upstream_terminal(inst.name):
                continue

            self.store.transition(inst.key, Status.READY)
            progressed = True

            upstream = self.upstream(inst.name)
            condition = self.plan.condition_for(inst.name)
            if not expr.evaluate(condition, self.ctx, upstream, inst.matrix_values):
                self.store.transition(inst.key, Status.SKIPPED, reason=CONDITION_FALSE_REASON)
                self.console.print_job_skipped(inst.label, CONDITION_FALSE_REASON)
                continue

            pool.submit(self._run_instance, inst.key)
        return progressed

    # ---- worker ----
    def _run_instance(self, key: InstanceKey) -> None:
        # a queued instance may have been cancelled by fail-fast meanwhile
        if not self.store.transition(key, Status.RUNNING, expect=[Status.READY]):
            return
        try:
            self._run_steps(key)
        except Exception as e:
            # a bug outside step execution fails this instance, not the run
            logger.exception("job instance %s crashed", self.store.get(key).label)
            if self.store.transition(key, Status.FAILED, reason=f"internal error: {e}", expect=[Status.RUNNING]):
                self.console.print_failure(self.store.get(key).label, str(e), is_job=True)
                self._cancel_if_fail_fast()

    def _cancel_if_fail_fast(self) -> None:
        if not self.fail_fast:
            return
        for other in self.store.cancel_pending(FAIL_FAST_REASON):
            self.console.print_job_skipped(other.label, FAIL_FAST_REASON)

    def _run_steps(self, key: InstanceKey) -> None:
        inst = self.store.get(key)
        label = inst.label
        self.console.print_job_start(label)
        upstream = self.upstream(inst.name)

        failed_step: StepResult | None = None
        for idx, step in enumerate(inst.template.steps):
            condition = self.plan.step_condition(inst.name, idx)
            if condition is not None and not expr.evaluate(condition, self.ctx, upstream, inst.matrix_values):
                self.console.print_step_skipped(label, step.name)
                self.store.record_step(key, StepResult(name=step.name, status=Status.SKIPPED))
                continue

            bound = bind_step(step, inst)
            self.console.print_step(label, step.name)
            result = self._execute(bound)
            if result.status == Status.FAILED:
                self.console.print_failure(step.name, result.error or "step failed")
                if bound.continue_on_error:
                    result.continued = True
                else:
                    failed_step = result
            self.store.record_step(key, result)
            if failed_step is not None:
                break

        # no executed steps (all skipped, or none declared) is a success
        if failed_step is None:
            self.store.transition(key, Status.SUCCEEDED)
            self.console.print_success(label)
            return

        self.store.transition(key, Status.FAILED, reason=f"step '{failed_step.name}' failed")
        self.console.print_failure(label, failed_step.error or "step failed", is_job=True)
        self._cancel_if_fail_fast()

    def _execute(self, step: StepSpec) -> StepResult:
        start = time.monotonic()
        try:
            outcome = self._call_executor(step)
        except StepExecutionFailure as e:
            return StepResult(
                name=step.name,
                status=Status.FAILED,
                logs=e.logs,
                error=str(e),
                duration=time.monotonic() - start,
            )
        except Exception as e:
            return StepResult(
                name=step.name,
                status=Status.FAILED,
                error=f"{type(e).__name__}: {e}",
                duration=time.monotonic() - start,
            )

        ok = outcome.status == Status.SUCCEEDED
        return StepResult(
            name=step.name,
            status=Status.SUCCEEDED if ok else Status.FAILED,
            logs=outcome.logs,
            exported=dict(outcome.exported_values) if ok else {},
            error=None if ok else (outcome.logs.splitlines() or ["step failed"])[-1],
            duration=time.monotonic() - start,
        )

    def _call_executor(self, step: StepSpec) -> Outcome:
        if step.timeout is None:
            return self.executor.execute(step, self.ctx)

        # past the deadline the step counts as failed, but the next step (or a
        # dependent job) only starts once the executor call has returned;
        # executors see step.timeout and are expected to stop on their own
        timer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ciplan-step")
        fut = timer.submit(self.executor.execute, step, self.ctx)
        try:
            return fut.result(timeout=step.timeout)
        except FuturesTimeout:
            logger.debug("step %r passed its %ss deadline; waiting for it to return", step.name, step.timeout)
            futures_wait([fut])
            raise StepExecutionFailure(step=step.name, message=f"timed out after {step.timeout}s")
        finally:
            timer.shutdown(wait=True)


def run_plan(
    plan: Plan,
    ctx: RunContext,
    executor: StepExecutor,
    *,
    max_workers: int | None = None,
    fail_fast: bool | None = None,
) -> RunReport:
    """Execute `plan` and return the per-instance report."""
    return Scheduler(plan, ctx, executor, max_workers=max_workers, fail_fast=fail_fast).run()
