# context.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .model import InstanceKey, JobInstance, Status, StepResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """
    Immutable trigger inputs for one run.

    `secrets` is a handle that executors may use to look secrets up; the core
    never reads secret values through it.
    """
    ref: str = ""
    sha: str = ""
    event: str = "push"
    secrets: Any = None

    @property
    def branch(self) -> str | None:
        if self.ref.startswith("refs/heads/"):
            return self.ref[len("refs/heads/"):]
        return None

    @property
    def tag(self) -> str | None:
        if self.ref.startswith("refs/tags/"):
            return self.ref[len("refs/tags/"):]
        return None



def rollup(statuses: Iterable[Status]) -> Status:
    """
    Status of a template as its dependents see it.

    Any failed instance -> FAILED; every instance succeeded -> SUCCEEDED;
    anything else (all skipped, no instances, succeeded mixed with skipped)
    -> SKIPPED. Only meaningful once every instance is terminal.
    """
    statuses = list(statuses)
    if any(s == Status.FAILED for s in statuses):
        return Status.FAILED
    if statuses and all(s == Status.SUCCEEDED for s in statuses):
        return Status.SUCCEEDED
    return Status.SKIPPED


class ResultStore:
    """
    Per-instance status, step results and outputs for one run.

    The only shared mutable state of a run. Every access holds `cond` (a
    reentrant condition); every state transition notifies it, so a waiter
    holding `cond` across its check and `cond.wait()` never misses a change.
    """

    def __init__(self, instances: Iterable[JobInstance]):
        self.cond = threading.Condition()
        self._instances: Dict[InstanceKey, JobInstance] = {}
        self._by_template: Dict[str, List[InstanceKey]] = {}
        for inst in instances:
            self._instances[inst.key] = inst
            self._by_template.setdefault(inst.name, []).append(inst.key)

    # ---- reads ----
    def get(self, key: InstanceKey) -> JobInstance:
        with self.cond:
            return self._instances[key]

    def status(self, key: InstanceKey) -> Status:
        with self.cond:
            return self._instances[key].status

    def instances(self) -> List[JobInstance]:
        with self.cond:
            return list(self._instances.values())

    def template_statuses(self, name: str) -> List[Status]:
        with self.cond:
            return [self._instances[k].status for k in self._by_template.get(name, [])]

    def template_terminal(self, name: str) -> bool:
        return all(s.is_terminal for s in self.template_statuses(name))

    def template_status(self, name: str) -> Status:
        return rollup(self.template_statuses(name))

    def all_terminal(self) -> bool:
        with self.cond:
            return all(i.status.is_terminal for i in self._instances.values())

    # ---- writes (each caller only touches its own instance) ----
    def transition(
        self,
        key: InstanceKey,
        status: Status,
        *,
        reason: Optional[str] = None,
        expect: Optional[Iterable[Status]] = None,
    ) -> bool:
        """
        Move an instance to `status`. With `expect`, only if its current
        status is one of those (atomic compare-and-set). Returns whether the
        transition happened.
        """
        with self.cond:
            inst = self._instances[key]
            if expect is not None and inst.status not in set(expect):
                return False
            logger.debug("%s: %s -> %s", inst.label, inst.status.value, status.value)
            inst.status = status
            if reason is not None:
                inst.reason = reason
            self.cond.notify_all()
            return True

    def record_step(self, key: InstanceKey, result: StepResult) -> None:
        with self.cond:
            inst = self._instances[key]
            inst.steps.append(result)
            inst.outputs.update(result.exported)
            self.cond.notify_all()

    def cancel_pending(self, reason: str) -> List[JobInstance]:
        """Skip every instance that has not started yet."""
        cancelled: List[JobInstance] = []
        with self.cond:
            for inst in self._instances.values():
                if inst.status in (Status.PENDING, Status.READY):
                    logger.debug("%s: %s -> skipped (%s)", inst.label, inst.status.value, reason)
                    inst.status = Status.SKIPPED
                    inst.reason = reason
                    cancelled.append(inst)
            if cancelled:
                self.cond.notify_all()
        return cancelled
