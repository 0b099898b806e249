from __future__ import annotations
import os


def _flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(name: str) -> int | None:
    raw = os.environ.get(name)
    return int(raw) if raw else None


WORKFLOW = os.environ.get("CIPLAN_WORKFLOW")
MAX_WORKERS = _int("CIPLAN_MAX_WORKERS")
FAIL_FAST = _flag("CIPLAN_FAIL_FAST", False)

# run trigger inputs; the CLI falls back to the local git checkout
REF = os.environ.get("CIPLAN_REF") or os.environ.get("GITHUB_REF")
SHA = os.environ.get("CIPLAN_SHA") or os.environ.get("GITHUB_SHA")
EVENT = os.environ.get("CIPLAN_EVENT") or os.environ.get("GITHUB_EVENT_NAME") or "push"
