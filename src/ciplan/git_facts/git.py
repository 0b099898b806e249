# git.py
# Small wrapper around the Git CLI, used to derive a run's trigger inputs
# (ref and commit) from the local checkout when none are given.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Full SHA of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str] = None) -> str:
    """
    Fully qualified ref for HEAD.

    A tag pointing exactly at HEAD wins (refs/tags/<tag>), then the checked
    out branch (refs/heads/<branch>). A detached HEAD with no tag yields the
    commit SHA.
    """
    try:
        tag = _git(["describe", "--tags", "--exact-match", "HEAD"], cwd=cwd)
        if tag:
            return f"refs/tags/{tag}"
    except subprocess.CalledProcessError:
        pass

    try:
        return _git(["symbolic-ref", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)
