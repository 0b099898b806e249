from __future__ import annotations

import shutil
import subprocess

import pytest

from ciplan.git_facts.git import current_ref, head_sha

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _run(cwd, *args):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def repo(tmp_path):
    _run(tmp_path, "init", "-q")
    _run(tmp_path, "checkout", "-q", "-b", "master")
    (tmp_path / "README").write_text("x\n")
    _run(tmp_path, "add", "README")
    _run(
        tmp_path,
        "-c", "user.name=ci", "-c", "user.email=ci@example.com", "-c", "commit.gpgsign=false",
        "commit", "-q", "-m", "init",
    )
    return str(tmp_path)


def test_branch_ref_and_sha(repo):
    assert current_ref(repo) == "refs/heads/master"
    assert len(head_sha(repo)) == 40


def test_exact_tag_wins(repo):
    _run(repo, "tag", "v1.0.0")
    assert current_ref(repo) == "refs/tags/v1.0.0"


def test_detached_head_without_tag_is_sha(repo):
    sha = head_sha(repo)
    _run(repo, "checkout", "-q", "--detach")
    assert current_ref(repo) == sha


def test_outside_a_repository(tmp_path):
    with pytest.raises(subprocess.CalledProcessError):
        head_sha(str(tmp_path))
