"""Tests for the git wrapper against a real ``git`` binary."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from repoverlay.errors import GitCommandError, SourceUnresolvableError
from repoverlay.git import Git

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", "-C", str(repo), *args], capture_output=True, text=True, check=True)
    return result.stdout.strip()


@pytest.fixture(autouse=True)
def isolated_git(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    global_config = tmp_path / "gitconfig"
    global_config.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for variable in ("GIT_AUTHOR_NAME", "GIT_COMMITTER_NAME"):
        monkeypatch.setenv(variable, "repoverlay tests")
    for variable in ("GIT_AUTHOR_EMAIL", "GIT_COMMITTER_EMAIL"):
        monkeypatch.setenv(variable, "tests@repoverlay.invalid")


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    repo = tmp_path / "origin"
    repo.mkdir()
    _git(repo, "init", "--quiet", "-b", "main")
    (repo / "org" / "repo" / "ai").mkdir(parents=True)
    (repo / "org" / "repo" / "ai" / "CLAUDE.md").write_text("# ai\n")
    _git(repo, "add", "-A")
    _git(repo, "commit", "--quiet", "-m", "init")
    return repo


def test_clone_and_rev_parse(tmp_path: Path, origin: Path) -> None:
    git = Git()
    clone = tmp_path / "nested" / "clone"

    git.clone_shallow(origin.as_uri(), clone, branch="main")

    assert (clone / "org" / "repo" / "ai" / "CLAUDE.md").exists()
    assert git.rev_parse_head(clone) == _git(origin, "rev-parse", "HEAD")
    assert git.ref_exists(clone, "origin/main")
    assert not git.ref_exists(clone, "origin/nope")
    assert git.remote_get_url(clone, "origin") == origin.as_uri()


def test_clone_of_missing_branch_is_unresolvable(tmp_path: Path, origin: Path) -> None:
    with pytest.raises(SourceUnresolvableError, match="nope"):
        Git().clone_shallow(origin.as_uri(), tmp_path / "clone", branch="nope")


def test_commit_reports_whether_anything_changed(tmp_path: Path, origin: Path) -> None:
    git = Git()
    clone = tmp_path / "clone"
    git.clone_shallow(origin.as_uri(), clone)

    git.add_all(clone)
    assert not git.has_staged_changes(clone)
    assert git.commit(clone, "empty") is False

    (clone / "org" / "repo" / "ai" / "AGENTS.md").write_text("agents\n")
    git.add_all(clone)
    assert git.has_staged_changes(clone)
    assert git.commit(clone, "Add agents") is True
    assert _git(clone, "log", "-1", "--format=%s") == "Add agents"


def test_failed_commands_raise_with_stderr(tmp_path: Path, origin: Path) -> None:
    with pytest.raises(GitCommandError) as excinfo:
        Git().checkout(origin, "does-not-exist")

    assert excinfo.value.command[:3] == ("git", "-C", str(origin))
    assert excinfo.value.stderr
