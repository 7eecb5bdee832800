from __future__ import annotations

import shutil
from pathlib import Path

import pytest

FAKE_COMMIT = "0123456789abcdef0123456789abcdef01234567"


class FakeGit:
    """Stands in for :class:`repoverlay.git.Git` without spawning processes."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.remotes: dict[str, str] = {}
        self.templates: dict[str, Path] = {}
        self.head = FAKE_COMMIT
        self.remote_heads: dict[str, str] = {}
        self.staged = True

    def clone_shallow(self, url: str, destination: Path, *, branch: str | None = None) -> None:
        self.calls.append(("clone", url, str(destination), branch or ""))
        template = self.templates.get(url)
        if template is not None:
            shutil.copytree(template, destination)
        (destination / ".git").mkdir(parents=True, exist_ok=True)

    def fetch(self, repo: Path, *refs: str, depth: int | None = 1) -> None:
        self.calls.append(("fetch", str(repo), *refs))

    def unshallow(self, repo: Path) -> None:
        self.calls.append(("unshallow", str(repo)))

    def checkout(self, repo: Path, ref: str) -> None:
        self.calls.append(("checkout", str(repo), ref))

    def pull(self, repo: Path) -> None:
        self.calls.append(("pull", str(repo)))

    def ref_exists(self, repo: Path, ref: str) -> bool:
        return ref in self.remote_heads

    def rev_parse(self, repo: Path, ref: str) -> str:
        return self.remote_heads.get(ref, self.head)

    def rev_parse_head(self, repo: Path) -> str:
        return self.head

    def remote_get_url(self, repo: Path, remote: str) -> str | None:
        return self.remotes.get(remote)

    def add_all(self, repo: Path) -> None:
        self.calls.append(("add", str(repo)))

    def has_staged_changes(self, repo: Path) -> bool:
        return self.staged

    def commit(self, repo: Path, message: str) -> bool:
        self.calls.append(("commit", str(repo), message))
        return True

    def push(self, repo: Path) -> None:
        self.calls.append(("push", str(repo)))


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(home / ".local" / "share"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(home / ".cache"))
    return home


@pytest.fixture
def git_tree(tmp_path: Path) -> Path:
    tree = tmp_path / "repo"
    (tree / ".git" / "info").mkdir(parents=True)
    return tree.resolve()


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()

