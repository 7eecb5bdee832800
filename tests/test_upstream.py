from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from repoverlay.git import Git
from repoverlay.models import UpstreamInfo
from repoverlay.upstream import detect_upstream, parse_remote_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://github.com/microsoft/FluidFramework.git", ("microsoft", "FluidFramework")),
        ("https://github.com/microsoft/FluidFramework", ("microsoft", "FluidFramework")),
        ("http://github.com/org/repo/", ("org", "repo")),
        ("git@github.com:microsoft/FluidFramework.git", ("microsoft", "FluidFramework")),
        ("https://gitlab.com/org/repo.git", None),
        ("https://github.com/only-owner", None),
        ("not a url", None),
    ],
)
def test_parse_remote_url(url: str, expected: tuple[str, str] | None) -> None:
    assert parse_remote_url(url) == expected


def test_detects_upstream_remote(git_tree: Path, fake_git) -> None:
    fake_git.remotes["upstream"] = "git@github.com:microsoft/FluidFramework.git"
    fake_git.remotes["origin"] = "https://github.com/someone/FluidFramework.git"

    assert detect_upstream(git_tree, fake_git) == UpstreamInfo(org="microsoft", repo="FluidFramework")


def test_origin_alone_is_not_an_upstream(git_tree: Path, fake_git) -> None:
    fake_git.remotes["origin"] = "https://github.com/someone/FluidFramework.git"

    assert detect_upstream(git_tree, fake_git) is None


def test_non_github_upstream_is_ignored(git_tree: Path, fake_git) -> None:
    fake_git.remotes["upstream"] = "https://gitlab.com/org/repo.git"

    assert detect_upstream(git_tree, fake_git) is None


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_detects_upstream_with_real_git(tmp_path: Path) -> None:
    subprocess.run(["git", "init", "--quiet", str(tmp_path)], check=True)
    subprocess.run(
        ["git", "-C", str(tmp_path), "remote", "add", "upstream", "https://github.com/microsoft/FluidFramework.git"],
        check=True,
    )

    info = detect_upstream(tmp_path, Git())

    assert info == UpstreamInfo(org="microsoft", repo="FluidFramework", remote_name="upstream")
    assert Git().remote_get_url(tmp_path, "origin") is None
