"""Thin wrapper around the ``git`` command line."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from .errors import GitCommandError, SourceUnresolvableError

logger = logging.getLogger(__name__)

_MISSING_MARKERS = ("not found", "could not find remote branch")


class Git:
    """Runs blocking ``git`` subprocesses inside a working directory."""

    def __init__(self, executable: str = "git") -> None:
        self.executable = executable

    def _run(self, repo: Path | None, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = [self.executable, *args]
        if repo is not None:
            command[1:1] = ["-C", str(repo)]
        logger.debug("git: %s", " ".join(command))
        result = subprocess.run(command, capture_output=True, text=True)
        if check and result.returncode != 0:
            raise GitCommandError(command, result.stderr)
        return result

    def _output(self, repo: Path | None, *args: str) -> str:
        return self._run(repo, *args).stdout.strip()

    def clone_shallow(self, url: str, destination: Path, *, branch: str | None = None) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        args = ["clone", "--depth", "1"]
        if branch:
            args += ["--branch", branch]
        args += [url, str(destination)]

        result = self._run(None, *args, check=False)
        if result.returncode == 0:
            return
        stderr = result.stderr.strip()
        if any(marker in stderr for marker in _MISSING_MARKERS):
            what = f"Branch or tag '{branch}'" if branch and "remote branch" in stderr else "Repository"
            raise SourceUnresolvableError(f"{what} not found: {url}\n{stderr}")
        raise GitCommandError([self.executable, *args], stderr)

    def fetch(self, repo: Path, *refs: str, depth: int | None = 1) -> None:
        args = ["fetch"]
        if depth is not None:
            args += ["--depth", str(depth)]
        self._run(repo, *args, "origin", *refs)

    def unshallow(self, repo: Path) -> None:
        # Already-complete clones reject --unshallow; that is not an error here.
        self._run(repo, "fetch", "--unshallow", "origin", check=False)

    def checkout(self, repo: Path, ref: str) -> None:
        self._run(repo, "checkout", "--quiet", ref)

    def pull(self, repo: Path) -> None:
        self._run(repo, "pull", "--ff-only")

    def ref_exists(self, repo: Path, ref: str) -> bool:
        return self._run(repo, "rev-parse", "--verify", "--quiet", ref, check=False).returncode == 0

    def rev_parse(self, repo: Path, ref: str) -> str:
        return self._output(repo, "rev-parse", ref)

    def rev_parse_head(self, repo: Path) -> str:
        return self.rev_parse(repo, "HEAD")

    def remote_get_url(self, repo: Path, remote: str) -> str | None:
        result = self._run(repo, "remote", "get-url", remote, check=False)
        url = result.stdout.strip()
        if result.returncode != 0 or not url:
            return None
        return url

    def add_all(self, repo: Path) -> None:
        self._run(repo, "add", "--all", ".")

    def has_staged_changes(self, repo: Path) -> bool:
        return self._run(repo, "diff", "--cached", "--quiet", check=False).returncode != 0

    def commit(self, repo: Path, message: str) -> bool:
        """Commit staged changes; returns ``False`` when there was nothing to commit."""

        result = self._run(repo, "commit", "-m", message, check=False)
        if result.returncode == 0:
            return True
        output = result.stdout + result.stderr
        if "nothing to commit" in output:
            return False
        raise GitCommandError([self.executable, "commit", "-m", message], result.stderr or result.stdout)

    def push(self, repo: Path) -> None:
        self._run(repo, "push")
