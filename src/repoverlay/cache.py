"""Local clones of GitHub repositories used as overlay sources."""

from __future__ import annotations

import logging
import shutil
import tomllib
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tomli_w import dump as toml_dump

from .errors import GitCommandError, SubpathNotFoundError
from .github import GitHubSource, RefKind
from .models import utcnow

if TYPE_CHECKING:
    from .git import Git

logger = logging.getLogger(__name__)

CACHE_META_FILENAME = ".repoverlay-cache-meta.toml"
GITHUB_DIR = "github"


@dataclass(frozen=True, slots=True)
class CachedOverlay:
    path: Path
    commit: str
    cached_at: datetime


@dataclass(frozen=True, slots=True)
class CachedRepository:
    owner: str
    repo: str
    path: Path
    meta: dict[str, Any] | None


class CacheManager:
    """Maintains shallow clones under ``<cache_dir>/github/<owner>/<repo>``."""

    def __init__(self, cache_dir: Path, git: "Git") -> None:
        self.cache_dir = cache_dir
        self.git = git

    @property
    def github_dir(self) -> Path:
        return self.cache_dir / GITHUB_DIR

    def repo_path(self, source: GitHubSource) -> Path:
        return self.github_dir / source.owner / source.repo

    def ensure_cached(self, source: GitHubSource, update: bool = False) -> CachedOverlay:
        """Make ``source`` available locally and return the overlay directory."""

        repo_path = self.repo_path(source)
        if (repo_path / ".git").exists():
            if update:
                self.git.fetch(repo_path)
            self._checkout(repo_path, source)
        else:
            self._clone(source, repo_path)

        overlay_path = repo_path
        if source.subpath:
            overlay_path = repo_path / source.subpath
            if not overlay_path.exists():
                raise SubpathNotFoundError(source.subpath, source.owner, source.repo)

        commit = self.git.rev_parse_head(repo_path)
        cached_at = utcnow()
        self._save_meta(repo_path, source, commit, cached_at)
        return CachedOverlay(path=overlay_path, commit=commit, cached_at=cached_at)

    def _clone(self, source: GitHubSource, repo_path: Path) -> None:
        branch = source.ref.value if source.ref.kind is RefKind.BRANCH else None
        logger.debug("cloning %s into %s", source.clone_url, repo_path)
        self.git.clone_shallow(source.clone_url, repo_path, branch=branch)
        if source.ref.kind is RefKind.COMMIT:
            self._checkout_commit(repo_path, source.ref.as_str())

    def _checkout(self, repo_path: Path, source: GitHubSource) -> None:
        if source.ref.kind is RefKind.DEFAULT:
            self.git.checkout(repo_path, "origin/HEAD")
        elif source.ref.kind is RefKind.BRANCH:
            remote_ref = f"origin/{source.ref.value}"
            if self.git.ref_exists(repo_path, remote_ref):
                self.git.checkout(repo_path, remote_ref)
            else:
                self.git.checkout(repo_path, source.ref.as_str())
        else:
            self._checkout_commit(repo_path, source.ref.as_str())

    def _checkout_commit(self, repo_path: Path, sha: str) -> None:
        if not self.git.ref_exists(repo_path, f"{sha}^{{commit}}"):
            self.git.unshallow(repo_path)
            self.git.fetch(repo_path, sha, depth=None)
        self.git.checkout(repo_path, sha)

    def _save_meta(self, repo_path: Path, source: GitHubSource, commit: str, fetched_at: datetime) -> None:
        meta = {
            "clone_url": source.clone_url,
            "last_fetched": fetched_at.isoformat(),
            "requested_ref": source.ref.as_str(),
            "commit": commit,
        }
        with (repo_path / CACHE_META_FILENAME).open("wb") as handle:
            toml_dump(meta, handle)

    def load_meta(self, repo_path: Path) -> dict[str, Any] | None:
        path = repo_path / CACHE_META_FILENAME
        if not path.exists():
            return None
        try:
            with path.open("rb") as handle:
                return tomllib.load(handle)
        except tomllib.TOMLDecodeError:
            logger.warning("Ignoring unreadable cache metadata %s", path)
            return None

    def check_for_updates(self, source: GitHubSource) -> str | None:
        """Return the newer remote commit for ``source``, or ``None``.

        Pinned commits never have updates.
        """

        repo_path = self.repo_path(source)
        if not (repo_path / ".git").exists() or source.ref.kind is RefKind.COMMIT:
            return None

        current = self.git.rev_parse_head(repo_path)
        remote_ref = "origin/HEAD" if source.ref.kind is RefKind.DEFAULT else f"origin/{source.ref.value}"
        try:
            self.git.fetch(repo_path)
            remote = self.git.rev_parse(repo_path, remote_ref)
        except GitCommandError as exc:
            logger.warning("Could not check %s/%s for updates: %s", source.owner, source.repo, exc.stderr)
            return None
        return remote if remote != current else None

    def list_cached(self) -> list[CachedRepository]:
        if not self.github_dir.is_dir():
            return []

        repos: list[CachedRepository] = []
        for owner_dir in sorted(self.github_dir.iterdir()):
            if not owner_dir.is_dir():
                continue
            for repo_dir in sorted(owner_dir.iterdir()):
                if repo_dir.is_dir():
                    repos.append(
                        CachedRepository(
                            owner=owner_dir.name,
                            repo=repo_dir.name,
                            path=repo_dir,
                            meta=self.load_meta(repo_dir),
                        )
                    )
        return repos

    def remove_cached(self, owner: str, repo: str) -> bool:
        path = self.github_dir / owner / repo
        if not path.exists():
            return False
        shutil.rmtree(path)
        owner_dir = path.parent
        if not any(owner_dir.iterdir()):
            owner_dir.rmdir()
        return True

    def clear(self) -> int:
        count = len(self.list_cached())
        if self.github_dir.exists():
            shutil.rmtree(self.github_dir)
        return count
