"""Priority-ordered overlay lookup across configured source repositories."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from .config import OVERLAY_CONFIG_FILENAME
from .errors import RepoverlayError, UnknownSourceError
from .models import AvailableOverlay, ResolvedOverlay, ResolvedVia, Source, UpstreamInfo

if TYPE_CHECKING:
    from .config import Config
    from .git import Git

logger = logging.getLogger(__name__)


def parse_overlay_reference(text: str) -> tuple[str, str, str] | None:
    """Split ``org/repo/name`` into its parts, or return ``None``.

    Paths (``./x/y/z``, ``/x/y/z``) and URLs are never references.
    """

    if text.startswith((".", "/")) or "://" in text:
        return None
    parts = text.split("/")
    if len(parts) != 3 or any(not part for part in parts):
        return None
    return parts[0], parts[1], parts[2]


def _is_visible_dir(path: Path) -> bool:
    return path.is_dir() and not path.name.startswith(".")


class SourceRepository:
    """A local clone of one configured overlay repository."""

    def __init__(self, source: Source, clone_location: Path, git: "Git") -> None:
        self.source = source
        self.clone_location = clone_location
        self.git = git

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def url(self) -> str:
        return self.source.url

    def needs_clone(self) -> bool:
        return not (self.clone_location / ".git").exists()

    def ensure_cloned(self) -> None:
        if self.needs_clone():
            logger.debug("cloning source '%s' from %s", self.name, self.url)
            self.git.clone_shallow(self.url, self.clone_location)

    def pull(self) -> None:
        if self.needs_clone():
            raise RepoverlayError(f"Source '{self.name}' is not cloned yet. Run 'repoverlay source pull' first.")
        self.git.pull(self.clone_location)

    def current_commit(self) -> str:
        return self.git.rev_parse_head(self.clone_location)

    def overlay_path(self, org: str, repo: str, name: str) -> Path:
        return self.clone_location / org / repo / name

    def find_overlay(
        self,
        org: str,
        repo: str,
        name: str,
        upstream: UpstreamInfo | None = None,
    ) -> tuple[Path, ResolvedVia] | None:
        """Return the direct match, else the upstream match, inside this clone."""

        direct = self.overlay_path(org, repo, name)
        if direct.is_dir():
            return direct, ResolvedVia.DIRECT
        if upstream is not None:
            fallback = self.overlay_path(upstream.org, upstream.repo, name)
            if fallback.is_dir():
                return fallback, ResolvedVia.UPSTREAM
        return None

    def list_overlays(self) -> list[AvailableOverlay]:
        if self.needs_clone():
            return []

        overlays: list[AvailableOverlay] = []
        for org_dir in filter(_is_visible_dir, self.clone_location.iterdir()):
            for repo_dir in filter(_is_visible_dir, org_dir.iterdir()):
                for overlay_dir in filter(_is_visible_dir, repo_dir.iterdir()):
                    overlays.append(
                        AvailableOverlay(
                            org=org_dir.name,
                            repo=repo_dir.name,
                            name=overlay_dir.name,
                            has_config=(overlay_dir / OVERLAY_CONFIG_FILENAME).exists(),
                        )
                    )
        overlays.sort(key=lambda item: (item.org, item.repo, item.name))
        return overlays

    def stage_overlay(self, org: str, repo: str, name: str, source_dir: Path) -> Path:
        """Copy ``source_dir`` into the clone as ``org/repo/name`` and stage it."""

        if not source_dir.is_dir():
            raise RepoverlayError(f"Source is not a directory: {source_dir}")
        destination = self.overlay_path(org, repo, name)
        shutil.copytree(source_dir, destination, ignore=shutil.ignore_patterns(".git"), dirs_exist_ok=True)
        self.git.add_all(self.clone_location)
        return destination

    def has_staged_changes(self) -> bool:
        return self.git.has_staged_changes(self.clone_location)

    def commit(self, message: str) -> bool:
        self.git.add_all(self.clone_location)
        if not self.has_staged_changes():
            logger.debug("nothing to commit in source '%s'", self.name)
            return False
        return self.git.commit(self.clone_location, message)

    def push(self) -> None:
        self.git.push(self.clone_location)


class SourceManager:
    """Resolves overlays across sources in their configured priority order."""

    def __init__(self, repositories: Iterable[SourceRepository]) -> None:
        self.repositories = list(repositories)

    @classmethod
    def from_config(cls, config: "Config", git: "Git") -> "SourceManager":
        base = config.settings.sources_dir
        return cls(SourceRepository(source, base / source.name, git) for source in config.sources)

    def source_names(self) -> list[str]:
        return [repository.name for repository in self.repositories]

    def get(self, name: str) -> SourceRepository:
        for repository in self.repositories:
            if repository.name == name:
                return repository
        raise UnknownSourceError(name, self.source_names())

    def candidates(self, source_filter: str | None = None) -> list[SourceRepository]:
        if source_filter is not None:
            return [self.get(source_filter)]
        return list(self.repositories)

    def ensure_all_cloned(self, source_filter: str | None = None) -> None:
        for repository in self.candidates(source_filter):
            repository.ensure_cloned()

    def pull_all(self, source_filter: str | None = None) -> list[str]:
        pulled: list[str] = []
        for repository in self.candidates(source_filter):
            if repository.needs_clone():
                repository.ensure_cloned()
            else:
                repository.pull()
            pulled.append(repository.name)
        return pulled

    def resolve(
        self,
        org: str,
        repo: str,
        name: str,
        upstream: UpstreamInfo | None = None,
        source_filter: str | None = None,
    ) -> ResolvedOverlay | None:
        """Return the first match in priority order, or ``None``.

        Sources without a local clone are skipped; resolving never clones.
        """

        for repository in self.candidates(source_filter):
            if repository.needs_clone():
                logger.debug("skipping uncloned source '%s'", repository.name)
                continue
            found = repository.find_overlay(org, repo, name, upstream)
            if found is None:
                continue
            path, resolved_via = found
            logger.debug("resolved %s/%s/%s in '%s' (%s)", org, repo, name, repository.name, resolved_via.value)
            return ResolvedOverlay(
                path=path,
                source=repository.source,
                resolved_via=resolved_via,
                commit=repository.current_commit(),
            )
        return None

    def find_all_matches(
        self,
        org: str,
        repo: str,
        name: str,
        upstream: UpstreamInfo | None = None,
    ) -> list[tuple[Source, ResolvedVia]]:
        matches: list[tuple[Source, ResolvedVia]] = []
        for repository in self.repositories:
            if repository.needs_clone():
                continue
            found = repository.find_overlay(org, repo, name, upstream)
            if found is not None:
                matches.append((repository.source, found[1]))
        return matches

    def list_all_overlays(self) -> list[tuple[Source, AvailableOverlay]]:
        return [
            (repository.source, overlay)
            for repository in self.repositories
            for overlay in repository.list_overlays()
        ]

    def candidate_paths(
        self,
        org: str,
        repo: str,
        name: str,
        upstream: UpstreamInfo | None = None,
        source_filter: str | None = None,
    ) -> list[Path]:
        """Every path :meth:`resolve` would look at, in order."""

        paths: list[Path] = []
        for repository in self.candidates(source_filter):
            paths.append(repository.overlay_path(org, repo, name))
            if upstream is not None:
                paths.append(repository.overlay_path(upstream.org, upstream.repo, name))
        return paths
