"""Turn user-supplied source strings into overlay directories on disk."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .cache import CacheManager
from .config import Config
from .errors import OverlayNotFoundError, RepoverlayError, SourceUnresolvableError
from .git import Git
from .github import GitHubSource
from .models import LocalSource, OverlaySource, RemoteSource, RepositorySource, ResolvedVia
from .sources import SourceManager, SourceRepository, parse_overlay_reference
from .upstream import detect_upstream

logger = logging.getLogger(__name__)

_FORMATS_HINT = (
    "Valid formats:\n"
    "  - Local path: ./my-overlay\n"
    "  - GitHub URL: https://github.com/owner/repo\n"
    "  - Overlay repository reference: org/repo/name"
)


@dataclass(frozen=True, slots=True)
class ResolvedSource:
    path: Path
    source_info: OverlaySource


def resolve_source(
    text: str,
    target: Path,
    config: Config,
    *,
    ref: str | None = None,
    update: bool = False,
    git: Git | None = None,
    source_filter: str | None = None,
) -> ResolvedSource:
    """Resolve ``text`` as a GitHub URL, a local path or an ``org/repo/name`` reference."""

    git = git or Git()
    logger.debug("resolve_source: %s (ref=%s, update=%s)", text, ref, update)

    if GitHubSource.is_github_url(text):
        source = GitHubSource.parse(text).with_ref(ref)
        cached = CacheManager(config.settings.cache_dir, git).ensure_cached(source, update)
        return ResolvedSource(
            path=cached.path,
            source_info=RemoteSource(
                url=text,
                owner=source.owner,
                repo=source.repo,
                ref=source.ref.as_str(),
                commit=cached.commit,
                subpath=source.subpath,
                cached_at=cached.cached_at,
            ),
        )

    path = Path(text).expanduser()
    if path.exists():
        canonical = path.resolve()
        if not canonical.is_dir():
            raise SourceUnresolvableError(f"Overlay source is not a directory: {canonical}")
        return ResolvedSource(path=canonical, source_info=LocalSource(path=canonical))

    reference = parse_overlay_reference(text)
    if reference is None:
        raise SourceUnresolvableError(f"Overlay source not found: {text}\n\n{_FORMATS_HINT}")

    if not config.sources:
        raise SourceUnresolvableError(
            "No overlay sources are configured.\n"
            "Add one with 'repoverlay source add <name> <url>', or use a local path or GitHub URL instead."
        )

    org, repo, name = reference
    manager = SourceManager.from_config(config, git)
    manager.ensure_all_cloned(source_filter)
    if update:
        manager.pull_all(source_filter)

    upstream = detect_upstream(target, git)
    resolved = manager.resolve(org, repo, name, upstream, source_filter)
    if resolved is None:
        checked = manager.candidate_paths(org, repo, name, upstream, source_filter)
        raise OverlayNotFoundError(text, checked=[str(candidate) for candidate in checked])

    if resolved.resolved_via is ResolvedVia.UPSTREAM and upstream is not None:
        org, repo = upstream.org, upstream.repo

    return ResolvedSource(
        path=resolved.path,
        source_info=RepositorySource(
            org=org,
            repo=repo,
            name=name,
            commit=resolved.commit,
            resolved_via=resolved.resolved_via,
        ),
    )


class OverlayLocator:
    """Find the files of a previously recorded overlay source."""

    def __init__(self, config: Config, git: Git | None = None, *, fetch: bool = True) -> None:
        self.config = config
        self.git = git or Git()
        self.fetch = fetch

    def __call__(self, source: OverlaySource) -> Path | None:
        if isinstance(source, LocalSource):
            return source.path if source.path.is_dir() else None
        if isinstance(source, RemoteSource):
            return self._locate_remote(source)
        return self._locate_repository(source)

    def _locate_remote(self, source: RemoteSource) -> Path | None:
        github = GitHubSource.parse(source.url).with_ref(source.ref if source.ref != "HEAD" else None)
        cache = CacheManager(self.config.settings.cache_dir, self.git)
        repo_path = cache.repo_path(github)
        path = repo_path / source.subpath if source.subpath else repo_path
        if path.is_dir():
            return path
        if not self.fetch:
            return None
        try:
            return cache.ensure_cached(github).path
        except RepoverlayError as exc:
            logger.warning("Could not fetch %s: %s", source.url, exc)
            return None

    def _locate_repository(self, source: RepositorySource) -> Path | None:
        repository = self.repository_for(source)
        if repository is None:
            return None
        return repository.overlay_path(source.org, source.repo, source.name)

    def repository_for(self, source: RepositorySource) -> SourceRepository | None:
        """Return the source clone that holds ``source``, if any."""

        manager = SourceManager.from_config(self.config, self.git)
        for repository in manager.repositories:
            if not repository.needs_clone() and repository.find_overlay(source.org, source.repo, source.name):
                return repository
        return None
