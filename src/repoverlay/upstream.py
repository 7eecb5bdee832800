"""Detect the repository a fork was created from."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from .models import UpstreamInfo

if TYPE_CHECKING:
    from .git import Git

logger = logging.getLogger(__name__)

UPSTREAM_REMOTE = "upstream"

_HTTPS_PREFIXES = ("https://github.com/", "http://github.com/")
_SSH_PREFIX = "git@github.com:"


def parse_remote_url(url: str) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` for a GitHub HTTPS or SSH remote URL."""

    url = url.strip()
    if url.startswith(_SSH_PREFIX):
        path = url[len(_SSH_PREFIX) :]
    else:
        for prefix in _HTTPS_PREFIXES:
            if url.startswith(prefix):
                path = url[len(prefix) :]
                break
        else:
            return None

    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = path.split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def detect_upstream(tree: Path, git: "Git") -> UpstreamInfo | None:
    """Return the GitHub identity of the ``upstream`` remote of ``tree``, if any."""

    url = git.remote_get_url(tree, UPSTREAM_REMOTE)
    if url is None:
        logger.debug("no '%s' remote in %s", UPSTREAM_REMOTE, tree)
        return None

    parsed = parse_remote_url(url)
    if parsed is None:
        logger.debug("upstream remote '%s' is not a GitHub URL", url)
        return None

    org, repo = parsed
    return UpstreamInfo(org=org, repo=repo, remote_name=UPSTREAM_REMOTE)
