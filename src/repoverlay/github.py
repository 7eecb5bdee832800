"""GitHub repository URLs used as overlay sources."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from urllib.parse import urlparse

from .errors import SourceUnresolvableError

_COMMIT_SHA = re.compile(r"[0-9a-fA-F]{40}")
_GITHUB_HOST = "github.com"


class RefKind(str, Enum):
    DEFAULT = "default"
    BRANCH = "branch"
    COMMIT = "commit"


@dataclass(frozen=True, slots=True)
class GitRef:
    """A branch, tag, commit or the remote's default branch."""

    kind: RefKind
    value: str | None = None

    @classmethod
    def parse(cls, text: str) -> "GitRef":
        if _COMMIT_SHA.fullmatch(text):
            return cls(RefKind.COMMIT, text)
        return cls(RefKind.BRANCH, text)

    @classmethod
    def default(cls) -> "GitRef":
        return cls(RefKind.DEFAULT)

    def as_str(self) -> str:
        return self.value if self.value is not None else "HEAD"

    def __str__(self) -> str:
        if self.kind is RefKind.DEFAULT:
            return "(default branch)"
        if self.kind is RefKind.COMMIT:
            return f"commit:{self.as_str()[:12]}"
        return f"branch:{self.value}"


@dataclass(frozen=True, slots=True)
class GitHubSource:
    """``https://github.com/<owner>/<repo>[/tree/<ref>[/<subpath>]]``."""

    owner: str
    repo: str
    ref: GitRef
    subpath: str | None = None

    @staticmethod
    def is_github_url(text: str) -> bool:
        return text.startswith(("https://github.com/", "http://github.com/"))

    @classmethod
    def parse(cls, url: str) -> "GitHubSource":
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or parsed.hostname != _GITHUB_HOST:
            raise SourceUnresolvableError(f"Not a GitHub URL: {url}")

        segments = parsed.path.strip("/").split("/")
        if len(segments) < 2 or not segments[0] or not segments[1]:
            raise SourceUnresolvableError(f"Invalid GitHub URL - missing owner/repo: {url}")

        owner = segments[0]
        repo = segments[1].removesuffix(".git")
        ref = GitRef.default()
        subpath = None

        if len(segments) > 2:
            if segments[2] == "blob":
                raise SourceUnresolvableError(
                    "Invalid GitHub URL: use /tree/ URLs for directories, not /blob/ URLs for files"
                )
            if segments[2] == "tree":
                if len(segments) < 4 or not segments[3]:
                    raise SourceUnresolvableError(f"Missing ref after /tree/ in URL: {url}")
                ref = GitRef.parse(segments[3])
                remainder = "/".join(part for part in segments[4:] if part)
                subpath = remainder or None

        return cls(owner=owner, repo=repo, ref=ref, subpath=subpath)

    def with_ref(self, ref: str | None) -> "GitHubSource":
        if ref is None:
            return self
        return replace(self, ref=GitRef.parse(ref))

    @property
    def clone_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}.git"

    def display_url(self) -> str:
        base = f"https://github.com/{self.owner}/{self.repo}"
        if self.ref.kind is RefKind.DEFAULT and self.subpath is None:
            return base
        url = f"{base}/tree/{self.ref.as_str()}"
        return f"{url}/{self.subpath}" if self.subpath else url
