"""Shared models and enums for repoverlay."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import ClassVar, Union


class LinkMode(str, Enum):
    """How an overlay file is grafted onto the tree."""

    SYMLINK = "symlink"
    COPY = "copy"


class EntryType(str, Enum):
    """Kinds of paths recorded for an overlay."""

    FILE = "file"
    DIRECTORY = "directory"


class ResolvedVia(str, Enum):
    """How an overlay was located inside a source repository."""

    DIRECT = "direct"
    UPSTREAM = "upstream"


def _short(commit: str) -> str:
    return commit[:12]


@dataclass(frozen=True, slots=True)
class LocalSource:
    """Overlay files living in a local directory."""

    tag: ClassVar[str] = "local"

    path: Path

    def display(self) -> str:
        return str(self.path)


@dataclass(frozen=True, slots=True)
class RemoteSource:
    """Overlay files from a single downloaded GitHub repository."""

    tag: ClassVar[str] = "remote"

    url: str
    owner: str
    repo: str
    ref: str
    commit: str
    subpath: str | None
    cached_at: datetime

    def display(self) -> str:
        return f"{self.url} ({self.ref}@{_short(self.commit)})"


@dataclass(frozen=True, slots=True)
class RepositorySource:
    """Overlay stored as ``org/repo/name`` inside a shared overlay repository."""

    tag: ClassVar[str] = "repository"

    org: str
    repo: str
    name: str
    commit: str
    resolved_via: ResolvedVia | None = None

    def display(self) -> str:
        via = " via upstream" if self.resolved_via is ResolvedVia.UPSTREAM else ""
        return f"{self.org}/{self.repo}/{self.name}{via} (@{_short(self.commit)})"

    @property
    def reference(self) -> str:
        return f"{self.org}/{self.repo}/{self.name}"


OverlaySource = Union[LocalSource, RemoteSource, RepositorySource]


@dataclass(frozen=True, slots=True)
class FileEntry:
    """A single grafted path, relative to the overlay root and to the tree."""

    source: str
    target: str
    link_mode: LinkMode
    entry_type: EntryType = EntryType.FILE

    def exclude_pattern(self) -> str:
        if self.entry_type is EntryType.DIRECTORY:
            return f"{self.target}/"
        return self.target


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class OverlayState:
    """Persisted record of one applied overlay."""

    name: str
    source: OverlaySource
    applied_at: datetime = field(default_factory=utcnow)
    files: list[FileEntry] = field(default_factory=list)

    def add_file(self, entry: FileEntry) -> None:
        self.files.append(entry)

    def targets(self) -> list[str]:
        return [entry.target for entry in self.files]

    def exclude_patterns(self) -> list[str]:
        return [entry.exclude_pattern() for entry in self.files]

    @property
    def link_mode(self) -> LinkMode:
        if self.files:
            return self.files[0].link_mode
        return LinkMode.SYMLINK


@dataclass(frozen=True, slots=True)
class GlobalMeta:
    """Per-tree metadata stored next to the overlay records."""

    version: int = 1


@dataclass(frozen=True, slots=True)
class UpstreamInfo:
    """Identity of the repository a fork was created from."""

    org: str
    repo: str
    remote_name: str = "upstream"


@dataclass(frozen=True, slots=True)
class Source:
    """A configured overlay repository, in priority order."""

    name: str
    url: str


@dataclass(frozen=True, slots=True)
class ResolvedOverlay:
    """Outcome of locating ``org/repo/name`` across the configured sources."""

    path: Path
    source: Source
    resolved_via: ResolvedVia
    commit: str


@dataclass(frozen=True, slots=True)
class AvailableOverlay:
    """An overlay directory found while browsing a source repository."""

    org: str
    repo: str
    name: str
    has_config: bool

    @property
    def reference(self) -> str:
        return f"{self.org}/{self.repo}/{self.name}"


@dataclass(frozen=True, slots=True)
class ApplyResult:
    """Result emitted when an overlay is applied."""

    name: str
    normalized_name: str
    source_root: Path
    entries: tuple[FileEntry, ...]


@dataclass(frozen=True, slots=True)
class RemoveResult:
    """Result emitted when an overlay is removed."""

    name: str
    removed: tuple[str, ...]
    missing: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class AddResult:
    """Result emitted when files are added to an applied overlay."""

    name: str
    added: tuple[FileEntry, ...]


class FileState(str, Enum):
    """On-disk state of a grafted path."""

    PRESENT = "present"
    MISSING = "missing"
    BROKEN = "broken"


@dataclass(frozen=True, slots=True)
class FileStatus:
    entry: FileEntry
    state: FileState


@dataclass(frozen=True, slots=True)
class OverlayStatus:
    """Status information for one applied overlay."""

    name: str
    normalized_name: str
    source: OverlaySource
    applied_at: datetime
    files: tuple[FileStatus, ...]

    @property
    def healthy(self) -> bool:
        return all(item.state is FileState.PRESENT for item in self.files)


@dataclass(frozen=True, slots=True)
class StatusReport:
    """Collection of overlay statuses for a tree."""

    overlays: tuple[OverlayStatus, ...]


class RestoreAction(str, Enum):
    """Outcome of restoring an overlay from its external backup."""

    RESTORED = "restored"
    PLANNED = "planned"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RestoreResult:
    name: str
    action: RestoreAction
    restored: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    details: str | None = None
