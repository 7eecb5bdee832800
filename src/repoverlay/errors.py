"""Exception hierarchy for repoverlay."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable


class RepoverlayError(RuntimeError):
    """Raised when repoverlay encounters an unrecoverable state."""


class DuplicateOverlayError(RepoverlayError):
    def __init__(self, name: str, normalized: str) -> None:
        self.name = name
        self.normalized = normalized
        super().__init__(f"Overlay '{name}' is already applied. Run 'repoverlay remove {normalized}' first.")


class ConflictError(RepoverlayError):
    """Base class for target path conflicts."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(message)


class OwnedByOverlayError(ConflictError):
    def __init__(self, path: str, owner: str) -> None:
        self.owner = owner
        super().__init__(
            path,
            f"Conflict: '{path}' is already managed by overlay '{owner}'. "
            "Remove that overlay first or use different file mappings.",
        )


class FileExistsConflictError(ConflictError):
    def __init__(self, path: str) -> None:
        super().__init__(
            path,
            f"Conflict: target path already exists: {path}. "
            "Remove it first or add a mapping to rename the overlay file.",
        )


class NoFilesFoundError(RepoverlayError):
    def __init__(self, source: Path) -> None:
        self.source = source
        super().__init__(f"No files found in overlay source: {source}")


class OverlayNotFoundError(RepoverlayError):
    def __init__(self, name: str, available: Iterable[str] = (), *, checked: Iterable[str] = ()) -> None:
        self.name = name
        self.available = tuple(available)
        self.checked = tuple(checked)
        message = f"Overlay '{name}' not found"
        if self.available:
            message += f". Available overlays: {', '.join(self.available)}"
        if self.checked:
            message += "\nChecked:\n" + "\n".join(f"  - {path}" for path in self.checked)
        super().__init__(message)


class UnknownSourceError(RepoverlayError):
    def __init__(self, name: str, available: Iterable[str]) -> None:
        self.name = name
        self.available = tuple(available)
        listing = ", ".join(self.available) or "(none configured)"
        super().__init__(f"Unknown source: {name}\nAvailable sources: {listing}")


class SubpathNotFoundError(RepoverlayError):
    def __init__(self, subpath: str, owner: str, repo: str) -> None:
        self.subpath = subpath
        super().__init__(f"Subpath '{subpath}' not found in repository {owner}/{repo}")


class DecodeError(RepoverlayError):
    """Raised when a persisted overlay record cannot be decoded."""


class NotAVersionControlTreeError(RepoverlayError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Target is not a git repository: {path}")


class SourceUnresolvableError(RepoverlayError):
    """Raised when a source string is not a usable path, URL, or reference."""


class UnsafePathError(RepoverlayError):
    """Raised when a mapped target would land outside the tree."""


class GitCommandError(RepoverlayError):
    def __init__(self, command: Iterable[str], stderr: str) -> None:
        self.command = tuple(command)
        self.stderr = stderr.strip()
        super().__init__(f"git command failed: {' '.join(self.command)}\n{self.stderr}")
