"""Filesystem helpers for repoverlay."""

from __future__ import annotations

import os
import shutil
from pathlib import Path, PurePosixPath
from typing import Iterator

from .errors import UnsafePathError
from .models import EntryType, LinkMode


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def exists_or_link(path: Path) -> bool:
    """Return ``True`` for existing paths and for dangling symlinks."""

    return path.exists() or path.is_symlink()


def link_entry(source: Path, destination: Path, mode: LinkMode) -> EntryType:
    """Graft ``source`` onto ``destination`` as a symlink or an independent copy."""

    entry_type = EntryType.DIRECTORY if source.is_dir() else EntryType.FILE
    ensure_parent(destination)

    if mode is LinkMode.SYMLINK:
        destination.symlink_to(source, target_is_directory=entry_type is EntryType.DIRECTORY)
    elif entry_type is EntryType.DIRECTORY:
        shutil.copytree(source, destination, symlinks=True, copy_function=shutil.copy2)
    else:
        shutil.copy2(source, destination)

    return entry_type


def symlink_points_to(source: Path, target: Path) -> bool:
    """Return ``True`` if ``source`` symlink resolves to ``target``."""

    if not source.is_symlink():
        return False
    current = Path(os.readlink(source))
    current_resolved = (source.parent / current).resolve(strict=False)
    target_resolved = target.resolve(strict=False)
    return current_resolved == target_resolved


def remove_path(path: Path) -> bool:
    """Delete ``path`` whether it is a file, directory, or symlink.

    Returns ``False`` when there was nothing to delete.
    """

    if not exists_or_link(path):
        return False
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    shutil.rmtree(path)
    return True


def prune_empty_parents(path: Path, stop: Path) -> None:
    """Remove now-empty directories above ``path``, never touching ``stop`` itself."""

    parent = path.parent
    while parent != stop and stop in parent.parents:
        try:
            next(parent.iterdir())
        except StopIteration:
            parent.rmdir()
            parent = parent.parent
            continue
        except FileNotFoundError:
            parent = parent.parent
            continue
        break


def safe_relative(raw: str | os.PathLike[str]) -> str:
    """Return ``raw`` as a normalized POSIX path that stays inside its root."""

    text = os.fspath(raw).replace("\\", "/")
    candidate = PurePosixPath(text)
    if candidate.is_absolute() or (len(text) > 1 and text[1] == ":"):
        raise UnsafePathError(f"Absolute paths are not allowed: '{raw}'")

    parts: list[str] = []
    for part in candidate.parts:
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise UnsafePathError(f"Path '{raw}' would escape the target directory")
            parts.pop()
            continue
        parts.append(part)
    if not parts:
        raise UnsafePathError(f"Path '{raw}' does not name a file")
    return "/".join(parts)


def iter_files(root: Path, *, skip_dirs: set[str], skip_files: set[str]) -> Iterator[str]:
    """Yield POSIX paths (relative to ``root``) of every regular file, sorted.

    ``skip_dirs`` prunes whole subtrees by relative path; ``skip_files`` drops
    individual relative paths.
    """

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        kept: list[str] = []
        for name in sorted(dirnames):
            rel = name if rel_dir == "." else f"{rel_dir}/{name}"
            if rel in skip_dirs or name == ".git":
                continue
            kept.append(name)
        dirnames[:] = kept

        for name in sorted(filenames):
            rel = name if rel_dir == "." else f"{rel_dir}/{name}"
            if rel in skip_files:
                continue
            if (current / name).is_file():
                yield rel
