"""High level orchestration for repoverlay operations."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from .backup import BackupStore
from .cache import CACHE_META_FILENAME
from .config import OVERLAY_CONFIG_FILENAME, OverlayConfig, load_overlay_config
from .errors import (
    ConflictError,
    DuplicateOverlayError,
    FileExistsConflictError,
    NoFilesFoundError,
    NotAVersionControlTreeError,
    OverlayNotFoundError,
    OwnedByOverlayError,
    RepoverlayError,
    UnsafePathError,
)
from .exclude import update_exclude
from .filesystem import (
    ensure_parent,
    exists_or_link,
    iter_files,
    link_entry,
    prune_empty_parents,
    remove_path,
    safe_relative,
    symlink_points_to,
)
from .models import (
    AddResult,
    ApplyResult,
    EntryType,
    FileEntry,
    FileState,
    FileStatus,
    LinkMode,
    OverlaySource,
    OverlayState,
    OverlayStatus,
    RemoveResult,
    RestoreAction,
    RestoreResult,
    StatusReport,
)
from .state import (
    STATE_DIR,
    build_ownership_index,
    delete_overlay_state,
    ensure_global_meta,
    is_applied,
    list_applied_overlays,
    load_overlay_state,
    normalize_overlay_name,
    remove_state_dir,
    save_overlay_state,
)

logger = logging.getLogger(__name__)

Locator = Callable[[OverlaySource], "Path | None"]

_RESERVED_TOP_LEVEL = {".git", STATE_DIR}
_SKIPPED_SOURCE_FILES = {OVERLAY_CONFIG_FILENAME, CACHE_META_FILENAME}


class OverlayManager:
    """Applies, removes and inspects overlays for a single git working tree."""

    def __init__(self, target: Path, *, backup: BackupStore | None = None) -> None:
        target = Path(target).expanduser()
        if not target.is_dir():
            raise RepoverlayError(f"Target directory does not exist: {target}")
        self.target = target.resolve()
        if not (self.target / ".git").exists():
            raise NotAVersionControlTreeError(self.target)
        self.backup = backup

    # ------------------------------------------------------------------
    # Apply

    def apply(
        self,
        source_root: Path,
        source_info: OverlaySource,
        *,
        name: str | None = None,
        link_mode: LinkMode = LinkMode.SYMLINK,
        path_mapping: Mapping[str, str] | None = None,
    ) -> ApplyResult:
        """Graft every file of ``source_root`` onto the tree and record it."""

        source_root = Path(source_root).resolve()
        if not source_root.is_dir():
            raise RepoverlayError(f"Overlay source is not a directory: {source_root}")

        overlay_config = load_overlay_config(source_root)
        display_name = name or overlay_config.overlay.name or source_root.name
        normalized = normalize_overlay_name(display_name)
        logger.debug("apply: %s (%s) from %s", display_name, normalized, source_root)

        if is_applied(self.target, normalized):
            raise DuplicateOverlayError(display_name, normalized)

        mappings = dict(path_mapping) if path_mapping is not None else dict(overlay_config.mappings)
        plan = self._plan(source_root, overlay_config, mappings, link_mode)
        if not plan:
            raise NoFilesFoundError(source_root)

        self._check_conflicts(plan)

        overlay_state = OverlayState(name=display_name, source=source_info)
        for entry in plan:
            link_entry(source_root / entry.source, self.target / entry.target, link_mode)
            overlay_state.add_file(entry)

        self._persist(overlay_state, normalized)
        return ApplyResult(
            name=display_name,
            normalized_name=normalized,
            source_root=source_root,
            entries=tuple(overlay_state.files),
        )

    def reapply(self, name: str, source_root: Path, source_info: OverlaySource) -> ApplyResult:
        """Remove ``name`` and apply it again from ``source_root`` with the same link mode."""

        previous = load_overlay_state(self.target, name)
        self.remove(name)
        return self.apply(source_root, source_info, name=previous.name, link_mode=previous.link_mode)

    # ------------------------------------------------------------------
    # Remove

    def remove(self, name: str | None = None, *, remove_all: bool = False) -> list[RemoveResult]:
        applied = list_applied_overlays(self.target)
        if remove_all:
            names = applied
        elif name is None:
            raise RepoverlayError("Specify an overlay name or use --all")
        else:
            normalized = normalize_overlay_name(name)
            if normalized not in applied:
                raise OverlayNotFoundError(name, applied)
            names = [normalized]

        results = [self._remove_one(normalized) for normalized in names]

        if not list_applied_overlays(self.target):
            logger.debug("no overlays left; removing %s", STATE_DIR)
            remove_state_dir(self.target)
        return results

    def _remove_one(self, normalized: str) -> RemoveResult:
        overlay_state = load_overlay_state(self.target, normalized)
        removed: list[str] = []
        missing: list[str] = []

        for entry in overlay_state.files:
            path = self.target / entry.target
            if remove_path(path):
                removed.append(entry.target)
                prune_empty_parents(path, self.target)
            else:
                missing.append(entry.target)

        update_exclude(self.target, normalized, [], add=False)
        delete_overlay_state(self.target, normalized)
        self._backup_remove(normalized)

        return RemoveResult(name=overlay_state.name, removed=tuple(removed), missing=tuple(missing))

    # ------------------------------------------------------------------
    # Add files

    def add_files(
        self,
        name: str,
        files: Sequence[str | Path],
        overlay_root: Path,
        *,
        link_mode: LinkMode | None = None,
    ) -> AddResult:
        """Move tree files into ``overlay_root`` and link them back as part of ``name``."""

        normalized = normalize_overlay_name(name)
        overlay_state = load_overlay_state(self.target, normalized)
        if not files:
            raise RepoverlayError("No files specified")

        mode = link_mode or overlay_state.link_mode
        owners = build_ownership_index(self.target)

        relatives: list[str] = []
        for raw in files:
            relative = self._tree_relative(raw)
            full = self.target / relative
            if not exists_or_link(full):
                raise RepoverlayError(f"File not found in target: {relative}")
            if full.is_symlink() or not full.is_file():
                raise RepoverlayError(f"Only regular files can be added to an overlay: {relative}")
            owner = owners.get(relative)
            if owner is not None:
                raise OwnedByOverlayError(relative, owner)
            if relative not in relatives:
                relatives.append(relative)

        added: list[FileEntry] = []
        for relative in relatives:
            tree_path = self.target / relative
            overlay_path = overlay_root / relative
            ensure_parent(overlay_path)
            shutil.copy2(tree_path, overlay_path)
            tree_path.unlink()
            link_entry(overlay_path, tree_path, mode)

            entry = FileEntry(source=relative, target=relative, link_mode=mode)
            overlay_state.add_file(entry)
            added.append(entry)

        self._persist(overlay_state, normalized)
        return AddResult(name=overlay_state.name, added=tuple(added))

    # ------------------------------------------------------------------
    # Read-only

    def list_overlays(self) -> list[str]:
        return list_applied_overlays(self.target)

    def status(self, name: str | None = None) -> StatusReport:
        applied = list_applied_overlays(self.target)
        if name is not None:
            normalized = normalize_overlay_name(name)
            if normalized not in applied:
                raise OverlayNotFoundError(name, applied)
            applied = [normalized]

        overlays: list[OverlayStatus] = []
        for normalized in applied:
            overlay_state = load_overlay_state(self.target, normalized)
            files = tuple(FileStatus(entry=entry, state=self._file_state(entry)) for entry in overlay_state.files)
            overlays.append(
                OverlayStatus(
                    name=overlay_state.name,
                    normalized_name=normalized,
                    source=overlay_state.source,
                    applied_at=overlay_state.applied_at,
                    files=files,
                )
            )
        return StatusReport(overlays=tuple(overlays))

    def _file_state(self, entry: FileEntry) -> FileState:
        path = self.target / entry.target
        if path.is_symlink():
            return FileState.PRESENT if path.exists() else FileState.BROKEN
        return FileState.PRESENT if path.exists() else FileState.MISSING

    # ------------------------------------------------------------------
    # Sync

    def sync(self, name: str, overlay_root: Path, *, dry_run: bool = False) -> list[str]:
        """Copy modified tree files back into ``overlay_root``.

        Symlinks that still point into the overlay are already in sync and are skipped.
        """

        overlay_state = load_overlay_state(self.target, name)
        synced: list[str] = []

        for entry in overlay_state.files:
            tree_path = self.target / entry.target
            overlay_path = overlay_root / entry.source
            if not tree_path.exists():
                continue
            if tree_path.is_symlink() and symlink_points_to(tree_path, overlay_path):
                continue

            synced.append(entry.source)
            if dry_run:
                continue

            if entry.entry_type is EntryType.DIRECTORY:
                shutil.copytree(tree_path, overlay_path, symlinks=True, dirs_exist_ok=True)
            else:
                ensure_parent(overlay_path)
                shutil.copy2(tree_path, overlay_path)

        logger.debug("sync %s: %d path(s)%s", name, len(synced), " (dry run)" if dry_run else "")
        return synced

    # ------------------------------------------------------------------
    # Restore

    def restore(self, locate: Locator, *, dry_run: bool = False) -> list[RestoreResult]:
        """Replay overlays found in the external backup but missing from the tree."""

        if self.backup is None:
            return []

        results: list[RestoreResult] = []
        for backed_up in self.backup.load_all(self.target):
            normalized = normalize_overlay_name(backed_up.name)
            if is_applied(self.target, normalized):
                results.append(
                    RestoreResult(name=backed_up.name, action=RestoreAction.SKIPPED, details="Already applied")
                )
                continue
            results.append(self._restore_one(backed_up, normalized, locate, dry_run=dry_run))
        return results

    def _restore_one(
        self,
        backed_up: OverlayState,
        normalized: str,
        locate: Locator,
        *,
        dry_run: bool,
    ) -> RestoreResult:
        root = locate(backed_up.source)
        if root is None:
            return RestoreResult(
                name=backed_up.name,
                action=RestoreAction.PLANNED if dry_run else RestoreAction.FAILED,
                missing=tuple(backed_up.targets()),
                details=f"Overlay source not found: {backed_up.source.display()}",
            )

        owners = build_ownership_index(self.target)
        todo: list[FileEntry] = []
        adopted: list[FileEntry] = []
        missing: list[str] = []
        skipped: list[str] = []

        for entry in backed_up.files:
            source_path = root / entry.source
            tree_path = self.target / entry.target
            if not exists_or_link(source_path):
                missing.append(entry.target)
            elif entry.target in owners or self._blocked_ancestor(entry.target) is not None:
                skipped.append(entry.target)
            elif exists_or_link(tree_path):
                if symlink_points_to(tree_path, source_path):
                    adopted.append(entry)
                else:
                    skipped.append(entry.target)
            else:
                todo.append(entry)

        restored = tuple(entry.target for entry in (*adopted, *todo))
        if dry_run:
            return RestoreResult(
                name=backed_up.name,
                action=RestoreAction.PLANNED,
                restored=restored,
                missing=tuple(missing),
                skipped=tuple(skipped),
            )

        restored_state = OverlayState(name=backed_up.name, source=backed_up.source, applied_at=backed_up.applied_at)
        for entry in backed_up.files:
            if entry in todo:
                link_entry(root / entry.source, self.target / entry.target, entry.link_mode)
            if entry in todo or entry in adopted:
                restored_state.add_file(entry)

        if not restored_state.files:
            return RestoreResult(
                name=backed_up.name,
                action=RestoreAction.FAILED,
                missing=tuple(missing),
                skipped=tuple(skipped),
                details="No files could be restored",
            )

        self._persist(restored_state, normalized, backup=False)
        return RestoreResult(
            name=backed_up.name,
            action=RestoreAction.RESTORED,
            restored=restored,
            missing=tuple(missing),
            skipped=tuple(skipped),
        )

    # ------------------------------------------------------------------
    # Internal helpers

    def _plan(
        self,
        source_root: Path,
        overlay_config: OverlayConfig,
        mappings: Mapping[str, str],
        link_mode: LinkMode,
    ) -> list[FileEntry]:
        directories: list[str] = []
        for raw in overlay_config.directories:
            relative = safe_relative(raw)
            if not (source_root / relative).is_dir():
                logger.warning("Declared directory '%s' is not a directory in %s; skipping", raw, source_root)
                continue
            directories.append(relative)

        entries = [
            FileEntry(
                source=relative,
                target=self._target_for(relative, mappings),
                link_mode=link_mode,
                entry_type=EntryType.DIRECTORY,
            )
            for relative in directories
        ]
        for relative in iter_files(source_root, skip_dirs={*directories, STATE_DIR}, skip_files=_SKIPPED_SOURCE_FILES):
            entries.append(
                FileEntry(source=relative, target=self._target_for(relative, mappings), link_mode=link_mode)
            )
        return entries

    def _target_for(self, relative: str, mappings: Mapping[str, str]) -> str:
        target = safe_relative(mappings.get(relative, relative))
        if target.split("/", 1)[0] in _RESERVED_TOP_LEVEL:
            raise UnsafePathError(f"Overlay path '{target}' would overwrite repository internals")
        return target

    def _tree_relative(self, raw: str | Path) -> str:
        path = Path(raw)
        if path.is_absolute():
            try:
                path = path.relative_to(self.target)
            except ValueError as exc:
                raise UnsafePathError(f"File '{raw}' is outside the target directory {self.target}") from exc
        return safe_relative(path)

    def _blocked_ancestor(self, relative: str) -> str | None:
        """Return the first parent of ``relative`` that is not a real directory."""

        parts = relative.split("/")[:-1]
        for depth in range(1, len(parts) + 1):
            ancestor = "/".join(parts[:depth])
            path = self.target / ancestor
            if path.is_symlink() or (path.exists() and not path.is_dir()):
                return ancestor
        return None

    def _check_conflicts(self, plan: Iterable[FileEntry]) -> None:
        owners = build_ownership_index(self.target)
        planned: set[str] = set()
        for entry in plan:
            if entry.target in planned:
                raise ConflictError(entry.target, f"Conflict: several overlay files map to '{entry.target}'")
            nested = next((parent for parent in planned if entry.target.startswith(f"{parent}/")), None)
            if nested is not None:
                raise ConflictError(entry.target, f"Conflict: '{entry.target}' lies inside overlay path '{nested}'")
            planned.add(entry.target)

            blocked = self._blocked_ancestor(entry.target)
            if blocked is not None:
                owner = owners.get(blocked)
                if owner is not None:
                    raise OwnedByOverlayError(blocked, owner)
                raise FileExistsConflictError(blocked)

            owner = owners.get(entry.target)
            if owner is not None:
                raise OwnedByOverlayError(entry.target, owner)
            if exists_or_link(self.target / entry.target):
                raise FileExistsConflictError(entry.target)

    def _persist(self, overlay_state: OverlayState, normalized: str, *, backup: bool = True) -> None:
        update_exclude(self.target, normalized, overlay_state.exclude_patterns(), add=True)
        ensure_global_meta(self.target)
        save_overlay_state(self.target, overlay_state)
        if backup:
            self._backup_save(overlay_state)

    def _backup_save(self, overlay_state: OverlayState) -> None:
        if self.backup is None:
            return
        try:
            self.backup.save(self.target, overlay_state.name, overlay_state)
        except OSError as exc:
            logger.warning("Could not write external backup for '%s': %s", overlay_state.name, exc)

    def _backup_remove(self, normalized: str) -> None:
        if self.backup is None:
            return
        try:
            self.backup.remove(self.target, normalized)
        except OSError as exc:
            logger.warning("Could not remove external backup for '%s': %s", normalized, exc)
