"""External mirror of overlay state that survives ``git clean -fdx``.

Records live under ``<data_dir>/applied/<hash>/<name>.toml`` where ``<hash>``
is derived from the canonical path of the target tree. A ``.target_path``
marker in each directory records the original tree path for diagnostics.
"""

from __future__ import annotations

import logging
import shutil
from hashlib import blake2b
from pathlib import Path

from . import codec
from .config import default_data_dir
from .errors import DecodeError
from .models import OverlayState
from .state import RECORD_SUFFIX, normalize_overlay_name

logger = logging.getLogger(__name__)

APPLIED_DIR = "applied"
TARGET_MARKER = ".target_path"


def hash_tree_path(tree: Path) -> str:
    """Return a stable identifier for the canonical form of ``tree``."""

    canonical = tree.resolve(strict=False)
    return blake2b(str(canonical).encode(), digest_size=8).hexdigest()


class BackupStore:
    """Reads and writes the external state mirror."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    @classmethod
    def default(cls) -> "BackupStore":
        return cls(default_data_dir())

    def directory_for(self, tree: Path) -> Path:
        return self.data_dir / APPLIED_DIR / hash_tree_path(tree)

    def save(self, tree: Path, name: str, state: OverlayState) -> Path:
        directory = self.directory_for(tree)
        logger.debug("backup save: %s -> %s", name, directory)
        directory.mkdir(parents=True, exist_ok=True)

        marker = directory / TARGET_MARKER
        if not marker.exists():
            marker.write_text(str(tree.resolve(strict=False)))

        path = directory / f"{normalize_overlay_name(name)}{RECORD_SUFFIX}"
        codec.save_state(path, state)
        return path

    def remove(self, tree: Path, name: str) -> None:
        directory = self.directory_for(tree)
        (directory / f"{normalize_overlay_name(name)}{RECORD_SUFFIX}").unlink(missing_ok=True)

        if directory.is_dir() and all(child.name == TARGET_MARKER for child in directory.iterdir()):
            shutil.rmtree(directory)

    def load_all(self, tree: Path) -> list[OverlayState]:
        directory = self.directory_for(tree)
        if not directory.is_dir():
            logger.debug("no external backup for %s", tree)
            return []

        recorded = self.recorded_target(tree)
        canonical = str(tree.resolve(strict=False))
        if recorded is not None and recorded != canonical:
            logger.warning("Ignoring backup in %s: it belongs to %s, not %s", directory, recorded, canonical)
            return []

        states: list[OverlayState] = []
        for path in sorted(directory.glob(f"*{RECORD_SUFFIX}")):
            try:
                states.append(codec.load_state(path))
            except DecodeError as exc:
                logger.warning("Skipping unreadable backup record: %s", exc)
        return states

    def recorded_target(self, tree: Path) -> str | None:
        marker = self.directory_for(tree) / TARGET_MARKER
        return marker.read_text() if marker.exists() else None
