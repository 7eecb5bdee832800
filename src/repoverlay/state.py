"""In-tree overlay state under ``<tree>/.repoverlay``."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from . import codec
from .errors import OverlayNotFoundError, RepoverlayError
from .models import GlobalMeta, OverlayState

logger = logging.getLogger(__name__)

STATE_DIR = ".repoverlay"
MANAGED_REGION = "managed"
OVERLAYS_DIR = "overlays"
META_FILE = "meta.toml"
RECORD_SUFFIX = ".toml"

_INVALID_NAME_CHARS = re.compile(r"[^\w-]")


def normalize_overlay_name(name: str) -> str:
    """Return the identity key used for ``name`` on disk.

    >>> normalize_overlay_name("My Test Overlay")
    'my-test-overlay'
    """

    normalized = _INVALID_NAME_CHARS.sub("", name.lower().replace(" ", "-"))
    if not normalized:
        raise RepoverlayError(f"Invalid overlay name: '{name}'")
    if normalized == MANAGED_REGION:
        raise RepoverlayError(f"Overlay name '{name}' is reserved by repoverlay; choose another name")
    return normalized


def state_dir(tree: Path) -> Path:
    return tree / STATE_DIR


def overlays_dir(tree: Path) -> Path:
    return state_dir(tree) / OVERLAYS_DIR


def meta_path(tree: Path) -> Path:
    return state_dir(tree) / META_FILE


def record_path(tree: Path, name: str) -> Path:
    return overlays_dir(tree) / f"{normalize_overlay_name(name)}{RECORD_SUFFIX}"


def is_applied(tree: Path, name: str) -> bool:
    return record_path(tree, name).exists()


def list_applied_overlays(tree: Path) -> list[str]:
    """Return the normalized names of every overlay recorded for ``tree``."""

    directory = overlays_dir(tree)
    if not directory.is_dir():
        return []
    return sorted(path.stem for path in directory.iterdir() if path.suffix == RECORD_SUFFIX and path.is_file())


def load_overlay_state(tree: Path, name: str) -> OverlayState:
    path = record_path(tree, name)
    if not path.exists():
        raise OverlayNotFoundError(name, list_applied_overlays(tree))
    return codec.load_state(path)


def load_all_states(tree: Path) -> list[OverlayState]:
    return [codec.load_state(overlays_dir(tree) / f"{name}{RECORD_SUFFIX}") for name in list_applied_overlays(tree)]


def save_overlay_state(tree: Path, state: OverlayState) -> Path:
    path = record_path(tree, state.name)
    codec.save_state(path, state)
    return path


def delete_overlay_state(tree: Path, name: str) -> None:
    record_path(tree, name).unlink(missing_ok=True)


def ensure_global_meta(tree: Path) -> GlobalMeta:
    path = meta_path(tree)
    if path.exists():
        return codec.load_meta(path)
    meta = GlobalMeta()
    codec.save_meta(path, meta)
    return meta


def remove_state_dir(tree: Path) -> None:
    directory = state_dir(tree)
    if directory.exists():
        shutil.rmtree(directory)


def build_ownership_index(tree: Path) -> dict[str, str]:
    """Map every managed target path in ``tree`` to the overlay that owns it."""

    index: dict[str, str] = {}
    for state in load_all_states(tree):
        owner = normalize_overlay_name(state.name)
        for target in state.targets():
            previous = index.get(target)
            if previous is not None and previous != owner:
                logger.warning("Target '%s' is claimed by both '%s' and '%s'", target, previous, owner)
            index[target] = owner
    return index
