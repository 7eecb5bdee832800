"""Marker-delimited regions inside ``.git/info/exclude``."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from .errors import RepoverlayError
from .state import MANAGED_REGION, STATE_DIR

logger = logging.getLogger(__name__)

TOOL_NAME = "repoverlay"
GIT_EXCLUDE = Path(".git") / "info" / "exclude"

_MARKER_PREFIX = f"# {TOOL_NAME}:"


def marker_start(region: str) -> str:
    return f"{_MARKER_PREFIX}{region} start"


def marker_end(region: str) -> str:
    return f"{_MARKER_PREFIX}{region} end"


def regions(text: str) -> list[str]:
    """Return the names of all regions opened in ``text``, in file order."""

    found: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(_MARKER_PREFIX) and stripped.endswith(" start"):
            found.append(stripped[len(_MARKER_PREFIX) : -len(" start")])
    return found


def strip_region(lines: list[str], region: str) -> list[str]:
    """Drop every line belonging to ``region``; everything else is kept verbatim."""

    start, end = marker_start(region), marker_end(region)
    kept: list[str] = []
    inside = False
    for line in lines:
        stripped = line.strip()
        if stripped == start:
            inside = True
            continue
        if stripped == end:
            inside = False
            continue
        if not inside:
            kept.append(line)
    return kept


def _region_block(region: str, entries: Iterable[str]) -> list[str]:
    return [marker_start(region), *entries, marker_end(region)]


def _finish(lines: list[str]) -> str:
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def merge(text: str, region: str, entries: Iterable[str], *, add: bool, state_dir: str = STATE_DIR) -> str:
    """Return ``text`` with ``region`` replaced (``add``) or withdrawn.

    Added regions are appended at the end of the file, followed by the
    ``managed`` region that excludes the state directory itself. The
    ``managed`` region is withdrawn once no other region remains.
    """

    if region == MANAGED_REGION:
        raise RepoverlayError(f"Exclude region '{MANAGED_REGION}' is reserved")

    lines = strip_region(text.splitlines(), region)

    if add:
        lines = strip_region(lines, MANAGED_REGION)
        while lines and not lines[-1].strip():
            lines.pop()
        lines.extend(_region_block(region, entries))
        lines.extend(_region_block(MANAGED_REGION, [state_dir]))
    elif not any(name != MANAGED_REGION for name in regions("\n".join(lines))):
        lines = strip_region(lines, MANAGED_REGION)

    return _finish(lines)


def update_exclude(tree: Path, region: str, entries: Iterable[str], *, add: bool) -> Path:
    """Rewrite ``<tree>/.git/info/exclude`` with ``region`` merged in or out."""

    entries = list(entries)
    exclude_path = tree / GIT_EXCLUDE
    logger.debug("update_exclude: region=%s add=%s entries=%d", region, add, len(entries))
    exclude_path.parent.mkdir(parents=True, exist_ok=True)

    content = exclude_path.read_text() if exclude_path.exists() else ""
    exclude_path.write_text(merge(content, region, entries, add=add))
    return exclude_path
