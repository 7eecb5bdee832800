from __future__ import annotations

from pathlib import Path

import pytest

from repoverlay.errors import RepoverlayError
from repoverlay.exclude import (
    GIT_EXCLUDE,
    MANAGED_REGION,
    marker_end,
    marker_start,
    merge,
    regions,
    update_exclude,
)

USER_CONTENT = "# git ls-files --others --exclude-from=.git/info/exclude\n*.log\n"


def test_add_appends_region_and_managed_block() -> None:
    result = merge(USER_CONTENT, "demo", ["a.txt", "dir/"], add=True)

    assert result == (
        USER_CONTENT
        + "# repoverlay:demo start\n"
        + "a.txt\n"
        + "dir/\n"
        + "# repoverlay:demo end\n"
        + "# repoverlay:managed start\n"
        + ".repoverlay\n"
        + "# repoverlay:managed end\n"
    )
    assert regions(result) == ["demo", MANAGED_REGION]


def test_repeated_add_is_byte_identical() -> None:
    once = merge(USER_CONTENT, "demo", ["a.txt"], add=True)
    twice = merge(once, "demo", ["a.txt"], add=True)

    assert once == twice


def test_add_replaces_existing_region_contents() -> None:
    first = merge("", "demo", ["old.txt"], add=True)
    second = merge(first, "demo", ["new.txt"], add=True)

    assert "old.txt" not in second
    assert "new.txt" in second
    assert second.count(marker_start("demo")) == 1


def test_managed_region_stays_last_with_several_overlays() -> None:
    text = merge("", "one", ["1.txt"], add=True)
    text = merge(text, "two", ["2.txt"], add=True)

    assert regions(text) == ["one", "two", MANAGED_REGION]
    assert text.count(marker_start(MANAGED_REGION)) == 1


def test_remove_keeps_managed_while_other_regions_remain() -> None:
    text = merge("", "one", ["1.txt"], add=True)
    text = merge(text, "two", ["2.txt"], add=True)

    text = merge(text, "one", [], add=False)

    assert regions(text) == ["two", MANAGED_REGION]
    assert "1.txt" not in text


def test_removing_last_region_restores_user_content() -> None:
    text = merge(USER_CONTENT, "demo", ["a.txt"], add=True)

    assert merge(text, "demo", [], add=False) == USER_CONTENT


def test_removing_everything_from_empty_file_yields_empty_text() -> None:
    text = merge("", "demo", ["a.txt"], add=True)

    assert merge(text, "demo", [], add=False) == ""


def test_region_names_are_matched_exactly() -> None:
    text = merge("", "unmanaged-stuff", ["x"], add=True)
    text = merge(text, "managed-extra", ["y"], add=True)

    text = merge(text, "unmanaged-stuff", [], add=False)

    assert regions(text) == ["managed-extra", MANAGED_REGION]
    assert marker_end("managed-extra") in text


def test_remove_of_absent_region_leaves_text_alone() -> None:
    assert merge(USER_CONTENT, "nothing", [], add=False) == USER_CONTENT


def test_update_exclude_creates_file(tmp_path: Path) -> None:
    path = update_exclude(tmp_path, "demo", ["a.txt"], add=True)

    assert path == tmp_path / GIT_EXCLUDE
    assert "# repoverlay:demo start\na.txt\n# repoverlay:demo end\n" in path.read_text()


def test_overlay_regions_cannot_take_the_managed_name() -> None:
    text = merge("", "demo", ["a.txt"], add=True)

    with pytest.raises(RepoverlayError, match="reserved"):
        merge(text, MANAGED_REGION, ["b.txt"], add=True)
    with pytest.raises(RepoverlayError, match="reserved"):
        merge(text, MANAGED_REGION, [], add=False)
