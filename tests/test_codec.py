from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

import pytest

from repoverlay import codec
from repoverlay.errors import DecodeError
from repoverlay.models import (
    EntryType,
    FileEntry,
    LinkMode,
    LocalSource,
    OverlayState,
    RemoteSource,
    RepositorySource,
    ResolvedVia,
)

APPLIED_AT = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def _state(source, files: list[FileEntry] | None = None) -> OverlayState:
    return OverlayState(name="My Overlay", source=source, applied_at=APPLIED_AT, files=files or [])


def test_record_fields_are_flat_strings() -> None:
    state = _state(
        LocalSource(path=Path("/overlays/demo")),
        [FileEntry(source="a.txt", target="a.txt", link_mode=LinkMode.SYMLINK)],
    )

    record = codec.encode(state)

    assert set(record) == {"format", "name", "applied_at", "source", "files"}
    assert all(isinstance(value, str) for value in record.values())
    assert record["format"] == codec.FORMAT_VERSION
    assert record["source"] == "local|/overlays/demo"
    assert record["files"] == "a.txt:a.txt:symlink"


def test_round_trip_preserves_every_source_variant() -> None:
    files = [
        FileEntry(source="config/a.toml", target="a.toml", link_mode=LinkMode.COPY),
        FileEntry(source=".claude", target=".claude", link_mode=LinkMode.COPY, entry_type=EntryType.DIRECTORY),
    ]
    sources = [
        LocalSource(path=Path("/tmp/overlay")),
        RemoteSource(
            url="https://github.com/o/r/tree/main/sub",
            owner="o",
            repo="r",
            ref="main",
            commit="f" * 40,
            subpath="sub",
            cached_at=APPLIED_AT,
        ),
        RepositorySource(org="org", repo="repo", name="ai", commit="c" * 40, resolved_via=ResolvedVia.UPSTREAM),
        RepositorySource(org="org", repo="repo", name="ai", commit="c" * 40),
    ]

    for source in sources:
        state = _state(source, list(files))
        decoded = codec.decode(codec.encode(state))
        assert decoded == state


def test_delimiters_in_paths_survive() -> None:
    entry = FileEntry(source="weird:name,with|pipes%.txt", target="dir/x:y,z.txt", link_mode=LinkMode.SYMLINK)
    state = _state(LocalSource(path=Path("/odd|path:with,delims")), [entry])

    decoded = codec.decode(codec.encode(state))

    assert decoded.files == [entry]
    assert decoded.source == LocalSource(path=Path("/odd|path:with,delims"))


def test_directory_marker_is_appended() -> None:
    entry = FileEntry(source="d", target="d", link_mode=LinkMode.SYMLINK, entry_type=EntryType.DIRECTORY)

    assert codec.encode_files([entry]) == "d:d:symlink:dir"


def test_unknown_source_tag_is_rejected() -> None:
    with pytest.raises(DecodeError, match="Unknown source type 'ftp'"):
        codec.decode_source("ftp|somewhere")


def test_short_source_is_rejected() -> None:
    with pytest.raises(DecodeError, match="at least 7 fields"):
        codec.decode_source("remote|https://github.com/o/r|o")


def test_missing_required_keys_are_rejected() -> None:
    with pytest.raises(DecodeError, match="'source'"):
        codec.decode({"name": "x", "files": ""})


def test_malformed_file_entries_are_dropped(caplog: pytest.LogCaptureFixture) -> None:
    record = {
        "name": "demo",
        "source": "local|/x",
        "applied_at": APPLIED_AT.isoformat(),
        "files": "good:good:symlink,broken,also:bad:teleport",
    }

    with caplog.at_level(logging.WARNING, logger="repoverlay.codec"):
        state = codec.decode(record)

    assert state.targets() == ["good"]
    assert "Dropping malformed file entry" in caplog.text


def test_bad_timestamp_falls_back_to_now(caplog: pytest.LogCaptureFixture) -> None:
    record = {"name": "demo", "source": "local|/x", "applied_at": "yesterday-ish", "files": ""}

    with caplog.at_level(logging.WARNING, logger="repoverlay.codec"):
        state = codec.decode(record)

    assert state.applied_at.tzinfo is not None
    assert abs((datetime.now(timezone.utc) - state.applied_at).total_seconds()) < 60
    assert "applied_at" in caplog.text


def test_save_and_load_state(tmp_path: Path) -> None:
    path = tmp_path / "overlays" / "demo.toml"
    state = _state(
        LocalSource(path=tmp_path),
        [FileEntry(source="a", target="b/a", link_mode=LinkMode.SYMLINK)],
    )

    codec.save_state(path, state)

    assert codec.load_state(path) == state


def test_load_state_reports_path_on_failure(tmp_path: Path) -> None:
    path = tmp_path / "broken.toml"
    path.write_text("this is = = not toml")

    with pytest.raises(DecodeError, match="broken.toml"):
        codec.load_state(path)


@pytest.mark.parametrize("body", ["version = = 1", 'version = "one"'])
def test_load_meta_reports_path_on_failure(tmp_path: Path, body: str) -> None:
    path = tmp_path / "meta.toml"
    path.write_text(body)

    with pytest.raises(DecodeError, match="meta.toml"):
        codec.load_meta(path)
