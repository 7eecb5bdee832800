from __future__ import annotations

import logging
from pathlib import Path

import pytest

from repoverlay.backup import TARGET_MARKER, BackupStore, hash_tree_path
from repoverlay.models import FileEntry, LinkMode, LocalSource, OverlayState


def _state(name: str) -> OverlayState:
    return OverlayState(
        name=name,
        source=LocalSource(path=Path("/overlays") / name),
        files=[FileEntry(source="a.txt", target="a.txt", link_mode=LinkMode.SYMLINK)],
    )


def test_default_store_uses_xdg_data_home(fake_home: Path) -> None:
    store = BackupStore.default()

    assert store.data_dir == fake_home / ".local" / "share" / "repoverlay"


def test_hash_is_stable_and_canonical(tmp_path: Path) -> None:
    tree = tmp_path / "repo"
    tree.mkdir()

    assert hash_tree_path(tree) == hash_tree_path(tmp_path / "repo" / ".." / "repo")
    assert len(hash_tree_path(tree)) == 16


def test_save_writes_record_and_marker(tmp_path: Path, git_tree: Path) -> None:
    store = BackupStore(tmp_path / "data")

    path = store.save(git_tree, "My Overlay", _state("My Overlay"))

    directory = store.directory_for(git_tree)
    assert path == directory / "my-overlay.toml"
    assert (directory / TARGET_MARKER).read_text() == str(git_tree)
    assert store.recorded_target(git_tree) == str(git_tree)
    assert [state.name for state in store.load_all(git_tree)] == ["My Overlay"]


def test_remove_deletes_directory_with_last_record(tmp_path: Path, git_tree: Path) -> None:
    store = BackupStore(tmp_path / "data")
    store.save(git_tree, "one", _state("one"))
    store.save(git_tree, "two", _state("two"))

    store.remove(git_tree, "one")
    assert store.directory_for(git_tree).exists()
    assert [state.name for state in store.load_all(git_tree)] == ["two"]

    store.remove(git_tree, "two")
    assert not store.directory_for(git_tree).exists()


def test_load_all_skips_unreadable_records(
    tmp_path: Path, git_tree: Path, caplog: pytest.LogCaptureFixture
) -> None:
    store = BackupStore(tmp_path / "data")
    store.save(git_tree, "good", _state("good"))
    (store.directory_for(git_tree) / "bad.toml").write_text("not = [valid")

    with caplog.at_level(logging.WARNING, logger="repoverlay.backup"):
        states = store.load_all(git_tree)

    assert [state.name for state in states] == ["good"]
    assert "Skipping unreadable backup record" in caplog.text


def test_load_all_without_backup_is_empty(tmp_path: Path, git_tree: Path) -> None:
    assert BackupStore(tmp_path / "data").load_all(git_tree) == []


def test_load_all_ignores_backup_recorded_for_another_tree(
    tmp_path: Path, git_tree: Path, caplog: pytest.LogCaptureFixture
) -> None:
    store = BackupStore(tmp_path / "data")
    store.save(git_tree, "one", _state("one"))
    (store.directory_for(git_tree) / TARGET_MARKER).write_text("/somewhere/else")

    with caplog.at_level(logging.WARNING, logger="repoverlay.backup"):
        assert store.load_all(git_tree) == []

    assert "/somewhere/else" in caplog.text
