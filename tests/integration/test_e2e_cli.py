from __future__ import annotations

import shutil
from pathlib import Path

from typer.testing import CliRunner

from repoverlay.cli import app

runner = CliRunner()


def _write_overlay(root: Path, files: dict[str, str]) -> Path:
    for relative, body in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body)
    return root


def _git_clean(tree: Path) -> None:
    """Delete everything ignored through ``.git/info/exclude``, like ``git clean -fdX``."""

    exclude = (tree / ".git" / "info" / "exclude").read_text().splitlines()
    for pattern in exclude:
        if not pattern or pattern.startswith("#"):
            continue
        path = tree / pattern.rstrip("/")
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)


def test_cli_full_cycle(tmp_path: Path, fake_home: Path, git_tree: Path) -> None:
    overlay = _write_overlay(
        tmp_path / "overlays" / "assistant",
        {
            "CLAUDE.md": "# instructions\n",
            ".claude/settings.json": "{}\n",
            "repoverlay.toml": 'directories = [".claude"]\n\n[overlay]\nname = "Assistant"\n',
        },
    )
    target = ["--target", str(git_tree)]

    apply_result = runner.invoke(app, ["apply", str(overlay), *target])
    assert apply_result.exit_code == 0, apply_result.stdout
    assert (git_tree / ".claude").is_symlink()

    status_result = runner.invoke(app, ["status", *target])
    assert status_result.exit_code == 0
    assert "Assistant" in status_result.stdout

    _git_clean(git_tree)
    assert not (git_tree / "CLAUDE.md").exists()
    assert not (git_tree / ".repoverlay").exists()
    assert (fake_home / ".local" / "share" / "repoverlay" / "applied").is_dir()

    restore_result = runner.invoke(app, ["restore", *target])
    assert restore_result.exit_code == 0, restore_result.stdout
    assert (git_tree / "CLAUDE.md").read_text() == "# instructions\n"
    assert (git_tree / ".claude" / "settings.json").exists()

    list_result = runner.invoke(app, ["list", *target])
    assert list_result.stdout.strip() == "assistant"

    remove_result = runner.invoke(app, ["remove", "--all", *target])
    assert remove_result.exit_code == 0
    assert not (git_tree / "CLAUDE.md").exists()
    assert not (git_tree / ".claude").exists()
    assert not (git_tree / ".repoverlay").exists()
    assert (git_tree / ".git" / "info" / "exclude").read_text() == ""
    assert not any((fake_home / ".local" / "share" / "repoverlay" / "applied").iterdir())


def test_cli_switch_replaces_all_overlays(tmp_path: Path, fake_home: Path, git_tree: Path) -> None:
    first = _write_overlay(tmp_path / "overlays" / "first", {"FIRST.md": "1\n"})
    second = _write_overlay(tmp_path / "overlays" / "second", {"SECOND.md": "2\n"})
    third = _write_overlay(tmp_path / "overlays" / "third", {"THIRD.md": "3\n"})
    target = ["-t", str(git_tree)]

    runner.invoke(app, ["apply", str(first), *target])
    runner.invoke(app, ["apply", str(second), *target])

    result = runner.invoke(app, ["switch", str(third), *target])

    assert result.exit_code == 0, result.stdout
    assert not (git_tree / "FIRST.md").exists()
    assert not (git_tree / "SECOND.md").exists()
    assert (git_tree / "THIRD.md").is_symlink()
    list_result = runner.invoke(app, ["list", *target])
    assert list_result.stdout.split() == ["third"]
