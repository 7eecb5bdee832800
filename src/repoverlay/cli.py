"""Command-line interface for repoverlay."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .backup import BackupStore
from .cache import CacheManager
from .config import Config, ConfigError, load_config, save_config
from .errors import (
    ConflictError,
    OverlayNotFoundError,
    RepoverlayError,
    SourceUnresolvableError,
)
from .git import Git
from .github import GitHubSource
from .manager import OverlayManager
from .models import (
    ApplyResult,
    FileState,
    LinkMode,
    RemoteSource,
    RemoveResult,
    RepositorySource,
    RestoreAction,
    RestoreResult,
    Source,
    StatusReport,
)
from .resolve import OverlayLocator, resolve_source
from .sources import SourceManager, parse_overlay_reference
from .state import load_overlay_state
from .upstream import detect_upstream

app = typer.Typer(help="Apply uncommitted config overlays to git repositories")
source_app = typer.Typer(help="Manage overlay source repositories")
cache_app = typer.Typer(help="Manage cached GitHub repositories")
app.add_typer(source_app, name="source")
app.add_typer(cache_app, name="cache")
console = Console()

TARGET_OPTION = typer.Option(Path("."), "--target", "-t", help="Target git repository")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")) -> None:
    """Apply uncommitted config overlays to git repositories."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_manager(target: Path, config: Config) -> OverlayManager:
    return OverlayManager(target, backup=BackupStore(config.settings.data_dir))


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print(f"[red]Permission denied:[/red] {exc.filename or exc}")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        console.print(f"[red]{exc}[/red]")
        console.print("[yellow]Check the configuration file or run 'repoverlay source list'.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, RepoverlayError):
        console.print(f"[red]{exc}[/red]")
        if isinstance(exc, ConflictError):
            console.print("[yellow]No files were changed.[/yellow]")
        elif isinstance(exc, OverlayNotFoundError) and not exc.checked:
            console.print("[yellow]Run 'repoverlay list' to see applied overlays.[/yellow]")
        elif isinstance(exc, SourceUnresolvableError) and "sources" in str(exc):
            console.print("[yellow]Tip: 'repoverlay source add <name> <url>' configures an overlay source.[/yellow]")
        raise typer.Exit(code=1)
    raise exc


def _format_apply_result(result: ApplyResult) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Target")
    table.add_column("Source")
    table.add_column("Mode")

    for entry in result.entries:
        table.add_row(entry.exclude_pattern(), entry.source, entry.link_mode.value)

    console.print(table)
    console.print(f"[green]Applied overlay '{result.name}' ({len(result.entries)} path(s)).[/green]")


def _format_remove_results(results: Iterable[RemoveResult]) -> None:
    for result in results:
        console.print(f"[green]Removed overlay '{result.name}'[/green] ({len(result.removed)} path(s))")
        for missing in result.missing:
            console.print(f"  [yellow]already gone:[/yellow] {missing}")


def _format_status(report: StatusReport, *, show_files: bool) -> None:
    if not report.overlays:
        console.print("[yellow]No overlays are applied.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Overlay")
    table.add_column("Source", overflow="fold")
    table.add_column("Applied")
    table.add_column("Files")
    table.add_column("State")

    for overlay in report.overlays:
        state = "[green]ok[/green]" if overlay.healthy else "[red]needs attention[/red]"
        table.add_row(
            overlay.name,
            overlay.source.display(),
            overlay.applied_at.strftime("%Y-%m-%d %H:%M"),
            str(len(overlay.files)),
            state,
        )
    console.print(table)

    if not show_files:
        return

    styles = {FileState.PRESENT: "green", FileState.MISSING: "red", FileState.BROKEN: "red"}
    for overlay in report.overlays:
        files = Table(title=overlay.name, show_header=True, header_style="bold magenta")
        files.add_column("Target")
        files.add_column("Mode")
        files.add_column("State")
        for item in overlay.files:
            style = styles[item.state]
            files.add_row(item.entry.exclude_pattern(), item.entry.link_mode.value, f"[{style}]{item.state.value}[/{style}]")
        console.print(files)


def _format_restore_results(results: Iterable[RestoreResult]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Overlay")
    table.add_column("Action")
    table.add_column("Restored")
    table.add_column("Details", overflow="fold")

    styles = {
        RestoreAction.RESTORED: "green",
        RestoreAction.PLANNED: "cyan",
        RestoreAction.SKIPPED: "yellow",
        RestoreAction.FAILED: "red",
    }
    for result in results:
        details = [result.details] if result.details else []
        if result.missing:
            details.append(f"missing: {', '.join(result.missing)}")
        if result.skipped:
            details.append(f"occupied: {', '.join(result.skipped)}")
        style = styles[result.action]
        table.add_row(
            result.name,
            f"[{style}]{result.action.value}[/{style}]",
            str(len(result.restored)),
            "; ".join(details),
        )

    console.print(table)


def _commit_overlay(
    locator: OverlayLocator,
    source: RepositorySource,
    message: str,
    *,
    push: bool,
) -> None:
    repository = locator.repository_for(source)
    if repository is None:
        console.print(f"[yellow]No clone holds {source.reference}; nothing committed.[/yellow]")
        return
    if repository.commit(message):
        console.print(f"[green]Committed changes to source '{repository.name}'.[/green]")
        if push:
            repository.push()
            console.print(f"[green]Pushed source '{repository.name}'.[/green]")
    else:
        console.print("[yellow]No changes to commit.[/yellow]")


@app.command()
def apply(
    source: str = typer.Argument(..., help="Local path, GitHub URL, or org/repo/name reference"),
    target: Path = TARGET_OPTION,
    copy: bool = typer.Option(False, "--copy", help="Copy files instead of symlinking them"),
    name: str | None = typer.Option(None, "--name", "-n", help="Override the overlay name"),
    ref: str | None = typer.Option(None, "--ref", "-r", help="Branch, tag or commit for GitHub sources"),
    update: bool = typer.Option(False, "--update", help="Fetch the latest version before applying"),
    source_name: str | None = typer.Option(None, "--source", "-s", help="Only look in this configured source"),
) -> None:
    """Apply an overlay to a git repository."""

    try:
        config = load_config()
        manager = _load_manager(target, config)
        resolved = resolve_source(
            source,
            manager.target,
            config,
            ref=ref,
            update=update,
            git=Git(),
            source_filter=source_name,
        )
        result = manager.apply(
            resolved.path,
            resolved.source_info,
            name=name,
            link_mode=LinkMode.COPY if copy else LinkMode.SYMLINK,
        )
        _format_apply_result(result)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def remove(
    name: str | None = typer.Argument(None, help="Overlay to remove"),
    target: Path = TARGET_OPTION,
    remove_all: bool = typer.Option(False, "--all", help="Remove every applied overlay"),
) -> None:
    """Remove an applied overlay and its files."""

    try:
        manager = _load_manager(target, load_config())
        results = manager.remove(name, remove_all=remove_all)
        if not results:
            console.print("[yellow]No overlays are applied.[/yellow]")
            return
        _format_remove_results(results)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def status(
    target: Path = TARGET_OPTION,
    name: str | None = typer.Option(None, "--name", "-n", help="Show a single overlay with its files"),
) -> None:
    """Show applied overlays and the state of their files."""

    try:
        manager = _load_manager(target, load_config())
        report = manager.status(name)
        _format_status(report, show_files=name is not None)
        if any(not overlay.healthy for overlay in report.overlays):
            console.print("[yellow]Some overlay files are missing. Run 'repoverlay update' or re-apply.[/yellow]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command("list")
def list_overlays(target: Path = TARGET_OPTION) -> None:
    """List applied overlays."""

    try:
        manager = _load_manager(target, load_config())
        names = manager.list_overlays()
        if not names:
            console.print("[yellow]No overlays are applied.[/yellow]")
            return
        for overlay_name in names:
            console.print(overlay_name)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def restore(
    target: Path = TARGET_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show what would be restored"),
) -> None:
    """Re-apply overlays from the external backup (e.g. after 'git clean -fdx')."""

    try:
        config = load_config()
        manager = _load_manager(target, config)
        results = manager.restore(OverlayLocator(config, Git()), dry_run=dry_run)
        if not results:
            console.print("[yellow]No external backup found for this repository.[/yellow]")
            return
        _format_restore_results(results)
        if any(result.action is RestoreAction.FAILED for result in results):
            raise typer.Exit(code=1)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def add(
    name: str = typer.Argument(..., help="Applied overlay to extend"),
    files: list[Path] = typer.Argument(..., help="Files in the target repository to move into the overlay"),
    target: Path = TARGET_OPTION,
    copy: bool = typer.Option(False, "--copy", help="Copy the files back instead of symlinking"),
    commit: bool = typer.Option(True, "--commit/--no-commit", help="Commit the change to the overlay source"),
) -> None:
    """Move files from the repository into an applied overlay."""

    try:
        config = load_config()
        manager = _load_manager(target, config)
        overlay_state = load_overlay_state(manager.target, name)
        locator = OverlayLocator(config, Git())
        overlay_root = locator(overlay_state.source)
        if overlay_root is None:
            raise RepoverlayError(f"Overlay source not found: {overlay_state.source.display()}")

        absolute = [path if path.is_absolute() else Path.cwd() / path for path in files]
        result = manager.add_files(name, absolute, overlay_root, link_mode=LinkMode.COPY if copy else None)
        for entry in result.added:
            console.print(f"[green]+[/green] {entry.target}")

        if commit and isinstance(overlay_state.source, RepositorySource):
            _commit_overlay(locator, overlay_state.source, f"Add files to {overlay_state.source.reference}", push=False)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def sync(
    name: str = typer.Argument(..., help="Applied overlay to sync"),
    target: Path = TARGET_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show what would be synced"),
    commit: bool = typer.Option(True, "--commit/--no-commit", help="Commit the change to the overlay source"),
    push: bool = typer.Option(False, "--push", help="Push the overlay source after committing"),
) -> None:
    """Copy changes made in the repository back into the overlay."""

    try:
        config = load_config()
        manager = _load_manager(target, config)
        overlay_state = load_overlay_state(manager.target, name)
        locator = OverlayLocator(config, Git())
        overlay_root = locator(overlay_state.source)
        if overlay_root is None:
            raise RepoverlayError(f"Overlay source not found: {overlay_state.source.display()}")

        synced = manager.sync(name, overlay_root, dry_run=dry_run)
        if not synced:
            console.print("[yellow]No files to sync.[/yellow]")
            return
        for relative in synced:
            console.print(f"[green]->[/green] {relative}")
        if dry_run:
            console.print("[yellow]Dry run; no changes made.[/yellow]")
            return

        if commit and isinstance(overlay_state.source, RepositorySource):
            _commit_overlay(locator, overlay_state.source, f"Sync {overlay_state.source.reference}", push=push)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def update(
    name: str | None = typer.Argument(None, help="Overlay to update (default: all)"),
    target: Path = TARGET_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report available updates"),
) -> None:
    """Update overlays applied from GitHub to their latest commit."""

    try:
        config = load_config()
        manager = _load_manager(target, config)
        git = Git()
        names = [name] if name is not None else manager.list_overlays()
        cache = CacheManager(config.settings.cache_dir, git)

        updated = 0
        for overlay_name in names:
            overlay_state = load_overlay_state(manager.target, overlay_name)
            source = overlay_state.source
            if not isinstance(source, RemoteSource):
                console.print(f"[dim]{overlay_state.name}: not a GitHub source, skipped[/dim]")
                continue

            ref = source.ref if source.ref != "HEAD" else None
            github = GitHubSource.parse(source.url).with_ref(ref)
            newer = cache.check_for_updates(github)
            if newer is None:
                console.print(f"{overlay_state.name}: [green]up to date[/green]")
                continue

            console.print(f"{overlay_state.name} ({github.display_url()}): {source.commit[:12]} -> {newer[:12]}")
            if dry_run:
                continue
            resolved = resolve_source(source.url, manager.target, config, ref=ref, update=True, git=git)
            manager.reapply(overlay_state.name, resolved.path, resolved.source_info)
            updated += 1

        if dry_run:
            console.print("[yellow]Dry run; no changes made.[/yellow]")
        elif updated:
            console.print(f"[green]Updated {updated} overlay(s).[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def switch(
    source: str = typer.Argument(..., help="Overlay to apply after removing all others"),
    target: Path = TARGET_OPTION,
    copy: bool = typer.Option(False, "--copy", help="Copy files instead of symlinking them"),
    name: str | None = typer.Option(None, "--name", "-n", help="Override the overlay name"),
    ref: str | None = typer.Option(None, "--ref", "-r", help="Branch, tag or commit for GitHub sources"),
    source_name: str | None = typer.Option(None, "--source", "-s", help="Only look in this configured source"),
) -> None:
    """Replace every applied overlay with a single new one."""

    try:
        config = load_config()
        manager = _load_manager(target, config)
        resolved = resolve_source(source, manager.target, config, ref=ref, git=Git(), source_filter=source_name)
        _format_remove_results(manager.remove(remove_all=True))
        result = manager.apply(
            resolved.path,
            resolved.source_info,
            name=name,
            link_mode=LinkMode.COPY if copy else LinkMode.SYMLINK,
        )
        _format_apply_result(result)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command("resolve")
def resolve_command(
    reference: str = typer.Argument(..., help="Overlay reference as org/repo/name"),
    target: Path = TARGET_OPTION,
    source_name: str | None = typer.Option(None, "--source", "-s", help="Only look in this configured source"),
    show_all: bool = typer.Option(False, "--all", help="Show every source that has the overlay"),
) -> None:
    """Show which configured source provides an overlay."""

    try:
        parsed = parse_overlay_reference(reference)
        if parsed is None:
            raise SourceUnresolvableError(f"Not an org/repo/name reference: {reference}")
        org, repo, overlay = parsed

        git = Git()
        manager = SourceManager.from_config(load_config(), git)
        upstream = detect_upstream(target, git) if (target / ".git").exists() else None

        if show_all:
            matches = manager.find_all_matches(org, repo, overlay, upstream)
            if not matches:
                console.print(f"[yellow]No source has {reference}.[/yellow]")
                raise typer.Exit(code=1)
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Source")
            table.add_column("Resolved via")
            for source, resolved_via in matches:
                table.add_row(source.name, resolved_via.value)
            console.print(table)
            return

        resolved = manager.resolve(org, repo, overlay, upstream, source_name)
        if resolved is None:
            console.print(f"[red]Overlay '{reference}' not found.[/red] Checked:")
            for candidate in manager.candidate_paths(org, repo, overlay, upstream, source_name):
                console.print(f"  - {candidate}")
            raise typer.Exit(code=1)

        console.print(f"Source:   {resolved.source.name}")
        console.print(f"Path:     {resolved.path}")
        console.print(f"Via:      {resolved.resolved_via.value}")
        console.print(f"Commit:   {resolved.commit[:12]}")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def browse() -> None:
    """List every overlay available in the configured sources."""

    try:
        manager = SourceManager.from_config(load_config(), Git())
        overlays = manager.list_all_overlays()
        if not overlays:
            console.print("[yellow]No overlays found. Run 'repoverlay source pull' to fetch sources.[/yellow]")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Source")
        table.add_column("Overlay")
        table.add_column("Config")
        for source, overlay in overlays:
            table.add_row(source.name, overlay.reference, "yes" if overlay.has_config else "")
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def publish(
    source_dir: Path = typer.Argument(..., help="Overlay directory to publish"),
    reference: str = typer.Argument(..., help="Destination as org/repo/name"),
    source_name: str | None = typer.Option(None, "--source", "-s", help="Source to publish to (default: first)"),
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message"),
    no_push: bool = typer.Option(False, "--no-push", help="Commit without pushing"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show where the overlay would go"),
) -> None:
    """Copy an overlay directory into a configured source and commit it."""

    try:
        parsed = parse_overlay_reference(reference)
        if parsed is None:
            raise SourceUnresolvableError(f"Not an org/repo/name reference: {reference}")
        org, repo, overlay = parsed

        manager = SourceManager.from_config(load_config(), Git())
        if not manager.repositories:
            raise SourceUnresolvableError("No overlay sources configured to publish to")
        repository = manager.get(source_name) if source_name is not None else manager.repositories[0]

        if dry_run:
            destination = repository.overlay_path(org, repo, overlay)
            console.print(f"Would publish '{source_dir}' to '{repository.name}' at {destination}")
            console.print("[yellow]Dry run; no changes made.[/yellow]")
            return

        repository.ensure_cloned()
        destination = repository.stage_overlay(org, repo, overlay, source_dir)
        if not repository.commit(message or f"Publish {reference}"):
            console.print(f"[yellow]'{reference}' is unchanged in '{repository.name}'.[/yellow]")
            return
        console.print(f"[green]Committed '{reference}' to '{repository.name}' at {destination}.[/green]")

        if no_push:
            console.print("[yellow]Not pushed; run 'git push' in the source clone when ready.[/yellow]")
            return
        repository.push()
        console.print(f"[green]Pushed to {repository.url}.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@source_app.command("list")
def source_list() -> None:
    """List configured sources in priority order."""

    try:
        config = load_config()
        if not config.sources:
            console.print("[yellow]No sources configured. Use 'repoverlay source add <name> <url>'.[/yellow]")
            return

        manager = SourceManager.from_config(config, Git())
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("#")
        table.add_column("Name")
        table.add_column("URL", overflow="fold")
        table.add_column("Cloned")
        for index, repository in enumerate(manager.repositories, start=1):
            table.add_row(str(index), repository.name, repository.url, "no" if repository.needs_clone() else "yes")
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@source_app.command("add")
def source_add(
    name: str = typer.Argument(..., help="Name for the source"),
    url: str = typer.Argument(..., help="Git URL of the overlay repository"),
) -> None:
    """Add a source with the lowest priority."""

    try:
        config = load_config().with_source(Source(name=name, url=url))
        path = save_config(config)
        console.print(f"[green]Added source '{name}' to '{path}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@source_app.command("remove")
def source_remove(name: str = typer.Argument(..., help="Source to remove")) -> None:
    """Remove a source and its local clone."""

    try:
        config = load_config()
        path = save_config(config.without_source(name))
        clone = config.settings.sources_dir / name
        if clone.exists():
            shutil.rmtree(clone)
        console.print(f"[green]Removed source '{name}' from '{path}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@source_app.command("pull")
def source_pull(name: str | None = typer.Argument(None, help="Only pull this source")) -> None:
    """Clone or update configured sources."""

    try:
        manager = SourceManager.from_config(load_config(), Git())
        for pulled in manager.pull_all(name):
            console.print(f"[green]Updated source '{pulled}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@cache_app.command("list")
def cache_list() -> None:
    """List cached GitHub repositories."""

    try:
        config = load_config()
        repos = CacheManager(config.settings.cache_dir, Git()).list_cached()
        if not repos:
            console.print("[yellow]The cache is empty.[/yellow]")
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Repository")
        table.add_column("Ref")
        table.add_column("Commit")
        table.add_column("Fetched")
        for repo in repos:
            meta = repo.meta or {}
            table.add_row(
                f"{repo.owner}/{repo.repo}",
                str(meta.get("requested_ref", "")),
                str(meta.get("commit", ""))[:12],
                str(meta.get("last_fetched", "")),
            )
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@cache_app.command("clear")
def cache_clear(
    repository: str | None = typer.Argument(None, help="Only remove OWNER/REPO"),
) -> None:
    """Delete cached GitHub repositories."""

    try:
        config = load_config()
        cache = CacheManager(config.settings.cache_dir, Git())
        if repository is None:
            count = cache.clear()
            console.print(f"[green]Removed {count} cached repository(ies).[/green]")
            return

        owner, _, repo = repository.partition("/")
        if not owner or not repo:
            raise RepoverlayError(f"Expected OWNER/REPO, got '{repository}'")
        if cache.remove_cached(owner, repo):
            console.print(f"[green]Removed {owner}/{repo} from the cache.[/green]")
        else:
            console.print(f"[yellow]{owner}/{repo} is not cached.[/yellow]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
