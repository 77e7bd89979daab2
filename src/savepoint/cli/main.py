"""Command-line host for the savepoint engine."""

import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from savepoint import __version__
from savepoint.config import SavepointConfig, load_config, save_config
from savepoint.core.engine import EngineHooks, SnapshotEngine
from savepoint.exceptions import NoChangesToSave, SavepointError
from savepoint.models import ChangeSet
from savepoint.remote.github import (
    GitHubClient,
    clone_repository,
    is_valid_token,
    mirror_repository,
)

console = Console()


class ConsoleHooks(EngineHooks):
    """Prompts and progress on the terminal."""

    def confirm_discard(self, changes: ChangeSet) -> bool:
        console.print("[yellow]You have uncommitted changes:[/yellow]")
        for change in changes.files[:10]:
            console.print(f"  • {change.file_name} ({change.kind})")
        if len(changes.files) > 10:
            console.print(f"  … and {len(changes.files) - 10} more")
        return click.confirm("Discard them and continue?", default=False)

    def confirm_setup(self, path: Path) -> bool:
        return click.confirm(f"Set up version tracking in {path}?", default=True)

    def progress(self, increment: int, message: str) -> None:
        console.print(f"[dim]{increment:3d}%[/dim] {message}")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _engine(ctx: click.Context) -> SnapshotEngine:
    return ctx.obj["engine"]


def _fail(error: Exception) -> None:
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    raise click.Abort() from error


@click.group()
@click.version_option(__version__)
@click.option(
    "--workspace",
    "-w",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Workspace folder to search for a repository",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a JSON config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, workspace: Path, config_file: Optional[Path], verbose: bool):
    """Savepoint - save points, history and restore on top of Git."""
    _configure_logging(verbose)
    workspace = workspace.resolve()
    try:
        config = load_config(workspace, config_file)
    except SavepointError as e:
        _fail(e)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["config_file"] = config_file
    ctx.obj["engine"] = SnapshotEngine.for_workspace(
        [workspace], config=config, hooks=ConsoleHooks()
    )


@main.command()
@click.option("--limit", "-n", type=int, default=None, help="Number of snapshots to show")
@click.option("--offset", type=int, default=0, help="Skip this many recent snapshots")
@click.pass_context
def history(ctx: click.Context, limit: Optional[int], offset: int):
    """List snapshots, newest first."""
    engine = _engine(ctx)
    try:
        page = engine.history.list_snapshots_paginated(
            offset, limit if limit is not None else engine.config.max_snapshots
        )
    except SavepointError as e:
        _fail(e)

    if not page.items:
        console.print("[yellow]No commits found in this repository.[/yellow]")
        return

    table = Table(title=f"History ({page.total_count} versions)")
    table.add_column("Version", style="cyan", justify="right")
    table.add_column("Id", style="green", no_wrap=True)
    table.add_column("Date", style="magenta")
    table.add_column("Author", style="blue")
    table.add_column("Subject")
    for snapshot in page.items:
        table.add_row(
            str(snapshot.version),
            snapshot.id,
            snapshot.timestamp,
            snapshot.author,
            snapshot.subject,
        )
    console.print(table)
    if page.has_more:
        console.print(f"[dim]More available: --offset {page.next_offset}[/dim]")


@main.command()
@click.pass_context
def status(ctx: click.Context):
    """Show uncommitted changes."""
    try:
        changes = _engine(ctx).changes.get_uncommitted_changes()
    except SavepointError as e:
        _fail(e)

    if not changes.has_changes:
        console.print("[green]No uncommitted changes.[/green]")
        return
    for change in changes.files:
        console.print(f"  [cyan]{change.status_code}[/cyan] {change.file_name} ({change.kind})")
    console.print(changes.summary)


@main.command()
@click.pass_context
def info(ctx: click.Context):
    """Show the current branch and version."""
    engine = _engine(ctx)
    try:
        root = engine.locator.resolve_root()
        branch_info = engine.history.get_current_branch_info(root)
    except SavepointError as e:
        _fail(e)

    console.print(f"[bold]Repository:[/bold] {root}")
    console.print(f"[bold]Branch:[/bold] {branch_info.branch or 'Not on any branch'}")
    console.print(f"[bold]Version:[/bold] {branch_info.version if branch_info.version is not None else '-'}")


@main.command()
@click.argument("snapshot_id")
@click.pass_context
def show(ctx: click.Context, snapshot_id: str):
    """Show details of one snapshot."""
    try:
        console.print(_engine(ctx).history.get_snapshot_details(snapshot_id), markup=False)
    except SavepointError as e:
        _fail(e)


@main.command()
@click.pass_context
def save(ctx: click.Context):
    """Save all uncommitted changes with a generated message."""
    try:
        message = _engine(ctx).save()
    except NoChangesToSave as e:
        console.print(f"[yellow]{e}[/yellow]")
        return
    except SavepointError as e:
        _fail(e)
    console.print(f"[green]✅ Changes saved:[/green] {message}")


@main.command()
@click.argument("snapshot_id")
@click.option("--yes", "-y", is_flag=True, help="Discard uncommitted changes without asking")
@click.pass_context
def restore(ctx: click.Context, snapshot_id: str, yes: bool):
    """Restore a snapshot as a new version on the current branch."""
    try:
        outcome = _engine(ctx).restore(snapshot_id, skip_confirmation=yes)
    except SavepointError as e:
        if getattr(e, "recovered", False):
            console.print("[yellow]The repository was returned to its previous state.[/yellow]")
        _fail(e)

    if not outcome.success:
        console.print(f"[yellow]{outcome.message}[/yellow]")
        return
    if outcome.new_snapshot_id == outcome.previous_snapshot_id:
        console.print(f"[yellow]{outcome.message}[/yellow]")
        return
    console.print(f"[green]✅ Restored {snapshot_id} as {outcome.new_snapshot_id[:8]}[/green]")
    if outcome.backup_branch:
        console.print(f"[dim]Backup branch: {outcome.backup_branch}[/dim]")


@main.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def discard(ctx: click.Context, yes: bool):
    """Throw away all uncommitted changes."""
    if not yes and not click.confirm("Discard all uncommitted changes?", default=False):
        return
    try:
        _engine(ctx).discard_changes()
    except SavepointError as e:
        _fail(e)
    console.print("[green]Uncommitted changes discarded.[/green]")


@main.command()
@click.pass_context
def init(ctx: click.Context):
    """Set up version tracking in the workspace."""
    try:
        path = _engine(ctx).create_new_repository()
    except SavepointError as e:
        _fail(e)
    if path is not None:
        console.print(f"[green]🎉 Version tracking is set up in {path}[/green]")


@main.group()
def backups():
    """Manage safety backup branches."""


@backups.command("create")
@click.pass_context
def backups_create(ctx: click.Context):
    """Create a backup branch at the current version."""
    try:
        name = _engine(ctx).create_backup(label="manual")
    except SavepointError as e:
        _fail(e)
    console.print(f"[green]Backup created:[/green] {name}")


@backups.command("clean")
@click.option("--days", type=int, default=None, help="Keep backups newer than this many days")
@click.pass_context
def backups_clean(ctx: click.Context, days: Optional[int]):
    """Delete old backup branches."""
    try:
        deleted = _engine(ctx).cleanup_backups(days_to_keep=days)
    except SavepointError as e:
        _fail(e)
    if not deleted:
        console.print("No old backups to remove.")
    for name in deleted:
        console.print(f"  removed {name}")


@main.group()
def github():
    """Mirror the repository to GitHub."""


def _github_client(ctx: click.Context) -> GitHubClient:
    config: SavepointConfig = ctx.obj["config"]
    if not config.github_token:
        console.print("[red]No GitHub token configured. Run 'savepoint github login' first.[/red]")
        raise click.Abort()
    return GitHubClient(config.github_token, base_url=config.github_api_url)


@github.command()
@click.option("--token", prompt="GitHub personal access token", hide_input=True)
@click.pass_context
def login(ctx: click.Context, token: str):
    """Store a GitHub personal access token."""
    if not is_valid_token(token):
        console.print("[red]Please enter a valid GitHub Personal Access Token.[/red]")
        raise click.Abort()
    config: SavepointConfig = ctx.obj["config"]
    config.github_token = token.strip()
    path = save_config(config, ctx.obj["config_file"])
    console.print(f"[green]Token saved to {path}[/green]")


@github.command()
@click.option("--name", help="Repository name (defaults to the folder name)")
@click.option("--description", default="", help="Description for a new repository")
@click.option("--private", is_flag=True, help="Create the repository as private")
@click.pass_context
def push(ctx: click.Context, name: Optional[str], description: str, private: bool):
    """Save the repository to GitHub, creating it if needed."""
    engine = _engine(ctx)
    try:
        with _github_client(ctx) as client:
            url = mirror_repository(
                client,
                engine.runner,
                engine.locator.resolve_root(),
                name=name,
                description=description,
                private=private,
                branches=engine.config.github_push_branches,
            )
    except SavepointError as e:
        _fail(e)
    console.print(f"[green]🎉 Successfully saved to GitHub: {url}[/green]")


@github.command()
@click.option("--limit", default=50, help="Number of repositories to list")
@click.pass_context
def repos(ctx: click.Context, limit: int):
    """List your GitHub repositories."""
    try:
        with _github_client(ctx) as client:
            repositories = client.list_repositories(limit)
    except SavepointError as e:
        _fail(e)

    if not repositories:
        console.print("No repositories found in your GitHub account.")
        return
    table = Table(title="GitHub Repositories")
    table.add_column("Name", style="cyan")
    table.add_column("Private", style="magenta")
    table.add_column("Language", style="green")
    table.add_column("Description")
    for repo in repositories:
        table.add_row(repo.name, "yes" if repo.is_private else "no", repo.language or "", repo.description)
    console.print(table)


@github.command()
@click.argument("clone_url")
@click.argument("target", type=click.Path(file_okay=False, path_type=Path))
@click.pass_context
def clone(ctx: click.Context, clone_url: str, target: Path):
    """Load a repository from GitHub into TARGET."""
    try:
        path = clone_repository(_engine(ctx).runner, clone_url, target)
    except SavepointError as e:
        _fail(e)
    console.print(f"[green]🎉 Loaded into {path}[/green]")


if __name__ == "__main__":
    main()
