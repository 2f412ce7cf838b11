"""Command-line front-end for gitstage."""

import logging
import os
import time
from pathlib import Path
from typing import Optional, Tuple

import click
import git as gitpython
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from gitstage.core.config import GitStageConfig
from gitstage.core.context import RepositoryContext
from gitstage.core.errors import GitStageError
from gitstage.models import ContextState, FileStatus, Notification, StatusFilter, as_path_bytes

console = Console()

STATUS_STYLES = {
    FileStatus.ADDED: "green",
    FileStatus.MODIFIED: "yellow",
    FileStatus.DELETED: "red",
    FileStatus.RENAMED: "cyan",
    FileStatus.COPIED: "cyan",
    FileStatus.UNTRACKED: "magenta",
    FileStatus.CONFLICTED: "bold red",
    FileStatus.UNKNOWN: "dim",
}


def _find_repo_root(start: Path) -> Path:
    """Find the working tree containing ``start``."""
    try:
        repo = gitpython.Repo(start, search_parent_directories=True)
    except (gitpython.InvalidGitRepositoryError, gitpython.NoSuchPathError) as e:
        console.print(f"[red]Error: Not in a git repository: {escape(str(start))}[/red]")
        raise click.Abort() from e
    if repo.working_tree_dir is None:
        console.print("[red]Error: Bare repositories have no working tree[/red]")
        raise click.Abort()
    return Path(repo.working_tree_dir)


def _repo_relative(repo_root: Path, path: str) -> bytes:
    """Turn a path given on the command line into a repository-relative key."""
    absolute = Path(os.path.abspath(path))
    try:
        relative = absolute.relative_to(repo_root.resolve())
    except ValueError:
        relative = Path(path)
    return as_path_bytes(relative.as_posix())


def _open_context(ctx: click.Context, repo: Optional[str]) -> RepositoryContext:
    config: GitStageConfig = ctx.obj["config"]
    repo_root = _find_repo_root(Path(repo or ".").resolve())
    try:
        context = RepositoryContext(config)
    except GitStageError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise click.Abort() from e
    context.open(repo_root)
    _wait_ready(context)
    return context


def _wait_ready(context: RepositoryContext) -> None:
    if not context.wait(timeout=context.config.timeout * 2):
        console.print("[red]Error: timed out waiting for git[/red]")
        context.shutdown(wait=False)
        raise click.Abort()
    if context.state == ContextState.ERROR:
        console.print(f"[red]Error: {escape(str(context.last_error))}[/red]")
        context.shutdown()
        raise click.Abort()


def _status_text(status: FileStatus) -> str:
    if status == FileStatus.UNMODIFIED:
        return ""
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _render_table(context: RepositoryContext, status_filter: StatusFilter) -> Table:
    table = Table(title="Changes")
    table.add_column("Path", style="bold", no_wrap=True)
    table.add_column("Index")
    table.add_column("Worktree")
    table.add_column("Staged", justify="center")

    for record in context.model.query(status_filter):
        path_text = escape(record.display_path)
        if record.previous_path is not None:
            path_text = f"{escape(record.previous_path.decode('utf-8', 'replace'))} -> {path_text}"
        table.add_row(
            path_text,
            _status_text(record.index_status),
            _status_text(record.worktree_status),
            "✓" if record.staged else "",
        )
    return table


@click.group()
@click.version_option(package_name="gitstage")
@click.option("--verbose", "-v", is_flag=True, help="Log git invocations and state changes")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON file with gitstage settings",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_file: Optional[Path]):
    """gitstage - inspect and stage changes in a git working tree."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )
    ctx.ensure_object(dict)
    ctx.obj["config"] = GitStageConfig.load(config_file)


@main.command()
@click.option("--repo", type=click.Path(exists=True, file_okay=False), default=None, help="Repository path")
@click.option(
    "--filter",
    "status_filter",
    type=click.Choice([f.value for f in StatusFilter]),
    default=StatusFilter.ALL.value,
    help="Only show changes in this category",
)
@click.pass_context
def status(ctx: click.Context, repo: Optional[str], status_filter: str):
    """Show changed paths in the working tree and index."""
    context = _open_context(ctx, repo)
    try:
        if len(context.model) == 0:
            console.print("[green]Working tree clean[/green]")
            return
        console.print(f"[bold]Repository:[/bold] {escape(str(context.repo_path))}")
        console.print(f"[bold]Generation:[/bold] {context.generation}")
        console.print(_render_table(context, StatusFilter(status_filter)))
    finally:
        context.shutdown()


def _apply_mutations(ctx: click.Context, repo: Optional[str], paths: Tuple[str, ...], stage: bool) -> None:
    context = _open_context(ctx, repo)
    verb = "Staged" if stage else "Unstaged"
    try:
        for path in paths:
            key = _repo_relative(context.repo_path, path)
            try:
                if stage:
                    context.stage(key)
                else:
                    context.unstage(key)
            except GitStageError as e:
                console.print(f"[red]Error: {escape(str(e))}[/red]")
                raise click.Abort() from e
            _wait_ready(context)
            console.print(f"[green]{verb}[/green] {escape(key.decode('utf-8', 'replace'))}")
    finally:
        context.shutdown()


@main.command()
@click.argument("paths", nargs=-1, required=True)
@click.option("--repo", type=click.Path(exists=True, file_okay=False), default=None, help="Repository path")
@click.pass_context
def stage(ctx: click.Context, paths: Tuple[str, ...], repo: Optional[str]):
    """Stage whole files."""
    _apply_mutations(ctx, repo, paths, stage=True)


@main.command()
@click.argument("paths", nargs=-1, required=True)
@click.option("--repo", type=click.Path(exists=True, file_okay=False), default=None, help="Repository path")
@click.pass_context
def unstage(ctx: click.Context, paths: Tuple[str, ...], repo: Optional[str]):
    """Remove whole files from the index."""
    _apply_mutations(ctx, repo, paths, stage=False)


def _print_notification(notification: Notification) -> None:
    if notification.state == ContextState.ERROR:
        console.print(f"[red]✗ {escape(str(notification.error))}[/red] (showing stale data)")
        return
    diff = notification.diff
    if diff is None or diff.is_empty:
        return
    for label, style, paths in (
        ("+", "green", diff.added),
        ("-", "red", diff.removed),
        ("~", "yellow", diff.status_changed),
    ):
        for path in sorted(paths):
            console.print(f"[{style}]{label}[/{style}] {escape(path.decode('utf-8', 'replace'))}")
    console.print(f"[dim]generation {notification.generation}[/dim]")


@main.command()
@click.option("--repo", type=click.Path(exists=True, file_okay=False), default=None, help="Repository path")
@click.option("--interval", default=2.0, show_default=True, help="Seconds between refreshes")
@click.option("--count", default=0, help="Stop after this many refreshes (0 = forever)")
@click.pass_context
def watch(ctx: click.Context, repo: Optional[str], interval: float, count: int):
    """Refresh periodically and print what changed."""
    context = _open_context(ctx, repo)
    context.subscribe(_print_notification)
    console.print(f"[bold]Watching[/bold] {escape(str(context.repo_path))} ({len(context.model)} changes)")
    refreshes = 0
    try:
        while count == 0 or refreshes < count:
            time.sleep(interval)
            context.refresh()
            context.wait(timeout=context.config.timeout * 2)
            refreshes += 1
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")
    finally:
        context.shutdown()


if __name__ == "__main__":
    main()
