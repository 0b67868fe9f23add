"""Command line interface for apollo-sync.

Commands:
- sync (default): sync apps.json with the host, one-way push or three-way
- status: show configuration and baseline cache state
- clear-cache: forget the baseline so the next three-way sync starts fresh

Exit codes: 0 on success, 1 if some operations failed, 2 if the run could
not start or had to stop (bad configuration, unreadable catalog, host
unreachable).
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Union

import cyclopts
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from apollo_sync.client import ApolloClient
from apollo_sync.config import ApolloConfig
from apollo_sync.exceptions import ApolloSyncError, CacheError, ConfigurationError
from apollo_sync.store import DEFAULT_CATALOG_PATH, LocalStore
from apollo_sync.sync.baseline import BaselineCache
from apollo_sync.sync.conflict_resolver import ConflictPolicy
from apollo_sync.sync.engine import TwoWaySyncEngine, TwoWaySyncOptions, TwoWaySyncResult
from apollo_sync.sync.one_way import OneWaySync, OneWaySyncResult

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_FATAL = 2

app = cyclopts.App(
    name="apollo-sync", help="Sync Apollo/Sunshine apps with a local apps.json"
)

load_dotenv()


def _get_console() -> Console:
    return Console()


def _configure_logging(config: ApolloConfig, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.logging_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _format_age(captured_at: datetime) -> str:
    seconds = (datetime.now(timezone.utc) - captured_at).total_seconds()
    if seconds < 60:
        return f"{int(seconds)} seconds ago"
    elif seconds < 3600:
        return f"{int(seconds / 60)} minutes ago"
    elif seconds < 86400:
        return f"{int(seconds / 3600)} hours ago"
    return f"{int(seconds / 86400)} days ago"


@app.command(name="sync")
def sync_apps(
    *,
    dry_run: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--dry-run", "-d"],
            help="Show what changes would be made without applying them",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        cyclopts.Parameter(
            name=["--verbose", "-v"], help="Show detailed output including the sync plan"
        ),
    ] = False,
    config: Annotated[
        Path,
        cyclopts.Parameter(name=["--config", "-c"], help="Path to apps.json"),
    ] = DEFAULT_CATALOG_PATH,
    two_way: Annotated[
        bool,
        cyclopts.Parameter(help="Three-way sync: also pull server changes into apps.json"),
    ] = False,
    conflict_resolution: Annotated[
        ConflictPolicy,
        cyclopts.Parameter(help="How to settle apps changed on both sides (two-way only)"),
    ] = ConflictPolicy.MANUAL,
    clear_cache: Annotated[
        bool,
        cyclopts.Parameter(help="Forget the cached server state before syncing"),
    ] = False,
) -> int:
    """Sync apps.json with the Apollo/Sunshine host.

    Example:
        apollo-sync sync --dry-run
        apollo-sync sync --two-way --conflict-resolution local-wins
    """
    settings = ApolloConfig.from_env()
    _configure_logging(settings, verbose)
    console = _get_console()

    try:
        settings.require_valid()
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        return EXIT_FATAL

    baseline = BaselineCache(settings.cache_dir)
    if clear_cache:
        try:
            baseline.clear()
        except CacheError as e:
            console.print(f"[red]Error: {e}[/red]")
            return EXIT_FATAL
        console.print("[dim]Cleared cached server state[/dim]")

    store = LocalStore()
    result: Union[TwoWaySyncResult, OneWaySyncResult]

    try:
        with ApolloClient.from_config(settings) as client:
            if two_way:
                engine = TwoWaySyncEngine(client, store, baseline)
                result = engine.sync(
                    TwoWaySyncOptions(
                        config_path=config,
                        dry_run=dry_run,
                        verbose=verbose,
                        conflict_policy=conflict_resolution,
                    )
                )
            else:
                local_apps = store.load_catalog(config)
                console.print(f"Loaded {len(local_apps)} apps from {config}")
                result = OneWaySync(client).sync(local_apps, dry_run=dry_run, verbose=verbose)
    except ApolloSyncError as e:
        console.print(f"[red]Sync failed: {e}[/red]")
        return EXIT_FATAL

    if isinstance(result, TwoWaySyncResult):
        _print_two_way_summary(console, result)
    else:
        _print_one_way_summary(console, result)

    return EXIT_OK if result.success else EXIT_ERRORS


def _print_errors(console: Console, errors: list[str]) -> None:
    if not errors:
        return
    console.print("\n[red]Errors encountered:[/red]")
    for error in errors:
        console.print(f"  • {error}")


def _print_completion(console: Console, dry_run: bool) -> None:
    if dry_run:
        console.print("[yellow][DRY RUN] Sync completed - no changes were made[/yellow]")
    else:
        console.print("[green]✓ Sync completed[/green]")


def _print_one_way_summary(console: Console, result: OneWaySyncResult) -> None:
    _print_completion(console, result.dry_run)

    table = Table(title="Sync Summary", show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Created", str(result.created))
    table.add_row("Updated", str(result.updated))
    table.add_row("Unchanged", str(result.unchanged))
    if result.errors:
        table.add_row("Errors", f"[red]{len(result.errors)}[/red]")
    console.print(table)

    _print_errors(console, result.errors)


def _print_two_way_summary(console: Console, result: TwoWaySyncResult) -> None:
    _print_completion(console, result.dry_run)

    table = Table(title="Two-Way Sync Summary", show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Local changes", str(result.local_changes))
    table.add_row("Server changes", str(result.remote_changes))
    table.add_row(
        "Conflicts",
        f"[yellow]{result.conflicts}[/yellow]" if result.conflicts else "0",
    )
    if result.errors:
        table.add_row("Errors", f"[red]{len(result.errors)}[/red]")
    console.print(table)

    if result.plan.conflicts:
        console.print("\n[yellow]Conflicts requiring manual resolution:[/yellow]")
        for conflict in result.plan.conflicts:
            console.print(f"  • {conflict.name}")
            for detail in conflict.conflicts:
                console.print(f"      {detail}")
        console.print(
            "[dim]Edit apps.json or the server, or rerun with "
            "--conflict-resolution local-wins / server-wins[/dim]"
        )

    _print_errors(console, result.errors)


@app.command
def status() -> int:
    """Show configuration and cached server state.

    Example:
        apollo-sync status
    """
    settings = ApolloConfig.from_env()
    _configure_logging(settings, verbose=False)
    console = _get_console()

    table = Table(title="Apollo Sync Status", show_header=False, box=None)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Endpoint", settings.endpoint or "[yellow]not set[/yellow]")
    table.add_row("Username", settings.username or "[yellow]not set[/yellow]")

    is_valid, errors = settings.validate()
    if is_valid:
        table.add_row("Configuration", "✓ Valid")
    else:
        table.add_row("Configuration", "[red]✗ Invalid[/red]")
        for error in errors:
            table.add_row("", f"  • {error}")

    baseline = BaselineCache(settings.cache_dir)
    table.add_row("Cache File", str(baseline.cache_file))

    state = baseline.load()
    if state is not None:
        captured_at = state.captured_at
        table.add_row(
            "Last Sync",
            f"{captured_at.strftime('%Y-%m-%d %H:%M:%S UTC')} ({_format_age(captured_at)})",
        )
        table.add_row("Cached Apps", str(len(state.apps)))
    else:
        table.add_row("Last Sync", "Never")

    console.print(table)
    return EXIT_OK if is_valid else EXIT_ERRORS


@app.command(name="clear-cache")
def clear_cache_command() -> int:
    """Delete the cached server state.

    The next two-way sync treats every app as new on both sides.
    """
    settings = ApolloConfig.from_env()
    _configure_logging(settings, verbose=False)
    console = _get_console()

    try:
        removed = BaselineCache(settings.cache_dir).clear()
    except CacheError as e:
        console.print(f"[red]Error: {e}[/red]")
        return EXIT_FATAL

    if removed:
        console.print("[green]✓ Cleared cached server state[/green]")
    else:
        console.print("[dim]No cached server state to clear[/dim]")
    return EXIT_OK


app.default(sync_apps)


def main():
    sys.exit(app())
