"""
Command-line interface for Global Pack Sync.

This module provides the command-line entry point for saving, restoring,
comparing and deleting global package profiles.
"""

import json
import logging
import sys
from typing import Annotated, List, Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from packsync_py import __version__
from packsync_py.config import PackSyncConfig
from packsync_py.errors import PackSyncError
from packsync_py.managers import DEFAULT_SKIP_PACKAGES
from packsync_py.operations import ProfileOperations, RestoreReport

# Set up the console and logger
console = Console()
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(console=console, rich_tracebacks=True)],
)
logger = logging.getLogger("packsync")

app = typer.Typer(
    help="Snapshot globally installed Node packages and restore them anywhere.",
    add_completion=False,
)

PmOption = Annotated[
    Optional[str],
    typer.Option(
        "--pm",
        help="Package manager to use (npm, yarn or pnpm). Uses PACKSYNC_PM "
        "or auto-detects if not specified.",
    ),
]
StoreOption = Annotated[
    Optional[str],
    typer.Option(
        "--store",
        help="Directory holding the profiles. Uses PACKSYNC_HOME if not specified.",
    ),
]
ConcurrencyOption = Annotated[
    Optional[int],
    typer.Option(
        "--concurrency",
        "-c",
        min=1,
        help="Number of packages installed at the same time (default 3).",
    ),
]
ExactVersionOption = Annotated[
    bool,
    typer.Option(
        "--exact-version",
        help="Install the saved versions instead of the latest published ones.",
    ),
]


def log_error(message: str) -> None:
    """Log an error message to both logger and console."""
    logger.error(message)
    console.print(f"[red]{escape(message)}[/red]")
    return None


def get_operations(store: Optional[str]) -> Tuple[ProfileOperations, PackSyncConfig]:
    """Build the operations facade from the config file, env vars and flags."""
    config = PackSyncConfig.load()
    skip_packages = DEFAULT_SKIP_PACKAGES | set(config.extra_skip_packages)
    operations = ProfileOperations(
        config.resolve_store_dir(store), skip_packages=skip_packages
    )
    return operations, config


def resolve_use_latest(config: PackSyncConfig, exact_version: bool) -> bool:
    if exact_version:
        return False
    if config.use_latest is not None:
        return config.use_latest
    return True


def print_restore_report(report: RestoreReport) -> None:
    results = report.results
    console.print(
        f"\n[bold]Restore of '{escape(report.profile_name)}' finished[/bold] "
        f"({report.manager.value})"
    )
    console.print(f"[green]Succeeded: {len(results.succeeded)}[/green]")
    console.print(f"[yellow]Skipped: {len(results.skipped)}[/yellow]")
    console.print(f"[red]Failed: {len(results.failed)}[/red]")
    if report.excluded:
        console.print(f"Excluded: {len(report.excluded)}")
    for entry in results.failed:
        console.print(f"  [red]- {escape(entry)}[/red]")
    if report.retry_script:
        console.print(
            f"Retry the failed packages with: [cyan]{report.retry_script}[/cyan]"
        )


def select_packages(rows: List[Tuple[int, str, str]]) -> str:
    """Show the numbered package list and ask which entries to exclude."""
    table = Table(title="Packages in profile")
    table.add_column("#", justify="right")
    table.add_column("Package")
    table.add_column("Version")
    for index, name, version in rows:
        table.add_row(str(index), name, version)
    console.print(table)
    return Prompt.ask(
        "Numbers to exclude, separated by spaces (empty installs all)",
        default="",
        show_default=False,
        console=console,
    )


@app.callback()
def callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output."
    ),
    json: bool = typer.Option(False, "--json", help="Output logs in JSON format."),
    version: bool = typer.Option(
        False, "--version", help="Show the application version and exit."
    ),
) -> None:
    """
    Global Pack Sync: save your global packages, reinstall them anywhere.
    """
    if version:
        console.print(f"Global Pack Sync version: {__version__}")
        raise typer.Exit()

    if verbose:
        logger.setLevel(logging.DEBUG)
        logger.debug("Verbose logging enabled")

    if json:
        for handler in list(logging.root.handlers):
            logging.root.removeHandler(handler)
        logging.basicConfig(
            level=logging.INFO if not verbose else logging.DEBUG,
            format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"message": "%(message)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stdout,
        )
        logger.debug("JSON logging enabled")


@app.command()
def save(
    name: Annotated[
        Optional[str],
        typer.Argument(help="Profile name. Defaults to manager, version and time."),
    ] = None,
    pm: PmOption = None,
    store: StoreOption = None,
) -> None:
    """
    Snapshot the globally installed packages into a profile.
    """
    operations, config = get_operations(store)
    try:
        profile_name, profile = operations.save(
            name, manager=config.resolve_manager(pm)
        )
    except PackSyncError as e:
        log_error(str(e))
        raise typer.Exit(1)

    console.print(
        f"[green]Saved profile '{escape(profile_name)}' with "
        f"{profile.package_count} packages[/green]"
    )


@app.command()
def restore(
    name: Annotated[
        Optional[str],
        typer.Argument(help="Profile to restore. Defaults to the most recent one."),
    ] = None,
    pm: PmOption = None,
    concurrency: ConcurrencyOption = None,
    exact_version: ExactVersionOption = False,
    store: StoreOption = None,
) -> None:
    """
    Reinstall every package of a saved profile.
    """
    operations, config = get_operations(store)
    try:
        report = operations.restore(
            name,
            manager=config.resolve_manager(pm),
            concurrency=config.resolve_concurrency(concurrency),
            use_latest=resolve_use_latest(config, exact_version),
        )
    except PackSyncError as e:
        log_error(str(e))
        raise typer.Exit(1)

    print_restore_report(report)


@app.command()
def select(
    name: Annotated[
        Optional[str],
        typer.Argument(help="Profile to restore. Defaults to the most recent one."),
    ] = None,
    pm: PmOption = None,
    concurrency: ConcurrencyOption = None,
    exact_version: ExactVersionOption = False,
    store: StoreOption = None,
) -> None:
    """
    Choose which packages of a profile to reinstall.
    """
    operations, config = get_operations(store)
    try:
        report = operations.selective_restore(
            select_packages,
            name,
            manager=config.resolve_manager(pm),
            concurrency=config.resolve_concurrency(concurrency),
            use_latest=resolve_use_latest(config, exact_version),
        )
    except PackSyncError as e:
        log_error(str(e))
        raise typer.Exit(1)

    print_restore_report(report)


@app.command(name="list")
def list_profiles(
    json_output: bool = typer.Option(
        False, "--json", help="Output profiles in JSON format."
    ),
    store: StoreOption = None,
) -> None:
    """
    List saved profiles, newest first.
    """
    operations, _ = get_operations(store)
    try:
        profiles = operations.list()
    except PackSyncError as e:
        log_error(str(e))
        raise typer.Exit(1)

    if not profiles:
        console.print("No profiles saved yet")
        return

    if json_output:
        data = [{"name": name, **profile.to_dict()} for name, profile in profiles]
        console.print_json(json.dumps(data))
        return

    table = Table(title="Saved Profiles")
    table.add_column("Name")
    table.add_column("Packages", justify="right")
    table.add_column("Node")
    table.add_column("Manager")
    table.add_column("Platform")
    table.add_column("Saved At")
    for name, profile in profiles:
        table.add_row(
            name,
            str(profile.package_count),
            profile.node_version,
            f"{profile.manager.value} {profile.manager_version}",
            f"{profile.platform}/{profile.arch}",
            profile.saved_at,
        )
    console.print(table)


@app.command()
def diff(
    profile_a: Annotated[str, typer.Argument(help="Profile to compare from.")],
    profile_b: Annotated[str, typer.Argument(help="Profile to compare to.")],
    store: StoreOption = None,
) -> None:
    """
    Show packages added, removed and changed between two profiles.
    """
    operations, _ = get_operations(store)
    try:
        result = operations.diff(profile_a, profile_b)
    except PackSyncError as e:
        log_error(str(e))
        raise typer.Exit(1)

    console.print(f"[bold]{escape(profile_a)} -> {escape(profile_b)}[/bold]")
    for name, version in result.added.items():
        console.print(f"[green]+ {escape(name)}@{escape(version)}[/green]")
    for name, version in result.removed.items():
        console.print(f"[red]- {escape(name)}@{escape(version)}[/red]")
    for name, (old, new) in result.changed.items():
        console.print(
            f"[yellow]~ {escape(name)}: {escape(old)} → {escape(new)}[/yellow]"
        )

    counts = result.counts
    console.print(
        f"\nAdded: {counts['added']}, Removed: {counts['removed']}, "
        f"Changed: {counts['changed']}, Unchanged: {counts['unchanged']}"
    )


@app.command()
def delete(
    name: Annotated[str, typer.Argument(help="Profile to delete.")],
    store: StoreOption = None,
) -> None:
    """
    Delete a saved profile.
    """
    operations, _ = get_operations(store)
    try:
        operations.delete(name)
    except PackSyncError as e:
        log_error(str(e))
        raise typer.Exit(1)

    console.print(f"[green]Deleted profile '{escape(name)}'[/green]")


@app.command()
def version() -> None:
    """Show the application version and exit."""
    console.print(f"Global Pack Sync version: {__version__}")


if __name__ == "__main__":
    app()
