"""
Upload Retention CLI - Command-line interface.

Reconcile upload directories and manage the backup store from the terminal.
"""

from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from upload_retention.backup.manager import BackupManager
from upload_retention.config import Settings, load_settings
from upload_retention.core.exceptions import ConfigurationError
from upload_retention.logging_config import configure_logging
from upload_retention.retention.models import RetentionPolicy, describe_reason
from upload_retention.retention.scanner import RetentionScanner
from upload_retention.scheduler import CleanupScheduler

app = typer.Typer(
    name="upload-retention",
    help="Upload Retention - retention and backups for uploaded artifacts",
    no_args_is_help=True,
)
backups_app = typer.Typer(help="Create, list and restore backups", no_args_is_help=True)
app.add_typer(backups_app, name="backups")
console = Console()

CONFIG_OPTION = typer.Option(None, "--config", help="YAML configuration file")


def _settings(config: Optional[Path]) -> Settings:
    """Load settings or exit with a readable error."""
    try:
        settings = load_settings(config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2)
    configure_logging(settings.log_level)
    return settings


def _backup_manager(settings: Settings) -> BackupManager:
    return BackupManager(
        backup_dir=settings.resolved_backup_dir,
        policy=settings.backup_policy(),
    )


def _build_policy(
    settings: Settings,
    dry_run: bool,
    force_all: bool,
    max_age_days: Optional[float],
    max_files: Optional[int],
    keep_backups: Optional[bool],
) -> RetentionPolicy:
    policy = settings.retention_policy(dry_run=dry_run, force_all=force_all)
    updates: dict = {}
    if keep_backups is not None:
        updates["keep_backups"] = keep_backups
    if not force_all:
        if max_age_days is not None:
            updates["max_age"] = max_age_days * 24 * 60 * 60 * 1000
        if max_files is not None:
            updates["max_files"] = max_files
    if not updates:
        return policy
    return RetentionPolicy(**{**policy.model_dump(), **updates})


def _format_mb(size: int) -> str:
    return f"{size / (1024 * 1024):.2f} MB"


@app.command()
def reconcile(
    directory: Optional[Path] = typer.Argument(None, help="Upload directory (default: from settings)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report what would be deleted"),
    force_all: bool = typer.Option(
        False, "--force-all", help="Keep only the newest version of each document"
    ),
    max_age_days: Optional[float] = typer.Option(None, "--max-age-days", help="Age limit in days"),
    max_files: Optional[int] = typer.Option(None, "--max-files", help="Global file cap"),
    keep_backups: Optional[bool] = typer.Option(
        None, "--keep-backups/--no-keep-backups", help="Keep one previous version per document"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the deletion plan"),
    config: Optional[Path] = CONFIG_OPTION,
):
    """Apply the retention policy to an upload directory."""
    settings = _settings(config)
    target = directory or settings.uploads_dir
    policy = _build_policy(settings, dry_run, force_all, max_age_days, max_files, keep_backups)

    console.print(
        Panel.fit(
            f"[bold blue]Upload Cleanup[/bold blue]\n"
            f"Directory: {target}\n"
            f"Mode: {'DRY RUN' if dry_run else 'LIVE'}\n"
            f"Force all: {force_all}",
        )
    )
    max_age = "unlimited" if policy.max_age is None else f"{policy.max_age_ms / 86_400_000:g} days"
    max_files_text = "unlimited" if policy.max_files is None else str(policy.max_files)
    console.print(
        f"Max age: {max_age}  Max files: {max_files_text}  Keep backups: {policy.keep_backups}"
    )

    scanner = RetentionScanner(io_workers=settings.io_workers)
    result = scanner.reconcile(target, policy)

    if not result.success:
        console.print(f"[red]Cleanup failed:[/red] {result.error}")
        raise typer.Exit(1)

    planned = [d for d in result.decisions if d.is_deletion]
    if verbose and planned:
        group_sizes: dict[str, int] = {}
        for decision in result.decisions:
            group_sizes[decision.logical_key] = group_sizes.get(decision.logical_key, 0) + 1

        table = Table(title=f"Deletion Plan ({len(planned)} files)")
        table.add_column("Name", style="cyan")
        table.add_column("Age", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Reason")
        for decision in planned:
            table.add_row(
                decision.name,
                f"{decision.age // 3_600_000}h",
                f"{decision.size:,}",
                describe_reason(
                    decision.reason,  # type: ignore[arg-type]
                    policy,
                    policy.versions_to_keep(group_sizes[decision.logical_key]),
                ),
            )
        console.print(table)

    console.print(
        Panel.fit(
            f"[bold]Status:[/bold] [green]SUCCESS[/green]\n"
            f"Files scanned: {result.total_files} ({result.unique_files} documents)\n"
            f"Files kept: {result.kept} ({result.backups_kept} backups)\n"
            + (
                f"Files that would be deleted: {result.planned_deletions}\n"
                f"Space that would be freed: {_format_mb(result.reclaimable_bytes)}"
                if dry_run
                else f"Files deleted: {result.deleted} ({result.failed} failures)\n"
                f"Space freed: {_format_mb(result.freed_bytes)}"
            ),
            title="Cleanup Complete",
        )
    )

    if result.failed:
        console.print(f"[yellow]Could not delete:[/yellow] {', '.join(result.failures)}")
    if dry_run and result.planned_deletions == 0:
        console.print("\nNo files would be deleted with current settings.")
        console.print("Use --force-all to see what a full purge would remove.")


@app.command()
def schedule(
    directory: Optional[Path] = typer.Argument(None, help="Upload directory (default: from settings)"),
    interval_hours: Optional[float] = typer.Option(
        None, "--interval-hours", "-i", help="Hours between cleanups"
    ),
    once: bool = typer.Option(False, "--once", help="Run a single cycle and exit"),
    config: Optional[Path] = CONFIG_OPTION,
):
    """Reconcile an upload directory periodically until interrupted."""
    settings = _settings(config)
    target = directory or settings.uploads_dir
    if interval_hours is None:
        interval_hours = settings.cleanup_interval_hours
    try:
        scheduler = CleanupScheduler(
            RetentionScanner(io_workers=settings.io_workers),
            target,
            settings.retention_policy(),
            interval_hours=interval_hours,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--interval-hours")

    if once:
        result = scheduler.run_once()
        if not result.success:
            console.print(f"[red]Cleanup failed:[/red] {result.error}")
            raise typer.Exit(1)
        console.print(f"[green]Cleanup complete:[/green] deleted {result.deleted}, kept {result.kept}")
        return

    console.print(
        f"[bold yellow]Scheduling cleanup of {target} every "
        f"{scheduler.interval_seconds / 3600:g} hours[/bold yellow]"
    )
    console.print("[dim]Press Ctrl+C to exit[/dim]")
    scheduler.start()
    try:
        while not scheduler.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Scheduler interrupted[/bold yellow]")
    finally:
        scheduler.stop()


@backups_app.command("list")
def list_backups(config: Optional[Path] = CONFIG_OPTION):
    """List valid backups, newest first."""
    settings = _settings(config)
    records = _backup_manager(settings).list_backups()

    if not records:
        console.print("[yellow]No backups found[/yellow]")
        return

    table = Table(title=f"Backups ({len(records)})")
    table.add_column("Created", style="cyan")
    table.add_column("Name")
    table.add_column("Original")
    table.add_column("Size", justify="right")

    for record in records:
        table.add_row(
            record.date[:19].replace("T", " "),
            record.name,
            record.original_path,
            f"{record.size:,}",
        )

    console.print(table)


def _parse_metadata(pairs: List[str]) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got {pair!r}", param_hint="--meta")
        metadata[key] = value
    return metadata


@backups_app.command("create")
def create_backup(
    path: Path = typer.Argument(..., help="File about to be overwritten"),
    meta: List[str] = typer.Option([], "--meta", "-m", help="Metadata as key=value"),
    config: Optional[Path] = CONFIG_OPTION,
):
    """Snapshot a file into the backup store."""
    settings = _settings(config)
    metadata = _parse_metadata(meta)
    manager = _backup_manager(settings)

    if not manager.init():
        console.print(f"[red]Backup store unavailable:[/red] {manager.backup_dir}")
        raise typer.Exit(1)

    result = manager.create_backup(path, metadata)
    if not result.success:
        console.print(f"[red]Backup failed:[/red] {result.error}")
        raise typer.Exit(1)
    if result.skipped:
        console.print(f"[yellow]Skipped:[/yellow] {result.reason}")
        return

    console.print(f"[green]Backup created:[/green] {result.backup_name}")
    if result.pruned:
        console.print(f"Pruned {result.pruned} old backup(s)")


@backups_app.command("restore")
def restore_backup(
    name: str = typer.Argument(..., help="Backup filename"),
    target: Optional[Path] = typer.Option(
        None, "--target", "-t", help="Restore destination (default: original path)"
    ),
    config: Optional[Path] = CONFIG_OPTION,
):
    """Restore a backup to its original path or a new target."""
    settings = _settings(config)
    result = _backup_manager(settings).restore_backup(name, target)

    if not result.success:
        console.print(f"[red]Restore failed:[/red] {result.error}")
        raise typer.Exit(1)

    console.print(f"[green]Restored to:[/green] {result.restored_to}")


@app.command()
def version():
    """Show Upload Retention version."""
    from upload_retention import __version__

    console.print(f"Upload Retention v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
