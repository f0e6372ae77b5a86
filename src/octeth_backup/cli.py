"""
Octeth Backup CLI - Command-line interface.

Back up, restore, clean up and test storage from the terminal.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from octeth_backup.config import Settings, load_settings
from octeth_backup.core.exceptions import (
    BackupSystemError,
    ConfigurationError,
    ToolMissingError,
    format_exception,
)
from octeth_backup.core.models import ArtifactRef, RunStatus, StorageStats, Tier
from octeth_backup.engine import DockerServiceController, XtraBackupEngine
from octeth_backup.logging_setup import configure_logging
from octeth_backup.notifications import NotificationSink, human_size
from octeth_backup.orchestrator import BackupOrchestrator
from octeth_backup.restore import RestoreCoordinator
from octeth_backup.retention import RetentionEnforcer, collect_stats, prune_logs
from octeth_backup.storage import (
    SelfTestStatus,
    StorageBackend,
    create_local_backend,
    create_remote_backend,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="octeth-backup",
    help="Octeth Backup - MySQL hot backups with tiered retention and cloud replication",
    no_args_is_help=True,
)
console = Console()

# test-storage exit codes
EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_CONFIG = 2
EXIT_TOOL_MISSING = 3

STATUS_STYLES = {
    SelfTestStatus.PASS: "[green]PASS[/green]",
    SelfTestStatus.FAIL: "[red]FAIL[/red]",
    SelfTestStatus.SKIP: "[yellow]SKIP[/yellow]",
}


def _load(config: Path | None, exit_code: int = 1) -> Settings:
    try:
        return load_settings(config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(exit_code)


def _controller(settings: Settings) -> DockerServiceController:
    return DockerServiceController(
        docker_cmd=settings.engine.docker_cmd,
        user=settings.mysql.user,
        password=settings.mysql.password,
    )


def _remote_or_warn(settings: Settings) -> StorageBackend | None:
    """Build the cloud backend, downgrading a missing SDK to a warning."""
    try:
        return create_remote_backend(settings)
    except ToolMissingError as e:
        logger.warning(f"Cloud storage unavailable, continuing without it: {e}")
        return None


def _confirm(question: str) -> bool:
    console.print(Panel(question, border_style="yellow"))
    answer = typer.prompt("Type 'yes' to confirm", default="", show_default=False)
    return answer.strip() == "yes"


def _artifact_table(title: str, listing: dict[Tier, list[ArtifactRef]]) -> Table:
    table = Table(title=title)
    table.add_column("Tier", style="magenta")
    table.add_column("Name", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Date")
    table.add_column("Checksum", justify="center")

    for tier, refs in listing.items():
        for ref in refs:
            table.add_row(
                tier.value,
                ref.filename,
                human_size(ref.size_bytes),
                ref.modified_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
                "[green]✓[/green]" if ref.has_checksum else "[red]✗[/red]",
            )
    return table


def _stats_table(stats: StorageStats) -> Table:
    table = Table(title=f"Backup Statistics: {stats.location}")
    table.add_column("Tier", style="magenta")
    table.add_column("Count", justify="right")
    table.add_column("Size", justify="right")
    for tier_stats in stats.tiers:
        table.add_row(tier_stats.tier.value, str(tier_stats.count), human_size(tier_stats.size_bytes))
    table.add_row("[bold]total[/bold]", str(stats.total_count), human_size(stats.total_bytes))
    return table


@app.command()
def backup(
    config: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show errors"),
):
    """Run one hot backup."""
    settings = _load(config)
    configure_logging(settings.paths.log_file, verbose=verbose, quiet=quiet)

    orchestrator = BackupOrchestrator(
        settings,
        engine=XtraBackupEngine(settings.engine.binary, settings.engine.extra_opts),
        controller=_controller(settings),
        local=create_local_backend(settings),
        remote=_remote_or_warn(settings),
        notifier=NotificationSink.from_settings(settings.notifications),
    )
    report = orchestrator.run()

    if not report.is_success():
        console.print(f"[red]Backup failed:[/red] {'; '.join(report.errors)}")
        console.print(f"[dim]Log file: {settings.paths.log_file}[/dim]")
        raise typer.Exit(1)

    if not quiet:
        lines = [
            "[bold green]Backup completed successfully[/bold green]",
            f"Name: {report.name}",
            f"Type: {report.tier.value}",
            f"Size: {human_size(report.artifact.size_bytes)}",
            f"Duration: {report.duration_seconds:.0f}s",
            f"Location: {report.artifact.path}",
            f"Cloud Storage: {settings.cloud.provider.value if report.replicated else 'none'}",
        ]
        lines += [f"[yellow]Warning: {w}[/yellow]" for w in report.warnings]
        console.print(Panel.fit("\n".join(lines)))


@app.command()
def restore(
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Restore from a local backup file"),
    cloud: tuple[str, str] = typer.Option(
        (None, None), "--cloud", "-c", metavar="NAME TIER", help="Restore from a cloud backup"
    ),
    force: bool = typer.Option(False, "--force", "-F", help="Restore even if the checksum fails"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    allow_no_safety_copy: bool = typer.Option(
        False, "--allow-no-safety-copy", help="Continue if the current data cannot be copied"
    ),
    list_local: bool = typer.Option(False, "--list", "-l", help="List local backups"),
    list_cloud: bool = typer.Option(False, "--list-cloud", "-L", help="List cloud backups"),
    config: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
):
    """Restore the database from a backup, or list available backups."""
    settings = _load(config)
    configure_logging(settings.paths.log_file, verbose=verbose)

    local = create_local_backend(settings)

    if list_local:
        coordinator = RestoreCoordinator(settings, _controller(settings), local)
        listing = coordinator.list_artifacts(local)
        console.print(_artifact_table(f"Local Backups: {local.label}", listing))
        console.print(f"Total: {sum(len(refs) for refs in listing.values())} backup(s)")
        return

    try:
        remote = create_remote_backend(settings)
    except ToolMissingError as e:
        if list_cloud or cloud[0]:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        remote = None

    if list_cloud:
        if remote is None:
            console.print("[yellow]Cloud storage is disabled in configuration[/yellow]")
            raise typer.Exit(1)
        coordinator = RestoreCoordinator(settings, _controller(settings), local, remote)
        try:
            listing = coordinator.list_artifacts(remote)
        except Exception as e:
            console.print(f"[red]Cannot list {remote.label}:[/red] {format_exception(e)}")
            raise typer.Exit(1)
        console.print(_artifact_table(f"Cloud Backups: {remote.label}", listing))
        return

    if (file is None) == (cloud[0] is None):
        console.print("[red]Specify exactly one of --file or --cloud NAME TIER[/red]")
        raise typer.Exit(1)

    coordinator = RestoreCoordinator(
        settings,
        _controller(settings),
        local,
        remote,
        notifier=NotificationSink.from_settings(settings.notifications),
        confirm=_confirm,
    )
    options = {"force": force, "assume_yes": yes, "allow_no_safety_copy": allow_no_safety_copy}

    try:
        if file is not None:
            report = coordinator.restore_file(file, **options)
        else:
            name, tier_name = cloud
            try:
                tier = Tier(tier_name.lower())
            except ValueError:
                console.print(f"[red]Invalid tier {tier_name!r}: use daily, weekly or monthly[/red]")
                raise typer.Exit(1)
            report = coordinator.restore_cloud(name, tier, **options)
    except BackupSystemError as e:
        console.print(f"[red]Restore failed:[/red] {e}")
        raise typer.Exit(1)

    if report.status == RunStatus.CANCELLED:
        console.print("Restore cancelled")
        return

    lines = [
        "[bold green]Restore completed successfully![/bold green]",
        f"Database: {settings.mysql.database}",
        f"Tables: {report.table_count if report.table_count is not None else 'unknown'}",
        f"Safety backup: {report.safety_copy or 'none'}",
    ]
    lines += [f"[yellow]Warning: {w}[/yellow]" for w in report.warnings]
    console.print(Panel.fit("\n".join(lines)))


@app.command()
def cleanup(
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would be deleted"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every decision"),
    stats: bool = typer.Option(False, "--stats", "-s", help="Show backup statistics only"),
    config: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
):
    """Apply retention to local and cloud backups and prune old logs."""
    settings = _load(config)
    configure_logging(settings.paths.log_file, verbose=verbose)

    backends: list[StorageBackend] = [create_local_backend(settings)]
    remote = _remote_or_warn(settings)
    if remote is not None:
        backends.append(remote)

    if not stats:
        if dry_run:
            console.print("[yellow]DRY RUN MODE - No files will be deleted[/yellow]")

        report = RetentionEnforcer(backends, settings.retention, dry_run=dry_run).enforce()
        logs = prune_logs(settings.paths.log_file.parent, settings.log_retention_days, dry_run)

        table = Table(title="Retention")
        table.add_column("Location", style="cyan")
        table.add_column("Tier", style="magenta")
        table.add_column("Found", justify="right")
        table.add_column("Keep", justify="right")
        table.add_column("Would delete" if dry_run else "Deleted", justify="right")
        for decision in report.decisions:
            removed = len(decision.excess) if dry_run else len(decision.deleted)
            table.add_row(
                decision.location,
                decision.tier.value,
                str(decision.found),
                str(decision.keep),
                str(removed),
            )
            if verbose:
                for ref in decision.excess:
                    table.add_row("", "", "", "", f"[dim]{ref.filename}[/dim]")
        console.print(table)
        console.print(
            f"{'Would free' if dry_run else 'Freed'} {human_size(report.freed_bytes)}; "
            f"{len(logs.removed)} old log file(s) {'would be ' if dry_run else ''}removed"
        )
        for error in report.errors:
            console.print(f"[red]{error}[/red]")

    for backend in backends:
        try:
            console.print(_stats_table(collect_stats(backend)))
        except Exception as e:
            console.print(f"[red]Cannot read statistics for {backend.label}:[/red] {format_exception(e)}")

    if not stats and report.errors:
        raise typer.Exit(1)


@app.command("test-storage")
def test_storage(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print PASS, FAIL or SKIP"),
    config: Optional[Path] = typer.Option(None, "--config", help="Configuration file"),
):
    """
    Test connectivity to the configured cloud storage.

    Exit codes: 0 pass, 1 test failure, 2 configuration error, 3 tool missing.
    """
    try:
        settings = load_settings(config)
    except ConfigurationError as e:
        console.print("FAIL" if quiet else f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(EXIT_CONFIG)
    configure_logging(None, verbose=verbose, quiet=quiet or not verbose)

    if not settings.cloud.enabled:
        if quiet:
            console.print("SKIP")
        else:
            console.print("Cloud storage is disabled (CLOUD_STORAGE_PROVIDER=none)")
            console.print("To test cloud storage, set CLOUD_STORAGE_PROVIDER to: s3, gcs, or r2")
        raise typer.Exit(EXIT_PASS)

    try:
        backend = create_remote_backend(settings)
    except ToolMissingError as e:
        console.print("FAIL" if quiet else f"[red]{e}[/red]")
        raise typer.Exit(EXIT_TOOL_MISSING)

    report = backend.self_test()

    if quiet:
        console.print("PASS" if report.passed else "FAIL")
        raise typer.Exit(report.exit_code)

    table = Table(title=f"Storage Test: {report.provider} ({report.location})")
    table.add_column("Check", style="cyan")
    table.add_column("Result")
    table.add_column("Detail")
    for check in report.checks:
        table.add_row(check.name, STATUS_STYLES[check.status], check.message)
    console.print(table)

    if report.passed:
        console.print("[bold green]All tests passed! ✓[/bold green]")
    else:
        console.print("[bold red]Tests failed! ✗[/bold red]")
    raise typer.Exit(report.exit_code)


@app.command()
def version():
    """Show Octeth Backup version."""
    from octeth_backup import __version__

    console.print(f"Octeth Backup v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
