"""
Advisor Sync - CLI Entry Point.

Usage:
    advisor-sync health          Check configuration
    advisor-sync pull            Pull the remote record into local storage
    advisor-sync push DOMAIN     Push one domain
    advisor-sync push-all        Push every domain (first-time migration)
    advisor-sync backup          Snapshot local data now
    advisor-sync --help          Show help
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="advisor-sync",
    help="Advisor Sync - keep local health-advisor data and Supabase in step.",
    add_completion=False,
)
console = Console()

DbOption = typer.Option(None, "--db", help="Local SQLite store (defaults to LOCAL_DB_PATH)")
UserOption = typer.Option(None, "--user", "-u", help="User id (defaults to DEV_USER_ID)")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Configure logging for every command."""
    from advisor_sync.config import get_settings

    try:
        level = "DEBUG" if verbose else get_settings().log_level
    except Exception:
        level = "DEBUG" if verbose else "INFO"

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


# =============================================================================
# Helpers
# =============================================================================


def _local_store(db: Optional[Path]):
    from advisor_sync.config import get_settings
    from advisor_sync.storage import LocalStore, SqliteBackend

    settings = get_settings()
    path = db or Path(settings.local_db_path).expanduser()
    backend = SqliteBackend(path, capacity_bytes=settings.local_quota_bytes)
    return LocalStore(
        backend,
        default_profile_id=settings.default_profile_id,
        prune_caps=settings.prune_caps,
    )


def _with_runtime(
    action: Callable[[Any], Awaitable[Any]],
    db: Optional[Path] = None,
    user: Optional[str] = None,
) -> Any:
    """Build a Supabase-backed runtime, run one action, shut down cleanly."""
    from advisor_sync.config import get_settings
    from advisor_sync.runtime import SyncRuntime
    from advisor_sync.storage import SqliteBackend

    settings = get_settings()
    if not settings.has_supabase:
        console.print("[red]❌ Supabase is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY.[/red]")
        raise typer.Exit(1)
    if not (user or settings.dev_user_id):
        console.print("[red]❌ No user. Pass --user or set DEV_USER_ID.[/red]")
        raise typer.Exit(1)

    backend = None
    if db is not None:
        backend = SqliteBackend(db, capacity_bytes=settings.local_quota_bytes)
    runtime = SyncRuntime.from_settings(settings, backend=backend, user_id=user)

    async def run() -> Any:
        try:
            return await action(runtime)
        finally:
            await runtime.stop()

    return asyncio.run(run())


def _print_errors(errors: list[str]) -> None:
    for error in errors:
        console.print(f"  [yellow]⚠️  {error}[/yellow]")


def describe_value(value: Any) -> str:
    """Type and serialized size of a remote column, e.g. 'array[3] (120 bytes)'."""
    size = len(json.dumps(value))
    kind = f"array[{len(value)}]" if isinstance(value, list) else type(value).__name__
    return f"{kind} ({size} bytes)"


# =============================================================================
# Info
# =============================================================================


@app.command()
def health() -> None:
    """Check configuration."""
    from advisor_sync.config import get_settings

    console.print("\n[bold]Advisor Sync Health Check[/bold]\n")

    try:
        settings = get_settings()
        console.print("✅ Configuration loaded")
        console.print(f"   Environment: {settings.sync_env}")
        console.print(f"   Log level: {settings.log_level}")

        if settings.supabase_url and settings.supabase_url.startswith("https://"):
            console.print("✅ Supabase URL configured")
        elif settings.supabase_url:
            console.print("⚠️  Supabase URL may be invalid")
        else:
            console.print("ℹ️  Supabase not configured (local-only)")

        if settings.dev_user_id:
            console.print(f"✅ CLI user: {settings.dev_user_id}")
        else:
            console.print("ℹ️  DEV_USER_ID not set")

        console.print(f"   Local store: {settings.local_db_path}")
        console.print(f"   Backup retention: {settings.backup_retention_days} days")

        console.print("\n[green]All checks passed![/green]")

    except Exception as e:
        console.print(f"\n[red]❌ Configuration error: {e}[/red]")
        console.print("[dim]Make sure you have a .env file with required variables.[/dim]")
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from advisor_sync import __version__

    console.print(f"Advisor Sync version {__version__}")


@app.command()
def domains() -> None:
    """List synchronized domains and their storage mapping."""
    from advisor_sync.registry import REGISTRY

    table = Table(title="Synchronized Domains")
    table.add_column("Domain", style="bold blue")
    table.add_column("Local key")
    table.add_column("Remote column")
    table.add_column("Rule", style="dim")

    for spec in REGISTRY:
        table.add_row(spec.domain.value, spec.local_key, spec.remote_field, spec.rule.value)

    console.print(table)


@app.command()
def status(db: Optional[Path] = DbOption) -> None:
    """Show what is stored locally for the active profile."""
    local = _local_store(db)

    table = Table(title=f"Local data ({local.active_profile_id})")
    table.add_column("Domain", style="bold blue")
    table.add_column("Stored")
    table.add_column("Updated", style="dim")

    for spec in local.registry:
        record = local.get_record(spec.domain)
        if record is None:
            table.add_row(spec.domain.value, "[dim]-[/dim]", "")
            continue
        updated = record.updated_at.isoformat() if record.updated_at else "?"
        table.add_row(spec.domain.value, describe_value(record.blob), updated)

    console.print(table)


# =============================================================================
# Sync
# =============================================================================


@app.command()
def pull(db: Optional[Path] = DbOption, user: Optional[str] = UserOption) -> None:
    """Pull the remote record, resolving conflicts per domain."""
    result = _with_runtime(lambda runtime: runtime.engine.refresh(), db, user)

    if not result.success:
        console.print(f"[red]❌ Pull failed: {result.error}[/red]")
        raise typer.Exit(1)
    if not result.record_found:
        console.print("ℹ️  No remote record yet (new user)")
        return

    console.print(
        f"✅ Loaded: {len(result.loaded)}, Preserved: {len(result.preserved)}, "
        f"Pushed: {len(result.pushed)}, Unchanged: {len(result.unchanged)}"
    )
    _print_errors(result.errors)


@app.command()
def push(
    domain: str = typer.Argument(..., help="Domain name or local key"),
    db: Optional[Path] = DbOption,
    user: Optional[str] = UserOption,
) -> None:
    """Push one domain to the remote record."""
    from advisor_sync.errors import UnknownDomainError
    from advisor_sync.registry import REGISTRY

    try:
        REGISTRY.resolve(domain)
    except UnknownDomainError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    result = _with_runtime(lambda runtime: runtime.engine.push(domain), db, user)

    if not result.success:
        console.print(f"[red]❌ Failed to sync {domain}: {result.error}[/red]")
        raise typer.Exit(1)
    if result.skipped:
        console.print(f"⏭️  No local data for {domain}")
    else:
        console.print(f"✅ Synced {domain}")


@app.command("push-all")
def push_all(db: Optional[Path] = DbOption, user: Optional[str] = UserOption) -> None:
    """Push every non-empty domain in one update (data migration)."""
    result = _with_runtime(lambda runtime: runtime.engine.push_all(), db, user)

    if not result.success:
        console.print(f"[red]❌ Sync all failed: {result.error}[/red]")
        raise typer.Exit(1)
    if not result.synced:
        console.print("ℹ️  No data to sync")
        return
    console.print(f"✅ Synced {len(result.synced)} data types: {', '.join(result.synced)}")
    _print_errors(result.errors)


@app.command()
def verify(user: Optional[str] = UserOption) -> None:
    """Show what the remote record holds, per column."""

    async def fetch(runtime):
        user_id = runtime.engine.auth.current_user_id()
        return await runtime.engine.remote.fetch_user_record(user_id, runtime.engine.registry.remote_fields())

    try:
        record = _with_runtime(fetch, user=user)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]❌ Failed to read: {e}[/red]")
        raise typer.Exit(1)

    if record is None:
        console.print("ℹ️  No remote record yet")
        return

    from advisor_sync.registry import REGISTRY

    for column in REGISTRY.remote_fields():
        value = record.get(column)
        if value:
            console.print(f"✅ {column}: {describe_value(value)}")
        else:
            console.print(f"⏭️  {column}: null")


# =============================================================================
# Backups
# =============================================================================


@app.command()
def backup(db: Optional[Path] = DbOption, user: Optional[str] = UserOption) -> None:
    """Snapshot local data to today's remote backup."""
    result = _with_runtime(lambda runtime: runtime.backups.create_backup(), db, user)

    if not result.success:
        console.print(f"[red]❌ Backup failed: {result.error}[/red]")
        raise typer.Exit(1)
    if result.skipped:
        console.print("ℹ️  No data to backup")
        return
    console.print(f"✅ Backup saved for {result.backup_date} ({len(result.domains)} domains)")


@app.command()
def backups(user: Optional[str] = UserOption) -> None:
    """List available backups, newest first."""
    result = _with_runtime(lambda runtime: runtime.backups.list_backups(), user=user)

    if not result.success:
        console.print(f"[red]❌ Failed to list backups: {result.error}[/red]")
        raise typer.Exit(1)
    if not result.backups:
        console.print("[dim]No backups yet.[/dim]")
        return

    table = Table(title="Backups")
    table.add_column("Date", style="bold")
    table.add_column("Created", style="dim")
    for info in result.backups:
        table.add_row(info.date, info.created_at or "")
    console.print(table)


@app.command()
def restore(
    date: str = typer.Argument(..., help="Backup date (YYYY-MM-DD)"),
    db: Optional[Path] = DbOption,
    user: Optional[str] = UserOption,
) -> None:
    """Restore local data from a dated backup."""
    result = _with_runtime(lambda runtime: runtime.backups.restore_from_backup(date), db, user)

    if not result.success:
        console.print(f"[red]❌ Restore failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print(f"✅ Restored {len(result.restored)} items from {date}")
    for key in result.failed:
        console.print(f"  [yellow]⚠️  Failed to restore {key}[/yellow]")


@app.command("export")
def export_data(
    path: Optional[Path] = typer.Argument(None, help="Output file"),
    db: Optional[Path] = DbOption,
) -> None:
    """Write the active profile's data to a JSON backup file."""
    from advisor_sync.backup.export import default_filename, write_export

    local = _local_store(db)
    path = path or Path(default_filename())
    summary = write_export(local, path)

    console.print(f"✅ Exported to {path}")
    if summary.get("profileName"):
        console.print(f"   Profile: {summary['profileName']}")
    console.print(
        f"   Chats: {summary['chatCount']}, Activities: {summary['activityCount']}, "
        f"Insights: {summary['insightCount']}"
    )


@app.command("import")
def import_data(
    path: Path = typer.Argument(..., help="Backup file to import"),
    db: Optional[Path] = DbOption,
) -> None:
    """Restore the active profile's data from a JSON backup file."""
    from advisor_sync.backup.export import import_export, read_export

    try:
        document = read_export(path)
    except (OSError, ValueError) as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(1)

    result = import_export(_local_store(db), document)
    console.print(f"✅ Imported {len(result.restored)} items")
    for key in result.failed:
        console.print(f"  [yellow]⚠️  Failed to import {key}[/yellow]")


if __name__ == "__main__":
    app()
