"""
Migration commands: init, generate, check, status, migrate, rollback, history.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Annotated, NoReturn, Optional, TypeVar

import typer

from mongochain import service
from mongochain.core.config import settings
from mongochain.core.context import MigrationContext
from mongochain.core.exceptions import MigrationError
from mongochain.cli.output import (
    console,
    print_error,
    print_history,
    print_info,
    print_json,
    print_status,
    print_success,
    print_validation,
    print_warning,
)

T = TypeVar("T")

DirectoryOption = Annotated[
    Optional[str],
    typer.Option("--dir", "-d", help="Migrations directory (defaults to MIGRATIONS_DIR)"),
]


def run_with_context(operation: Callable[[MigrationContext], Awaitable[T]]) -> T:
    """Run ``operation`` with a context built from settings, closing it afterwards."""

    async def _run() -> T:
        async with MigrationContext.from_settings(settings) as ctx:
            return await operation(ctx)

    return asyncio.run(_run())


def fail(action: str, error: Exception) -> NoReturn:
    """Print an error and exit with code 1."""
    if isinstance(error, MigrationError):
        print_error(f"{action}: {error.message}", {"code": error.error_code})
    else:
        print_error(f"{action}: {error}")
    raise typer.Exit(1)


def init(directory: DirectoryOption = None) -> None:
    """Create the migrations directory."""
    directory = directory or settings.migrations_dir
    try:
        created = service.init(directory)
    except OSError as e:
        fail("Init failed", e)

    if created:
        print_success(f"Created migrations directory: {directory}")
        console.print()
        console.print("Generate your first migration:")
        console.print("  [dim]mongochain generate initial-setup[/dim]")
    else:
        print_info(f"Migrations directory already exists: {directory}")


def generate(
    name: Annotated[str, typer.Argument(help="Label of the migration (e.g. add-users)")],
    directory: DirectoryOption = None,
) -> None:
    """Create a new migration file linked to the current head."""
    directory = directory or settings.migrations_dir
    try:
        file_path = service.generate(name, directory)
    except (MigrationError, ValueError, OSError) as e:
        fail("Generate failed", e)

    console.print()
    console.print(f"[green]Created migration file:[/green] {file_path}")
    console.print()
    console.print("Edit the file to declare the new schema and its operations:")
    console.print(f"  [dim]{file_path}[/dim]")


def check(
    directory: DirectoryOption = None,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Treat uncovered schema changes as errors"),
    ] = False,
    checksums: Annotated[
        bool,
        typer.Option("--checksums", "-c", help="Also compare applied migrations with their files"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON"),
    ] = False,
) -> None:
    """Validate the migration chain in memory."""
    directory = directory or settings.migrations_dir
    result = service.check(directory, "error" if strict else None)

    modified: list[str] = []
    if checksums and result.ok:
        try:
            modified = run_with_context(lambda ctx: service.verify_checksums(ctx, directory))
        except Exception as e:
            fail("Checksum verification failed", e)

    if json_output:
        print_json({**result.to_dict(), "modified": modified})
    else:
        print_validation(result)
        for migration_id in modified:
            print_warning(f"Applied migration was modified: {migration_id}")

    if not result.ok:
        raise typer.Exit(1)


def status(
    directory: DirectoryOption = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON"),
    ] = False,
) -> None:
    """Show which migrations are applied and which are pending."""
    directory = directory or settings.migrations_dir
    try:
        report = run_with_context(lambda ctx: service.status(ctx, directory))
    except Exception as e:
        fail("Failed to get migration status", e)

    if json_output:
        print_json(report.to_dict())
    else:
        print_status(report)


def migrate(
    directory: DirectoryOption = None,
    target: Annotated[
        Optional[str],
        typer.Option("--target", "-t", help="Stop after this migration"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done without applying"),
    ] = False,
) -> None:
    """Apply pending migrations."""
    directory = directory or settings.migrations_dir
    if dry_run:
        console.print("[yellow]DRY RUN - No changes will be made[/yellow]")
        console.print()

    try:
        applied = run_with_context(
            lambda ctx: service.migrate(ctx, directory, target_id=target, dry_run=dry_run)
        )
    except Exception as e:
        fail("Migration failed", e)

    if not applied:
        console.print("[green]No pending migrations to apply.[/green]")
        return

    verb = "Would apply" if dry_run else "Successfully applied"
    console.print(f"[green]{verb} {len(applied)} migration(s):[/green]")
    for migration_id in applied:
        console.print(f"  • [cyan]{migration_id}[/cyan]")


def rollback(
    directory: DirectoryOption = None,
    to: Annotated[
        Optional[str],
        typer.Option("--to", help="Roll back down to, but not including, this migration"),
    ] = None,
    all_units: Annotated[
        bool,
        typer.Option("--all", help="Roll back every applied migration"),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Accept data loss from lossy or irreversible transforms"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done without rolling back"),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Roll back applied migrations, most recent first."""
    directory = directory or settings.migrations_dir

    if not yes and not dry_run:
        confirm = typer.confirm("Are you sure you want to rollback migrations? This may cause data loss.")
        if not confirm:
            console.print("[yellow]Rollback cancelled.[/yellow]")
            raise typer.Exit(0)

    if dry_run:
        console.print("[yellow]DRY RUN - No changes will be made[/yellow]")
        console.print()

    try:
        rolled_back = run_with_context(
            lambda ctx: service.rollback(
                ctx, directory, to_id=to, all_units=all_units, force=force, dry_run=dry_run
            )
        )
    except Exception as e:
        fail("Rollback failed", e)

    if not rolled_back:
        console.print("[yellow]No migrations to rollback.[/yellow]")
        return

    verb = "Would roll back" if dry_run else "Successfully rolled back"
    console.print(f"[green]{verb} {len(rolled_back)} migration(s):[/green]")
    for migration_id in rolled_back:
        console.print(f"  • [cyan]{migration_id}[/cyan]")


def history(
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the append-only migration history."""
    try:
        records = run_with_context(service.history)
    except Exception as e:
        fail("Failed to read migration history", e)

    if json_output:
        print_json([record.to_dict() for record in records])
    else:
        print_history(records)
