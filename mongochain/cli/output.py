"""Output formatting utilities for CLI."""

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text

from mongochain.migrations.models import HistoryRecord, MigrationStatusReport
from mongochain.migrations.validator import ValidationResult

console = Console()
error_console = Console(stderr=True)


def format_timestamp(ts: str | datetime | None) -> str:
    """Format a timestamp for display."""
    if ts is None:
        return "-"
    if isinstance(ts, str):
        try:
            ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        except ValueError:
            return ts
    return ts.strftime("%Y-%m-%d %H:%M:%S")


def format_direction(direction: str) -> Text:
    """Format a history direction with color."""
    colors = {"up": "green", "down": "yellow"}
    return Text(direction, style=colors.get(direction, "white"))


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, default=str, indent=2))


def print_error(message: str, details: dict | None = None) -> None:
    """Print an error message."""
    error_console.print(f"[red]Error:[/red] {message}")
    if details:
        for key, value in details.items():
            error_console.print(f"  [dim]{key}:[/dim] {value}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")


def print_status(report: MigrationStatusReport) -> None:
    """Print where the database stands relative to the chain."""
    console.print()
    console.print("[bold]Migration Status[/bold]")
    console.print(f"  Last Applied: [cyan]{report.last_applied or '-'}[/cyan]")
    console.print(f"  Head:         [cyan]{report.head_id or '-'}[/cyan]")
    console.print(f"  Applied:      [green]{report.applied_count}[/green]")
    console.print(f"  Pending:      [yellow]{len(report.pending_ids)}[/yellow]")
    console.print()

    if report.pending_ids:
        table = Table(title="Pending Migrations", show_header=True)
        table.add_column("#", style="dim", justify="right")
        table.add_column("Migration", style="yellow")
        for position, migration_id in enumerate(report.pending_ids, start=report.applied_count + 1):
            table.add_row(str(position), migration_id)
        console.print(table)
    else:
        console.print("[green]All migrations are up to date![/green]")


def print_history(records: list[HistoryRecord]) -> None:
    """Print the history log as a table."""
    if not records:
        print_info("No migration history.")
        return

    table = Table(title="Migration History", show_header=True)
    table.add_column("Migration", style="cyan")
    table.add_column("Direction")
    table.add_column("At", style="green")
    table.add_column("Time (ms)", style="dim", justify="right")

    for record in records:
        table.add_row(
            record.migration_id,
            format_direction(record.direction.value),
            format_timestamp(record.applied_at),
            str(record.execution_time_ms),
        )

    console.print(table)


def print_validation(result: ValidationResult) -> None:
    """Print the errors and warnings of a chain validation."""
    if not result.errors and not result.warnings:
        print_success("Migration chain is valid.")
        return

    table = Table(title="Validation Issues", show_header=True)
    table.add_column("Severity")
    table.add_column("Migration", style="cyan")
    table.add_column("Category", style="dim")
    table.add_column("Issue", style="white")

    for issue in result.errors:
        table.add_row(Text("error", style="red"), issue.migration_id, issue.category.value, issue.message)
    for issue in result.warnings:
        table.add_row(Text("warning", style="yellow"), issue.migration_id, issue.category.value, issue.message)

    console.print(table)
    if result.ok:
        print_success(f"Migration chain is valid with {len(result.warnings)} warning(s).")
