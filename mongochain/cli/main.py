"""CLI entry point for mongochain."""

from typing import Annotated, Optional

import typer
from rich.console import Console

from mongochain import __version__
from mongochain.cli.commands import migrations
from mongochain.log.logging import configure_logging

# Create main app
app = typer.Typer(
    name="mongochain",
    help="mongochain - MongoDB schema migrations and index reconciliation",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register commands
app.command("init")(migrations.init)
app.command("generate")(migrations.generate)
app.command("check")(migrations.check)
app.command("status")(migrations.status)
app.command("migrate")(migrations.migrate)
app.command("rollback")(migrations.rollback)
app.command("history")(migrations.history)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"mongochain version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", "-l", envvar="LOG_LEVEL", help="Log level"),
    ] = None,
    json_logs: Annotated[
        Optional[bool],
        typer.Option("--json-logs/--text-logs", help="Emit logs as JSON"),
    ] = None,
) -> None:
    """
    mongochain CLI.

    Apply, roll back and validate a chain of MongoDB migrations.

    [bold]Quick Start:[/bold]

        # Create the migrations directory
        mongochain init

        # Create a migration linked to the current head
        mongochain generate add-users

        # Validate the chain without touching the database
        mongochain check

        # Apply pending migrations
        mongochain migrate

    [bold]Environment Variables:[/bold]

        MONGODB           - MongoDB URI
        MONGODB_DATABASE  - Database name
        MIGRATIONS_DIR    - Migrations directory
    """
    configure_logging(log_level=log_level, json_logs=json_logs)


if __name__ == "__main__":
    app()
