"""
Service functions behind the CLI.

Each function works on a migrations directory and, for the commands that
touch the database, an explicit ``MigrationContext``.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from mongochain.core.config import settings
from mongochain.core.context import MigrationContext
from mongochain.core.exceptions import MigrationError
from mongochain.log.logging import logger
from mongochain.migrations.chain import build_chain
from mongochain.migrations.discovery import discover_migrations
from mongochain.migrations.executor import MigrationExecutor
from mongochain.migrations.history import HistoryStore
from mongochain.migrations.identity import generate_migration_id
from mongochain.migrations.models import HistoryRecord, MigrationStatusReport, MigrationUnit
from mongochain.migrations.validator import IssueCategory, ValidationResult, validate_chain

README_TEXT = """# Migrations

Each file in this directory is one migration, named after its identity
(``YYYY_MM_DD_HHMM_<ULID>@label.py``). Create new ones with
``mongochain generate <label>``; never edit a migration once it is applied.
"""


def load_chain(directory: str) -> list[MigrationUnit]:
    """Discover the migration files of ``directory`` and link them into a chain."""
    return build_chain(discover_migrations(directory))


def init(directory: str) -> bool:
    """
    Create the migrations directory.

    Returns:
        True if the directory was created, False if it already existed.
    """
    path = Path(directory)
    if path.exists():
        logger.info("Migrations directory already exists", event_type="init_skipped", directory=directory)
        return False

    path.mkdir(parents=True)
    (path / "README.md").write_text(README_TEXT)
    logger.info("Migrations directory created", event_type="init_done", directory=directory)
    return True


def render_migration(migration_id: str, parent_id: Optional[str], label: str, created: datetime) -> str:
    """Source of a new migration file."""
    if parent_id is None:
        parent_line = "parent_id = None"
        schema_block = 'schema = {"collections": {}, "shared_collections": {}, "templates": {}}'
        imports = "from mongochain import schema as s"
    else:
        parent_line = f'parent_id = "{parent_id}"'
        schema_block = (
            "# Start from the parent's schema and edit it below.\n"
            "schema = load_parent_schema(__file__, parent_id)"
        )
        imports = (
            "from mongochain import schema as s\n"
            "from mongochain.migrations.discovery import load_parent_schema"
        )

    return f'''"""
Migration: {label}
Created: {created.strftime('%Y-%m-%d %H:%M')}
"""

{imports}

id = "{migration_id}"
{parent_line}

{schema_block}


def migrate(m):
    """Describe the operations that move the database to ``schema``."""
    return m.compile()
'''


def generate(name: str, directory: str, now: Optional[datetime] = None) -> Path:
    """
    Write a new migration file linked to the current head of the chain.

    Args:
        name: Human label of the migration.
        directory: Migrations directory (created when missing).
        now: Creation time, for the identity (UTC now by default).

    Returns:
        Path of the new file.

    Raises:
        ValueError: If ``name`` has no usable characters.
        ChainIntegrityError: If the existing files do not form a chain.
    """
    chain = load_chain(directory) if os.path.isdir(directory) else []
    parent_id = chain[-1].id if chain else None

    migration_id = generate_migration_id(name, now)
    created = now or datetime.now()

    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    file_path = path / f"{migration_id}.py"
    file_path.write_text(render_migration(migration_id, parent_id, name, created))

    logger.info(
        f"Generated migration {migration_id}",
        event_type="migration_generated",
        migration_id=migration_id,
        parent_id=parent_id,
    )
    return file_path


def check(directory: str, drift_strictness: Optional[str] = None) -> ValidationResult:
    """
    Validate the chain of ``directory`` in memory.

    Chain integrity problems are reported as errors of the result instead of
    being raised, so the CLI can print them alongside the rest.
    """
    try:
        chain = load_chain(directory)
    except MigrationError as e:
        result = ValidationResult()
        result.error("-", IssueCategory.DEFINITION, e.message)
        return result

    return validate_chain(chain, drift_strictness or settings.drift_strictness)


async def verify_checksums(ctx: MigrationContext, directory: str) -> list[str]:
    """Applied migrations whose file changed since they were applied."""
    return await HistoryStore(ctx).verify_checksums(load_chain(directory))


async def status(ctx: MigrationContext, directory: str) -> MigrationStatusReport:
    return await MigrationExecutor(ctx, load_chain(directory)).status()


async def migrate(
    ctx: MigrationContext,
    directory: str,
    target_id: Optional[str] = None,
    dry_run: bool = False,
) -> list[str]:
    """Apply pending migrations of ``directory``. Returns the ids applied."""
    executor = MigrationExecutor(ctx, load_chain(directory))
    return await executor.migrate(target_id=target_id, dry_run=dry_run)


async def rollback(
    ctx: MigrationContext,
    directory: str,
    to_id: Optional[str] = None,
    all_units: bool = False,
    force: bool = False,
    dry_run: bool = False,
) -> list[str]:
    """Roll back applied migrations of ``directory``. Returns the ids rolled back."""
    executor = MigrationExecutor(ctx, load_chain(directory))
    return await executor.rollback(to_id=to_id, all_units=all_units, force=force, dry_run=dry_run)


async def history(ctx: MigrationContext) -> list[HistoryRecord]:
    """The full history log, oldest first."""
    return await HistoryStore(ctx).get_records()
