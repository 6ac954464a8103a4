"""
Discovery of migration files.

A migration file is a Python module named after its identity
(``2025_10_09_1445_01K74ZV0CE@init.py``) exposing ``id``, ``parent_id``,
``schema`` and ``migrate``; ``irreversible = True`` is optional.
"""

import hashlib
import importlib.util
import os
import re

from mongochain.core.exceptions import MigrationLoadError
from mongochain.log.logging import logger
from mongochain.migrations.identity import is_valid_migration_id
from mongochain.migrations.models import MigrationUnit
from mongochain.schema.snapshot import SchemaSnapshot

REQUIRED_ATTRIBUTES = ("id", "parent_id", "schema", "migrate")


def calculate_checksum(file_path: str) -> str:
    """Calculate SHA256 checksum of a file."""
    with open(file_path, "rb") as f:
        return hashlib.sha256(f.read()).hexdigest()


def load_migration_file(file_path: str) -> MigrationUnit:
    """
    Load a migration from a Python file.

    Args:
        file_path: Path to the migration file.

    Returns:
        The migration unit.

    Raises:
        MigrationLoadError: If the module cannot be imported or is malformed.
    """
    stem = os.path.splitext(os.path.basename(file_path))[0]
    module_name = "mongochain_migration_" + re.sub(r"\W", "_", stem)

    try:
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise MigrationLoadError(file_path, "not an importable Python file")

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
    except MigrationLoadError:
        raise
    except Exception as e:
        logger.error(
            "Error loading migration",
            event_type="migration_load_error",
            migration_id=stem,
            error=str(e),
        )
        raise MigrationLoadError(file_path, f"{type(e).__name__}: {e}") from e

    missing = [name for name in REQUIRED_ATTRIBUTES if not hasattr(module, name)]
    if missing:
        raise MigrationLoadError(file_path, f"missing {', '.join(missing)}")

    if module.id != stem:
        raise MigrationLoadError(file_path, f"id '{module.id}' does not match the file name")
    if not callable(module.migrate):
        raise MigrationLoadError(file_path, "migrate is not callable")

    try:
        schema = SchemaSnapshot.coerce(module.schema)
    except (TypeError, AttributeError) as e:
        raise MigrationLoadError(file_path, f"invalid schema: {e}") from e

    return MigrationUnit(
        id=module.id,
        parent_id=module.parent_id,
        schema=schema,
        migrate=module.migrate,
        irreversible=bool(getattr(module, "irreversible", False)),
        checksum=calculate_checksum(file_path),
        source_path=file_path,
    )


def discover_migrations(migrations_dir: str) -> list[MigrationUnit]:
    """
    Load every migration file in a directory.

    Files whose name is not a migration identity are skipped with a warning.
    The result is in file-name order; ``build_chain`` establishes the real order.
    """
    units: list[MigrationUnit] = []

    if not os.path.exists(migrations_dir):
        logger.warning(
            "Migrations directory not found",
            event_type="migrations_dir_missing",
            migrations_dir=migrations_dir,
        )
        return units

    for filename in sorted(os.listdir(migrations_dir)):
        if not filename.endswith(".py") or filename.startswith("_"):
            continue

        stem = filename[: -len(".py")]
        if not is_valid_migration_id(stem):
            logger.warning(
                "Skipping invalid migration filename",
                event_type="migration_skip",
                filename=filename,
            )
            continue

        units.append(load_migration_file(os.path.join(migrations_dir, filename)))

    logger.info(
        f"Discovered {len(units)} migrations",
        event_type="migrations_discovered",
        count=len(units),
    )
    return units


def load_parent_schema(file_path: str, parent_id: str) -> SchemaSnapshot:
    """
    Schema of a sibling migration file, copied.

    Generated migrations start from their parent's schema with
    ``schema = load_parent_schema(__file__, parent_id)`` and edit it from there.
    """
    parent_path = os.path.join(os.path.dirname(os.path.abspath(file_path)), f"{parent_id}.py")
    if not os.path.exists(parent_path):
        raise MigrationLoadError(file_path, f"parent migration {parent_id} not found")
    return load_migration_file(parent_path).schema.copy()
