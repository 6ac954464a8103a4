"""
Migration chain engine.

This module discovers migration files, links them into a single chain,
validates the chain in memory and applies or rolls it back against MongoDB
while recording an append-only history.
"""

from mongochain.migrations.builder import MigrationBuilder
from mongochain.migrations.chain import build_chain
from mongochain.migrations.discovery import discover_migrations
from mongochain.migrations.executor import MigrationExecutor
from mongochain.migrations.models import MigrationStatusReport, MigrationUnit
from mongochain.migrations.validator import ValidationResult, validate_chain

__all__ = [
    "MigrationBuilder",
    "MigrationExecutor",
    "MigrationStatusReport",
    "MigrationUnit",
    "ValidationResult",
    "build_chain",
    "discover_migrations",
    "validate_chain",
]
