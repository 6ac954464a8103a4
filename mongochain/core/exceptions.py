"""
Exception taxonomy for the migration engine.

This module provides:
- Error codes for programmatic error handling
- A base exception carrying a code and structured details
- Specific exception classes for chain, validation, execution, history and index errors
"""

from typing import Any


class ErrorCode:
    """Error codes for programmatic error handling."""

    # General errors (0xxx)
    INTERNAL_ERROR = "ERR_0000"

    # Chain errors (1xxx)
    CHAIN_INTEGRITY = "ERR_1001"
    MIGRATION_LOAD = "ERR_1002"
    MIGRATION_DEFINITION = "ERR_1003"

    # Validation errors (2xxx)
    SCHEMA_DRIFT = "ERR_2001"
    SIMULATION_FAILED = "ERR_2002"

    # Execution errors (3xxx)
    EXECUTION_FAILED = "ERR_3001"
    IRREVERSIBLE_MIGRATION = "ERR_3002"

    # History errors (4xxx)
    HISTORY_WRITE_FAILED = "ERR_4001"

    # Index errors (5xxx)
    INDEX_RECONCILIATION_FAILED = "ERR_5001"


class MigrationError(Exception):
    """Base exception for all migration engine errors."""

    error_code: str = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Structured form used by the CLI's JSON output."""
        return {
            "error": self.__class__.__name__,
            "code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Chain Errors
# =============================================================================


class ChainIntegrityError(MigrationError):
    """Raised when the migration graph is not a single linear chain."""

    error_code = ErrorCode.CHAIN_INTEGRITY

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__(
            "Migration chain integrity violated: " + "; ".join(self.problems),
            details={"problems": self.problems},
        )


class MigrationLoadError(MigrationError):
    """Raised when a migration file cannot be loaded."""

    error_code = ErrorCode.MIGRATION_LOAD

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Cannot load migration {path}: {reason}", details={"path": path})


class MigrationDefinitionError(MigrationError):
    """Raised when the operation builder is misused."""

    error_code = ErrorCode.MIGRATION_DEFINITION


# =============================================================================
# Validation Errors
# =============================================================================


class _IssueError(MigrationError):
    def __init__(self, message: str, issues: list[Any] | None = None):
        self.issues = list(issues or [])
        super().__init__(
            message,
            details={"issues": [str(issue) for issue in self.issues]},
        )


class SchemaDriftError(_IssueError):
    """Raised when adjacent migration schemas do not reconcile."""

    error_code = ErrorCode.SCHEMA_DRIFT


class SimulationError(_IssueError):
    """Raised when a migration's operations fail against the in-memory model."""

    error_code = ErrorCode.SIMULATION_FAILED


# =============================================================================
# Execution Errors
# =============================================================================


class MigrationExecutionError(MigrationError):
    """Raised when a structural operation fails while applying or rolling back a unit."""

    error_code = ErrorCode.EXECUTION_FAILED

    def __init__(self, migration_id: str, operation: str, cause: Exception):
        self.migration_id = migration_id
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"Migration {migration_id} failed during {operation}: {cause}",
            details={"migration_id": migration_id, "operation": operation},
        )


class IrreversibleMigrationError(MigrationError):
    """Raised when a rollback would cross a lossy or irreversible transform."""

    error_code = ErrorCode.IRREVERSIBLE_MIGRATION

    def __init__(self, migration_ids: list[str], reason: str):
        self.migration_ids = list(migration_ids)
        super().__init__(
            f"Cannot roll back {', '.join(self.migration_ids)}: {reason}",
            details={"migration_ids": self.migration_ids},
        )


# =============================================================================
# History Errors
# =============================================================================


class HistoryWriteError(MigrationError):
    """
    Raised when a structural change succeeded but its history record was not written.

    The database already carries the change; retrying the run would apply it twice.
    """

    error_code = ErrorCode.HISTORY_WRITE_FAILED

    def __init__(self, migration_id: str, direction: str, cause: Exception):
        self.migration_id = migration_id
        self.direction = direction
        self.cause = cause
        super().__init__(
            f"Migration {migration_id} was {'applied' if direction == 'up' else 'rolled back'} "
            f"but its history record could not be written: {cause}. "
            "Do not retry blindly; repair the history collection first.",
            details={"migration_id": migration_id, "direction": direction},
        )


# =============================================================================
# Index Errors
# =============================================================================


class IndexReconciliationError(MigrationError):
    """Raised when index reconciliation cannot converge a collection."""

    error_code = ErrorCode.INDEX_RECONCILIATION_FAILED

    def __init__(self, collection: str, cause: Exception):
        self.collection = collection
        self.cause = cause
        super().__init__(
            f"Index reconciliation failed for {collection}: {cause}",
            details={"collection": collection},
        )
