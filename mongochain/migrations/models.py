"""
Migration data models and status tracking.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from mongochain.core.exceptions import MigrationDefinitionError, MigrationError
from mongochain.migrations.builder import MigrationBuilder
from mongochain.migrations.identity import migration_label
from mongochain.migrations.operations import Operation
from mongochain.schema.snapshot import SchemaSnapshot


class Direction(str, Enum):
    """Direction of a history record."""

    UP = "up"
    DOWN = "down"


class ExecutorState(str, Enum):
    """States of the executor state machine."""

    IDLE = "idle"
    PLANNING = "planning"
    APPLYING = "applying"
    ROLLING_BACK = "rolling_back"
    RECORDING = "recording"
    FAILED = "failed"


@dataclass
class MigrationUnit:
    """
    One immutable link of the migration chain.

    Attributes:
        id: Migration identity (``TIMESTAMP@label``).
        parent_id: Identity of the previous unit; None for the root.
        schema: The schema snapshot this unit produces.
        migrate: Function describing the unit's operations through the builder.
        irreversible: Explicitly allows a head unit without ``down`` transforms.
        checksum: SHA256 hash of the migration file for change detection.
        source_path: Path to the migration file.
    """

    id: str
    parent_id: Optional[str]
    schema: SchemaSnapshot
    migrate: Callable[[MigrationBuilder], Any]
    irreversible: bool = False
    checksum: str = ""
    source_path: str = ""

    @property
    def label(self) -> str:
        return migration_label(self.id)

    def build_operations(self, parent_schema: SchemaSnapshot | None = None) -> tuple[Operation, ...]:
        """
        Run ``migrate`` against a fresh builder.

        ``migrate`` may return the compiled tuple, the builder, or nothing.

        Raises:
            MigrationDefinitionError: If ``migrate`` raises or returns something else.
        """
        builder = MigrationBuilder(self.schema, parent_schema)
        try:
            result = self.migrate(builder)
        except MigrationError:
            raise
        except Exception as e:
            raise MigrationDefinitionError(
                f"migrate() of {self.id} raised {type(e).__name__}: {e}",
                details={"migration_id": self.id},
            ) from e

        if result is None or isinstance(result, MigrationBuilder):
            return builder.compile()
        if isinstance(result, tuple):
            return result
        if hasattr(result, "end"):
            return builder.compile()
        raise MigrationDefinitionError(
            f"migrate() of {self.id} returned {type(result).__name__}; return m.compile()",
            details={"migration_id": self.id},
        )


@dataclass
class HistoryRecord:
    """
    One entry of the append-only history log.

    Attributes:
        migration_id: Migration identity.
        direction: ``up`` when applied, ``down`` when rolled back.
        applied_at: When the change was made.
        execution_time_ms: How long the unit took.
        checksum: Hash of the migration file at that time.
        label: Human label of the migration.
    """

    migration_id: str
    direction: Direction
    applied_at: datetime
    execution_time_ms: int = 0
    checksum: str = ""
    label: str = ""

    def to_dict(self) -> dict:
        """Convert to dictionary for MongoDB storage."""
        return {
            "migration_id": self.migration_id,
            "label": self.label,
            "direction": self.direction.value,
            "applied_at": self.applied_at,
            "execution_time_ms": self.execution_time_ms,
            "checksum": self.checksum,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryRecord":
        """Create from MongoDB document."""
        return cls(
            migration_id=data["migration_id"],
            direction=Direction(data["direction"]),
            applied_at=data["applied_at"],
            execution_time_ms=data.get("execution_time_ms", 0),
            checksum=data.get("checksum", ""),
            label=data.get("label", ""),
        )


@dataclass
class MigrationStatusReport:
    """Where the database stands relative to the chain."""

    pending_ids: list[str] = field(default_factory=list)
    applied_count: int = 0
    applied_ids: list[str] = field(default_factory=list)
    head_id: Optional[str] = None
    last_applied: Optional[str] = None

    @property
    def up_to_date(self) -> bool:
        return not self.pending_ids

    def to_dict(self) -> dict:
        return {
            "pending_ids": list(self.pending_ids),
            "applied_count": self.applied_count,
            "applied_ids": list(self.applied_ids),
            "head_id": self.head_id,
            "last_applied": self.last_applied,
        }
