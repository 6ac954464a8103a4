"""
Chain validation.

Walks the chain with a cumulative in-memory database and, for every unit:
- builds its operations against the parent's schema,
- compares the parent's declared schema with the unit's (drift),
- checks that every transform can be rolled back, unless the unit is the head
  and explicitly flagged irreversible,
- simulates the operations forward, then backward to check the round trip.

Never touches the real database.
"""

from dataclasses import dataclass, field
from enum import Enum

from mongochain.core.exceptions import MigrationDefinitionError, SchemaDriftError, SimulationError
from mongochain.log.logging import logger
from mongochain.migrations.chain import parent_schema
from mongochain.migrations.identity import compare_migration_ids
from mongochain.migrations.models import MigrationUnit
from mongochain.migrations.operations import (
    CreateCollection,
    CreateSharedCollection,
    Operation,
    TransformCollection,
    TransformSharedType,
    TransformTemplateType,
    UpdateIndexes,
    transform_rule,
)
from mongochain.migrations.simulation import SimulatedDatabase, simulate, simulate_reverse
from mongochain.schema.diff import ChangeKind, FieldChange, diff_snapshots
from mongochain.schema.snapshot import SchemaSnapshot

DRIFT_STRICTNESS_LEVELS = ("warn", "error")


class IssueCategory(str, Enum):
    DEFINITION = "definition"
    DRIFT = "drift"
    SIMULATION = "simulation"
    REVERSIBILITY = "reversibility"
    ORDERING = "ordering"


@dataclass(frozen=True)
class ValidationIssue:
    migration_id: str
    category: IssueCategory
    message: str

    def __str__(self) -> str:
        return f"[{self.migration_id}] {self.category.value}: {self.message}"


@dataclass
class ValidationResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def error(self, migration_id: str, category: IssueCategory, message: str) -> None:
        self.errors.append(ValidationIssue(migration_id, category, message))
        logger.warning(
            "Validation error",
            event_type="validation_issue",
            severity="error",
            migration_id=migration_id,
            category=category.value,
            issue=message,
        )

    def warning(self, migration_id: str, category: IssueCategory, message: str) -> None:
        self.warnings.append(ValidationIssue(migration_id, category, message))
        logger.info(
            "Validation warning",
            event_type="validation_issue",
            severity="warning",
            migration_id=migration_id,
            category=category.value,
            issue=message,
        )

    def raise_for_errors(self) -> None:
        """
        Raises:
            SchemaDriftError: If every error is a drift error.
            SimulationError: If any error comes from building, simulating or
                round-tripping a unit.
        """
        if self.ok:
            return
        if all(issue.category == IssueCategory.DRIFT for issue in self.errors):
            raise SchemaDriftError(f"{len(self.errors)} schema drift error(s)", self.errors)
        raise SimulationError(f"{len(self.errors)} migration validation error(s)", self.errors)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "errors": [str(issue) for issue in self.errors],
            "warnings": [str(issue) for issue in self.warnings],
        }


# =============================================================================
# Drift
# =============================================================================


def _transformed(operations: tuple[Operation, ...], change: FieldChange) -> bool:
    for operation in operations:
        if change.container == "collection" and isinstance(operation, TransformCollection):
            if operation.collection == change.collection:
                return True
        elif change.container == "shared" and isinstance(operation, TransformSharedType):
            if operation.collection == change.collection and operation.type_tag == change.type_tag:
                return True
        elif change.container == "template" and isinstance(operation, TransformTemplateType):
            if operation.template == change.collection and operation.type_tag == change.type_tag:
                return True
    return False


def _created(operations: tuple[Operation, ...], change: FieldChange) -> bool:
    kind = CreateSharedCollection if change.container == "shared" else CreateCollection
    return any(isinstance(operation, kind) and operation.collection == change.collection for operation in operations)


def _indexes_covered(operations: tuple[Operation, ...], change: FieldChange) -> bool:
    if _transformed(operations, change) or _created(operations, change):
        return True
    return change.container == "collection" and any(
        isinstance(operation, UpdateIndexes) and operation.collection == change.collection
        for operation in operations
    )


def _classify(change: FieldChange, operations: tuple[Operation, ...]) -> str | None:
    """'error', 'warning' or None (the change is covered by an operation)."""
    if change.kind == ChangeKind.COLLECTION_ADDED:
        if change.container == "template" and change.type_tag is None:
            # templates are definitions; instances are created explicitly
            return None
        if change.type_tag is not None:
            return None if _transformed_collection(operations, change) else "warning"
        return None if _created(operations, change) else "warning"

    if change.kind == ChangeKind.INDEX_CHANGED:
        return None if _indexes_covered(operations, change) else "warning"

    if _created(operations, change) or _transformed(operations, change):
        return None

    return "error" if change.destructive else "warning"


def _transformed_collection(operations: tuple[Operation, ...], change: FieldChange) -> bool:
    """A new type is covered when any type of the same container is transformed (validator refresh)."""
    for operation in operations:
        if change.container == "shared" and isinstance(operation, TransformSharedType):
            if operation.collection == change.collection:
                return True
        if change.container == "template" and isinstance(operation, TransformTemplateType):
            if operation.template == change.collection:
                return True
    return False


def check_drift(
    unit: MigrationUnit,
    parent: SchemaSnapshot,
    operations: tuple[Operation, ...],
    result: ValidationResult,
    strictness: str = "warn",
) -> None:
    """Report schema changes no operation of the unit accounts for."""
    for change in diff_snapshots(parent, unit.schema):
        severity = _classify(change, operations)
        if severity is None:
            continue
        message = change.describe()
        if severity == "error":
            message += " without a transform"
        else:
            message += " not covered by any operation"
        if severity == "error" or strictness == "error":
            result.error(unit.id, IssueCategory.DRIFT, message)
        else:
            result.warning(unit.id, IssueCategory.DRIFT, message)


# =============================================================================
# Reversibility
# =============================================================================


def check_reversibility(
    unit: MigrationUnit,
    operations: tuple[Operation, ...],
    is_head: bool,
    result: ValidationResult,
) -> bool:
    """
    Check every transform can be rolled back.

    Returns:
        True when the unit is fully reversible (round trip can be checked).
    """
    reversible = True
    for operation in operations:
        rule = transform_rule(operation)
        if rule is None or rule.reversible:
            continue
        reversible = False
        flagged = unit.irreversible or rule.irreversible
        if flagged and is_head:
            result.warning(unit.id, IssueCategory.REVERSIBILITY, f"{operation.describe()} is irreversible")
        elif flagged:
            result.error(
                unit.id,
                IssueCategory.REVERSIBILITY,
                f"{operation.describe()} is irreversible but is not the head migration",
            )
        else:
            result.error(
                unit.id,
                IssueCategory.REVERSIBILITY,
                f"{operation.describe()} has no down function; provide one or flag the head migration irreversible",
            )
    return reversible


def _lossy(operations: tuple[Operation, ...]) -> bool:
    rules = [transform_rule(operation) for operation in operations]
    return any(rule is not None and rule.lossy for rule in rules)


# =============================================================================
# Chain
# =============================================================================


def validate_chain(chain: list[MigrationUnit], drift_strictness: str = "warn") -> ValidationResult:
    """
    Validate a built chain without touching the database.

    Simulation stops at the first unit whose operations cannot be built or
    simulated, since later units depend on its state.
    """
    if drift_strictness not in DRIFT_STRICTNESS_LEVELS:
        raise ValueError(f"drift_strictness must be one of {DRIFT_STRICTNESS_LEVELS}")

    result = ValidationResult()
    state = SimulatedDatabase()

    for position, unit in enumerate(chain):
        parent = parent_schema(chain, position)
        is_head = position == len(chain) - 1

        if position > 0 and compare_migration_ids(unit.id, chain[position - 1].id) <= 0:
            result.warning(
                unit.id,
                IssueCategory.ORDERING,
                f"created before its parent {chain[position - 1].id}",
            )

        try:
            operations = unit.build_operations(parent)
        except MigrationDefinitionError as e:
            result.error(unit.id, IssueCategory.DEFINITION, e.message)
            break

        check_drift(unit, parent, operations, result, drift_strictness)
        reversible = check_reversibility(unit, operations, is_head, result)

        try:
            after = simulate(operations, state)
        except SimulationError as e:
            for issue in e.issues:
                result.error(unit.id, IssueCategory.SIMULATION, str(issue))
            break

        if reversible:
            try:
                restored = simulate_reverse(operations, after)
            except SimulationError as e:
                for issue in e.issues:
                    result.error(unit.id, IssueCategory.REVERSIBILITY, f"rollback fails: {issue}")
            else:
                if restored != state and not _lossy(operations):
                    result.error(
                        unit.id,
                        IssueCategory.REVERSIBILITY,
                        "rollback does not restore the previous documents; fix down() or mark the transform lossy",
                    )

        state = after

    logger.info(
        "Migration chain validated",
        event_type="chain_validated",
        count=len(chain),
        errors=len(result.errors),
        warnings=len(result.warnings),
    )
    return result
