"""
Migration executor.

State machine over the chain relative to history:

    IDLE -> PLANNING -> APPLYING(unit) -> RECORDING(unit) -> ... -> IDLE
    IDLE -> PLANNING -> ROLLING_BACK(unit) -> RECORDING(unit) -> ... -> IDLE

Any failure moves to FAILED and stops the run; nothing is retried or rolled
back automatically. History always reflects the last unit fully applied and
recorded.
"""

import time
from typing import Optional

from mongochain.core.context import MigrationContext
from mongochain.core.exceptions import (
    ChainIntegrityError,
    HistoryWriteError,
    IrreversibleMigrationError,
    MigrationExecutionError,
)
from mongochain.log.logging import logger
from mongochain.migrations.applier import MongoApplier, describe_operations
from mongochain.migrations.chain import chain_index, parent_schema
from mongochain.migrations.history import HistoryStore
from mongochain.migrations.models import ExecutorState, MigrationStatusReport, MigrationUnit
from mongochain.migrations.operations import Operation, transform_rule
from mongochain.migrations.validator import ValidationResult, validate_chain


class MigrationExecutor:
    """
    Applies and rolls back a built chain.

    Features:
    - Applies pending units in chain order, recording each one
    - Rolls back the most recent units, refusing lossy or irreversible
      transforms unless forced
    - Refuses to run when history is not a prefix of the chain
    - Validates the chain in memory before applying
    """

    def __init__(
        self,
        context: MigrationContext,
        chain: list[MigrationUnit],
        applier: Optional[MongoApplier] = None,
        history: Optional[HistoryStore] = None,
    ):
        self._context = context
        self._chain = chain
        self._applier = applier or MongoApplier(context)
        self._history = history or HistoryStore(context)
        self.state = ExecutorState.IDLE
        self.failed_unit: Optional[str] = None

    @property
    def history(self) -> HistoryStore:
        return self._history

    def _transition(self, state: ExecutorState, migration_id: Optional[str] = None) -> None:
        self.state = state
        logger.debug(
            "Executor state changed",
            event_type="executor_state",
            state=state.value,
            migration_id=migration_id,
        )

    def _operations(self, position: int) -> tuple[Operation, ...]:
        return self._chain[position].build_operations(parent_schema(self._chain, position))

    async def _applied_prefix(self) -> list[str]:
        """Applied ids, checked to be a prefix of the chain."""
        applied = await self._history.get_applied()
        expected = [unit.id for unit in self._chain[: len(applied)]]
        if applied != expected:
            problems = []
            for position, migration_id in enumerate(applied):
                if position >= len(expected) or expected[position] != migration_id:
                    problems.append(
                        f"applied migration {migration_id} does not match chain position {position + 1}"
                    )
            raise ChainIntegrityError(problems or ["history does not match the migration chain"])
        return applied

    def validate(self) -> ValidationResult:
        return validate_chain(self._chain, self._context.settings.drift_strictness)

    async def status(self) -> MigrationStatusReport:
        applied = await self._applied_prefix()
        return MigrationStatusReport(
            pending_ids=[unit.id for unit in self._chain[len(applied) :]],
            applied_count=len(applied),
            applied_ids=applied,
            head_id=self._chain[-1].id if self._chain else None,
            last_applied=applied[-1] if applied else None,
        )

    async def migrate(self, target_id: Optional[str] = None, dry_run: bool = False) -> list[str]:
        """
        Apply pending migrations.

        Args:
            target_id: Stop after this migration (apply all if None).
            dry_run: Plan and log, without touching the database.

        Returns:
            Ids applied (or that would be applied on a dry run).

        Raises:
            ChainIntegrityError: If history is not a prefix of the chain.
            SchemaDriftError, SimulationError: If validation fails.
            MigrationExecutionError: If an operation fails.
            HistoryWriteError: If a unit was applied but could not be recorded.
        """
        self._transition(ExecutorState.PLANNING)
        try:
            applied = await self._applied_prefix()

            if self._context.settings.validate_before_migrate:
                self.validate().raise_for_errors()

            pending_end = len(self._chain)
            if target_id is not None:
                pending_end = chain_index(self._chain, target_id) + 1
        except Exception as e:
            self._fail_planning("migrate", e)
            raise
        pending = list(range(len(applied), pending_end))

        if not pending:
            logger.info("No pending migrations", event_type="migration_none")
            self._transition(ExecutorState.IDLE)
            return []

        if not dry_run:
            await self._history.initialize()

        done = []
        for position in pending:
            unit = self._chain[position]
            operations = self._operations(position)

            if dry_run:
                logger.info(
                    f"[DRY RUN] Would apply migration {unit.id}",
                    event_type="migration_dry_run",
                    migration_id=unit.id,
                    operations=describe_operations(operations),
                )
                done.append(unit.id)
                continue

            self._transition(ExecutorState.APPLYING, unit.id)
            logger.info(f"Applying migration {unit.id}", event_type="migration_applying", migration_id=unit.id)

            start_time = time.time()
            for operation in operations:
                try:
                    await self._applier.apply(operation, unit.id)
                except Exception as e:
                    self._fail(unit.id, "migration_failed", e)
                    raise MigrationExecutionError(unit.id, operation.describe(), e) from e
            execution_time_ms = int((time.time() - start_time) * 1000)

            self._transition(ExecutorState.RECORDING, unit.id)
            try:
                await self._history.record_applied(unit.id, unit.checksum, execution_time_ms)
            except HistoryWriteError as e:
                self._fail(unit.id, "migration_record_failed", e)
                raise

            done.append(unit.id)
            logger.info(
                f"Migration {unit.id} applied successfully",
                event_type="migration_applied",
                migration_id=unit.id,
                execution_time_ms=execution_time_ms,
            )

        self._transition(ExecutorState.IDLE)
        return done

    def _rollback_targets(self, applied: list[str], to_id: Optional[str], all_units: bool) -> list[str]:
        if all_units:
            return list(reversed(applied))
        if to_id is None:
            return [applied[-1]]
        if to_id not in applied:
            raise ChainIntegrityError([f"rollback target {to_id} is not an applied migration"])
        return list(reversed(applied[applied.index(to_id) + 1 :]))

    def _check_reversible(self, targets: list[str], force: bool) -> None:
        lossy, irreversible = [], []
        for migration_id in targets:
            for operation in self._operations(chain_index(self._chain, migration_id)):
                rule = transform_rule(operation)
                if rule is None:
                    continue
                if not rule.reversible and migration_id not in irreversible:
                    irreversible.append(migration_id)
                elif rule.lossy and migration_id not in lossy:
                    lossy.append(migration_id)

        if force:
            if lossy or irreversible:
                logger.warning(
                    "Forced rollback past lossy or irreversible migrations",
                    event_type="migration_rollback_forced",
                    lossy=lossy,
                    irreversible=irreversible,
                )
            return
        if irreversible:
            raise IrreversibleMigrationError(irreversible, "irreversible transform (use force to skip it)")
        if lossy:
            raise IrreversibleMigrationError(lossy, "lossy transform (use force to accept data loss)")

    async def rollback(
        self,
        to_id: Optional[str] = None,
        all_units: bool = False,
        force: bool = False,
        dry_run: bool = False,
    ) -> list[str]:
        """
        Roll back applied migrations, most recent first.

        Args:
            to_id: Roll back down to, but not including, this migration.
                Rolls back only the last applied migration when None.
            all_units: Roll back every applied migration.
            force: Accept data loss from lossy transforms and skip irreversible ones.
            dry_run: Plan and log, without touching the database.

        Returns:
            Ids rolled back (or that would be rolled back on a dry run).

        Raises:
            IrreversibleMigrationError: Before any change, if a target unit is
                lossy or irreversible and ``force`` is not set.
            MigrationExecutionError: If a reverse operation fails.
            HistoryWriteError: If a unit was rolled back but could not be recorded.
        """
        self._transition(ExecutorState.PLANNING)
        try:
            applied = await self._applied_prefix()
            targets = self._rollback_targets(applied, to_id, all_units) if applied else []
            self._check_reversible(targets, force)
        except Exception as e:
            self._fail_planning("rollback", e)
            raise

        if not targets:
            logger.info("No migrations to rollback", event_type="migration_none")
            self._transition(ExecutorState.IDLE)
            return []

        done = []
        for migration_id in targets:
            position = chain_index(self._chain, migration_id)
            unit = self._chain[position]
            operations = self._operations(position)

            if dry_run:
                logger.info(
                    f"[DRY RUN] Would rollback migration {unit.id}",
                    event_type="migration_dry_run",
                    migration_id=unit.id,
                    operations=describe_operations(operations[::-1]),
                )
                done.append(unit.id)
                continue

            self._transition(ExecutorState.ROLLING_BACK, unit.id)
            logger.info(
                f"Rolling back migration {unit.id}",
                event_type="migration_rolling_back",
                migration_id=unit.id,
            )

            start_time = time.time()
            for operation in reversed(operations):
                try:
                    await self._applier.reverse(operation, unit.id)
                except Exception as e:
                    self._fail(unit.id, "migration_rollback_failed", e)
                    raise MigrationExecutionError(unit.id, f"rollback of {operation.describe()}", e) from e
            execution_time_ms = int((time.time() - start_time) * 1000)

            self._transition(ExecutorState.RECORDING, unit.id)
            try:
                await self._history.record_rolled_back(unit.id, unit.checksum, execution_time_ms)
            except HistoryWriteError as e:
                self._fail(unit.id, "migration_record_failed", e)
                raise

            done.append(unit.id)
            logger.info(
                f"Migration {unit.id} rolled back successfully",
                event_type="migration_rolled_back",
                migration_id=unit.id,
                execution_time_ms=execution_time_ms,
            )

        self._transition(ExecutorState.IDLE)
        return done

    def _fail_planning(self, command: str, error: Exception) -> None:
        """Nothing was changed yet, so no unit is marked as failed."""
        self.state = ExecutorState.FAILED
        logger.error(
            f"Planning of {command} failed",
            event_type="migration_planning_failed",
            command=command,
            error=str(error),
        )

    def _fail(self, migration_id: str, event_type: str, error: Exception) -> None:
        self.state = ExecutorState.FAILED
        self.failed_unit = migration_id
        logger.error(
            f"Migration {migration_id} failed",
            event_type=event_type,
            migration_id=migration_id,
            error=str(error),
        )
