"""
Append-only migration history.

Every apply and every rollback inserts one record; nothing is updated or
deleted. The set of applied migrations is obtained by folding the log in
insertion order.
"""

from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import PyMongoError

from mongochain.core.context import MigrationContext
from mongochain.core.exceptions import HistoryWriteError
from mongochain.log.logging import logger
from mongochain.migrations.identity import migration_label
from mongochain.migrations.models import Direction, HistoryRecord, MigrationUnit


class HistoryStore:
    """Reads and appends records in the migrations collection."""

    def __init__(self, context: MigrationContext):
        self._context = context
        self._collection = context.database[context.settings.migrations_collection]

    async def initialize(self) -> None:
        """Create the lookup index on the history collection."""
        await self._collection.create_index("migration_id", session=self._context.session)

    async def get_records(self) -> list[HistoryRecord]:
        """The full log, oldest first."""
        cursor = self._collection.find({}, session=self._context.session).sort("_id", 1)
        records = []
        async for doc in cursor:
            records.append(HistoryRecord.from_dict(doc))
        return records

    async def get_applied(self) -> list[str]:
        """Ids currently applied, in application order."""
        applied: list[str] = []
        for record in await self.get_records():
            if record.direction == Direction.UP:
                if record.migration_id not in applied:
                    applied.append(record.migration_id)
            elif record.migration_id in applied:
                applied.remove(record.migration_id)
        return applied

    async def last_applied(self) -> Optional[str]:
        applied = await self.get_applied()
        return applied[-1] if applied else None

    async def _append(
        self,
        migration_id: str,
        direction: Direction,
        checksum: str,
        execution_time_ms: int,
    ) -> HistoryRecord:
        record = HistoryRecord(
            migration_id=migration_id,
            direction=direction,
            applied_at=datetime.now(timezone.utc),
            execution_time_ms=execution_time_ms,
            checksum=checksum,
            label=migration_label(migration_id),
        )
        try:
            await self._collection.insert_one(record.to_dict(), session=self._context.session)
        except PyMongoError as e:
            logger.error(
                "History write failed",
                event_type="history_write_failed",
                migration_id=migration_id,
                direction=direction.value,
                error=str(e),
            )
            raise HistoryWriteError(migration_id, direction.value, e) from e
        return record

    async def record_applied(
        self, migration_id: str, checksum: str = "", execution_time_ms: int = 0
    ) -> HistoryRecord:
        return await self._append(migration_id, Direction.UP, checksum, execution_time_ms)

    async def record_rolled_back(
        self, migration_id: str, checksum: str = "", execution_time_ms: int = 0
    ) -> HistoryRecord:
        return await self._append(migration_id, Direction.DOWN, checksum, execution_time_ms)

    async def verify_checksums(self, chain: list[MigrationUnit]) -> list[str]:
        """
        Applied migrations whose file changed since they were applied.

        Returns:
            Ids of modified migrations.
        """
        applied_checksums: dict[str, str] = {}
        for record in await self.get_records():
            if record.direction == Direction.UP:
                applied_checksums[record.migration_id] = record.checksum
            else:
                applied_checksums.pop(record.migration_id, None)

        modified = []
        for unit in chain:
            recorded = applied_checksums.get(unit.id)
            if recorded and unit.checksum and recorded != unit.checksum:
                modified.append(unit.id)
                logger.warning(
                    "Applied migration file was modified",
                    event_type="migration_checksum_mismatch",
                    migration_id=unit.id,
                )
        return modified
