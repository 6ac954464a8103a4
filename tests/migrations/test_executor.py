"""Tests for MigrationExecutor."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import PyMongoError

from conftest import ROOT_ID, SECOND_ID, THIRD_ID
from mongochain.core.exceptions import (
    ChainIntegrityError,
    HistoryWriteError,
    IrreversibleMigrationError,
    MigrationExecutionError,
    SchemaDriftError,
)
from mongochain.log.logging import logger
from mongochain.migrations.executor import MigrationExecutor
from mongochain.migrations.history import HistoryStore
from mongochain.migrations.models import Direction, ExecutorState
from mongochain.schema import integer, optional, string

V1 = {"collections": {"users": {"name": string()}}}
V2 = {"collections": {"users": {"full_name": string()}}}
V3 = {"collections": {"users": {"full_name": string(), "age": optional(integer())}}}


def create_users(m):
    return m.create_collection("users").seed([{"_id": 1, "name": "Ada"}, {"_id": 2, "name": "Bob"}]).end().compile()


def rename(doc):
    doc["full_name"] = doc.pop("name")
    return doc


def unrename(doc):
    doc["name"] = doc.pop("full_name")
    return doc


def add_age(doc):
    return {**doc, "age": 0}


def drop_age(doc):
    return {key: value for key, value in doc.items() if key != "age"}


@pytest.fixture
def chain(make_unit):
    return [
        make_unit(ROOT_ID, None, V1, create_users),
        make_unit(SECOND_ID, ROOT_ID, V2, lambda m: m.collection("users").transform(up=rename, down=unrename).end().compile()),
        make_unit(
            THIRD_ID,
            SECOND_ID,
            V3,
            lambda m: m.collection("users").transform(up=add_age, down=drop_age, lossy=True).end().compile(),
        ),
    ]


def user_docs(fake_db):
    return sorted(fake_db["users"].documents, key=lambda doc: doc["_id"])


@pytest.fixture
def dry_run_records():
    records = []
    sink_id = logger.add(
        lambda message: records.append(message.record["extra"]),
        level="INFO",
        filter=lambda record: record["extra"].get("event_type") == "migration_dry_run",
    )
    yield records
    logger.remove(sink_id)


class TestMigrate:
    """Forward application."""

    @pytest.mark.asyncio
    async def test_applies_every_pending_unit(self, context, fake_db, chain):
        executor = MigrationExecutor(context, chain)

        applied = await executor.migrate()

        assert applied == [ROOT_ID, SECOND_ID, THIRD_ID]
        assert user_docs(fake_db) == [
            {"_id": 1, "full_name": "Ada", "age": 0},
            {"_id": 2, "full_name": "Bob", "age": 0},
        ]
        report = await executor.status()
        assert report.up_to_date
        assert report.applied_ids == [ROOT_ID, SECOND_ID, THIRD_ID]
        assert report.last_applied == THIRD_ID
        assert executor.state == ExecutorState.IDLE

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, context, chain):
        executor = MigrationExecutor(context, chain)
        await executor.migrate()

        assert await executor.migrate() == []

    @pytest.mark.asyncio
    async def test_target_id(self, context, fake_db, chain):
        executor = MigrationExecutor(context, chain)

        assert await executor.migrate(target_id=ROOT_ID) == [ROOT_ID]

        report = await executor.status()
        assert report.pending_ids == [SECOND_ID, THIRD_ID]
        assert user_docs(fake_db)[0] == {"_id": 1, "name": "Ada"}

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self, context, fake_db, chain, dry_run_records):
        executor = MigrationExecutor(context, chain)

        planned = await executor.migrate(dry_run=True)

        assert planned == [ROOT_ID, SECOND_ID, THIRD_ID]
        assert await fake_db.list_collection_names() == []
        assert [record["migration_id"] for record in dry_run_records] == planned
        assert [entry["kind"] for entry in dry_run_records[0]["operations"]] == ["create_collection", "seed_collection"]
        assert dry_run_records[1]["operations"][0]["description"] == "transform documents of users"

    @pytest.mark.asyncio
    async def test_validation_failure_stops_before_any_change(self, context, fake_db, make_unit):
        chain = [make_unit(ROOT_ID, None, V1, create_users), make_unit(SECOND_ID, ROOT_ID, V2)]
        executor = MigrationExecutor(context, chain)

        with pytest.raises(SchemaDriftError):
            await executor.migrate()

        assert await fake_db.list_collection_names() == []
        assert executor.state == ExecutorState.FAILED
        assert executor.failed_unit is None

    @pytest.mark.asyncio
    async def test_history_must_be_a_prefix_of_the_chain(self, context, chain):
        await HistoryStore(context).record_applied(SECOND_ID)
        executor = MigrationExecutor(context, chain)

        with pytest.raises(ChainIntegrityError) as exc_info:
            await executor.migrate()

        assert "does not match chain position 1" in exc_info.value.problems[0]
        assert executor.state == ExecutorState.FAILED

    @pytest.mark.asyncio
    async def test_operation_failure_is_wrapped(self, context, chain):
        applier = MagicMock()
        applier.apply = AsyncMock(side_effect=RuntimeError("disk full"))
        executor = MigrationExecutor(context, chain, applier=applier)

        with pytest.raises(MigrationExecutionError) as exc_info:
            await executor.migrate()

        assert exc_info.value.migration_id == ROOT_ID
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert executor.state == ExecutorState.FAILED
        assert executor.failed_unit == ROOT_ID
        assert await executor.history.get_applied() == []

    @pytest.mark.asyncio
    async def test_history_write_failure(self, context, fake_db, chain):
        fake_db["_migrations"].insert_one = AsyncMock(side_effect=PyMongoError("primary stepped down"))
        executor = MigrationExecutor(context, chain)

        with pytest.raises(HistoryWriteError) as exc_info:
            await executor.migrate()

        assert exc_info.value.migration_id == ROOT_ID
        assert executor.state == ExecutorState.FAILED
        # the unit itself was applied before recording failed
        assert len(fake_db["users"].documents) == 2


class TestRollback:
    """Backward application."""

    @pytest.mark.asyncio
    async def test_rollback_all_restores_empty_database(self, context, fake_db, chain):
        executor = MigrationExecutor(context, chain[:2])
        await executor.migrate()

        rolled_back = await executor.rollback(all_units=True)

        assert rolled_back == [SECOND_ID, ROOT_ID]
        assert "users" not in await fake_db.list_collection_names()
        assert await executor.history.get_applied() == []
        records = await executor.history.get_records()
        assert [record.direction for record in records] == [Direction.UP, Direction.UP, Direction.DOWN, Direction.DOWN]

    @pytest.mark.asyncio
    async def test_rollback_last_restores_parent_state(self, context, fake_db, chain):
        executor = MigrationExecutor(context, chain[:2])
        await executor.migrate()

        assert await executor.rollback() == [SECOND_ID]

        assert user_docs(fake_db) == [{"_id": 1, "name": "Ada"}, {"_id": 2, "name": "Bob"}]
        assert (await executor.status()).pending_ids == [SECOND_ID]

    @pytest.mark.asyncio
    async def test_rollback_to(self, context, chain):
        executor = MigrationExecutor(context, chain)
        await executor.migrate()

        rolled_back = await executor.rollback(to_id=ROOT_ID, force=True)

        assert rolled_back == [THIRD_ID, SECOND_ID]
        assert await executor.history.get_applied() == [ROOT_ID]

    @pytest.mark.asyncio
    async def test_rollback_to_unapplied_unit(self, context, chain):
        executor = MigrationExecutor(context, chain)
        await executor.migrate(target_id=ROOT_ID)

        with pytest.raises(ChainIntegrityError):
            await executor.rollback(to_id=THIRD_ID)

        assert executor.state == ExecutorState.FAILED

    @pytest.mark.asyncio
    async def test_lossy_rollback_needs_force(self, context, fake_db, chain):
        executor = MigrationExecutor(context, chain)
        await executor.migrate()

        with pytest.raises(IrreversibleMigrationError) as exc_info:
            await executor.rollback()

        assert exc_info.value.migration_ids == [THIRD_ID]
        assert executor.state == ExecutorState.FAILED
        assert await executor.history.get_applied() == [ROOT_ID, SECOND_ID, THIRD_ID]

        assert await executor.rollback(force=True) == [THIRD_ID]
        assert executor.state == ExecutorState.IDLE
        assert "age" not in user_docs(fake_db)[0]

    @pytest.mark.asyncio
    async def test_irreversible_transform_is_skipped_when_forced(self, context, fake_db, make_unit):
        chain = [
            make_unit(ROOT_ID, None, V1, create_users),
            make_unit(
                SECOND_ID,
                ROOT_ID,
                V2,
                lambda m: m.collection("users").transform(up=rename).end().compile(),
                irreversible=True,
            ),
        ]
        executor = MigrationExecutor(context, chain)
        await executor.migrate()

        with pytest.raises(IrreversibleMigrationError):
            await executor.rollback()

        assert await executor.rollback(force=True) == [SECOND_ID]
        assert await executor.history.get_applied() == [ROOT_ID]
        assert user_docs(fake_db)[0]["full_name"] == "Ada"

    @pytest.mark.asyncio
    async def test_dry_run_rollback(self, context, fake_db, chain, dry_run_records):
        executor = MigrationExecutor(context, chain[:2])
        await executor.migrate()

        assert await executor.rollback(dry_run=True) == [SECOND_ID]

        assert await executor.history.get_applied() == [ROOT_ID, SECOND_ID]
        assert "full_name" in user_docs(fake_db)[0]
        assert [record["migration_id"] for record in dry_run_records] == [SECOND_ID]
        assert [entry["kind"] for entry in dry_run_records[0]["operations"]] == ["transform_collection"]

    @pytest.mark.asyncio
    async def test_nothing_to_rollback(self, context, chain):
        assert await MigrationExecutor(context, chain).rollback() == []
