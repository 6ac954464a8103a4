"""Tests for settings, context, exceptions and logging setup."""

from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from mongochain.core.config import Settings
from mongochain.core.context import MigrationContext
from mongochain.core.exceptions import (
    ChainIntegrityError,
    ErrorCode,
    HistoryWriteError,
    IrreversibleMigrationError,
    MigrationExecutionError,
)
from mongochain.log.logging import configure_logging, logger


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.migrations_collection == "_migrations"
        assert settings.drift_strictness in ("warn", "error")
        assert settings.seed_batch_size >= 1

    def test_rejects_unknown_drift_strictness(self):
        with pytest.raises(ValidationError):
            Settings(drift_strictness="sometimes")

    def test_rejects_zero_batch_size(self):
        with pytest.raises(ValidationError):
            Settings(seed_batch_size=0)

    def test_development_logging_is_human_readable(self):
        settings = Settings(environment="development", json_logs=True, debug=True)
        config = settings.logging_config
        assert config["json_logs"] is False
        assert config["log_level"] == "DEBUG"

    def test_production_logging_keeps_json(self):
        settings = Settings(environment="production", json_logs=True, log_level="WARNING")
        config = settings.logging_config
        assert config["json_logs"] is True
        assert config["log_level"] == "WARNING"


class TestMigrationContext:
    def test_from_settings_builds_pooled_client(self, test_settings):
        with patch("mongochain.core.context.AsyncIOMotorClient") as mock_client_cls:
            mock_client = MagicMock()
            mock_client_cls.return_value = mock_client

            ctx = MigrationContext.from_settings(test_settings)

            kwargs = mock_client_cls.call_args.kwargs
            assert kwargs["maxPoolSize"] == test_settings.mongo_max_pool_size
            assert ctx.client is mock_client
            mock_client.__getitem__.assert_called_with(test_settings.mongodb_database)
            assert ctx.queue.max_concurrent == test_settings.index_queue_concurrency

    @pytest.mark.asyncio
    async def test_async_with_closes_owned_client(self, fake_db, queue):
        client = MagicMock()
        ctx = MigrationContext(database=fake_db, queue=queue, client=client)

        async with ctx:
            pass

        client.close.assert_called_once()
        assert ctx.client is None


class TestExceptions:
    def test_chain_integrity_lists_problems(self):
        error = ChainIntegrityError(["fork at a", "missing parent b"])
        assert error.error_code == ErrorCode.CHAIN_INTEGRITY
        assert error.problems == ["fork at a", "missing parent b"]
        assert "fork at a" in error.message

    def test_execution_error_carries_unit(self):
        cause = RuntimeError("write failed")
        error = MigrationExecutionError("m1", "create_collection users", cause)
        assert error.migration_id == "m1"
        assert error.cause is cause
        assert error.to_dict()["code"] == ErrorCode.EXECUTION_FAILED

    def test_history_write_error_message(self):
        error = HistoryWriteError("m1", "up", RuntimeError("down"))
        assert "was applied" in error.message
        assert error.details["direction"] == "up"

    def test_irreversible_carries_ids(self):
        error = IrreversibleMigrationError(["m2", "m3"], "lossy transform")
        assert error.migration_ids == ["m2", "m3"]
        assert "m2, m3" in error.message


def test_configure_logging_emits_structured_records():
    records = []
    configure_logging(log_level="DEBUG", json_logs=False)
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    try:
        logger.info("Hello", event_type="test_event", migration_id="m1")
    finally:
        logger.remove(sink_id)

    assert records[-1]["extra"]["event_type"] == "test_event"
    assert records[-1]["extra"]["migration_id"] == "m1"
