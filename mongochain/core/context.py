"""
Explicit execution context for the migration engine.

This module provides:
- A context object carrying the database handle, the index operation queue,
  settings and an optional driver session
- Construction from settings with a pooled motor client
- Teardown via ``close()`` or ``async with``
"""

from dataclasses import dataclass, field
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from mongochain.core.config import Settings
from mongochain.core.queue import OperationQueue
from mongochain.log.logging import logger


@dataclass
class MigrationContext:
    """
    Everything an executor, applier or reconciler call needs.

    Attributes:
        database: Motor database handle.
        queue: Bounded queue used for index drops and creates.
        settings: Engine settings.
        session: Optional driver session, passed to every driver call.
        client: Owning client when the context created it (closed on teardown).
    """

    database: AsyncIOMotorDatabase
    queue: OperationQueue
    settings: Settings = field(default_factory=Settings)
    session: Any = None
    client: AsyncIOMotorClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "MigrationContext":
        """Create a context with its own pooled client."""
        client = AsyncIOMotorClient(
            settings.mongodb,
            maxPoolSize=settings.mongo_max_pool_size,
            minPoolSize=settings.mongo_min_pool_size,
            connectTimeoutMS=settings.mongo_connect_timeout_ms,
            serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
            socketTimeoutMS=settings.mongo_socket_timeout_ms,
            retryWrites=True,
            retryReads=True,
        )
        logger.debug(
            "Migration context created",
            event_type="context_created",
            database=settings.mongodb_database,
        )
        return cls(
            database=client[settings.mongodb_database],
            queue=OperationQueue.from_settings(settings),
            settings=settings,
            client=client,
        )

    def close(self) -> None:
        """Close the client if this context owns one."""
        if self.client is not None:
            self.client.close()
            self.client = None
            logger.debug("Migration context closed", event_type="context_closed")

    async def __aenter__(self) -> "MigrationContext":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()
