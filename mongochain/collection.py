"""
Long-lived collection-open path.

Applications open their collections through these helpers at startup; each
call makes sure the collection exists and converges its indexes to the
schema, so indexes stay in sync outside of migrations too.
"""

from collections.abc import Mapping
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection

from mongochain.core.context import MigrationContext
from mongochain.indexes.reconciler import apply_collection_indexes, apply_shared_collection_indexes
from mongochain.log.logging import logger
from mongochain.schema.nodes import FieldSchema
from mongochain.schema.validation import compile_shared_validator, compile_validator


async def _ensure(context: MigrationContext, name: str, validator: dict[str, Any]) -> None:
    names = await context.database.list_collection_names(filter={"name": name}, session=context.session)
    if name not in names:
        await context.database.create_collection(name, validator=validator, session=context.session)
        logger.info("Collection created on open", event_type="collection_created", collection=name)


async def open_collection(
    context: MigrationContext,
    name: str,
    fields: FieldSchema,
    reconcile_indexes: bool = True,
) -> AsyncIOMotorCollection:
    """
    Open a plain collection.

    Args:
        context: Execution context.
        name: Collection name.
        fields: Collection schema.
        reconcile_indexes: Converge indexes to ``fields`` (default).

    Returns:
        The motor collection handle.
    """
    await _ensure(context, name, compile_validator(fields))
    collection = context.database[name]
    if reconcile_indexes:
        await apply_collection_indexes(collection, fields, context.queue, session=context.session)
    return collection


async def open_shared_collection(
    context: MigrationContext,
    name: str,
    types: Mapping[str, FieldSchema],
    reconcile_indexes: bool = True,
) -> AsyncIOMotorCollection:
    """Open a shared collection holding one document type per entry of ``types``."""
    await _ensure(context, name, compile_shared_validator(types))
    collection = context.database[name]
    if reconcile_indexes:
        await apply_shared_collection_indexes(collection, types, context.queue, session=context.session)
    return collection
