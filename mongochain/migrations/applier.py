"""
Executes migration operations against MongoDB.

Each operation kind has a forward and a reverse handler. Forward handlers are
safe to re-run after a partial failure: creating an existing collection
refreshes its validator and indexes instead of failing.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from mongochain.core.context import MigrationContext
from mongochain.indexes.reconciler import apply_collection_indexes, apply_shared_collection_indexes
from mongochain.log.logging import logger
from mongochain.migrations.operations import (
    CreateCollection,
    CreateSharedCollection,
    CreateTemplateInstance,
    Document,
    Operation,
    SeedCollection,
    SeedSharedType,
    SeedTemplateInstance,
    TransformCollection,
    TransformSharedType,
    TransformTemplateType,
    TypeSchemas,
    UpdateIndexes,
)
from mongochain.migrations.registry import (
    create_instance_info,
    discover_instances,
    get_instance_info,
    instance_validator,
)
from mongochain.schema.nodes import FieldSchema
from mongochain.schema.validation import (
    TYPE_FIELD,
    compile_shared_validator,
    compile_validator,
    validate_document,
)

Handler = Callable[[Any, str], Awaitable[None]]


class MongoApplier:
    """Applies and reverses operations through the context's database handle."""

    def __init__(self, context: MigrationContext):
        self._context = context
        self._db = context.database
        self._session = context.session
        self._queue = context.queue

        self._forward: dict[type, Handler] = {
            CreateCollection: self._create_collection,
            SeedCollection: self._seed_collection,
            TransformCollection: self._transform_collection,
            UpdateIndexes: self._update_indexes,
            CreateSharedCollection: self._create_shared_collection,
            SeedSharedType: self._seed_typed,
            TransformSharedType: self._transform_shared_type,
            CreateTemplateInstance: self._create_template_instance,
            SeedTemplateInstance: self._seed_typed,
            TransformTemplateType: self._transform_template_type,
        }
        self._backward: dict[type, Handler] = {
            CreateCollection: self._drop_collection,
            SeedCollection: self._unseed,
            TransformCollection: self._revert_transform_collection,
            UpdateIndexes: self._revert_update_indexes,
            CreateSharedCollection: self._drop_collection,
            SeedSharedType: self._unseed,
            TransformSharedType: self._revert_transform_shared_type,
            CreateTemplateInstance: self._drop_collection,
            SeedTemplateInstance: self._unseed,
            TransformTemplateType: self._revert_transform_template_type,
        }

    async def apply(self, operation: Operation, migration_id: str = "") -> None:
        logger.debug(
            "Applying operation",
            event_type="operation_applying",
            migration_id=migration_id,
            operation=operation.kind,
        )
        await self._forward[type(operation)](operation, migration_id)

    async def reverse(self, operation: Operation, migration_id: str = "") -> None:
        logger.debug(
            "Reversing operation",
            event_type="operation_reversing",
            migration_id=migration_id,
            operation=operation.kind,
        )
        await self._backward[type(operation)](operation, migration_id)

    # =========================================================================
    # Shared steps
    # =========================================================================

    async def _exists(self, name: str) -> bool:
        names = await self._db.list_collection_names(filter={"name": name}, session=self._session)
        return name in names

    async def _ensure_collection(self, name: str, validator: dict[str, Any]) -> bool:
        """Create the collection, or refresh the validator of an existing one. True if created."""
        if await self._exists(name):
            await self._set_validator(name, validator)
            return False
        await self._db.create_collection(name, validator=validator, session=self._session)
        logger.info("Collection created", event_type="collection_created", collection=name)
        return True

    async def _set_validator(self, name: str, validator: dict[str, Any]) -> None:
        await self._db.command("collMod", name, validator=validator, session=self._session)

    async def _drop_collection(self, operation: Any, migration_id: str) -> None:
        await self._db.drop_collection(operation.collection, session=self._session)
        logger.info("Collection dropped", event_type="collection_dropped", collection=operation.collection)

    async def _reconcile(self, name: str, fields: FieldSchema, previous: FieldSchema | None = None) -> None:
        await apply_collection_indexes(
            self._db[name], fields, self._queue, session=self._session, previous_fields=previous
        )

    async def _reconcile_shared(self, name: str, types: TypeSchemas, previous: TypeSchemas | None = None) -> None:
        await apply_shared_collection_indexes(
            self._db[name], types, self._queue, session=self._session, previous_types=tuple(previous or ())
        )

    async def _insert(self, name: str, documents: list[Document]) -> None:
        batch_size = max(1, self._context.settings.seed_batch_size)
        collection = self._db[name]
        for start in range(0, len(documents), batch_size):
            await collection.insert_many(documents[start : start + batch_size], session=self._session)

    @staticmethod
    def _checked(documents: tuple[Document, ...], schema: FieldSchema, where: str) -> None:
        issues = []
        for position, document in enumerate(documents):
            body = {key: value for key, value in document.items() if key != TYPE_FIELD}
            issues.extend(f"document {position}: {issue}" for issue in validate_document(schema, body))
        if issues:
            raise ValueError(f"Invalid documents for {where}: " + "; ".join(issues))

    async def _rewrite(
        self,
        name: str,
        function: Callable[[Document], Document],
        schema: FieldSchema | None,
        type_tag: str | None = None,
    ) -> int:
        """Replace every (matching) document with ``function(document)``, keeping ``_id``."""
        collection = self._db[name]
        query = {TYPE_FIELD: type_tag} if type_tag is not None else {}
        documents = await collection.find(query, session=self._session).to_list(length=None)

        rewritten = []
        for document in documents:
            result = dict(function(dict(document)))
            result["_id"] = document["_id"]
            if type_tag is not None:
                result[TYPE_FIELD] = type_tag
            rewritten.append(result)
        if schema is not None:
            self._checked(tuple(rewritten), schema, name if type_tag is None else f"{name}[{type_tag}]")

        for result in rewritten:
            await collection.replace_one({"_id": result["_id"]}, result, session=self._session)

        logger.info(
            "Documents transformed",
            event_type="documents_transformed",
            collection=name,
            type_tag=type_tag,
            count=len(rewritten),
        )
        return len(rewritten)

    @staticmethod
    def _skip_irreversible(operation: Any, migration_id: str) -> bool:
        if operation.rule.reversible:
            return False
        logger.warning(
            "Irreversible transform skipped on forced rollback",
            event_type="transform_rollback_skipped",
            migration_id=migration_id,
            operation=operation.kind,
        )
        return True

    # =========================================================================
    # Plain collections
    # =========================================================================

    async def _create_collection(self, operation: CreateCollection, migration_id: str) -> None:
        await self._ensure_collection(operation.collection, compile_validator(operation.schema))
        await self._reconcile(operation.collection, operation.schema)

    async def _seed_collection(self, operation: SeedCollection, migration_id: str) -> None:
        self._checked(operation.documents, operation.schema, operation.collection)
        await self._insert(operation.collection, [dict(document) for document in operation.documents])
        logger.info(
            "Collection seeded",
            event_type="collection_seeded",
            collection=operation.collection,
            count=len(operation.documents),
        )

    async def _transform_collection(self, operation: TransformCollection, migration_id: str) -> None:
        await self._set_validator(operation.collection, compile_validator(operation.schema))
        await self._rewrite(operation.collection, operation.rule.up, operation.schema)
        await self._reconcile(operation.collection, operation.schema, operation.parent_schema)

    async def _revert_transform_collection(self, operation: TransformCollection, migration_id: str) -> None:
        if self._skip_irreversible(operation, migration_id):
            return
        if operation.parent_schema is not None:
            await self._set_validator(operation.collection, compile_validator(operation.parent_schema))
        await self._rewrite(operation.collection, operation.rule.down, operation.parent_schema)
        if operation.parent_schema is not None:
            await self._reconcile(operation.collection, operation.parent_schema, operation.schema)

    async def _update_indexes(self, operation: UpdateIndexes, migration_id: str) -> None:
        await self._reconcile(operation.collection, operation.schema, operation.parent_schema)

    async def _revert_update_indexes(self, operation: UpdateIndexes, migration_id: str) -> None:
        await self._reconcile(operation.collection, operation.parent_schema or {}, operation.schema)

    # =========================================================================
    # Seeds shared by every collection kind
    # =========================================================================

    async def _seed_typed(self, operation: Any, migration_id: str) -> None:
        self._checked(operation.documents, operation.schema, f"{operation.collection}[{operation.type_tag}]")
        documents = [{**document, TYPE_FIELD: operation.type_tag} for document in operation.documents]
        await self._insert(operation.collection, documents)
        logger.info(
            "Shared collection seeded",
            event_type="collection_seeded",
            collection=operation.collection,
            type_tag=operation.type_tag,
            count=len(documents),
        )

    async def _unseed(self, operation: Any, migration_id: str) -> None:
        collection = self._db[operation.collection]
        type_tag = getattr(operation, "type_tag", None)

        ids = [document["_id"] for document in operation.documents if "_id" in document]
        if ids:
            await collection.delete_many({"_id": {"$in": ids}}, session=self._session)
        for document in operation.documents:
            if "_id" in document:
                continue
            # without an _id the seeded document is matched on its full content
            query = dict(document)
            if type_tag is not None:
                query[TYPE_FIELD] = type_tag
            await collection.delete_one(query, session=self._session)

        logger.info(
            "Seeded documents removed",
            event_type="collection_unseeded",
            collection=operation.collection,
            count=len(operation.documents),
        )

    # =========================================================================
    # Shared collections
    # =========================================================================

    async def _create_shared_collection(self, operation: CreateSharedCollection, migration_id: str) -> None:
        await self._ensure_collection(operation.collection, compile_shared_validator(operation.types))
        await self._reconcile_shared(operation.collection, operation.types)

    async def _transform_shared_type(self, operation: TransformSharedType, migration_id: str) -> None:
        await self._set_validator(operation.collection, compile_shared_validator(operation.types))
        await self._rewrite(operation.collection, operation.rule.up, operation.schema, operation.type_tag)
        await self._reconcile_shared(operation.collection, operation.types, operation.parent_types)

    async def _revert_transform_shared_type(self, operation: TransformSharedType, migration_id: str) -> None:
        if self._skip_irreversible(operation, migration_id):
            return
        if operation.parent_types:
            await self._set_validator(operation.collection, compile_shared_validator(operation.parent_types))
        await self._rewrite(operation.collection, operation.rule.down, operation.parent_schema, operation.type_tag)
        if operation.parent_types:
            await self._reconcile_shared(operation.collection, operation.parent_types, operation.types)

    # =========================================================================
    # Templates
    # =========================================================================

    async def _create_template_instance(self, operation: CreateTemplateInstance, migration_id: str) -> None:
        await self._ensure_collection(operation.collection, instance_validator(operation.types))
        if await get_instance_info(self._db, operation.collection, self._session) is None:
            await create_instance_info(
                self._db, operation.collection, operation.template, migration_id, self._session
            )
        await self._reconcile_shared(operation.collection, operation.types)

    async def _instances(self, template: str) -> list[str]:
        return await discover_instances(
            self._db,
            template,
            self._session,
            exclude=(self._context.settings.migrations_collection,),
        )

    async def _transform_template_type(self, operation: TransformTemplateType, migration_id: str) -> None:
        for name in await self._instances(operation.template):
            await self._set_validator(name, instance_validator(operation.types))
            await self._rewrite(name, operation.rule.up, operation.schema, operation.type_tag)
            await self._reconcile_shared(name, operation.types, operation.parent_types)

    async def _revert_transform_template_type(self, operation: TransformTemplateType, migration_id: str) -> None:
        if self._skip_irreversible(operation, migration_id):
            return
        for name in await self._instances(operation.template):
            if operation.parent_types:
                await self._set_validator(name, instance_validator(operation.parent_types))
            await self._rewrite(name, operation.rule.down, operation.parent_schema, operation.type_tag)
            if operation.parent_types:
                await self._reconcile_shared(name, operation.parent_types, operation.types)


def describe_operations(operations: tuple[Operation, ...]) -> list[Mapping[str, str]]:
    """Plain description of a unit's operations, as logged by dry runs."""
    return [{"kind": operation.kind, "description": operation.describe()} for operation in operations]
