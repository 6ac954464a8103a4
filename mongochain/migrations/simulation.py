"""
In-memory simulation of migration operations.

``SimulatedDatabase`` mirrors what ``MongoApplier`` does to a real database,
without any I/O, so a chain can be dry-run (forward and backward) before it
touches real data.
"""

import copy
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import NoReturn

from mongochain.core.exceptions import SimulationError
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
    TransformRule,
    TransformSharedType,
    TransformTemplateType,
    UpdateIndexes,
)
from mongochain.migrations.registry import instance_info_document
from mongochain.schema.nodes import FieldSchema
from mongochain.schema.validation import TYPE_FIELD, validate_document


@dataclass
class SimulatedCollection:
    documents: list[Document] = field(default_factory=list)
    shared: bool = False
    template: str | None = None


class SimulatedDatabase:
    """Collections and their documents, as the chain has shaped them so far."""

    def __init__(self, collections: dict[str, SimulatedCollection] | None = None):
        self.collections: dict[str, SimulatedCollection] = collections or {}

    def copy(self) -> "SimulatedDatabase":
        return SimulatedDatabase(copy.deepcopy(self.collections))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, SimulatedDatabase) and self.collections == other.collections

    # -- helpers --

    def _fail(self, message: str, issues: list[str] | None = None) -> NoReturn:
        raise SimulationError(message, issues or [message])

    def _existing(self, name: str, shared: bool | None = None) -> SimulatedCollection:
        collection = self.collections.get(name)
        if collection is None:
            self._fail(f"collection '{name}' does not exist")
        if shared is True and not collection.shared:
            self._fail(f"collection '{name}' is not a shared collection")
        if shared is False and collection.shared:
            self._fail(f"collection '{name}' is a shared collection")
        return collection

    def _create(self, name: str, collection: SimulatedCollection) -> None:
        if name in self.collections:
            self._fail(f"collection '{name}' already exists")
        self.collections[name] = collection

    def _drop(self, name: str) -> None:
        self._existing(name)
        del self.collections[name]

    def _validated(self, documents: tuple[Document, ...], schema: FieldSchema, where: str) -> list[Document]:
        issues = []
        for position, document in enumerate(documents):
            issues.extend(f"{where} document {position}: {issue}" for issue in validate_document(schema, document))
        if issues:
            self._fail(f"seed data for {where} fails validation", issues)
        return [copy.deepcopy(document) for document in documents]

    def _unseed(self, collection: SimulatedCollection, seeded: list[Document], where: str) -> None:
        for document in seeded:
            for position, existing in enumerate(collection.documents):
                if existing == document:
                    del collection.documents[position]
                    break
            else:
                self._fail(f"seeded document missing from {where} on rollback")

    def _transform(
        self,
        collection: SimulatedCollection,
        function: Callable[[Document], Document],
        schema: FieldSchema | None,
        where: str,
        matches: Callable[[Document], bool] = lambda document: True,
        type_tag: str | None = None,
    ) -> None:
        issues = []
        for position, document in enumerate(collection.documents):
            if not matches(document):
                continue
            try:
                result = function(copy.deepcopy(document))
            except Exception as e:
                self._fail(f"transform of {where} raised {type(e).__name__}: {e}")
            if not isinstance(result, dict):
                self._fail(f"transform of {where} returned {type(result).__name__}, expected a document")
            result = dict(result)
            if "_id" in document:
                result["_id"] = document["_id"]
            if type_tag is not None:
                result[TYPE_FIELD] = type_tag
            if schema is not None:
                body = {key: value for key, value in result.items() if key != TYPE_FIELD}
                issues.extend(f"{where} document {position}: {issue}" for issue in validate_document(schema, body))
            collection.documents[position] = result
        if issues:
            self._fail(f"transformed documents of {where} fail validation", issues)

    @staticmethod
    def _of_type(tag: str) -> Callable[[Document], bool]:
        return lambda document: document.get(TYPE_FIELD) == tag

    def instances_of(self, template: str) -> list[str]:
        return sorted(name for name, collection in self.collections.items() if collection.template == template)

    def _down(self, rule: TransformRule, where: str) -> Callable[[Document], Document]:
        if rule.down is None:
            self._fail(f"transform of {where} has no down function")
        return rule.down

    # -- forward --

    def apply(self, operation: Operation) -> None:
        if isinstance(operation, CreateCollection):
            self._create(operation.collection, SimulatedCollection())

        elif isinstance(operation, SeedCollection):
            collection = self._existing(operation.collection, shared=False)
            collection.documents.extend(
                self._validated(operation.documents, operation.schema, operation.collection)
            )

        elif isinstance(operation, TransformCollection):
            collection = self._existing(operation.collection, shared=False)
            self._transform(collection, operation.rule.up, operation.schema, operation.collection)

        elif isinstance(operation, UpdateIndexes):
            self._existing(operation.collection, shared=False)

        elif isinstance(operation, CreateSharedCollection):
            self._create(operation.collection, SimulatedCollection(shared=True))

        elif isinstance(operation, (SeedSharedType, SeedTemplateInstance)):
            where = f"{operation.collection}[{operation.type_tag}]"
            collection = self._existing(operation.collection, shared=True)
            if isinstance(operation, SeedTemplateInstance) and collection.template != operation.template:
                self._fail(f"collection '{operation.collection}' is not an instance of '{operation.template}'")
            documents = self._validated(operation.documents, operation.schema, where)
            collection.documents.extend({**document, TYPE_FIELD: operation.type_tag} for document in documents)

        elif isinstance(operation, TransformSharedType):
            collection = self._existing(operation.collection, shared=True)
            where = f"{operation.collection}[{operation.type_tag}]"
            self._transform(
                collection,
                operation.rule.up,
                operation.schema,
                where,
                self._of_type(operation.type_tag),
                operation.type_tag,
            )

        elif isinstance(operation, CreateTemplateInstance):
            collection = SimulatedCollection(shared=True, template=operation.template)
            self._create(operation.collection, collection)
            info = instance_info_document(operation.template, "simulation")
            info.pop("created_at")
            collection.documents.append(info)

        elif isinstance(operation, TransformTemplateType):
            for name in self.instances_of(operation.template):
                self._transform(
                    self.collections[name],
                    operation.rule.up,
                    operation.schema,
                    f"{name}[{operation.type_tag}]",
                    self._of_type(operation.type_tag),
                    operation.type_tag,
                )

        else:
            self._fail(f"unsupported operation {type(operation).__name__}")

    # -- backward --

    def reverse(self, operation: Operation) -> None:
        if isinstance(operation, (CreateCollection, CreateSharedCollection, CreateTemplateInstance)):
            self._drop(operation.collection)

        elif isinstance(operation, SeedCollection):
            collection = self._existing(operation.collection, shared=False)
            seeded = [copy.deepcopy(document) for document in operation.documents]
            self._unseed(collection, seeded, operation.collection)

        elif isinstance(operation, (SeedSharedType, SeedTemplateInstance)):
            collection = self._existing(operation.collection, shared=True)
            seeded = [{**copy.deepcopy(document), TYPE_FIELD: operation.type_tag} for document in operation.documents]
            self._unseed(collection, seeded, operation.collection)

        elif isinstance(operation, TransformCollection):
            collection = self._existing(operation.collection, shared=False)
            down = self._down(operation.rule, operation.collection)
            self._transform(collection, down, operation.parent_schema, operation.collection)

        elif isinstance(operation, TransformSharedType):
            collection = self._existing(operation.collection, shared=True)
            where = f"{operation.collection}[{operation.type_tag}]"
            self._transform(
                collection,
                self._down(operation.rule, where),
                operation.parent_schema,
                where,
                self._of_type(operation.type_tag),
                operation.type_tag,
            )

        elif isinstance(operation, TransformTemplateType):
            where = f"{operation.template}[{operation.type_tag}]"
            down = self._down(operation.rule, where)
            for name in self.instances_of(operation.template):
                self._transform(
                    self.collections[name],
                    down,
                    operation.parent_schema,
                    f"{name}[{operation.type_tag}]",
                    self._of_type(operation.type_tag),
                    operation.type_tag,
                )

        elif isinstance(operation, UpdateIndexes):
            self._existing(operation.collection, shared=False)

        else:
            self._fail(f"unsupported operation {type(operation).__name__}")


def simulate(operations: tuple[Operation, ...], state: SimulatedDatabase | None = None) -> SimulatedDatabase:
    """Apply operations to a copy of ``state``; the input is left untouched."""
    result = state.copy() if state is not None else SimulatedDatabase()
    for operation in operations:
        result.apply(operation)
    return result


def simulate_reverse(operations: tuple[Operation, ...], state: SimulatedDatabase) -> SimulatedDatabase:
    """Undo operations (last first) on a copy of ``state``."""
    result = state.copy()
    for operation in reversed(operations):
        result.reverse(operation)
    return result
