"""
Declarative builder used inside a migration's ``migrate`` function.

Example:
    def migrate(m):
        return (
            m.create_collection("users")
            .seed([{"email": "admin@example.com", "name": "Admin"}])
            .end()
            .compile()
        )

Builder calls only append operation descriptors; ``compile()`` freezes the list.
"""

import copy
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from mongochain.core.exceptions import MigrationDefinitionError
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
from mongochain.schema.snapshot import SchemaSnapshot


def _freeze_documents(documents: Iterable[Mapping[str, Any]]) -> tuple[Document, ...]:
    return tuple(copy.deepcopy(dict(document)) for document in documents)


def _rule(
    up: Callable[[Document], Document],
    down: Callable[[Document], Document] | None,
    lossy: bool,
    irreversible: bool,
) -> TransformRule:
    if not callable(up):
        raise MigrationDefinitionError("transform() needs a callable 'up'")
    if down is not None and not callable(down):
        raise MigrationDefinitionError("transform() 'down' must be callable")
    return TransformRule(up=up, down=down, lossy=lossy, irreversible=irreversible)


class CollectionBuilder:
    """Operations on one plain collection."""

    def __init__(self, parent: "MigrationBuilder", name: str):
        self._parent = parent
        self._name = name

    def seed(self, documents: Iterable[Mapping[str, Any]]) -> "CollectionBuilder":
        schema = self._parent._collection_schema(self._name)
        self._parent._append(SeedCollection(self._name, _freeze_documents(documents), schema))
        return self

    def transform(
        self,
        up: Callable[[Document], Document],
        down: Callable[[Document], Document] | None = None,
        lossy: bool = False,
        irreversible: bool = False,
    ) -> "CollectionBuilder":
        schema = self._parent._collection_schema(self._name)
        self._parent._append(
            TransformCollection(
                self._name,
                _rule(up, down, lossy, irreversible),
                schema,
                self._parent.parent_schema.collections.get(self._name),
            )
        )
        return self

    def end(self) -> "MigrationBuilder":
        return self._parent


class SharedTypeBuilder:
    """Operations on one type of a shared collection."""

    def __init__(self, parent: "SharedCollectionBuilder", tag: str):
        self._parent = parent
        self._tag = tag

    def seed(self, documents: Iterable[Mapping[str, Any]]) -> "SharedTypeBuilder":
        root = self._parent._root
        types = root._shared_types(self._parent._name)
        schema = root._type_schema(types, self._parent._name, self._tag)
        root._append(SeedSharedType(self._parent._name, self._tag, _freeze_documents(documents), schema))
        return self

    def transform(
        self,
        up: Callable[[Document], Document],
        down: Callable[[Document], Document] | None = None,
        lossy: bool = False,
        irreversible: bool = False,
    ) -> "SharedTypeBuilder":
        root = self._parent._root
        name = self._parent._name
        types = root._shared_types(name)
        root._type_schema(types, name, self._tag)
        root._append(
            TransformSharedType(
                name,
                self._tag,
                _rule(up, down, lossy, irreversible),
                dict(types),
                dict(root.parent_schema.shared_collections.get(name, {})),
            )
        )
        return self

    def end(self) -> "SharedCollectionBuilder":
        return self._parent


class SharedCollectionBuilder:
    def __init__(self, root: "MigrationBuilder", name: str):
        self._root = root
        self._name = name

    def type(self, tag: str) -> SharedTypeBuilder:
        return SharedTypeBuilder(self, tag)

    def end(self) -> "MigrationBuilder":
        return self._root


class TemplateInstanceTypeBuilder:
    def __init__(self, parent: "TemplateInstanceBuilder", tag: str):
        self._parent = parent
        self._tag = tag

    def seed(self, documents: Iterable[Mapping[str, Any]]) -> "TemplateInstanceTypeBuilder":
        root = self._parent._root
        template = self._parent._template
        types = root._template_types(template)
        schema = root._type_schema(types, template, self._tag)
        root._append(
            SeedTemplateInstance(self._parent._name, template, self._tag, _freeze_documents(documents), schema)
        )
        return self

    def end(self) -> "TemplateInstanceBuilder":
        return self._parent


class TemplateInstanceBuilder:
    """Operations on one named instance of a template."""

    def __init__(self, root: "MigrationBuilder", name: str, template: str):
        self._root = root
        self._name = name
        self._template = template

    def type(self, tag: str) -> TemplateInstanceTypeBuilder:
        return TemplateInstanceTypeBuilder(self, tag)

    def end(self) -> "MigrationBuilder":
        return self._root


class TemplateTypeBuilder:
    def __init__(self, parent: "TemplateInstancesBuilder", tag: str):
        self._parent = parent
        self._tag = tag

    def transform(
        self,
        up: Callable[[Document], Document],
        down: Callable[[Document], Document] | None = None,
        lossy: bool = False,
        irreversible: bool = False,
    ) -> "TemplateTypeBuilder":
        root = self._parent._root
        template = self._parent._template
        types = root._template_types(template)
        root._type_schema(types, template, self._tag)
        root._append(
            TransformTemplateType(
                template,
                self._tag,
                _rule(up, down, lossy, irreversible),
                dict(types),
                dict(root.parent_schema.templates.get(template, {})),
            )
        )
        return self

    def end(self) -> "TemplateInstancesBuilder":
        return self._parent


class TemplateInstancesBuilder:
    """Operations applied to every instance of a template."""

    def __init__(self, root: "MigrationBuilder", template: str):
        self._root = root
        self._template = template

    def type(self, tag: str) -> TemplateTypeBuilder:
        return TemplateTypeBuilder(self, tag)

    def end(self) -> "MigrationBuilder":
        return self._root


class MigrationBuilder:
    """
    Entry point handed to ``migrate(m)``.

    Args:
        schema: The snapshot this migration declares.
        parent_schema: The parent migration's snapshot (empty for the root).
    """

    def __init__(self, schema: SchemaSnapshot, parent_schema: SchemaSnapshot | None = None):
        self.schema = schema
        self.parent_schema = parent_schema or SchemaSnapshot()
        self._operations: list[Operation] = []
        self._compiled: tuple[Operation, ...] | None = None

    # -- internal helpers used by the nested builders --

    def _append(self, operation: Operation) -> None:
        if self._compiled is not None:
            raise MigrationDefinitionError(
                f"Cannot add '{operation.kind}' after compile(); the operation list is frozen"
            )
        self._operations.append(operation)

    def _collection_schema(self, name: str):
        if name not in self.schema.collections:
            raise MigrationDefinitionError(f"Collection '{name}' is not declared in this migration's schema")
        return self.schema.collections[name]

    def _shared_types(self, name: str):
        if name not in self.schema.shared_collections:
            raise MigrationDefinitionError(
                f"Shared collection '{name}' is not declared in this migration's schema"
            )
        return self.schema.shared_collections[name]

    def _template_types(self, template: str):
        if template not in self.schema.templates:
            raise MigrationDefinitionError(f"Template '{template}' is not declared in this migration's schema")
        return self.schema.templates[template]

    @staticmethod
    def _type_schema(types, owner: str, tag: str):
        if tag not in types:
            raise MigrationDefinitionError(f"Type '{tag}' is not declared for '{owner}'")
        return types[tag]

    # -- public DSL --

    def create_collection(self, name: str) -> CollectionBuilder:
        self._append(CreateCollection(name, self._collection_schema(name)))
        return CollectionBuilder(self, name)

    def collection(self, name: str) -> CollectionBuilder:
        return CollectionBuilder(self, name)

    def create_shared_collection(self, name: str) -> SharedCollectionBuilder:
        self._append(CreateSharedCollection(name, dict(self._shared_types(name))))
        return SharedCollectionBuilder(self, name)

    def shared_collection(self, name: str) -> SharedCollectionBuilder:
        return SharedCollectionBuilder(self, name)

    def create_template_instance(self, instance: str, template: str) -> TemplateInstanceBuilder:
        self._append(CreateTemplateInstance(instance, template, dict(self._template_types(template))))
        return TemplateInstanceBuilder(self, instance, template)

    def template_instances(self, template: str) -> TemplateInstancesBuilder:
        return TemplateInstancesBuilder(self, template)

    def update_indexes(self, name: str) -> "MigrationBuilder":
        self._append(
            UpdateIndexes(name, self._collection_schema(name), self.parent_schema.collections.get(name))
        )
        return self

    def compile(self) -> tuple[Operation, ...]:
        """Freeze and return the operation list. Later builder calls raise."""
        if self._compiled is None:
            self._compiled = tuple(self._operations)
        return self._compiled

    @property
    def compiled(self) -> bool:
        return self._compiled is not None
