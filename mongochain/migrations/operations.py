"""
Structural operation descriptors.

A migration's ``migrate`` function never touches the database: it describes its
intent through the builder, which appends these immutable descriptors. The same
list is then run against the in-memory simulator and against MongoDB.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from mongochain.schema.nodes import FieldSchema

Document = dict[str, Any]
TypeSchemas = Mapping[str, FieldSchema]


@dataclass(frozen=True)
class TransformRule:
    """
    Forward/backward document transform.

    Attributes:
        up: Maps a document of the parent schema to the new schema.
        down: Inverse of ``up``; None when the transform cannot be reversed.
        lossy: ``down`` cannot restore the original documents exactly.
        irreversible: Explicitly marks the transform as one-way.
    """

    up: Callable[[Document], Document]
    down: Callable[[Document], Document] | None = None
    lossy: bool = False
    irreversible: bool = False

    @property
    def reversible(self) -> bool:
        return self.down is not None and not self.irreversible


@dataclass(frozen=True)
class CreateCollection:
    kind: ClassVar[str] = "create_collection"

    collection: str
    schema: FieldSchema = field(compare=False)

    def describe(self) -> str:
        return f"create collection {self.collection}"


@dataclass(frozen=True)
class SeedCollection:
    kind: ClassVar[str] = "seed_collection"

    collection: str
    documents: tuple[Document, ...] = field(compare=False)
    schema: FieldSchema = field(compare=False)

    def describe(self) -> str:
        return f"seed {len(self.documents)} document(s) into {self.collection}"


@dataclass(frozen=True)
class TransformCollection:
    kind: ClassVar[str] = "transform_collection"

    collection: str
    rule: TransformRule = field(compare=False)
    schema: FieldSchema = field(compare=False)
    parent_schema: FieldSchema | None = field(default=None, compare=False)

    def describe(self) -> str:
        return f"transform documents of {self.collection}"


@dataclass(frozen=True)
class UpdateIndexes:
    kind: ClassVar[str] = "update_indexes"

    collection: str
    schema: FieldSchema = field(compare=False)
    parent_schema: FieldSchema | None = field(default=None, compare=False)

    def describe(self) -> str:
        return f"update indexes of {self.collection}"


@dataclass(frozen=True)
class CreateSharedCollection:
    kind: ClassVar[str] = "create_shared_collection"

    collection: str
    types: TypeSchemas = field(compare=False)

    def describe(self) -> str:
        return f"create shared collection {self.collection} ({', '.join(self.types)})"


@dataclass(frozen=True)
class SeedSharedType:
    kind: ClassVar[str] = "seed_shared_type"

    collection: str
    type_tag: str
    documents: tuple[Document, ...] = field(compare=False)
    schema: FieldSchema = field(compare=False)

    def describe(self) -> str:
        return f"seed {len(self.documents)} {self.type_tag} document(s) into {self.collection}"


@dataclass(frozen=True)
class TransformSharedType:
    """Transform one type of a shared collection; ``types`` is the whole new type map."""

    kind: ClassVar[str] = "transform_shared_type"

    collection: str
    type_tag: str
    rule: TransformRule = field(compare=False)
    types: TypeSchemas = field(compare=False)
    parent_types: TypeSchemas = field(default_factory=dict, compare=False)

    @property
    def schema(self) -> FieldSchema:
        return self.types[self.type_tag]

    @property
    def parent_schema(self) -> FieldSchema | None:
        return self.parent_types.get(self.type_tag)

    def describe(self) -> str:
        return f"transform {self.type_tag} documents of {self.collection}"


@dataclass(frozen=True)
class CreateTemplateInstance:
    kind: ClassVar[str] = "create_template_instance"

    collection: str
    template: str
    types: TypeSchemas = field(compare=False)

    def describe(self) -> str:
        return f"create {self.template} instance {self.collection}"


@dataclass(frozen=True)
class SeedTemplateInstance:
    kind: ClassVar[str] = "seed_template_instance"

    collection: str
    template: str
    type_tag: str
    documents: tuple[Document, ...] = field(compare=False)
    schema: FieldSchema = field(compare=False)

    def describe(self) -> str:
        return f"seed {len(self.documents)} {self.type_tag} document(s) into {self.collection}"


@dataclass(frozen=True)
class TransformTemplateType:
    """Transform one type in every instance of a template."""

    kind: ClassVar[str] = "transform_template_type"

    template: str
    type_tag: str
    rule: TransformRule = field(compare=False)
    types: TypeSchemas = field(compare=False)
    parent_types: TypeSchemas = field(default_factory=dict, compare=False)

    @property
    def schema(self) -> FieldSchema:
        return self.types[self.type_tag]

    @property
    def parent_schema(self) -> FieldSchema | None:
        return self.parent_types.get(self.type_tag)

    def describe(self) -> str:
        return f"transform {self.type_tag} documents of every {self.template} instance"


Operation = Union[
    CreateCollection,
    SeedCollection,
    TransformCollection,
    UpdateIndexes,
    CreateSharedCollection,
    SeedSharedType,
    TransformSharedType,
    CreateTemplateInstance,
    SeedTemplateInstance,
    TransformTemplateType,
]

TRANSFORM_OPERATIONS = (TransformCollection, TransformSharedType, TransformTemplateType)


def transform_rule(operation: Operation) -> TransformRule | None:
    return operation.rule if isinstance(operation, TRANSFORM_OPERATIONS) else None
