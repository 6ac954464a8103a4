"""
Schema node model.

A collection schema is a mapping of field name to ``SchemaNode``. Nodes form a
closed set of kinds (object, array, union, optional, leaf); any node may carry
``IndexMetadata``, which is what the index reconciler looks for.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Union


@dataclass(frozen=True)
class Collation:
    """Index collation. Only the options this library declares are modelled."""

    locale: str
    strength: int = 3

    def to_document(self) -> dict[str, Any]:
        return {"locale": self.locale, "strength": self.strength}


@dataclass(frozen=True)
class IndexMetadata:
    """
    Marks a field as indexed.

    Attributes:
        unique: Enforce uniqueness.
        collation: Optional collation (e.g. case-insensitive matching).
    """

    unique: bool = False
    collation: Collation | None = None


LEAF_TYPES = ("string", "number", "int", "bool", "date", "object_id", "literal", "any")


@dataclass(frozen=True)
class LeafNode:
    type: str
    value: Any = None
    index: IndexMetadata | None = None

    def __post_init__(self) -> None:
        if self.type not in LEAF_TYPES:
            raise ValueError(f"Unknown leaf type: {self.type}")


@dataclass(frozen=True)
class ObjectNode:
    fields: Mapping[str, "SchemaNode"] = field(default_factory=dict)
    index: IndexMetadata | None = None


@dataclass(frozen=True)
class ArrayNode:
    item: "SchemaNode"
    index: IndexMetadata | None = None


@dataclass(frozen=True)
class UnionNode:
    options: tuple["SchemaNode", ...]
    index: IndexMetadata | None = None


@dataclass(frozen=True)
class OptionalNode:
    inner: "SchemaNode"
    index: IndexMetadata | None = None


SchemaNode = Union[LeafNode, ObjectNode, ArrayNode, UnionNode, OptionalNode]
FieldSchema = Mapping[str, SchemaNode]


# =============================================================================
# Constructors
# =============================================================================


def string() -> LeafNode:
    return LeafNode("string")


def number() -> LeafNode:
    return LeafNode("number")


def integer() -> LeafNode:
    return LeafNode("int")


def boolean() -> LeafNode:
    return LeafNode("bool")


def date() -> LeafNode:
    return LeafNode("date")


def object_id() -> LeafNode:
    return LeafNode("object_id")


def literal(value: Any) -> LeafNode:
    return LeafNode("literal", value=value)


def any_() -> LeafNode:
    return LeafNode("any")


def obj(fields: Mapping[str, SchemaNode]) -> ObjectNode:
    return ObjectNode(dict(fields))


def array(item: SchemaNode) -> ArrayNode:
    return ArrayNode(item)


def union(*options: SchemaNode) -> UnionNode:
    if not options:
        raise ValueError("union() needs at least one option")
    return UnionNode(tuple(options))


def optional(inner: SchemaNode) -> OptionalNode:
    return OptionalNode(inner)


def with_index(
    node: SchemaNode,
    unique: bool = False,
    collation: Collation | Mapping[str, Any] | None = None,
    insensitive: bool = False,
) -> SchemaNode:
    """
    Attach index metadata to a node.

    Args:
        node: The node to index.
        unique: Enforce uniqueness.
        collation: Explicit collation (``Collation`` or ``{"locale", "strength"}``).
        insensitive: Shorthand for a case-insensitive English collation.

    Example:
        schema = {
            "email": with_index(string(), unique=True),
            "username": with_index(string(), unique=True, insensitive=True),
        }
    """
    if isinstance(collation, Mapping):
        collation = Collation(locale=collation["locale"], strength=collation.get("strength", 3))
    elif collation is None and insensitive:
        collation = Collation(locale="en", strength=2)

    return replace(node, index=IndexMetadata(unique=unique, collation=collation))


def is_optional(node: SchemaNode) -> bool:
    return isinstance(node, OptionalNode)


def unwrap_optional(node: SchemaNode) -> SchemaNode:
    while isinstance(node, OptionalNode):
        node = node.inner
    return node


def as_object(fields: FieldSchema) -> ObjectNode:
    """Wrap a collection's field mapping in a root object node."""
    return ObjectNode(dict(fields))
