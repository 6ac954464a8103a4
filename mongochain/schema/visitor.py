"""
Generic schema tree walker.

One traversal core (``walk``) with pluggable callbacks. Arrays, unions and
optionals do not add a path segment: MongoDB dot notation reaches through array
elements, and a union or optional describes the same field.
"""

from mongochain.schema.nodes import (
    ArrayNode,
    FieldSchema,
    IndexMetadata,
    ObjectNode,
    OptionalNode,
    SchemaNode,
    UnionNode,
    as_object,
)

Path = tuple[str, ...]


class SchemaVisitor:
    """Base visitor. Override any of the three callbacks."""

    def enter(self, node: SchemaNode, path: Path) -> bool:
        """Called before children are walked. Return False to skip them."""
        return True

    def visit(self, node: SchemaNode, path: Path) -> None:
        """Called for leaf nodes."""

    def leave(self, node: SchemaNode, path: Path) -> None:
        """Called after children were walked."""


def walk(node: SchemaNode, visitor: SchemaVisitor, path: Path = ()) -> None:
    if not visitor.enter(node, path):
        return

    if isinstance(node, ObjectNode):
        for name, child in node.fields.items():
            walk(child, visitor, path + (name,))
    elif isinstance(node, ArrayNode):
        walk(node.item, visitor, path)
    elif isinstance(node, UnionNode):
        for option in node.options:
            walk(option, visitor, path)
    elif isinstance(node, OptionalNode):
        walk(node.inner, visitor, path)
    else:
        visitor.visit(node, path)

    visitor.leave(node, path)


def dotted(path: Path) -> str:
    return ".".join(path)


class PathCollector(SchemaVisitor):
    """Collects every named field path (objects nested in arrays included)."""

    def __init__(self) -> None:
        self.paths: list[str] = []

    def enter(self, node: SchemaNode, path: Path) -> bool:
        if path:
            name = dotted(path)
            if name not in self.paths:
                self.paths.append(name)
        return True


class IndexCollector(SchemaVisitor):
    """Collects ``(path, metadata)`` for every node carrying index metadata."""

    def __init__(self) -> None:
        self.indexes: list[tuple[str, IndexMetadata]] = []
        self._seen: set[str] = set()

    def enter(self, node: SchemaNode, path: Path) -> bool:
        if node.index is not None and path:
            name = dotted(path)
            # one index per field: the outermost metadata wins
            if name not in self._seen:
                self._seen.add(name)
                self.indexes.append((name, node.index))
        return True


def collect_paths(fields: FieldSchema) -> list[str]:
    collector = PathCollector()
    walk(as_object(fields), collector)
    return collector.paths


def collect_index_declarations(fields: FieldSchema) -> list[tuple[str, IndexMetadata]]:
    collector = IndexCollector()
    walk(as_object(fields), collector)
    return collector.indexes
