"""
Structural comparison of schemas.

``diff_fields`` compares two field schemas; ``diff_snapshots`` lifts it to whole
snapshots (plain collections, shared collection types and template types).
"""

from dataclasses import dataclass, replace
from enum import Enum

from mongochain.schema.nodes import (
    ArrayNode,
    FieldSchema,
    ObjectNode,
    OptionalNode,
    SchemaNode,
    UnionNode,
    is_optional,
    unwrap_optional,
)
from mongochain.schema.snapshot import SchemaSnapshot
from mongochain.schema.visitor import collect_index_declarations


class ChangeKind(str, Enum):
    """Kind of schema change between two declarations."""

    ADDED_OPTIONAL = "added_optional"
    ADDED_REQUIRED = "added_required"
    REMOVED = "removed"
    TYPE_CHANGED = "type_changed"
    MADE_OPTIONAL = "made_optional"
    MADE_REQUIRED = "made_required"
    INDEX_CHANGED = "index_changed"
    COLLECTION_ADDED = "collection_added"
    COLLECTION_REMOVED = "collection_removed"


DESTRUCTIVE_KINDS = frozenset(
    {
        ChangeKind.REMOVED,
        ChangeKind.TYPE_CHANGED,
        ChangeKind.ADDED_REQUIRED,
        ChangeKind.MADE_REQUIRED,
        ChangeKind.COLLECTION_REMOVED,
    }
)


@dataclass(frozen=True)
class FieldChange:
    """
    One schema change.

    ``collection`` names the plain/shared collection or template; ``type_tag`` is
    set for shared collection and template types; ``path`` is empty for changes
    to a whole collection or type.
    """

    kind: ChangeKind
    path: str = ""
    collection: str | None = None
    type_tag: str | None = None
    container: str = "collection"

    @property
    def destructive(self) -> bool:
        return self.kind in DESTRUCTIVE_KINDS

    def describe(self) -> str:
        target = self.collection or "?"
        if self.type_tag:
            target = f"{target}[{self.type_tag}]"
        if self.path:
            target = f"{target}.{self.path}"
        return f"{target}: {self.kind.value}"


def strip_indexes(node: SchemaNode) -> SchemaNode:
    """Return the node with all index metadata removed (shape only)."""
    if isinstance(node, ObjectNode):
        return ObjectNode({name: strip_indexes(child) for name, child in node.fields.items()})
    if isinstance(node, ArrayNode):
        return ArrayNode(strip_indexes(node.item))
    if isinstance(node, UnionNode):
        return UnionNode(tuple(strip_indexes(option) for option in node.options))
    if isinstance(node, OptionalNode):
        return OptionalNode(strip_indexes(node.inner))
    return replace(node, index=None)


def _diff_shape(old: FieldSchema, new: FieldSchema, prefix: str, changes: list[FieldChange]) -> None:
    for name in old:
        if name not in new:
            changes.append(FieldChange(ChangeKind.REMOVED, prefix + name))

    for name, node in new.items():
        path = prefix + name
        if name not in old:
            kind = ChangeKind.ADDED_OPTIONAL if is_optional(node) else ChangeKind.ADDED_REQUIRED
            changes.append(FieldChange(kind, path))
            continue

        before = old[name]
        if is_optional(before) and not is_optional(node):
            changes.append(FieldChange(ChangeKind.MADE_REQUIRED, path))
        elif not is_optional(before) and is_optional(node):
            changes.append(FieldChange(ChangeKind.MADE_OPTIONAL, path))

        inner_before, inner_after = unwrap_optional(before), unwrap_optional(node)
        if isinstance(inner_before, ObjectNode) and isinstance(inner_after, ObjectNode):
            _diff_shape(inner_before.fields, inner_after.fields, path + ".", changes)
        elif strip_indexes(inner_before) != strip_indexes(inner_after):
            changes.append(FieldChange(ChangeKind.TYPE_CHANGED, path))


def diff_fields(old: FieldSchema, new: FieldSchema) -> list[FieldChange]:
    """
    Classify every difference between two field schemas.

    Shape changes are reported per field; index metadata changes are reported
    per indexed path as ``index_changed``.
    """
    changes: list[FieldChange] = []
    _diff_shape(old, new, "", changes)

    old_indexes = dict(collect_index_declarations(old))
    new_indexes = dict(collect_index_declarations(new))
    for path in sorted(set(old_indexes) | set(new_indexes)):
        if old_indexes.get(path) != new_indexes.get(path):
            changes.append(FieldChange(ChangeKind.INDEX_CHANGED, path))

    return changes


def _scoped(
    changes: list[FieldChange], collection: str, type_tag: str | None = None, container: str = "collection"
) -> list[FieldChange]:
    return [replace(change, collection=collection, type_tag=type_tag, container=container) for change in changes]


def _diff_typed(
    old: dict[str, dict[str, FieldSchema]],
    new: dict[str, dict[str, FieldSchema]],
    changes: list[FieldChange],
    container: str,
) -> None:
    for name in old:
        if name not in new:
            changes.append(FieldChange(ChangeKind.COLLECTION_REMOVED, collection=name, container=container))
    for name, types in new.items():
        if name not in old:
            changes.append(FieldChange(ChangeKind.COLLECTION_ADDED, collection=name, container=container))
            continue
        for tag in old[name]:
            if tag not in types:
                changes.append(
                    FieldChange(ChangeKind.COLLECTION_REMOVED, collection=name, type_tag=tag, container=container)
                )
        for tag, fields in types.items():
            if tag not in old[name]:
                changes.append(
                    FieldChange(ChangeKind.COLLECTION_ADDED, collection=name, type_tag=tag, container=container)
                )
                continue
            changes.extend(_scoped(diff_fields(old[name][tag], fields), name, tag, container))


def diff_snapshots(old: SchemaSnapshot, new: SchemaSnapshot) -> list[FieldChange]:
    """All changes between two snapshots, scoped to their collection and type."""
    changes: list[FieldChange] = []

    for name in old.collections:
        if name not in new.collections:
            changes.append(FieldChange(ChangeKind.COLLECTION_REMOVED, collection=name))
    for name, fields in new.collections.items():
        if name not in old.collections:
            changes.append(FieldChange(ChangeKind.COLLECTION_ADDED, collection=name))
            continue
        changes.extend(_scoped(diff_fields(old.collections[name], fields), name))

    _diff_typed(old.shared_collections, new.shared_collections, changes, "shared")
    _diff_typed(old.templates, new.templates, changes, "template")
    return changes
