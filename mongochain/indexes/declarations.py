"""
Declared and live index descriptors, normalized to one comparable form.

Index names are deterministic: the sanitized field path for plain collections,
``<type>_<path>`` for shared collections. That is how a declared index is
matched to a live one without any bookkeeping collection.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from mongochain.schema.nodes import Collation, FieldSchema
from mongochain.schema.visitor import collect_index_declarations

TYPE_FIELD = "_type"
ID_INDEX_NAME = "_id_"
SIMPLE_LOCALE = "simple"

KeySpec = tuple[tuple[str, Any], ...]

_WHITESPACE = re.compile(r"\s+")
_INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_.]")


def sanitize_path_name(path: str) -> str:
    """Turn a field path into an index name: whitespace to ``_``, other symbols dropped."""
    path = _WHITESPACE.sub("_", path.strip())
    return _INVALID_NAME_CHARS.sub("", path)


def shared_index_name(type_tag: str, path: str) -> str:
    return sanitize_path_name(f"{type_tag}_{path}")


def type_scope(type_tag: str, type_field: str = TYPE_FIELD) -> dict[str, Any]:
    return {type_field: {"$eq": type_tag}}


# =============================================================================
# Canonical forms
# =============================================================================


def canonical_collation(collation: Collation | Mapping[str, Any] | None) -> tuple[str, int] | None:
    """
    ``(locale, strength)`` or None.

    The server echoes every collation option back with defaults filled in, so
    only the options that can be declared take part in the comparison. The
    ``simple`` locale is binary comparison, the same as no collation at all.
    """
    if collation is None:
        return None
    if isinstance(collation, Collation):
        locale, strength = collation.locale, collation.strength
    else:
        locale, strength = collation.get("locale"), collation.get("strength", 3)
    if not locale or locale == SIMPLE_LOCALE:
        return None
    return (locale, int(strength))


def _canonical_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return _canonical_expression(value)
    if isinstance(value, (list, tuple)):
        return tuple(_canonical_value(item) for item in value)
    return value


def _canonical_expression(expression: Mapping[str, Any]) -> tuple:
    items = []
    for key, value in expression.items():
        if key.startswith("$"):
            items.append((key, _canonical_value(value)))
        elif isinstance(value, Mapping) and value and all(str(op).startswith("$") for op in value):
            operators = sorted(
                ((op, _canonical_value(operand)) for op, operand in value.items()),
                key=lambda item: item[0],
            )
            items.append((key, tuple(operators)))
        else:
            # a bare value is shorthand for $eq
            items.append((key, (("$eq", _canonical_value(value)),)))
    return tuple(sorted(items, key=lambda item: item[0]))


def canonical_filter(expression: Mapping[str, Any] | None) -> tuple | None:
    """Order-independent form of a partial filter expression; empty means none."""
    if not expression:
        return None
    return _canonical_expression(expression)


# =============================================================================
# Descriptors
# =============================================================================


@dataclass(frozen=True)
class IndexDeclaration:
    """An index the schema asks for."""

    name: str
    keys: KeySpec
    unique: bool = False
    collation: Collation | None = None
    scope: Mapping[str, Any] | None = field(default=None, compare=False)
    type_tag: str | None = None

    def canonical_options(self) -> tuple:
        return (self.unique, canonical_collation(self.collation), canonical_filter(self.scope))

    def create_options(self) -> dict[str, Any]:
        """Keyword options for ``create_index``; false/empty options are omitted."""
        options: dict[str, Any] = {"name": self.name}
        if self.unique:
            options["unique"] = True
        if canonical_collation(self.collation) is not None:
            options["collation"] = self.collation.to_document()
        if self.scope:
            options["partialFilterExpression"] = dict(self.scope)
        return options


@dataclass(frozen=True)
class LiveIndex:
    """An index as read back from ``list_indexes``."""

    name: str
    keys: KeySpec
    unique: bool = False
    collation: tuple[str, int] | None = None
    scope: tuple | None = None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "LiveIndex":
        return cls(
            name=document.get("name", ""),
            keys=tuple((path, direction) for path, direction in document.get("key", {}).items()),
            unique=bool(document.get("unique", False)),
            collation=canonical_collation(document.get("collation")),
            scope=canonical_filter(document.get("partialFilterExpression")),
        )

    def canonical_options(self) -> tuple:
        return (self.unique, self.collation, self.scope)


def extract_declarations(fields: FieldSchema) -> list[IndexDeclaration]:
    """Index declarations of a plain collection schema."""
    return [
        IndexDeclaration(
            name=sanitize_path_name(path),
            keys=((path, 1),),
            unique=metadata.unique,
            collation=metadata.collation,
        )
        for path, metadata in collect_index_declarations(fields)
    ]


def extract_shared_declarations(
    types: Mapping[str, FieldSchema],
    type_field: str = TYPE_FIELD,
) -> list[IndexDeclaration]:
    """Index declarations of a shared collection, each scoped to its type tag."""
    declarations = []
    for tag, fields in types.items():
        for path, metadata in collect_index_declarations(fields):
            declarations.append(
                IndexDeclaration(
                    name=shared_index_name(tag, path),
                    keys=((path, 1),),
                    unique=metadata.unique,
                    collation=metadata.collation,
                    scope=type_scope(tag, type_field),
                    type_tag=tag,
                )
            )
    return declarations


def live_indexes(documents: Iterable[Mapping[str, Any]]) -> list[LiveIndex]:
    return [LiveIndex.from_document(document) for document in documents]
