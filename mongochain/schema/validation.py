"""
Document validation for schema nodes.

- ``compile_validator`` / ``compile_shared_validator`` turn a schema into a
  MongoDB ``$jsonSchema`` validator document, enforced by the server.
- ``validate_document`` checks a Python document client-side and returns a list
  of issues; seed data and transformed documents go through it.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from bson import ObjectId

from mongochain.schema.nodes import (
    ArrayNode,
    FieldSchema,
    LeafNode,
    ObjectNode,
    OptionalNode,
    SchemaNode,
    UnionNode,
)

TYPE_FIELD = "_type"

_BSON_TYPES: dict[str, Any] = {
    "string": "string",
    "number": ["double", "int", "long", "decimal"],
    "int": ["int", "long"],
    "bool": "bool",
    "date": "date",
    "object_id": "objectId",
}


# =============================================================================
# Server-side validator documents
# =============================================================================


def _json_schema(node: SchemaNode) -> dict[str, Any]:
    if isinstance(node, OptionalNode):
        return {"anyOf": [_json_schema(node.inner), {"bsonType": "null"}]}
    if isinstance(node, ObjectNode):
        return _object_schema(node.fields)
    if isinstance(node, ArrayNode):
        return {"bsonType": "array", "items": _json_schema(node.item)}
    if isinstance(node, UnionNode):
        return {"anyOf": [_json_schema(option) for option in node.options]}
    if node.type == "literal":
        return {"enum": [node.value]}
    if node.type == "any":
        return {}
    return {"bsonType": _BSON_TYPES[node.type]}


def _object_schema(fields: FieldSchema, extra: Mapping[str, Any] | None = None) -> dict[str, Any]:
    properties = {name: _json_schema(child) for name, child in fields.items()}
    required = [name for name, child in fields.items() if not isinstance(child, OptionalNode)]
    if extra:
        properties.update(extra)
        required.extend(name for name in extra if name not in required)

    schema: dict[str, Any] = {"bsonType": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def compile_validator(fields: FieldSchema) -> dict[str, Any]:
    """Validator document for a plain collection."""
    return {"$jsonSchema": _object_schema(fields)}


def compile_shared_validator(
    types: Mapping[str, FieldSchema],
    extra_types: Mapping[str, FieldSchema] | None = None,
) -> dict[str, Any]:
    """
    Validator document for a shared collection.

    Each type tag becomes one ``oneOf`` branch pinned by the discriminator field.
    ``extra_types`` adds branches for internal documents (e.g. instance registry).
    """
    branches = []
    for tag, fields in {**types, **(extra_types or {})}.items():
        branches.append(_object_schema(fields, extra={TYPE_FIELD: {"enum": [tag]}}))

    if not branches:
        return {
            "$jsonSchema": {
                "bsonType": "object",
                "required": [TYPE_FIELD],
                "properties": {TYPE_FIELD: {"bsonType": "string"}},
            }
        }
    return {"$jsonSchema": {"oneOf": branches}}


# =============================================================================
# Client-side document validation
# =============================================================================


def _describe(path: str) -> str:
    return path or "<document>"


def _check_leaf(node: LeafNode, value: Any, path: str, issues: list[str]) -> None:
    kind = node.type
    ok = True
    if kind == "string":
        ok = isinstance(value, str)
    elif kind == "number":
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif kind == "int":
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif kind == "bool":
        ok = isinstance(value, bool)
    elif kind == "date":
        ok = isinstance(value, datetime)
    elif kind == "object_id":
        ok = isinstance(value, ObjectId)
    elif kind == "literal":
        if value != node.value:
            issues.append(f"{_describe(path)}: expected {node.value!r}, got {value!r}")
        return

    if not ok:
        issues.append(f"{_describe(path)}: expected {kind}, got {type(value).__name__}")


def _check(node: SchemaNode, value: Any, path: str, issues: list[str]) -> None:
    if isinstance(node, OptionalNode):
        if value is None:
            return
        _check(node.inner, value, path, issues)
        return

    if value is None and not (isinstance(node, LeafNode) and node.type == "any"):
        issues.append(f"{_describe(path)}: value is required")
        return

    if isinstance(node, ObjectNode):
        if not isinstance(value, Mapping):
            issues.append(f"{_describe(path)}: expected object, got {type(value).__name__}")
            return
        _check_fields(node.fields, value, path, issues)

    elif isinstance(node, ArrayNode):
        if not isinstance(value, (list, tuple)):
            issues.append(f"{_describe(path)}: expected array, got {type(value).__name__}")
            return
        for position, item in enumerate(value):
            _check(node.item, item, f"{path}.{position}" if path else str(position), issues)

    elif isinstance(node, UnionNode):
        for option in node.options:
            option_issues: list[str] = []
            _check(option, value, path, option_issues)
            if not option_issues:
                return
        issues.append(f"{_describe(path)}: value does not match any union option")

    else:
        _check_leaf(node, value, path, issues)


def _check_fields(fields: FieldSchema, value: Mapping[str, Any], path: str, issues: list[str]) -> None:
    for name, child in fields.items():
        child_path = f"{path}.{name}" if path else name
        if name not in value:
            if not isinstance(child, OptionalNode):
                issues.append(f"{child_path}: field is required")
            continue
        _check(child, value[name], child_path, issues)


def validate_document(fields: FieldSchema, document: Mapping[str, Any]) -> list[str]:
    """
    Check a document against a collection schema.

    Unknown fields are allowed (as with the server-side validator).

    Returns:
        A list of issues; empty when the document is valid.
    """
    issues: list[str] = []
    if not isinstance(document, Mapping):
        return [f"<document>: expected object, got {type(document).__name__}"]
    _check_fields(fields, document, "", issues)
    return issues
