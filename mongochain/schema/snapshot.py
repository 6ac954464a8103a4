"""Declared schema state of a database at one point of the migration chain."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from mongochain.schema.nodes import FieldSchema


@dataclass
class SchemaSnapshot:
    """
    Attributes:
        collections: Plain collection name -> field schema.
        shared_collections: Shared collection name -> type tag -> field schema.
        templates: Template name -> type tag -> field schema.
    """

    collections: dict[str, FieldSchema] = field(default_factory=dict)
    shared_collections: dict[str, dict[str, FieldSchema]] = field(default_factory=dict)
    templates: dict[str, dict[str, FieldSchema]] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "SchemaSnapshot":
        """Accept a snapshot or the plain-dict form migration files declare."""
        if value is None:
            return cls()
        if isinstance(value, SchemaSnapshot):
            return value
        if not isinstance(value, Mapping):
            raise TypeError(f"Cannot build a schema snapshot from {type(value).__name__}")

        return cls(
            collections={name: dict(fields) for name, fields in value.get("collections", {}).items()},
            shared_collections={
                name: {tag: dict(fields) for tag, fields in types.items()}
                for name, types in value.get("shared_collections", {}).items()
            },
            templates={
                name: {tag: dict(fields) for tag, fields in types.items()}
                for name, types in value.get("templates", {}).items()
            },
        )

    def copy(self) -> "SchemaSnapshot":
        """Copy the containers. Nodes are immutable and shared."""
        return SchemaSnapshot(
            collections=dict(self.collections),
            shared_collections={name: dict(types) for name, types in self.shared_collections.items()},
            templates={name: dict(types) for name, types in self.templates.items()},
        )

    def is_empty(self) -> bool:
        return not (self.collections or self.shared_collections or self.templates)
