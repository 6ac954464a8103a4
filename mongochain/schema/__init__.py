"""
Schema model for collections managed by mongochain.

Field schemas are built from typed nodes; any node may carry index metadata,
which the index reconciler converges live indexes to.
"""

from mongochain.schema.nodes import (
    Collation,
    FieldSchema,
    IndexMetadata,
    SchemaNode,
    any_,
    array,
    boolean,
    date,
    integer,
    literal,
    number,
    obj,
    object_id,
    optional,
    string,
    union,
    with_index,
)
from mongochain.schema.snapshot import SchemaSnapshot

__all__ = [
    "Collation",
    "FieldSchema",
    "IndexMetadata",
    "SchemaNode",
    "SchemaSnapshot",
    "any_",
    "array",
    "boolean",
    "date",
    "integer",
    "literal",
    "number",
    "obj",
    "object_id",
    "optional",
    "string",
    "union",
    "with_index",
]
