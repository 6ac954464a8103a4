"""Tests for validator compilation and client-side document checks."""

from datetime import datetime

from bson import ObjectId

from mongochain.schema import (
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
from mongochain.schema.validation import (
    TYPE_FIELD,
    compile_shared_validator,
    compile_validator,
    validate_document,
)

USER_SCHEMA = {
    "email": with_index(string(), unique=True),
    "name": string(),
    "age": optional(integer()),
    "tags": array(string()),
    "address": obj({"city": string(), "zip": optional(string())}),
}


class TestCompileValidator:
    def test_plain_collection(self):
        validator = compile_validator(USER_SCHEMA)
        schema = validator["$jsonSchema"]

        assert schema["bsonType"] == "object"
        assert schema["required"] == ["email", "name", "tags", "address"]
        assert schema["properties"]["email"] == {"bsonType": "string"}
        assert schema["properties"]["age"] == {"anyOf": [{"bsonType": ["int", "long"]}, {"bsonType": "null"}]}
        assert schema["properties"]["tags"] == {"bsonType": "array", "items": {"bsonType": "string"}}
        assert schema["properties"]["address"]["required"] == ["city"]

    def test_literal_and_union(self):
        schema = compile_validator({"kind": literal("a"), "value": union(string(), number())})["$jsonSchema"]
        assert schema["properties"]["kind"] == {"enum": ["a"]}
        assert len(schema["properties"]["value"]["anyOf"]) == 2

    def test_shared_collection_branches(self):
        validator = compile_shared_validator({"user": {"name": string()}, "product": {"sku": string()}})
        branches = validator["$jsonSchema"]["oneOf"]

        assert len(branches) == 2
        assert branches[0]["properties"][TYPE_FIELD] == {"enum": ["user"]}
        assert TYPE_FIELD in branches[0]["required"]
        assert branches[1]["properties"][TYPE_FIELD] == {"enum": ["product"]}

    def test_shared_collection_without_types(self):
        validator = compile_shared_validator({})
        assert validator["$jsonSchema"]["required"] == [TYPE_FIELD]


class TestValidateDocument:
    def test_valid_document(self):
        document = {
            "email": "ada@example.com",
            "name": "Ada",
            "tags": ["admin"],
            "address": {"city": "London"},
            "extra": "allowed",
        }
        assert validate_document(USER_SCHEMA, document) == []

    def test_missing_required_field(self):
        issues = validate_document(USER_SCHEMA, {"email": "a@b.c", "tags": [], "address": {"city": "x"}})
        assert issues == ["name: field is required"]

    def test_wrong_types(self):
        issues = validate_document(
            USER_SCHEMA,
            {"email": 1, "name": "x", "age": "old", "tags": ["a", 2], "address": {"city": "x"}},
        )
        assert "email: expected string, got int" in issues
        assert "age: expected int, got str" in issues
        assert "tags.1: expected string, got int" in issues

    def test_optional_accepts_none(self):
        document = {"email": "a@b.c", "name": "x", "age": None, "tags": [], "address": {"city": "x"}}
        assert validate_document(USER_SCHEMA, document) == []

    def test_bool_is_not_a_number(self):
        assert validate_document({"count": integer()}, {"count": True}) == ["count: expected int, got bool"]
        assert validate_document({"ratio": number()}, {"ratio": False}) == ["ratio: expected number, got bool"]

    def test_leaf_types(self):
        schema = {"flag": boolean(), "at": date(), "ref": object_id(), "kind": literal("user")}
        document = {"flag": True, "at": datetime(2025, 1, 1), "ref": ObjectId(), "kind": "user"}
        assert validate_document(schema, document) == []
        assert validate_document(schema, {**document, "kind": "admin"}) == ["kind: expected 'user', got 'admin'"]

    def test_union(self):
        schema = {"value": union(string(), integer())}
        assert validate_document(schema, {"value": 3}) == []
        assert validate_document(schema, {"value": 1.5}) == ["value: value does not match any union option"]

    def test_not_a_document(self):
        assert validate_document(USER_SCHEMA, ["not", "a", "dict"]) == ["<document>: expected object, got list"]
