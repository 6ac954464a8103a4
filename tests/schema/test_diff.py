"""Tests for schema diffing."""

from mongochain.schema import integer, obj, optional, string, with_index
from mongochain.schema.diff import ChangeKind, diff_fields, diff_snapshots, strip_indexes
from mongochain.schema.snapshot import SchemaSnapshot


def kinds(changes):
    return {(change.kind, change.path) for change in changes}


class TestDiffFields:
    def test_no_changes(self):
        schema = {"name": string(), "age": optional(integer())}
        assert diff_fields(schema, dict(schema)) == []

    def test_added_fields(self):
        changes = diff_fields({"name": string()}, {"name": string(), "age": optional(integer()), "email": string()})
        assert kinds(changes) == {
            (ChangeKind.ADDED_OPTIONAL, "age"),
            (ChangeKind.ADDED_REQUIRED, "email"),
        }

    def test_removed_and_type_changed(self):
        changes = diff_fields({"name": string(), "age": string()}, {"age": integer()})
        assert kinds(changes) == {(ChangeKind.REMOVED, "name"), (ChangeKind.TYPE_CHANGED, "age")}
        assert all(change.destructive for change in changes)

    def test_optionality_changes(self):
        changes = diff_fields(
            {"a": optional(string()), "b": string()},
            {"a": string(), "b": optional(string())},
        )
        assert kinds(changes) == {(ChangeKind.MADE_REQUIRED, "a"), (ChangeKind.MADE_OPTIONAL, "b")}

    def test_nested_objects_report_nested_paths(self):
        changes = diff_fields(
            {"address": obj({"city": string()})},
            {"address": obj({"city": string(), "zip": optional(string())})},
        )
        assert kinds(changes) == {(ChangeKind.ADDED_OPTIONAL, "address.zip")}

    def test_index_only_change(self):
        changes = diff_fields({"email": string()}, {"email": with_index(string(), unique=True)})
        assert kinds(changes) == {(ChangeKind.INDEX_CHANGED, "email")}
        assert not changes[0].destructive

    def test_unique_flag_removed_is_an_index_change(self):
        changes = diff_fields(
            {"email": with_index(string(), unique=True)},
            {"email": with_index(string())},
        )
        assert kinds(changes) == {(ChangeKind.INDEX_CHANGED, "email")}


def test_strip_indexes():
    assert strip_indexes(with_index(string(), unique=True)) == string()
    assert strip_indexes(obj({"a": with_index(string())})) == obj({"a": string()})


class TestDiffSnapshots:
    def test_collections_added_and_removed(self):
        old = SchemaSnapshot(collections={"users": {"name": string()}})
        new = SchemaSnapshot(collections={"posts": {"title": string()}})

        changes = diff_snapshots(old, new)

        assert {(change.kind, change.collection) for change in changes} == {
            (ChangeKind.COLLECTION_REMOVED, "users"),
            (ChangeKind.COLLECTION_ADDED, "posts"),
        }

    def test_field_changes_are_scoped(self):
        old = SchemaSnapshot(collections={"users": {"name": string()}})
        new = SchemaSnapshot(collections={"users": {"name": string(), "age": optional(integer())}})

        (change,) = diff_snapshots(old, new)

        assert change.collection == "users"
        assert change.container == "collection"
        assert change.describe() == "users.age: added_optional"

    def test_shared_types(self):
        old = SchemaSnapshot(shared_collections={"catalog": {"user": {"name": string()}}})
        new = SchemaSnapshot(
            shared_collections={
                "catalog": {"user": {"name": string(), "email": string()}, "product": {"sku": string()}}
            }
        )

        changes = diff_snapshots(old, new)

        assert {(change.kind, change.type_tag, change.path) for change in changes} == {
            (ChangeKind.ADDED_REQUIRED, "user", "email"),
            (ChangeKind.COLLECTION_ADDED, "product", ""),
        }
        assert all(change.container == "shared" for change in changes)

    def test_template_types(self):
        old = SchemaSnapshot(templates={"tenant": {"doc": {"title": string()}}})
        new = SchemaSnapshot(templates={"tenant": {}})

        (change,) = diff_snapshots(old, new)

        assert change.kind == ChangeKind.COLLECTION_REMOVED
        assert change.container == "template"
        assert change.type_tag == "doc"
