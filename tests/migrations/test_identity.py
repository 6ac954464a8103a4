"""Tests for migration identities."""

from datetime import datetime, timedelta, timezone

import pytest

from mongochain.migrations.identity import (
    compare_migration_ids,
    generate_migration_id,
    is_valid_migration_id,
    migration_label,
    migration_timestamp,
    slugify_label,
)

NOW = datetime(2025, 10, 9, 14, 45, 30, tzinfo=timezone.utc)


def test_generate_format():
    migration_id = generate_migration_id("Add Users", NOW)

    assert migration_id.startswith("2025_10_09_1445_")
    assert migration_id.endswith("@add-users")
    assert len(migration_timestamp(migration_id).split("_")[-1]) == 26
    assert is_valid_migration_id(migration_id)


def test_ids_in_the_same_millisecond_are_distinct():
    ids = {generate_migration_id("add-users", NOW) for _ in range(200)}
    assert len(ids) == 200


def test_ids_within_one_minute_sort_by_creation():
    earlier = generate_migration_id("b", NOW)
    later = generate_migration_id("a", NOW + timedelta(milliseconds=5))

    assert compare_migration_ids(earlier, later) == -1
    assert compare_migration_ids(later, earlier) == 1


def test_compare_ignores_label():
    first = generate_migration_id("zzz", NOW)
    second = first.replace("@zzz", "@aaa")
    assert compare_migration_ids(first, second) == 0


def test_naive_datetime_is_utc():
    naive = generate_migration_id("x", NOW.replace(tzinfo=None))
    aware = generate_migration_id("x", NOW)
    assert naive[:26] == aware[:26]


@pytest.mark.parametrize(
    "label,slug",
    [
        ("Add Users", "add-users"),
        ("rename_name  field", "rename-name-field"),
        ("  Drop: legacy!  ", "drop-legacy"),
    ],
)
def test_slugify_label(label, slug):
    assert slugify_label(label) == slug


def test_empty_label_is_rejected():
    with pytest.raises(ValueError):
        generate_migration_id("!!!", NOW)


def test_validity_and_label():
    assert is_valid_migration_id("2025_01_01_0900_01JGFJJZ00@init")
    assert not is_valid_migration_id("001_initial_indexes")
    assert not is_valid_migration_id("2025_01_01_0900_01JGFJJZ00")
    assert migration_label("2025_01_01_0900_01JGFJJZ00@init") == "init"
