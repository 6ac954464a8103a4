"""Tests for the long-lived collection-open path."""

import pytest

from mongochain.collection import open_collection, open_shared_collection
from mongochain.schema import string, with_index


@pytest.mark.asyncio
async def test_open_creates_collection_and_indexes(context, fake_db):
    collection = await open_collection(context, "users", {"email": with_index(string(), unique=True)})

    assert collection is fake_db["users"]
    assert collection.exists
    assert collection.validator["$jsonSchema"]["required"] == ["email"]
    assert collection.indexes["email"]["unique"] is True


@pytest.mark.asyncio
async def test_reopen_is_idempotent(context, fake_db):
    fields = {"email": with_index(string(), unique=True)}
    await open_collection(context, "users", fields)
    mutations = fake_db.index_mutations

    await open_collection(context, "users", fields)

    assert fake_db.index_mutations == mutations


@pytest.mark.asyncio
async def test_open_without_reconcile(context, fake_db):
    collection = await open_collection(
        context, "users", {"email": with_index(string())}, reconcile_indexes=False
    )
    assert set(collection.indexes) == {"_id_"}


@pytest.mark.asyncio
async def test_open_shared_collection(context, fake_db):
    collection = await open_shared_collection(
        context,
        "catalog",
        {"user": {"name": with_index(string())}, "product": {"sku": with_index(string(), unique=True)}},
    )

    assert "oneOf" in collection.validator["$jsonSchema"]
    assert set(collection.indexes) == {"_id_", "user_name", "product_sku"}
