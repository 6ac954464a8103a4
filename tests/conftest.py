import copy
from typing import Any

import pytest
from bson import ObjectId
from pymongo.errors import CollectionInvalid, DuplicateKeyError, OperationFailure
from pymongo.results import DeleteResult, InsertManyResult, InsertOneResult, UpdateResult

from mongochain.core.config import Settings
from mongochain.core.context import MigrationContext
from mongochain.core.queue import OperationQueue
from mongochain.migrations.models import MigrationUnit
from mongochain.schema.snapshot import SchemaSnapshot

# Valid migration identities, in chain order
ROOT_ID = "2025_01_01_0900_01JGFJJZ00@init"
SECOND_ID = "2025_01_02_0900_01JGJ5V800@rename-name"
THIRD_ID = "2025_01_03_0900_01JGKRE000@add-age"

# What the server echoes back for a collation declared with locale/strength only
SERVER_COLLATION_DEFAULTS = {
    "caseLevel": False,
    "caseFirst": "off",
    "numericOrdering": False,
    "alternate": "non-ignorable",
    "maxVariable": "punct",
    "normalization": False,
    "backwards": False,
    "version": "57.1",
}


# =============================================================================
# In-memory motor fakes
# =============================================================================


def _get_path(document: dict, path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _matches(document: dict, query: dict | None) -> bool:
    for key, condition in (query or {}).items():
        value = _get_path(document, key)
        if isinstance(condition, dict) and condition and all(op.startswith("$") for op in condition):
            for op, operand in condition.items():
                if op == "$eq" and value != operand:
                    return False
                if op == "$ne" and value == operand:
                    return False
                if op == "$in" and value not in operand:
                    return False
        elif value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, documents: list[dict]):
        self._documents = [copy.deepcopy(document) for document in documents]

    def sort(self, key: str, direction: int = 1) -> "FakeCursor":
        self._documents.sort(key=lambda document: document.get(key), reverse=direction < 0)
        return self

    async def to_list(self, length: int | None = None) -> list[dict]:
        return list(self._documents if length is None else self._documents[:length])

    def __aiter__(self):
        self._iterator = iter(self._documents)
        return self

    async def __anext__(self) -> dict:
        try:
            return next(self._iterator)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Collection with documents and index documents shaped like ``listIndexes`` output."""

    def __init__(self, database: "FakeDatabase", name: str):
        self.database = database
        self.name = name
        self.documents: list[dict] = []
        self.indexes: dict[str, dict] = {"_id_": {"v": 2, "key": {"_id": 1}, "name": "_id_"}}
        self.validator: dict | None = None
        self.exists = False
        self.index_mutations = 0

    # -- indexes --

    def list_indexes(self, session: Any = None) -> FakeCursor:
        return FakeCursor(list(self.indexes.values()))

    async def create_index(
        self,
        keys: Any,
        session: Any = None,
        name: str | None = None,
        unique: bool = False,
        collation: dict | None = None,
        partialFilterExpression: dict | None = None,
        **kwargs: Any,
    ) -> str:
        if isinstance(keys, str):
            keys = [(keys, 1)]
        key = {path: direction for path, direction in keys}
        name = name or "_".join(f"{path}_{direction}" for path, direction in keys)

        document: dict[str, Any] = {"v": 2, "key": key, "name": name}
        if unique:
            document["unique"] = True
        if collation is not None:
            document["collation"] = {**collation, **SERVER_COLLATION_DEFAULTS}
        if partialFilterExpression is not None:
            document["partialFilterExpression"] = copy.deepcopy(partialFilterExpression)

        existing = self.indexes.get(name)
        if existing is not None:
            if existing == document:
                return name
            raise OperationFailure(
                f"An existing index has the same name as the requested index: {name}",
                code=86,
                details={"codeName": "IndexKeySpecsConflict"},
            )
        for other in self.indexes.values():
            same_spec = (
                other["key"] == key
                and other.get("collation") == document.get("collation")
                and other.get("partialFilterExpression") == document.get("partialFilterExpression")
            )
            if same_spec:
                raise OperationFailure(
                    f"Index already exists with a different name: {other['name']}",
                    code=85,
                    details={"codeName": "IndexOptionsConflict"},
                )

        self.indexes[name] = document
        self.exists = True
        self._count_index_mutation()
        return name

    async def drop_index(self, name: str, session: Any = None) -> None:
        if name == "_id_":
            raise OperationFailure("cannot drop _id index", code=72, details={"codeName": "InvalidOptions"})
        if name not in self.indexes:
            raise OperationFailure(
                f"index not found with name [{name}]",
                code=27,
                details={"codeName": "IndexNotFound"},
            )
        del self.indexes[name]
        self._count_index_mutation()

    def _count_index_mutation(self) -> None:
        self.index_mutations += 1
        self.database.index_mutations += 1

    # -- documents --

    def find(self, query: dict | None = None, session: Any = None) -> FakeCursor:
        return FakeCursor([document for document in self.documents if _matches(document, query)])

    async def find_one(self, query: dict | None = None, session: Any = None) -> dict | None:
        for document in self.documents:
            if _matches(document, query):
                return copy.deepcopy(document)
        return None

    async def count_documents(self, query: dict, session: Any = None) -> int:
        return sum(1 for document in self.documents if _matches(document, query))

    def _insert(self, document: dict) -> Any:
        if "_id" not in document:
            document["_id"] = ObjectId()
        if any(existing["_id"] == document["_id"] for existing in self.documents):
            raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name}")
        self.documents.append(copy.deepcopy(document))
        self.exists = True
        return document["_id"]

    async def insert_one(self, document: dict, session: Any = None) -> InsertOneResult:
        return InsertOneResult(self._insert(document), True)

    async def insert_many(self, documents: list[dict], session: Any = None) -> InsertManyResult:
        self.database.insert_batches.append((self.name, len(documents)))
        return InsertManyResult([self._insert(document) for document in documents], True)

    async def replace_one(self, query: dict, replacement: dict, session: Any = None) -> UpdateResult:
        for position, document in enumerate(self.documents):
            if _matches(document, query):
                self.documents[position] = {**copy.deepcopy(replacement), "_id": document["_id"]}
                return UpdateResult({"n": 1, "nModified": 1}, True)
        return UpdateResult({"n": 0, "nModified": 0}, True)

    async def delete_one(self, query: dict, session: Any = None) -> DeleteResult:
        for position, document in enumerate(self.documents):
            if _matches(document, query):
                del self.documents[position]
                return DeleteResult({"n": 1}, True)
        return DeleteResult({"n": 0}, True)

    async def delete_many(self, query: dict, session: Any = None) -> DeleteResult:
        kept = [document for document in self.documents if not _matches(document, query)]
        deleted = len(self.documents) - len(kept)
        self.documents = kept
        return DeleteResult({"n": deleted}, True)


class FakeDatabase:
    """Just enough of ``AsyncIOMotorDatabase`` for the engine."""

    def __init__(self, name: str = "test"):
        self.name = name
        self.collections: dict[str, FakeCollection] = {}
        self.commands: list[tuple] = []
        self.insert_batches: list[tuple[str, int]] = []
        self.index_mutations = 0

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(self, name)
        return self.collections[name]

    async def list_collection_names(self, filter: dict | None = None, session: Any = None) -> list[str]:
        names = sorted(name for name, collection in self.collections.items() if collection.exists)
        if filter and "name" in filter:
            names = [name for name in names if name == filter["name"]]
        return names

    async def create_collection(self, name: str, validator: dict | None = None, session: Any = None, **kwargs: Any):
        collection = self[name]
        if collection.exists:
            raise CollectionInvalid(f"collection {name} already exists")
        collection.exists = True
        collection.validator = validator
        return collection

    async def drop_collection(self, name: str, session: Any = None) -> None:
        self.collections.pop(name, None)

    async def command(self, name: str, *args: Any, session: Any = None, **kwargs: Any) -> dict:
        self.commands.append((name, *args))
        if name == "collMod":
            collection = self.collections.get(args[0])
            if collection is None or not collection.exists:
                raise OperationFailure("ns does not exist", code=26, details={"codeName": "NamespaceNotFound"})
            collection.validator = kwargs.get("validator")
        return {"ok": 1}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_db():
    """An empty in-memory database."""
    return FakeDatabase()


@pytest.fixture
def test_settings():
    return Settings(
        migrations_collection="_migrations",
        seed_batch_size=2,
        drift_strictness="warn",
        validate_before_migrate=True,
        index_queue_concurrency=2,
        index_queue_timeout=5.0,
        index_queue_retry_attempts=0,
    )


@pytest.fixture
def queue():
    return OperationQueue(max_concurrent=2, default_timeout=5.0)


@pytest.fixture
def context(fake_db, queue, test_settings):
    """Migration context over the fake database."""
    return MigrationContext(database=fake_db, queue=queue, settings=test_settings)


@pytest.fixture
def make_unit():
    """Factory for in-memory migration units."""

    def _make_unit(migration_id, parent_id, schema=None, migrate=None, irreversible=False):
        return MigrationUnit(
            id=migration_id,
            parent_id=parent_id,
            schema=SchemaSnapshot.coerce(schema),
            migrate=migrate or (lambda m: m.compile()),
            irreversible=irreversible,
            checksum=f"checksum-{migration_id}",
        )

    return _make_unit
