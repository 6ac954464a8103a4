"""
Index reconciliation.

Converges a collection's live indexes to the index metadata declared on its
schema. Planning is a pure function of (declarations, live indexes); execution
issues every drop before any create, through the bounded operation queue.
Running it twice with the same schema performs no mutation the second time.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pymongo.errors import OperationFailure, PyMongoError

from mongochain.core.exceptions import IndexReconciliationError
from mongochain.core.queue import OperationQueue
from mongochain.indexes.declarations import (
    ID_INDEX_NAME,
    TYPE_FIELD,
    IndexDeclaration,
    LiveIndex,
    extract_declarations,
    extract_shared_declarations,
    live_indexes,
    sanitize_path_name,
)
from mongochain.log.logging import logger
from mongochain.schema.nodes import FieldSchema
from mongochain.schema.visitor import collect_paths

INDEX_NOT_FOUND_CODE = 27


@dataclass
class IndexPlan:
    """Drops and creates needed to converge one collection."""

    drops: list[str] = field(default_factory=list)
    creates: list[IndexDeclaration] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.drops and not self.creates


def plan_index_changes(
    desired: Iterable[IndexDeclaration],
    current: Iterable[LiveIndex],
    is_owned: Callable[[str], bool],
) -> IndexPlan:
    """
    Compute the minimal plan.

    Args:
        desired: Declarations extracted from the schema.
        current: Live indexes of the collection.
        is_owned: Whether a live index name follows this library's naming
            convention; owned indexes missing from ``desired`` are orphans.
    """
    desired = list(desired)
    current = [index for index in current if index.name and index.name != ID_INDEX_NAME]
    plan = IndexPlan()

    desired_names = {declaration.name for declaration in desired}
    orphans = [index.name for index in current if is_owned(index.name) and index.name not in desired_names]
    plan.drops.extend(orphans)

    by_name = {index.name: index for index in current}
    matched: set[str] = set(orphans)

    for declaration in desired:
        existing = by_name.get(declaration.name)
        if existing is None:
            # same key under another name, as long as no other declaration claims that name
            existing = next(
                (
                    index
                    for index in current
                    if index.keys == declaration.keys
                    and index.name not in matched
                    and index.name not in desired_names
                ),
                None,
            )

        if existing is not None:
            matched.add(existing.name)
            converged = (
                existing.name == declaration.name
                and existing.keys == declaration.keys
                and existing.canonical_options() == declaration.canonical_options()
            )
            if converged:
                continue
            if existing.name not in plan.drops:
                plan.drops.append(existing.name)

        plan.creates.append(declaration)

    return plan


async def _read_live_indexes(collection: Any, session: Any = None) -> list[LiveIndex]:
    cursor = collection.list_indexes(session=session)
    documents = await cursor.to_list(length=None)
    return live_indexes(documents)


async def execute_index_plan(
    collection: Any,
    plan: IndexPlan,
    queue: OperationQueue | None = None,
    session: Any = None,
) -> None:
    """Run drops, then creates. A drop of an already missing index is not an error."""
    if plan.is_empty:
        return
    queue = queue or OperationQueue()
    collection_name = collection.name

    def drop(name: str):
        async def run() -> None:
            try:
                await collection.drop_index(name, session=session)
                logger.info("Index dropped", event_type="index_dropped", collection=collection_name, index=name)
            except OperationFailure as e:
                if e.code == INDEX_NOT_FOUND_CODE or e.details and e.details.get("codeName") == "IndexNotFound":
                    logger.debug("Index already absent", event_type="index_drop_skipped", index=name)
                    return
                raise

        return run

    def create(declaration: IndexDeclaration):
        async def run() -> None:
            await collection.create_index(list(declaration.keys), session=session, **declaration.create_options())
            logger.info(
                "Index created",
                event_type="index_created",
                collection=collection_name,
                index=declaration.name,
                unique=declaration.unique,
            )

        return run

    try:
        await queue.run_all(drop(name) for name in plan.drops)
        await queue.run_all(create(declaration) for declaration in plan.creates)
    except PyMongoError as e:
        logger.error(
            "Index reconciliation failed",
            event_type="index_reconciliation_failed",
            collection=collection_name,
            error=str(e),
        )
        raise IndexReconciliationError(collection_name, e) from e


async def apply_collection_indexes(
    collection: Any,
    fields: FieldSchema,
    queue: OperationQueue | None = None,
    session: Any = None,
    previous_fields: FieldSchema | None = None,
) -> IndexPlan:
    """
    Converge a plain collection's indexes to ``fields``.

    An index is owned when its name is a sanitized field path of the schema (or
    of ``previous_fields``, which lets a rollback prune indexes of fields the
    newer schema added).

    Returns:
        The executed plan (empty when already converged).
    """
    desired = extract_declarations(fields)
    owned = {sanitize_path_name(path) for path in collect_paths(fields)}
    if previous_fields:
        owned.update(sanitize_path_name(path) for path in collect_paths(previous_fields))

    try:
        current = await _read_live_indexes(collection, session)
    except PyMongoError as e:
        raise IndexReconciliationError(collection.name, e) from e

    plan = plan_index_changes(desired, current, lambda name: name in owned)
    await execute_index_plan(collection, plan, queue, session)
    return plan


async def apply_shared_collection_indexes(
    collection: Any,
    types: Mapping[str, FieldSchema],
    queue: OperationQueue | None = None,
    session: Any = None,
    previous_types: Iterable[str] = (),
    type_field: str = TYPE_FIELD,
) -> IndexPlan:
    """
    Converge a shared collection's indexes to its per-type schemas.

    Each type's indexes are named ``<type>_<path>`` and scoped with a partial
    filter on the type field. An index is owned when its name starts with a
    known type prefix (current types plus ``previous_types``).
    """
    desired = extract_shared_declarations(types, type_field)
    prefixes = tuple(f"{tag}_" for tag in {*types, *previous_types})

    try:
        current = await _read_live_indexes(collection, session)
    except PyMongoError as e:
        raise IndexReconciliationError(collection.name, e) from e

    plan = plan_index_changes(desired, current, lambda name: bool(prefixes) and name.startswith(prefixes))
    await execute_index_plan(collection, plan, queue, session)
    return plan
