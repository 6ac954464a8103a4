"""
Template instance registry.

Every template instance is a shared collection holding one ``_information``
document that records which template it was created from. Template-wide
transforms find their targets by scanning for that document.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pymongo.errors import PyMongoError

from mongochain.log.logging import logger
from mongochain.schema.nodes import FieldSchema, date, literal, string
from mongochain.schema.validation import TYPE_FIELD, compile_shared_validator

INFORMATION_TYPE = "_information"

INFORMATION_SCHEMA: FieldSchema = {
    "_id": literal(INFORMATION_TYPE),
    "template": string(),
    "created_at": date(),
    "from_migration_id": string(),
}


def instance_info_document(template: str, migration_id: str, now: datetime | None = None) -> dict[str, Any]:
    return {
        "_id": INFORMATION_TYPE,
        TYPE_FIELD: INFORMATION_TYPE,
        "template": template,
        "created_at": now or datetime.now(timezone.utc),
        "from_migration_id": migration_id,
    }


def instance_validator(types: Mapping[str, FieldSchema]) -> dict[str, Any]:
    """Validator for a template instance: the template's types plus the registry document."""
    return compile_shared_validator(types, {INFORMATION_TYPE: INFORMATION_SCHEMA})


async def create_instance_info(
    database: Any,
    collection_name: str,
    template: str,
    migration_id: str,
    session: Any = None,
) -> dict[str, Any]:
    """Write the registry document of a new instance."""
    document = instance_info_document(template, migration_id)
    await database[collection_name].insert_one(dict(document), session=session)
    logger.info(
        "Template instance registered",
        event_type="template_instance_registered",
        collection=collection_name,
        template=template,
    )
    return document


async def get_instance_info(database: Any, collection_name: str, session: Any = None) -> dict[str, Any] | None:
    return await database[collection_name].find_one({TYPE_FIELD: INFORMATION_TYPE}, session=session)


async def discover_instances(
    database: Any,
    template: str,
    session: Any = None,
    exclude: tuple[str, ...] = (),
) -> list[str]:
    """
    Names of every collection created from ``template``, sorted.

    Collections that cannot be read (views, permission errors) are skipped.
    """
    instances = []
    for name in await database.list_collection_names(session=session):
        if name.startswith("system.") or name in exclude:
            continue
        try:
            info = await get_instance_info(database, name, session)
        except PyMongoError as e:
            logger.debug(
                "Skipping unreadable collection during instance discovery",
                event_type="template_instance_skip",
                collection=name,
                error=str(e),
            )
            continue
        if info and info.get("template") == template:
            instances.append(name)
    return sorted(instances)
