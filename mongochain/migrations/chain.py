"""
Chain building: link migration units by parent reference into one linear,
root-first sequence, rejecting anything that is not a simple path.
"""

from collections import Counter
from collections.abc import Iterable

from mongochain.core.exceptions import ChainIntegrityError
from mongochain.log.logging import logger
from mongochain.migrations.models import MigrationUnit
from mongochain.schema.snapshot import SchemaSnapshot


def build_chain(units: Iterable[MigrationUnit]) -> list[MigrationUnit]:
    """
    Order units root-first by following parent links.

    The result does not depend on input order. An empty input is a valid,
    empty chain.

    Raises:
        ChainIntegrityError: On duplicate ids, no root, several roots, a
            missing parent, a fork, or units unreachable from the root.
    """
    units = list(units)
    if not units:
        return []

    counts = Counter(unit.id for unit in units)
    duplicates = sorted(unit_id for unit_id, count in counts.items() if count > 1)
    if duplicates:
        raise ChainIntegrityError([f"duplicate migration id {unit_id}" for unit_id in duplicates])

    by_id = {unit.id: unit for unit in units}
    problems: list[str] = []

    roots = sorted(unit.id for unit in units if unit.parent_id is None)
    if not roots:
        problems.append("no root migration (every migration has a parent)")
    elif len(roots) > 1:
        problems.append(f"multiple root migrations: {', '.join(roots)}")

    for unit in sorted(units, key=lambda u: u.id):
        if unit.parent_id is not None and unit.parent_id not in by_id:
            problems.append(f"missing parent {unit.parent_id} referenced by {unit.id}")

    children: dict[str, list[str]] = {}
    for unit in units:
        if unit.parent_id is not None:
            children.setdefault(unit.parent_id, []).append(unit.id)
    for parent_id in sorted(children):
        if len(children[parent_id]) > 1:
            problems.append(f"fork at {parent_id}: children {', '.join(sorted(children[parent_id]))}")

    if problems:
        raise ChainIntegrityError(problems)

    chain = [by_id[roots[0]]]
    while True:
        next_ids = children.get(chain[-1].id, [])
        if not next_ids:
            break
        chain.append(by_id[next_ids[0]])

    if len(chain) != len(units):
        placed = {unit.id for unit in chain}
        orphaned = sorted(unit.id for unit in units if unit.id not in placed)
        # only a parent cycle detached from the root can leave units unreached here
        raise ChainIntegrityError([f"orphaned migration {unit_id} (parent cycle)" for unit_id in orphaned])

    logger.info(
        f"Migration chain built with {len(chain)} migrations",
        event_type="chain_built",
        count=len(chain),
        head=chain[-1].id,
    )
    return chain


def parent_schema(chain: list[MigrationUnit], index: int) -> SchemaSnapshot:
    """Schema in force before ``chain[index]`` (empty before the root)."""
    return chain[index - 1].schema if index > 0 else SchemaSnapshot()


def chain_index(chain: list[MigrationUnit], migration_id: str) -> int:
    for position, unit in enumerate(chain):
        if unit.id == migration_id:
            return position
    raise ChainIntegrityError([f"unknown migration {migration_id}"])
