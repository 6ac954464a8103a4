"""
Migration identities.

Format: ``YYYY_MM_DD_HHMM_<ULID>@<label>``, e.g.
``2025_10_09_1445_01K74ZV0CE3J8Q6W1XKD5TR9VM@add-users``. The ULID is 26
Crockford base32 characters: a 10-character millisecond timestamp, so
identities created within the same minute still sort in creation order,
followed by 16 random characters that keep identities minted in the same
millisecond distinct. Only the part before ``@`` takes part in ordering; the
label is informational.
"""

import re
import secrets
from datetime import datetime, timezone

CROCKFORD_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_TIME_LENGTH = 10
ULID_RANDOM_LENGTH = 16

MIGRATION_ID_PATTERN = re.compile(r"^\d{4}_\d{2}_\d{2}_\d{4}_[A-Z0-9]+@[a-z0-9-]+$")

_LABEL_SEPARATORS = re.compile(r"[\s_]+")
_LABEL_INVALID = re.compile(r"[^a-z0-9-]")


def _encode_base32(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        value, remainder = divmod(value, 32)
        chars.append(CROCKFORD_ALPHABET[remainder])
    return "".join(reversed(chars))


def generate_ulid(now: datetime) -> str:
    """Timestamp and randomness of a ULID, Crockford base32 encoded."""
    milliseconds = int(now.timestamp() * 1000)
    randomness = secrets.randbits(5 * ULID_RANDOM_LENGTH)
    return _encode_base32(milliseconds, ULID_TIME_LENGTH) + _encode_base32(randomness, ULID_RANDOM_LENGTH)


def slugify_label(label: str) -> str:
    """Lowercase, separators to ``-``, anything else outside ``[a-z0-9-]`` dropped."""
    slug = _LABEL_SEPARATORS.sub("-", label.strip().lower())
    slug = _LABEL_INVALID.sub("", slug)
    return re.sub(r"-{2,}", "-", slug).strip("-")


def generate_migration_id(label: str, now: datetime | None = None) -> str:
    """
    Create a new migration identity.

    Args:
        label: Human label, slugified.
        now: Creation time (UTC now by default).

    Raises:
        ValueError: If the label is empty after slugifying.
    """
    slug = slugify_label(label)
    if not slug:
        raise ValueError(f"Migration label {label!r} has no usable characters")

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    return f"{now:%Y_%m_%d_%H%M}_{generate_ulid(now)}@{slug}"


def is_valid_migration_id(migration_id: str) -> bool:
    return bool(MIGRATION_ID_PATTERN.match(migration_id))


def migration_timestamp(migration_id: str) -> str:
    """The ordering component (everything before ``@``)."""
    return migration_id.split("@", 1)[0] or migration_id


def migration_label(migration_id: str) -> str:
    _, _, label = migration_id.partition("@")
    return label


def compare_migration_ids(first: str, second: str) -> int:
    """-1, 0 or 1 comparing the timestamp components only."""
    a, b = migration_timestamp(first), migration_timestamp(second)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0
