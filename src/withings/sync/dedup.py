"""Deduplication for Withings measurement writes.

Both destination tables are unique on ``(user_id, date)``: two records for
the same user at the same instant are never both retained.

Dedup keys:
    - weights:           (user_id, date) — UNIQUE constraint
    - body_compositions: (user_id, date) — UNIQUE constraint

The database constraint is authoritative.  ``unique_by_instant`` only
removes collisions inside one batch so the reported insert count matches
what the database keeps.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Protocol, TypeVar
from uuid import UUID

from src.withings.models import to_epoch

logger = logging.getLogger("weighttrack.withings.sync.dedup")

CONFLICT_COLUMNS: tuple[str, ...] = ("user_id", "date")


class _Dated(Protocol):
    user_id: UUID
    date: datetime


R = TypeVar("R", bound=_Dated)


def record_key(user_id: UUID, captured_at: datetime) -> str:
    """Return the dedup key for a (user, instant) pair at one-second resolution."""
    return f"{user_id}:{to_epoch(captured_at)}"


class InMemoryDedupCache:
    """Keys seen during one sync invocation.

    Usage::

        cache = InMemoryDedupCache()
        if not cache.is_seen(key):
            cache.mark_seen(key)
            # keep the record
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def is_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        self._seen.add(key)

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


def unique_by_instant(records: Iterable[R]) -> list[R]:
    """Drop records whose (user_id, date) already appeared earlier in the batch.

    The first occurrence wins.
    """
    cache = InMemoryDedupCache()
    kept: list[R] = []
    for record in records:
        key = record_key(record.user_id, record.date)
        if cache.is_seen(key):
            logger.debug("Skipping duplicate record in batch: %s", key)
            continue
        cache.mark_seen(key)
        kept.append(record)
    return kept


def build_insert_skip_query(
    table: str,
    columns: list[str],
    conflict_columns: Iterable[str] = CONFLICT_COLUMNS,
    id_column: str | None = "id",
) -> str:
    """Build a PostgreSQL ``INSERT ... ON CONFLICT DO NOTHING`` statement.

    Safe to re-run with the same data: colliding rows are skipped and the
    command tag reports ``INSERT 0 0``.

    Args:
        table:            Target table name.
        columns:          Columns bound to $1..$n in order.
        conflict_columns: Columns of the UNIQUE constraint.
        id_column:        Primary key filled with gen_random_uuid(), or None.

    Returns:
        Parameterized SQL string.
    """
    placeholders = [f"${i + 1}" for i in range(len(columns))]
    col_list = list(columns)
    if id_column:
        col_list.insert(0, id_column)
        placeholders.insert(0, "gen_random_uuid()")

    return (
        f"INSERT INTO {table} ({', '.join(col_list)}) "
        f"VALUES ({', '.join(placeholders)}) "
        f"ON CONFLICT ({', '.join(conflict_columns)}) DO NOTHING"
    )
