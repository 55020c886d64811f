"""Postgres implementation of the Withings sync persistence ports.

Tables (unique keys in brackets):
    users              — Withings credential columns, keyed by id
    weights            — [user_id, date]
    body_compositions  — [user_id, date]

Skip-on-duplicate inserts run one ``INSERT ... ON CONFLICT DO NOTHING`` per
row inside a single transaction and count the rows the database kept.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

from src.services.database import transaction
from src.withings.models import (
    BODY_COMPOSITION_METRICS,
    BODY_COMPOSITIONS_TABLE,
    WEIGHTS_TABLE,
    OAuthCredential,
)
from src.withings.sync.dedup import build_insert_skip_query

logger = logging.getLogger("weighttrack.db.store")

# OAuthCredential attribute → users column
_CREDENTIAL_COLUMNS: dict[str, str] = {
    "access_token": "withings_access_token",
    "refresh_token": "withings_refresh_token",
    "token_expires_at": "withings_token_expires_at",
    "vendor_user_id": "withings_user_id",
}

TABLE_COLUMNS: dict[str, list[str]] = {
    WEIGHTS_TABLE: ["user_id", "value", "date", "source"],
    BODY_COMPOSITIONS_TABLE: ["user_id", "date", "source", *BODY_COMPOSITION_METRICS],
}


class PostgresSyncStore:
    """Credential store, watermark query and batch writer backed by asyncpg."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # ------------------------------------------------------------------
    # CredentialStore
    # ------------------------------------------------------------------

    async def load_credential(self, user_id: UUID) -> OAuthCredential | None:
        row = await self._pool.fetchrow(
            """
            SELECT withings_access_token, withings_refresh_token,
                   withings_token_expires_at, withings_user_id
            FROM users WHERE id = $1
            """,
            user_id,
        )
        if row is None:
            return None
        return OAuthCredential(
            access_token=row["withings_access_token"],
            refresh_token=row["withings_refresh_token"],
            token_expires_at=row["withings_token_expires_at"],
            vendor_user_id=row["withings_user_id"],
        )

    async def save_credential(self, user_id: UUID, patch: dict[str, Any]) -> None:
        unknown = set(patch) - set(_CREDENTIAL_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)}")
        if not patch:
            return

        set_clauses = []
        params: list[Any] = [user_id]
        for i, (key, value) in enumerate(patch.items(), start=2):
            set_clauses.append(f"{_CREDENTIAL_COLUMNS[key]} = ${i}")
            params.append(value)
        set_clauses.append("updated_at = NOW()")

        result = await self._pool.execute(
            f"UPDATE users SET {', '.join(set_clauses)} WHERE id = $1", *params
        )
        if result == "UPDATE 0":
            raise LookupError(f"User {user_id} not found")

    # ------------------------------------------------------------------
    # MeasurementStore
    # ------------------------------------------------------------------

    async def latest_record_date(
        self, user_id: UUID, table: str, source: str | None = None
    ) -> datetime | None:
        if table not in TABLE_COLUMNS:
            raise ValueError(f"Unknown measurement table '{table}'")

        if source is None:
            return await self._pool.fetchval(
                f"SELECT MAX(date) FROM {table} WHERE user_id = $1", user_id
            )
        return await self._pool.fetchval(
            f"SELECT MAX(date) FROM {table} WHERE user_id = $1 AND source = $2",
            user_id, source,
        )

    async def insert_skip_duplicates(self, table: str, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        columns = TABLE_COLUMNS.get(table)
        if columns is None:
            raise ValueError(f"Unknown measurement table '{table}'")

        query = build_insert_skip_query(table, columns)
        inserted = 0
        async with transaction(self._pool) as conn:
            for row in rows:
                status = await conn.execute(query, *(row.get(c) for c in columns))
                if status.endswith(" 1"):
                    inserted += 1

        logger.debug("%s: inserted %d of %d rows", table, inserted, len(rows))
        return inserted
