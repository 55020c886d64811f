"""Persistence ports consumed by the sync engine.

The engine never talks to a database directly.  The host application
passes objects satisfying these protocols (``src.services.store`` provides
the Postgres implementation; tests use an in-memory one).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from src.withings.models import OAuthCredential


class CredentialStore(Protocol):
    async def load_credential(self, user_id: UUID) -> OAuthCredential | None:
        """Return the user's Withings credential, or None if the user is unknown."""

    async def save_credential(self, user_id: UUID, patch: dict[str, Any]) -> None:
        """Update the given credential fields in place.

        ``patch`` keys are OAuthCredential attribute names.
        """


class MeasurementStore(Protocol):
    async def latest_record_date(
        self, user_id: UUID, table: str, source: str | None = None
    ) -> datetime | None:
        """Return the newest ``date`` in ``table`` for the user (optionally by source)."""

    async def insert_skip_duplicates(self, table: str, rows: list[dict[str, Any]]) -> int:
        """Insert rows, silently skipping (user_id, date) collisions.

        Returns:
            Number of rows actually inserted.
        """


class SyncStore(CredentialStore, MeasurementStore, Protocol):
    """Convenience union for stores implementing both ports."""
