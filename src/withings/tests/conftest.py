"""Shared fixtures, fakes and mock API responses for Withings sync tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import httpx
import pytest

from src.withings.client import WithingsClient
from src.withings.config_loader import SyncConfig, load_sync_config
from src.withings.models import (
    BODY_COMPOSITIONS_TABLE,
    WEIGHTS_TABLE,
    MeasureResponse,
    OAuthCredential,
    TokenResponse,
    to_epoch,
)

# Canonical test identities
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
NOW = datetime(2026, 2, 23, 12, 0, 0, tzinfo=timezone.utc)

CLIENT_ID = "test_client_id"
CLIENT_SECRET = "test_client_secret"
REDIRECT_URI = "http://localhost:3003/api/withings/callback"


def fixed_clock() -> datetime:
    return NOW


# ---------------------------------------------------------------------------
# In-memory persistence
# ---------------------------------------------------------------------------


class InMemorySyncStore:
    """Credential store + measurement store kept in dicts.

    Enforces the (user_id, date) uniqueness of both tables the way the
    database does: colliding rows are skipped, not errors.
    """

    def __init__(self) -> None:
        self.credentials: dict[UUID, OAuthCredential] = {}
        self.tables: dict[str, list[dict[str, Any]]] = {
            WEIGHTS_TABLE: [],
            BODY_COMPOSITIONS_TABLE: [],
        }
        self.saved_patches: list[dict[str, Any]] = []

    async def load_credential(self, user_id: UUID) -> OAuthCredential | None:
        stored = self.credentials.get(user_id)
        if stored is None:
            return None
        # Hand out a copy, as a database round-trip would.
        return OAuthCredential(**vars(stored))

    async def save_credential(self, user_id: UUID, patch: dict[str, Any]) -> None:
        self.saved_patches.append(dict(patch))
        current = self.credentials.setdefault(user_id, OAuthCredential())
        for key, value in patch.items():
            setattr(current, key, value)

    async def latest_record_date(
        self, user_id: UUID, table: str, source: str | None = None
    ) -> datetime | None:
        dates = [
            row["date"]
            for row in self.tables[table]
            if row["user_id"] == user_id and (source is None or row["source"] == source)
        ]
        return max(dates) if dates else None

    async def insert_skip_duplicates(self, table: str, rows: list[dict[str, Any]]) -> int:
        existing = {(r["user_id"], r["date"]) for r in self.tables[table]}
        inserted = 0
        for row in rows:
            key = (row["user_id"], row["date"])
            if key in existing:
                continue
            existing.add(key)
            self.tables[table].append(dict(row))
            inserted += 1
        return inserted

    def add_row(self, table: str, **row: Any) -> None:
        self.tables[table].append(row)


# ---------------------------------------------------------------------------
# Wire payload builders
# ---------------------------------------------------------------------------


def measure(type_code: int, value: int, unit: int) -> dict:
    return {"type": type_code, "value": value, "unit": unit}


def measure_group(captured_at: datetime, *measures: dict, grpid: int = 1) -> dict:
    return {
        "grpid": grpid,
        "attrib": 0,
        "date": to_epoch(captured_at),
        "created": to_epoch(captured_at),
        "category": 1,
        "deviceid": "scale-1",
        "measures": list(measures),
    }


def withings_response(payload: Any, status_code: int = 200) -> httpx.Response:
    if isinstance(payload, str):
        return httpx.Response(status_code, text=payload)
    return httpx.Response(status_code, json=payload)


def nonce_payload(nonce: str = "test_nonce") -> dict:
    return {"status": 0, "body": {"nonce": nonce}}


def token_payload(access: str = "new_access", refresh: str = "new_refresh") -> dict:
    return {
        "status": 0,
        "body": {
            "userid": 4242,
            "access_token": access,
            "refresh_token": refresh,
            "expires_in": 10800,
            "scope": "user.info,user.metrics",
            "token_type": "Bearer",
        },
    }


def measure_payload(groups: list[dict], more: int = 0, offset: int | None = None) -> dict:
    body: dict[str, Any] = {
        "updatetime": to_epoch(NOW),
        "timezone": "Europe/Paris",
        "measuregrps": groups,
        "more": more,
    }
    if offset is not None:
        body["offset"] = offset
    return {"status": 0, "body": body}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the bundled sync config for tests."""
    return load_sync_config()


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Mock httpx.AsyncClient; tests set ``post.side_effect`` to a list of responses."""
    client = MagicMock()
    client.post = AsyncMock()
    return client


@pytest.fixture
def withings_client(mock_httpx_client: MagicMock) -> WithingsClient:
    return WithingsClient(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        http_client=mock_httpx_client,
        clock=fixed_clock,
    )


@pytest.fixture
def store() -> InMemorySyncStore:
    return InMemorySyncStore()


@pytest.fixture
def linked_store(store: InMemorySyncStore) -> InMemorySyncStore:
    """Store with TEST_USER_ID linked and a token valid for another hour."""
    store.credentials[TEST_USER_ID] = OAuthCredential(
        access_token="valid_access",
        refresh_token="valid_refresh",
        token_expires_at=NOW + timedelta(hours=1),
        vendor_user_id="4242",
    )
    return store


@pytest.fixture
def fake_client() -> MagicMock:
    """WithingsClient double with the API calls replaced by AsyncMocks."""
    client = MagicMock(spec=WithingsClient)
    client.get_measurements = AsyncMock(return_value=MeasureResponse())
    client.refresh_access_token = AsyncMock(
        return_value=TokenResponse(
            access_token="refreshed_access",
            refresh_token="refreshed_refresh",
            expires_in=10800,
            vendor_user_id="4242",
        )
    )
    client.exchange_authorization_code = AsyncMock(
        return_value=TokenResponse(
            access_token="linked_access",
            refresh_token="linked_refresh",
            expires_in=10800,
            vendor_user_id="4242",
            scope="user.info,user.metrics",
        )
    )
    return client


WEIGHT_655 = measure(1, 655, -1)
FAT_RATIO_25 = measure(6, 25, 0)
KG_65_5 = Decimal("65.5")
