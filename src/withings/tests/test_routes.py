"""Tests for the Withings HTTP endpoints, account linking and their error mapping."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import jwt as pyjwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.config import Settings, get_settings
from src.dependencies import AuthContext, get_current_user, get_sync_service, get_withings_client
from src.middleware.supabase_auth import SupabaseAuthMiddleware
from src.routers.withings import router
from src.services.link_state import issue_link_state
from src.withings.client import WithingsClient
from src.withings.errors import (
    NotLinkedError,
    ProtocolError,
    RefreshFailedError,
    TransportError,
)
from src.withings.models import SyncResult
from src.withings.tests.conftest import NOW, OTHER_USER_ID, TEST_USER_ID

JWT_SECRET = "test-jwt-secret-with-enough-bytes-for-hs256"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="postgresql://localhost/test",
        supabase_jwt_secret=JWT_SECRET,
        withings_client_id="cid",
        withings_client_secret="secret",
        withings_redirect_uri="http://localhost/api/v1/withings/callback",
    )


@pytest.fixture
def sync_service() -> MagicMock:
    service = MagicMock()
    service.sync_all = AsyncMock(return_value=SyncResult(last_sync_at=NOW))
    service.sync_weights = AsyncMock(return_value=SyncResult(last_sync_at=NOW))
    service.sync_body_composition = AsyncMock(return_value=SyncResult(last_sync_at=NOW))
    service.tokens = MagicMock()
    service.tokens.link_account = AsyncMock()
    return service


@pytest.fixture
def api_client(settings: Settings) -> WithingsClient:
    return WithingsClient(
        client_id=settings.withings_client_id,
        client_secret=settings.withings_client_secret,
        redirect_uri=settings.withings_redirect_uri,
    )


def _build_app(settings: Settings, sync_service: MagicMock, api_client: WithingsClient) -> FastAPI:
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    app.dependency_overrides[get_withings_client] = lambda: api_client
    return app


@pytest.fixture
def http(settings: Settings, sync_service: MagicMock, api_client: WithingsClient) -> TestClient:
    app = _build_app(settings, sync_service, api_client)
    app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id=TEST_USER_ID)
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def secured(settings: Settings, sync_service: MagicMock, api_client: WithingsClient) -> TestClient:
    """App behind the real auth middleware; no user override."""
    app = _build_app(settings, sync_service, api_client)
    app.add_middleware(SupabaseAuthMiddleware, settings=settings)
    return TestClient(app, follow_redirects=False)


def _session_token(sub: str = str(TEST_USER_ID), expires_in: timedelta = timedelta(hours=1)) -> str:
    claims = {
        "sub": sub,
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return pyjwt.encode(claims, JWT_SECRET, algorithm="HS256")


# ---------------------------------------------------------------------------
# Sync endpoints
# ---------------------------------------------------------------------------


class TestSyncEndpoints:
    def test_sync_all_reports_counts(self, http: TestClient, sync_service: MagicMock) -> None:
        sync_service.sync_all.return_value = SyncResult(
            weights_synced=2, body_compositions_synced=1, last_sync_at=NOW
        )

        response = http.post("/api/v1/withings/sync")

        assert response.status_code == 200
        body = response.json()
        assert body["weights_synced"] == 2
        assert body["body_compositions_synced"] == 1
        assert body["total_synced"] == 3
        assert body["message"] == "Synced 3 records (weights: 2, body compositions: 1)"
        sync_service.sync_all.assert_awaited_once_with(TEST_USER_ID)

    def test_sync_all_nothing_new(self, http: TestClient) -> None:
        body = http.post("/api/v1/withings/sync").json()
        assert body["message"] == "No new data"
        assert body["total_synced"] == 0

    def test_sync_weights(self, http: TestClient, sync_service: MagicMock) -> None:
        sync_service.sync_weights.return_value = SyncResult(weights_synced=4, last_sync_at=NOW)

        body = http.post("/api/v1/withings/sync-weights").json()

        assert body["synced_count"] == 4
        assert body["message"] == "Synced 4 weight records"

    def test_sync_body_composition_nothing_new(self, http: TestClient) -> None:
        body = http.post("/api/v1/withings/sync-body-composition").json()
        assert body["synced_count"] == 0
        assert body["message"] == "No new body composition data"

    @pytest.mark.parametrize(
        "error, status",
        [
            (NotLinkedError(TEST_USER_ID), 400),
            (RefreshFailedError("expired"), 502),
            (TransportError("down", status_code=503), 502),
            (ProtocolError("bad", status=401), 502),
        ],
    )
    def test_errors_mapped(
        self, http: TestClient, sync_service: MagicMock, error: Exception, status: int
    ) -> None:
        sync_service.sync_all.side_effect = error
        response = http.post("/api/v1/withings/sync")
        assert response.status_code == status
        # Vendor detail stays in the logs.
        assert "down" not in response.text
        assert "bad" not in response.text


# ---------------------------------------------------------------------------
# Account linking
# ---------------------------------------------------------------------------


class TestAuthorization:
    def test_returns_url_with_signed_state(self, http: TestClient, settings: Settings) -> None:
        response = http.get("/api/v1/withings/auth")

        assert response.status_code == 200
        url = response.json()["authorization_url"]
        assert url.startswith("https://account.withings.com/")
        state = parse_qs(urlparse(url).query)["state"][0]
        payload = pyjwt.decode(
            state, settings.supabase_jwt_secret, algorithms=["HS256"], audience="withings-link"
        )
        assert payload["sub"] == str(TEST_USER_ID)

    def test_misconfigured_client(self, settings: Settings, sync_service: MagicMock) -> None:
        unconfigured = MagicMock(spec=WithingsClient)
        unconfigured.authorization_url.side_effect = ValueError("missing redirect uri")
        app = _build_app(settings, sync_service, unconfigured)
        app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id=TEST_USER_ID)

        assert TestClient(app).get("/api/v1/withings/auth").status_code == 500


class TestCallback:
    def test_links_user_from_state_and_syncs(
        self, http: TestClient, sync_service: MagicMock, settings: Settings
    ) -> None:
        state = issue_link_state(OTHER_USER_ID, settings)

        response = http.get("/api/v1/withings/callback", params={"code": "abc", "state": state})

        assert response.headers["location"] == "/?withings_success=connected"
        sync_service.tokens.link_account.assert_awaited_once_with(OTHER_USER_ID, "abc")
        sync_service.sync_all.assert_awaited_once_with(OTHER_USER_ID)

    def test_denied(self, http: TestClient, sync_service: MagicMock) -> None:
        response = http.get("/api/v1/withings/callback", params={"error": "access_denied"})
        assert response.headers["location"] == "/?withings_error=auth_denied"
        sync_service.tokens.link_account.assert_not_awaited()

    def test_missing_code(self, http: TestClient) -> None:
        response = http.get("/api/v1/withings/callback")
        assert response.headers["location"] == "/?withings_error=no_code"

    @pytest.mark.parametrize("state", [None, "not-a-jwt"])
    def test_unverifiable_state_rejected(
        self, http: TestClient, sync_service: MagicMock, state: str | None
    ) -> None:
        params = {"code": "abc"}
        if state is not None:
            params["state"] = state

        response = http.get("/api/v1/withings/callback", params=params)

        assert response.headers["location"] == "/?withings_error=invalid_state"
        sync_service.tokens.link_account.assert_not_awaited()

    def test_expired_state_rejected(
        self, http: TestClient, sync_service: MagicMock, settings: Settings
    ) -> None:
        stale = issue_link_state(
            TEST_USER_ID, settings, now=datetime.now(timezone.utc) - timedelta(hours=1)
        )

        response = http.get("/api/v1/withings/callback", params={"code": "abc", "state": stale})

        assert response.headers["location"] == "/?withings_error=invalid_state"
        sync_service.tokens.link_account.assert_not_awaited()

    def test_session_token_is_not_a_valid_state(
        self, http: TestClient, sync_service: MagicMock
    ) -> None:
        response = http.get(
            "/api/v1/withings/callback", params={"code": "abc", "state": _session_token()}
        )
        assert response.headers["location"] == "/?withings_error=invalid_state"

    def test_exchange_failure(
        self, http: TestClient, sync_service: MagicMock, settings: Settings
    ) -> None:
        sync_service.tokens.link_account.side_effect = ProtocolError("invalid code", status=503)
        state = issue_link_state(TEST_USER_ID, settings)

        response = http.get("/api/v1/withings/callback", params={"code": "abc", "state": state})

        assert response.headers["location"] == "/?withings_error=callback_failed"
        sync_service.sync_all.assert_not_awaited()

    def test_initial_sync_failure_keeps_link(
        self, http: TestClient, sync_service: MagicMock, settings: Settings
    ) -> None:
        sync_service.sync_all.side_effect = TransportError("down")
        state = issue_link_state(TEST_USER_ID, settings)

        response = http.get("/api/v1/withings/callback", params={"code": "abc", "state": state})

        assert response.headers["location"] == "/?withings_success=connected"


# ---------------------------------------------------------------------------
# Auth middleware
# ---------------------------------------------------------------------------


class TestSupabaseAuthMiddleware:
    def test_missing_header(self, secured: TestClient) -> None:
        assert secured.post("/api/v1/withings/sync").status_code == 401

    def test_valid_token(self, secured: TestClient, sync_service: MagicMock) -> None:
        response = secured.post(
            "/api/v1/withings/sync", headers={"Authorization": f"Bearer {_session_token()}"}
        )
        assert response.status_code == 200
        sync_service.sync_all.assert_awaited_once_with(TEST_USER_ID)

    def test_expired_token(self, secured: TestClient) -> None:
        token = _session_token(expires_in=timedelta(hours=-1))
        response = secured.post("/api/v1/withings/sync", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Token expired"

    def test_non_uuid_subject(self, secured: TestClient) -> None:
        token = _session_token(sub="user_abc")
        response = secured.post("/api/v1/withings/sync", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_auth_url_then_headerless_callback_links_account(
        self, secured: TestClient, sync_service: MagicMock
    ) -> None:
        auth = secured.get(
            "/api/v1/withings/auth", headers={"Authorization": f"Bearer {_session_token()}"}
        )
        state = parse_qs(urlparse(auth.json()["authorization_url"]).query)["state"][0]

        # The browser comes back from Withings without our bearer token.
        response = secured.get("/api/v1/withings/callback", params={"code": "abc", "state": state})

        assert response.status_code == 307
        assert response.headers["location"] == "/?withings_success=connected"
        sync_service.tokens.link_account.assert_awaited_once_with(TEST_USER_ID, "abc")

    def test_auth_url_still_requires_session(self, secured: TestClient) -> None:
        assert secured.get("/api/v1/withings/auth").status_code == 401
