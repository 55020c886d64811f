"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.services.store import PostgresSyncStore
from src.withings.client import WithingsClient
from src.withings.sync.orchestrator import SyncService


@dataclass(frozen=True)
class AuthContext:
    """Authenticated user context extracted from the primary auth provider's JWT."""

    user_id: uuid.UUID
    email: str | None = None
    session_id: str | None = None


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth


def get_withings_client(request: Request) -> WithingsClient:
    """Build a Withings client on the app-wide HTTP connection pool."""
    settings = get_settings()
    return WithingsClient(
        client_id=settings.withings_client_id,
        client_secret=settings.withings_client_secret,
        redirect_uri=settings.withings_redirect_uri,
        api_base=settings.withings_api_base,
        authorize_url=settings.withings_authorize_url,
        scope=settings.withings_scope,
        timeout=settings.withings_http_timeout_seconds,
        http_client=getattr(request.app.state, "http_client", None),
    )


def get_sync_service(
    request: Request,
    client: Annotated[WithingsClient, Depends(get_withings_client)],
) -> SyncService:
    """Wire the sync engine to the request's store and client."""
    return SyncService(client=client, store=PostgresSyncStore(request.app.state.pool))


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
AppSettings = Annotated[Settings, Depends(get_settings)]
WithingsClientDep = Annotated[WithingsClient, Depends(get_withings_client)]
SyncServiceDep = Annotated[SyncService, Depends(get_sync_service)]
