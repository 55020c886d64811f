"""Withings account linking and measurement sync endpoints."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import RedirectResponse

from src.dependencies import AppSettings, CurrentUser, SyncServiceDep, WithingsClientDep
from src.models.base import ErrorDetail
from src.models.withings import AuthorizationUrlResponse, SyncAllResponse, SyncCountResponse
from src.services.link_state import InvalidLinkStateError, issue_link_state, verify_link_state
from src.withings.errors import NotLinkedError, RefreshFailedError, WithingsError
from src.withings.models import SyncResult

router = APIRouter(prefix="/withings", tags=["withings"])
logger = logging.getLogger("weighttrack.withings.routes")

_SYNC_ERRORS: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorDetail, "description": "Withings account not connected"},
    502: {"model": ErrorDetail, "description": "Withings API failure"},
}


async def _run_sync(operation: Callable[[], Awaitable[SyncResult]], user: CurrentUser) -> SyncResult:
    """Run a sync variant and map engine errors onto HTTP responses.

    Vendor messages are logged, never returned to the client.
    """
    try:
        return await operation()
    except NotLinkedError:
        raise HTTPException(status_code=400, detail="Withings account is not connected")
    except RefreshFailedError as exc:
        logger.error("Withings token refresh failed for user %s: %s", user.user_id, exc)
        raise HTTPException(
            status_code=502, detail="Withings authorization expired, please reconnect"
        )
    except WithingsError as exc:
        logger.error("Withings sync failed for user %s: %s", user.user_id, exc)
        raise HTTPException(status_code=502, detail="Withings sync failed, please try again")


# ---------- Account linking ----------

@router.get("/auth", response_model=AuthorizationUrlResponse)
async def start_authorization(
    user: CurrentUser, client: WithingsClientDep, settings: AppSettings
) -> Any:
    """Return the Withings consent URL.

    The frontend navigates the browser there (top-level navigation, not a
    fetch); Withings then redirects back to ``/callback`` with our state.
    """
    state = issue_link_state(user.user_id, settings)
    try:
        url = client.authorization_url(state=state)
    except ValueError as exc:
        logger.error("Withings authorization unavailable: %s", exc)
        raise HTTPException(status_code=500, detail="Withings authorization is not configured")
    return AuthorizationUrlResponse(authorization_url=url)


@router.get("/callback")
async def authorization_callback(
    service: SyncServiceDep,
    settings: AppSettings,
    code: str | None = Query(default=None),
    error: str | None = Query(default=None),
    state: str | None = Query(default=None),
) -> Any:
    """Withings redirect target.  Public: the user is identified by ``state``."""
    if error:
        logger.warning("Withings authorization denied: %s", error)
        return RedirectResponse("/?withings_error=auth_denied")
    if not code:
        return RedirectResponse("/?withings_error=no_code")

    try:
        user_id = verify_link_state(state, settings)
    except InvalidLinkStateError as exc:
        logger.warning("Withings callback rejected: %s", exc)
        return RedirectResponse("/?withings_error=invalid_state")

    try:
        await service.tokens.link_account(user_id, code)
    except WithingsError as exc:
        logger.error("Withings code exchange failed for user %s: %s", user_id, exc)
        return RedirectResponse("/?withings_error=callback_failed")

    # The link stands even if the first sync fails.
    try:
        result = await service.sync_all(user_id)
        logger.info("Initial Withings sync for user %s: %d records", user_id, result.total_synced)
    except WithingsError as exc:
        logger.warning("Initial Withings sync failed for user %s: %s", user_id, exc)

    return RedirectResponse("/?withings_success=connected")


# ---------- Sync ----------

@router.post("/sync", response_model=SyncAllResponse, responses=_SYNC_ERRORS)
async def sync_all(user: CurrentUser, service: SyncServiceDep) -> Any:
    result = await _run_sync(lambda: service.sync_all(user.user_id), user)
    return SyncAllResponse.from_result(result)


@router.post("/sync-weights", response_model=SyncCountResponse, responses=_SYNC_ERRORS)
async def sync_weights(user: CurrentUser, service: SyncServiceDep) -> Any:
    result = await _run_sync(lambda: service.sync_weights(user.user_id), user)
    return SyncCountResponse.from_count("weight", result.weights_synced, result.last_sync_at)


@router.post("/sync-body-composition", response_model=SyncCountResponse, responses=_SYNC_ERRORS)
async def sync_body_composition(user: CurrentUser, service: SyncServiceDep) -> Any:
    result = await _run_sync(lambda: service.sync_body_composition(user.user_id), user)
    return SyncCountResponse.from_count(
        "body composition", result.body_compositions_synced, result.last_sync_at
    )
