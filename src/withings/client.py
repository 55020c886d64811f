"""Withings API v2 client.

Withings uses a signed variant of OAuth2: every token and measurement
request must carry a single-use nonce fetched from ``/v2/signature`` and an
HMAC-SHA256 ``signature``.  Only ``action``, ``client_id`` and ``nonce``
(or ``timestamp`` for the nonce request itself) are signed; the remaining
form fields are sent unsigned next to the signature.

Environment variables:
    WITHINGS_CLIENT_ID      — OAuth2 client ID
    WITHINGS_CLIENT_SECRET  — OAuth2 client secret (also the HMAC key)
    WITHINGS_REDIRECT_URI   — Must exactly match the URI registered with Withings

API base: https://wbsapi.withings.net

Endpoints used:
    /v2/signature  — action=getnonce
    /v2/oauth2     — action=requesttoken (authorization_code / refresh_token)
    /v2/measure    — action=getmeas (Bearer token + signature)

No retries happen here; retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable
from urllib.parse import urlencode
from uuid import uuid4

import httpx

from src.withings.errors import ProtocolError, TransportError
from src.withings.models import MeasureResponse, TokenResponse, to_epoch, utc_now
from src.withings.signature import sign_params

logger = logging.getLogger("weighttrack.withings.client")

_WITHINGS_API_BASE = "https://wbsapi.withings.net"
_WITHINGS_AUTH_URL = "https://account.withings.com/oauth2_user/authorize2"
_WITHINGS_SCOPE = "user.info,user.metrics"

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}

# Guards against a vendor that keeps answering more=1 with the same offset.
_MAX_MEASURE_PAGES = 50


class WithingsClient:
    """Signed-OAuth client for the Withings public API.

    One instance may be shared across users: it holds only application
    credentials and never caches nonces or tokens.
    """

    SOURCE_ID = "withings"
    DISPLAY_NAME = "Withings"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        api_base: str = _WITHINGS_API_BASE,
        authorize_url: str = _WITHINGS_AUTH_URL,
        scope: str = _WITHINGS_SCOPE,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable = utc_now,
    ) -> None:
        """Initialize the Withings client.

        Args:
            client_id:     OAuth2 client ID (defaults to WITHINGS_CLIENT_ID env var).
            client_secret: OAuth2 client secret (defaults to WITHINGS_CLIENT_SECRET env var).
            redirect_uri:  Registered redirect URI (defaults to WITHINGS_REDIRECT_URI env var).
            api_base:      API root, without trailing slash.
            authorize_url: User-facing authorization page.
            scope:         OAuth scopes requested at authorization.
            timeout:       Per-request timeout when no http_client is injected.
            http_client:   Optional pre-configured httpx client (shared pool or test mock).
            clock:         Returns the current aware datetime; used for nonce timestamps.
        """
        self._client_id = client_id or os.environ.get("WITHINGS_CLIENT_ID", "")
        self._client_secret = client_secret or os.environ.get("WITHINGS_CLIENT_SECRET", "")
        self._redirect_uri = redirect_uri or os.environ.get("WITHINGS_REDIRECT_URI", "")
        self._api_base = api_base.rstrip("/")
        self._authorize_url = authorize_url
        self._scope = scope
        self._timeout = timeout
        self._http_client = http_client
        self._clock = clock

        if not self._client_id or not self._client_secret:
            logger.warning(
                "Withings client id/secret not configured. "
                "Set WITHINGS_CLIENT_ID and WITHINGS_CLIENT_SECRET environment variables."
            )

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorization_url(self, state: str | None = None) -> str:
        """Build the URL the user is redirected to in order to grant access.

        Args:
            state: Opaque CSRF value echoed back on the callback (random if omitted).

        Raises:
            ValueError: If the client id or redirect URI is not configured.
        """
        if not self._client_id or not self._redirect_uri:
            raise ValueError("WITHINGS_CLIENT_ID and WITHINGS_REDIRECT_URI must be set")

        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "scope": self._scope,
            "state": state or str(uuid4()),
        }
        return f"{self._authorize_url}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Nonce
    # ------------------------------------------------------------------

    async def get_nonce(self) -> str:
        """Fetch a fresh single-use nonce from ``/v2/signature``.

        Returns:
            The nonce string.

        Raises:
            TransportError: HTTP failure or non-success status.
            ProtocolError:  Non-zero vendor status or missing nonce.
        """
        params = {
            "action": "getnonce",
            "client_id": self._client_id,
            "timestamp": str(to_epoch(self._clock())),
        }
        form = {**params, "signature": sign_params(params, self._client_secret)}

        payload = await self._post("/v2/signature", form)
        body = self._require_body(payload, "getnonce")
        nonce = body.get("nonce")
        if not nonce:
            raise ProtocolError("Withings getnonce response has no nonce", status=payload.get("status"))

        logger.debug("Withings: obtained nonce")
        return nonce

    # ------------------------------------------------------------------
    # Token exchange
    # ------------------------------------------------------------------

    async def exchange_authorization_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for an access/refresh token pair.

        Args:
            code: Authorization code from the OAuth callback.

        Returns:
            TokenResponse.
        """
        logger.info("Withings: exchanging authorization code")
        return await self._request_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri,
            }
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Obtain a new token pair using a refresh token.

        Args:
            refresh_token: Current refresh token.

        Returns:
            TokenResponse (Withings rotates the refresh token as well).
        """
        logger.info("Withings: refreshing access token")
        return await self._request_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def _request_token(self, grant: dict[str, str]) -> TokenResponse:
        form = await self._signed_form("requesttoken", grant)
        payload = await self._post("/v2/oauth2", form)
        body = self._require_body(payload, "requesttoken")
        try:
            return TokenResponse.from_body(body)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"Withings requesttoken body is incomplete: {exc}") from exc

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    async def get_measurements(
        self,
        access_token: str,
        start: int | None = None,
        end: int | None = None,
        meastypes: str | None = "1",
        category: int = 1,
    ) -> MeasureResponse:
        """Fetch measurement groups captured in ``[start, end]``.

        Follows ``more``/``offset`` pagination; every page is a separately
        signed request with its own nonce.

        Args:
            access_token: Bearer token of the user.
            start:        Window start, Unix seconds (omitted if None).
            end:          Window end, Unix seconds (omitted if None).
            meastypes:    Comma-separated type codes, or None for all types.
            category:     1 = real measurements (user objectives excluded).

        Returns:
            MeasureResponse; ``groups`` is empty when nothing is new.
        """
        extra: dict[str, str] = {"category": str(category)}
        if meastypes:
            extra["meastypes"] = meastypes
        if start is not None:
            extra["startdate"] = str(start)
        if end is not None:
            extra["enddate"] = str(end)

        headers = {"Authorization": f"Bearer {access_token}"}
        result = MeasureResponse()
        offset: int | None = None

        for _ in range(_MAX_MEASURE_PAGES):
            page_extra = dict(extra)
            if offset is not None:
                page_extra["offset"] = str(offset)

            form = await self._signed_form("getmeas", page_extra)
            payload = await self._post("/v2/measure", form, headers=headers)
            self._check_status(payload, "getmeas")

            page = MeasureResponse.from_body(payload.get("body"))
            result.groups.extend(page.groups)
            result.update_time = page.update_time
            result.timezone = page.timezone

            if not page.more or page.offset is None or page.offset == offset:
                break
            offset = page.offset
        else:
            logger.warning("Withings getmeas pagination stopped after %d pages", _MAX_MEASURE_PAGES)

        logger.info(
            "Withings: fetched %d measurement groups (start=%s end=%s)",
            len(result.groups), start, end,
        )
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _signed_form(self, action: str, extra: dict[str, str]) -> dict[str, str]:
        """Return the full form body for a signed action.

        The signature covers action, client_id and nonce only; ``extra``
        fields are submitted but deliberately left out of the signed set.
        """
        nonce = await self.get_nonce()
        signed = {"action": action, "client_id": self._client_id, "nonce": nonce}
        return {**signed, **extra, "signature": sign_params(signed, self._client_secret)}

    async def _post(
        self, path: str, data: dict[str, str], headers: dict[str, str] | None = None
    ) -> dict:
        """POST a form to the Withings API and return the decoded JSON payload.

        Raises:
            TransportError: Network failure or non-2xx status.
            ProtocolError:  Response is not a JSON object.
        """
        url = f"{self._api_base}{path}"
        all_headers = {**_FORM_HEADERS, **(headers or {})}

        try:
            if self._http_client:
                response = await self._http_client.post(url, data=data, headers=all_headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, data=data, headers=all_headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"Withings request to {path} failed: {exc}") from exc

        if not response.is_success:
            body = response.text
            logger.warning("Withings %s returned HTTP %d: %s", path, response.status_code, body)
            raise TransportError(
                f"Withings {path} returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProtocolError(f"Withings {path} returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise ProtocolError(f"Withings {path} returned unexpected JSON: {payload!r}")
        return payload

    @staticmethod
    def _check_status(payload: dict[str, Any], action: str) -> None:
        status = payload.get("status")
        if status != 0:
            error = payload.get("error")
            raise ProtocolError(
                f"Withings {action} failed with status {status}: {error or 'unknown error'}",
                status=status,
                error=error,
            )

    @classmethod
    def _require_body(cls, payload: dict[str, Any], action: str) -> dict[str, Any]:
        cls._check_status(payload, action)
        body = payload.get("body")
        if not isinstance(body, dict) or not body:
            raise ProtocolError(f"Withings {action} response has no body", status=payload.get("status"))
        return body
