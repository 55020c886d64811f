"""Withings token lifecycle: link, expiry check, refresh-then-persist.

Each credential is either ``valid`` or ``expired``.  Expiry is detected
up front by comparing ``token_expires_at`` with the current time, never by
waiting for a fetch to fail.  A revoked token has no state of its own; it
surfaces as a ProtocolError on the next fetch.

Refresh runs at most once per sync invocation and is not retried.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable
from uuid import UUID

from src.withings.client import WithingsClient
from src.withings.errors import (
    NotLinkedError,
    ProtocolError,
    RefreshFailedError,
    TransportError,
)
from src.withings.models import OAuthCredential, utc_now
from src.withings.sync.store import CredentialStore

logger = logging.getLogger("weighttrack.withings.tokens")


class TokenState(str, Enum):
    valid = "valid"
    expired = "expired"


def token_state(credential: OAuthCredential, now: datetime) -> TokenState:
    """Classify a credential.  Without a known expiry the token is assumed valid."""
    if credential.token_expires_at is not None and credential.token_expires_at <= now:
        return TokenState.expired
    return TokenState.valid


class TokenManager:
    """Keeps a user's Withings access token usable.

    Args:
        client:      Withings API client.
        credentials: Store holding the per-user credential.
        clock:       Returns the current aware datetime.
    """

    def __init__(
        self,
        client: WithingsClient,
        credentials: CredentialStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._clock = clock

    async def link_account(self, user_id: UUID, code: str) -> OAuthCredential:
        """Exchange an authorization code and persist the new credential.

        Args:
            user_id: Internal user UUID.
            code:    Authorization code from the Withings callback.

        Returns:
            The stored OAuthCredential.
        """
        tokens = await self._client.exchange_authorization_code(code)
        credential = tokens.to_credential(self._clock())
        await self._credentials.save_credential(
            user_id,
            {
                "access_token": credential.access_token,
                "refresh_token": credential.refresh_token,
                "token_expires_at": credential.token_expires_at,
                "vendor_user_id": credential.vendor_user_id,
            },
        )
        logger.info(
            "Linked Withings account %s to user %s (expires %s)",
            credential.vendor_user_id, user_id, credential.token_expires_at,
        )
        return credential

    async def load_linked(self, user_id: UUID) -> OAuthCredential:
        """Load the user's credential.

        Raises:
            NotLinkedError: If no access/refresh token pair is on file.
        """
        credential = await self._credentials.load_credential(user_id)
        if credential is None or not credential.is_linked:
            raise NotLinkedError(user_id)
        return credential

    async def ensure_valid(self, user_id: UUID, credential: OAuthCredential) -> str:
        """Return a usable access token, refreshing and persisting it if expired.

        Args:
            user_id:    Internal user UUID.
            credential: Linked credential as loaded for this sync.

        Returns:
            The access token to use for the fetch.

        Raises:
            RefreshFailedError: If the refresh call fails.  Nothing is persisted.
        """
        now = self._clock()
        if token_state(credential, now) is TokenState.valid:
            return credential.access_token  # type: ignore[return-value]

        logger.info(
            "Withings token for user %s expired at %s, refreshing",
            user_id, credential.token_expires_at,
        )
        try:
            tokens = await self._client.refresh_access_token(credential.refresh_token)  # type: ignore[arg-type]
        except (TransportError, ProtocolError) as exc:
            logger.warning("Withings token refresh failed for user %s: %s", user_id, exc)
            raise RefreshFailedError(f"Could not refresh Withings token: {exc}") from exc

        refreshed = tokens.to_credential(now)
        await self._credentials.save_credential(
            user_id,
            {
                "access_token": refreshed.access_token,
                "refresh_token": refreshed.refresh_token,
                "token_expires_at": refreshed.token_expires_at,
            },
        )
        credential.access_token = refreshed.access_token
        credential.refresh_token = refreshed.refresh_token
        credential.token_expires_at = refreshed.token_expires_at
        return refreshed.access_token
