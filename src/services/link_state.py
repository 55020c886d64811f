"""Signed OAuth ``state`` for the Withings account-linking round-trip.

The browser returns from Withings without our bearer token, so the user id
travels inside ``state`` as a short-lived HS256 JWT.  Its audience differs
from session tokens, so a state value can never pass as a login.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt as pyjwt

from src.config import Settings

logger = logging.getLogger("weighttrack.auth.link_state")

LINK_STATE_AUDIENCE = "withings-link"


class InvalidLinkStateError(ValueError):
    """Raised when a callback ``state`` is missing, forged, expired or malformed."""


def issue_link_state(
    user_id: uuid.UUID, settings: Settings, now: datetime | None = None
) -> str:
    """Return a signed state token binding the authorization request to ``user_id``."""
    issued_at = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "aud": LINK_STATE_AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + timedelta(seconds=settings.withings_state_ttl_seconds),
        "jti": uuid.uuid4().hex,
    }
    return pyjwt.encode(claims, settings.supabase_jwt_secret, algorithm="HS256")


def verify_link_state(state: str | None, settings: Settings) -> uuid.UUID:
    """Return the user id carried by a callback ``state``.

    Raises:
        InvalidLinkStateError: If the token is absent, tampered with or expired.
    """
    if not state:
        raise InvalidLinkStateError("Missing state")
    try:
        payload = pyjwt.decode(
            state,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=LINK_STATE_AUDIENCE,
        )
        return uuid.UUID(payload["sub"])
    except pyjwt.ExpiredSignatureError as exc:
        raise InvalidLinkStateError("State expired") from exc
    except (pyjwt.InvalidTokenError, KeyError, ValueError) as exc:
        logger.warning("Withings callback state rejected: %s", exc)
        raise InvalidLinkStateError("Invalid state") from exc
