"""HMAC-SHA256 request signing for the Withings signed OAuth flow.

Withings signs the *values* of a parameter set, ordered by parameter name
and joined with commas, keyed by the client secret.  Only a minimal subset
of each request is signed (see ``client.py``); the full parameter set is
sent in the body alongside the resulting ``signature`` field.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Mapping


def signing_string(params: Mapping[str, str]) -> str:
    """Return the comma-joined values of ``params`` sorted by key.

    Args:
        params: Parameter name → string value.

    Returns:
        e.g. ``{"client_id": "abc", "action": "getnonce"}`` → ``"getnonce,abc"``.
    """
    return ",".join(str(params[key]) for key in sorted(params))


def sign_params(params: Mapping[str, str], secret: str) -> str:
    """Compute the Withings signature for a parameter set.

    Args:
        params: Parameters to sign (names are used for ordering only).
        secret: Client secret shared with Withings.

    Returns:
        Lowercase hex HMAC-SHA256 digest.
    """
    message = signing_string(params).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
