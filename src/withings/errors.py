"""Exception taxonomy for the Withings sync engine.

All errors raised by the signature, nonce, token and measurement clients
derive from ``WithingsError``.  The sync orchestrator never swallows them:
a failure at any step aborts the whole sync invocation and the caller
decides how to present it.

    WithingsError
    ├── NotLinkedError      — no credential on file ("connect your account")
    ├── TransportError      — HTTP/network failure, retryable by the caller
    ├── ProtocolError       — vendor answered with a structured error
    └── RefreshFailedError  — the refresh attempt itself failed
"""

from __future__ import annotations

from uuid import UUID


class WithingsError(Exception):
    """Base class for every error surfaced by the Withings integration."""


class NotLinkedError(WithingsError):
    """Raised when a user has no Withings access/refresh token on file."""

    def __init__(self, user_id: UUID) -> None:
        super().__init__(f"User {user_id} has not connected a Withings account")
        self.user_id = user_id


class TransportError(WithingsError):
    """Raised when the HTTP call fails or returns a non-success status.

    Attributes:
        status_code: HTTP status, or None when no response was received.
        body:        Raw response text (empty when no response was received).
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolError(WithingsError):
    """Raised when the vendor payload reports a non-zero status or lacks a body.

    Attributes:
        status: Vendor status code from the JSON payload (None if absent).
        error:  Vendor error text, if any.
    """

    def __init__(self, message: str, status: int | None = None, error: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.error = error


class RefreshFailedError(WithingsError):
    """Raised when an expired access token could not be refreshed.

    The original Transport/ProtocolError is chained as ``__cause__``.
    Recovering requires the user to re-authorize the application.
    """
