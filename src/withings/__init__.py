"""Withings measurement sync engine.

Handles the Withings signed-OAuth protocol, token lifecycle, incremental
measurement fetches, decoding of measurement groups, and idempotent writes
into the weights / body_compositions tables.

Subpackages:
    sync/ — Sync orchestrator, persistence ports, deduplication

Core modules:
    signature     — HMAC-SHA256 signing of parameter sets
    client        — Nonce, token exchange and measurement fetch client
    tokens        — Token expiry check and refresh-then-persist
    decode        — meastype decoding and group classification
    models        — Wire and persisted data models
    errors        — Exception taxonomy
    config_loader — Load/validate/hot-reload sync_config.yaml
"""

from src.withings.client import WithingsClient
from src.withings.config_loader import SyncConfig, get_sync_config
from src.withings.errors import (
    NotLinkedError,
    ProtocolError,
    RefreshFailedError,
    TransportError,
    WithingsError,
)
from src.withings.models import (
    BodyCompositionRecord,
    MeasurementGroup,
    OAuthCredential,
    SyncResult,
    TokenResponse,
    WeightRecord,
)

__all__ = [
    "WithingsClient",
    "SyncConfig",
    "get_sync_config",
    "WithingsError",
    "NotLinkedError",
    "TransportError",
    "ProtocolError",
    "RefreshFailedError",
    "OAuthCredential",
    "TokenResponse",
    "MeasurementGroup",
    "WeightRecord",
    "BodyCompositionRecord",
    "SyncResult",
]
