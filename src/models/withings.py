"""Pydantic response models for the Withings sync endpoints."""

from __future__ import annotations

from datetime import datetime

from src.models.base import WeighttrackBase
from src.withings.models import SyncResult


class SyncAllResponse(WeighttrackBase):
    """Result of a unified sync."""

    message: str
    weights_synced: int
    body_compositions_synced: int
    total_synced: int
    last_sync_date: datetime

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncAllResponse":
        if result.total_synced:
            message = (
                f"Synced {result.total_synced} records "
                f"(weights: {result.weights_synced}, "
                f"body compositions: {result.body_compositions_synced})"
            )
        else:
            message = "No new data"
        return cls(
            message=message,
            weights_synced=result.weights_synced,
            body_compositions_synced=result.body_compositions_synced,
            total_synced=result.total_synced,
            last_sync_date=result.last_sync_at,
        )


class SyncCountResponse(WeighttrackBase):
    """Result of a single-table sync (weights or body compositions)."""

    message: str
    synced_count: int
    last_sync_date: datetime

    @classmethod
    def from_count(cls, label: str, count: int, last_sync_at: datetime) -> "SyncCountResponse":
        message = f"Synced {count} {label} records" if count else f"No new {label} data"
        return cls(message=message, synced_count=count, last_sync_date=last_sync_at)


class AuthorizationUrlResponse(WeighttrackBase):
    """Withings consent page the browser should navigate to."""

    authorization_url: str
