"""Data models for the Withings sync engine.

Wire-level types (``TokenResponse``, ``MeasurementGroup``, ``MeasureResponse``)
are parsed from vendor JSON and live only for the duration of one call.
Persisted types (``WeightRecord``, ``BodyCompositionRecord``) map one-to-one
onto rows of the ``weights`` and ``body_compositions`` tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

logger = logging.getLogger("weighttrack.withings")

WEIGHTS_TABLE = "weights"
BODY_COMPOSITIONS_TABLE = "body_compositions"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def from_epoch(seconds: int | float) -> datetime:
    """Convert Unix seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def to_epoch(value: datetime) -> int:
    """Convert a datetime to whole Unix seconds (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


class RecordSource(str, Enum):
    manual = "manual"
    withings = "withings"


# ---------------------------------------------------------------------------
# OAuth credential
# ---------------------------------------------------------------------------


@dataclass
class OAuthCredential:
    """Withings credential embedded in the host application's user record.

    Attributes:
        access_token:     Bearer token for measurement requests.
        refresh_token:    Token used to obtain a new access_token.
        token_expires_at: UTC datetime when access_token expires.
        vendor_user_id:   Withings ``userid`` of the linked account.
    """

    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None
    vendor_user_id: str | None = None

    @property
    def is_linked(self) -> bool:
        # Both tokens are issued together; one without the other is unusable.
        return bool(self.access_token and self.refresh_token)


@dataclass
class TokenResponse:
    """Body of a successful ``requesttoken`` call."""

    access_token: str
    refresh_token: str
    expires_in: int
    vendor_user_id: str | None = None
    scope: str | None = None

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "TokenResponse":
        userid = body.get("userid")
        return cls(
            access_token=body["access_token"],
            refresh_token=body["refresh_token"],
            expires_in=int(body["expires_in"]),
            vendor_user_id=str(userid) if userid is not None else None,
            scope=body.get("scope"),
        )

    def to_credential(self, now: datetime) -> OAuthCredential:
        return OAuthCredential(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_expires_at=now + timedelta(seconds=self.expires_in),
            vendor_user_id=self.vendor_user_id,
        )


# ---------------------------------------------------------------------------
# Measurement wire format
# ---------------------------------------------------------------------------


@dataclass
class Measure:
    """One typed reading inside a measurement group.

    The decoded value is ``raw_value * 10 ** unit_exponent``.
    """

    type_code: int
    raw_value: int
    unit_exponent: int

    @property
    def value(self) -> Decimal:
        return Decimal(self.raw_value).scaleb(self.unit_exponent)


@dataclass
class MeasurementGroup:
    """A timestamped bundle of readings captured in one weigh-in.

    Attributes:
        group_id:    Withings ``grpid``.
        captured_at: UTC capture time (from the ``date`` epoch field).
        device_id:   Withings ``deviceid`` (may be None for manual entries).
        category:    1 = real measurement, 2 = user objective.
        measures:    Readings in wire order.
    """

    group_id: int
    captured_at: datetime
    device_id: str | None = None
    category: int = 1
    measures: list[Measure] = field(default_factory=list)

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> "MeasurementGroup":
        measures: list[Measure] = []
        for item in raw.get("measures") or []:
            try:
                measures.append(
                    Measure(
                        type_code=int(item["type"]),
                        raw_value=int(item["value"]),
                        unit_exponent=int(item["unit"]),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed measure in group %s: %r", raw.get("grpid"), item)
        return cls(
            group_id=int(raw.get("grpid", 0)),
            captured_at=from_epoch(int(raw["date"])),
            device_id=raw.get("deviceid"),
            category=int(raw.get("category", 1)),
            measures=measures,
        )

    def type_codes(self) -> set[int]:
        return {m.type_code for m in self.measures}

    def first(self, type_code: int) -> Measure | None:
        return next((m for m in self.measures if m.type_code == type_code), None)


def _parse_groups(raw_groups: list[Any]) -> list[MeasurementGroup]:
    groups: list[MeasurementGroup] = []
    for raw in raw_groups:
        try:
            groups.append(MeasurementGroup.from_wire(raw))
        except (AttributeError, KeyError, OSError, OverflowError, TypeError, ValueError):
            grpid = raw.get("grpid") if isinstance(raw, dict) else None
            logger.debug("Skipping malformed measurement group %s: %r", grpid, raw)
    return groups


@dataclass
class MeasureResponse:
    """Decoded ``getmeas`` body.  An empty ``groups`` list means nothing new."""

    update_time: datetime | None = None
    timezone: str | None = None
    groups: list[MeasurementGroup] = field(default_factory=list)
    more: bool = False
    offset: int | None = None

    @classmethod
    def from_body(cls, body: dict[str, Any] | None) -> "MeasureResponse":
        body = body or {}
        update_time = body.get("updatetime")
        return cls(
            update_time=from_epoch(int(update_time)) if update_time else None,
            timezone=body.get("timezone"),
            groups=_parse_groups(body.get("measuregrps") or []),
            more=bool(body.get("more")),
            offset=body.get("offset"),
        )


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


@dataclass
class WeightRecord:
    """A row of the ``weights`` table."""

    user_id: UUID
    value: Decimal
    date: datetime
    source: RecordSource = RecordSource.withings

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "value": self.value,
            "date": self.date,
            "source": self.source.value,
        }


#: Metric columns of ``body_compositions`` in table order.
BODY_COMPOSITION_METRICS: tuple[str, ...] = (
    "weight",
    "fat_free_mass",
    "fat_ratio",
    "fat_mass",
    "heart_rate",
    "muscle_mass",
    "water_mass",
    "bone_mass",
    "pulse_wave_velocity",
    "visceral_fat",
    "vascular_age",
    "basal_metabolic_rate",
)


@dataclass
class BodyCompositionRecord:
    """A row of the ``body_compositions`` table.  Every metric is optional."""

    user_id: UUID
    date: datetime
    source: RecordSource = RecordSource.withings
    weight: Decimal | None = None
    fat_free_mass: Decimal | None = None
    fat_ratio: Decimal | None = None
    fat_mass: Decimal | None = None
    heart_rate: Decimal | None = None
    muscle_mass: Decimal | None = None
    water_mass: Decimal | None = None
    bone_mass: Decimal | None = None
    pulse_wave_velocity: Decimal | None = None
    visceral_fat: Decimal | None = None
    vascular_age: Decimal | None = None
    basal_metabolic_rate: Decimal | None = None

    def has_metrics(self) -> bool:
        return any(getattr(self, name) is not None for name in BODY_COMPOSITION_METRICS)

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "user_id": self.user_id,
            "date": self.date,
            "source": self.source.value,
        }
        for name in BODY_COMPOSITION_METRICS:
            row[name] = getattr(self, name)
        return row


@dataclass
class SyncResult:
    """Outcome of one sync invocation.

    ``last_sync_at`` is the wall-clock completion time, never a measurement
    timestamp.
    """

    weights_synced: int = 0
    body_compositions_synced: int = 0
    last_sync_at: datetime = field(default_factory=utc_now)

    @property
    def total_synced(self) -> int:
        return self.weights_synced + self.body_compositions_synced
