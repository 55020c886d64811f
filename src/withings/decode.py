"""Decode and classify Withings measurement groups.

Pure functions, no I/O.  Unrecognized type codes are skipped, never raised.

Classification rule for the unified sync: a group carrying any
body-composition type code becomes exactly one ``BodyCompositionRecord``
(its weight reading, if any, is kept as the ``weight`` sub-field).  Any
other group carrying a weight reading becomes exactly one ``WeightRecord``.
Groups matching neither produce nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable
from uuid import UUID

from src.withings.models import (
    BodyCompositionRecord,
    MeasurementGroup,
    RecordSource,
    WeightRecord,
)

logger = logging.getLogger("weighttrack.withings.decode")

WEIGHT_TYPE = 1

# Withings meastype → body_compositions column
MEASURE_TYPE_FIELDS: dict[int, str] = {
    1: "weight",
    5: "fat_free_mass",
    6: "fat_ratio",
    8: "fat_mass",
    11: "heart_rate",
    76: "muscle_mass",
    77: "water_mass",
    88: "bone_mass",
    91: "pulse_wave_velocity",
    122: "visceral_fat",
    155: "vascular_age",
    226: "basal_metabolic_rate",
}

# Presence of any of these makes the whole group a body-composition reading.
# Weight (1) and heart rate (11) alone do not.
BODY_COMPOSITION_TYPES: frozenset[int] = frozenset({5, 6, 8, 76, 77, 88, 91, 122, 155, 226})


@dataclass
class DecodedBatch:
    """Records produced from one fetch, partitioned by destination table."""

    weights: list[WeightRecord] = field(default_factory=list)
    body_compositions: list[BodyCompositionRecord] = field(default_factory=list)


def is_body_composition(group: MeasurementGroup) -> bool:
    return bool(group.type_codes() & BODY_COMPOSITION_TYPES)


def to_weight_record(
    user_id: UUID, group: MeasurementGroup, source: RecordSource = RecordSource.withings
) -> WeightRecord | None:
    """Build a WeightRecord from the group's first weight reading, if any."""
    measure = group.first(WEIGHT_TYPE)
    if measure is None:
        return None
    return WeightRecord(user_id=user_id, value=measure.value, date=group.captured_at, source=source)


def to_body_composition_record(
    user_id: UUID, group: MeasurementGroup, source: RecordSource = RecordSource.withings
) -> BodyCompositionRecord | None:
    """Build a BodyCompositionRecord, or None when no metric is populated."""
    record = BodyCompositionRecord(user_id=user_id, date=group.captured_at, source=source)
    for measure in group.measures:
        column = MEASURE_TYPE_FIELDS.get(measure.type_code)
        if column is None:
            logger.debug(
                "Ignoring unknown meastype %d in group %d", measure.type_code, group.group_id
            )
            continue
        setattr(record, column, measure.value)
    if not record.has_metrics():
        return None
    return record


def classify_groups(user_id: UUID, groups: Iterable[MeasurementGroup]) -> DecodedBatch:
    """Partition groups into weight-only and body-composition records."""
    batch = DecodedBatch()
    for group in groups:
        if is_body_composition(group):
            composition = to_body_composition_record(user_id, group)
            if composition is not None:
                batch.body_compositions.append(composition)
            continue
        weight = to_weight_record(user_id, group)
        if weight is not None:
            batch.weights.append(weight)
    return batch


def decode_weights(user_id: UUID, groups: Iterable[MeasurementGroup]) -> list[WeightRecord]:
    """Weight-only variant: every group with a weight reading yields a WeightRecord."""
    records = (to_weight_record(user_id, group) for group in groups)
    return [r for r in records if r is not None]


def decode_body_compositions(
    user_id: UUID, groups: Iterable[MeasurementGroup]
) -> list[BodyCompositionRecord]:
    """Body-composition variant: every group yields a record unless it decodes empty."""
    records = (to_body_composition_record(user_id, group) for group in groups)
    return [r for r in records if r is not None]
