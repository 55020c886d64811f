"""Incremental Withings measurement sync.

Workflow for one user (strictly sequential):
1. Load the credential; fail with NotLinkedError if no token pair is on file
2. Refresh the access token if it has expired (RefreshFailedError on failure)
3. Derive the fetch window from the newest persisted row (the watermark)
4. Short-circuit with zero counts if the window is empty
5. Fetch measurement groups for the window
6. Decode and classify groups into weight / body-composition records
7. Write each batch with skip-on-duplicate semantics
8. Report counts and the wall-clock completion time

The watermark is always re-derived from persisted rows, so nothing is
tracked between calls and an interrupted sync can simply be re-run.

Three variants share this workflow and differ in meastypes, watermark
tables and classification:

    unified          — weights + body_compositions, split by group content
    weights          — weights only, every group with a weight reading
    body_composition — body_compositions only, every non-empty group
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence
from uuid import UUID

from src.withings.client import WithingsClient
from src.withings.config_loader import SyncConfig, get_sync_config
from src.withings.decode import (
    DecodedBatch,
    classify_groups,
    decode_body_compositions,
    decode_weights,
)
from src.withings.models import (
    BODY_COMPOSITIONS_TABLE,
    WEIGHTS_TABLE,
    MeasurementGroup,
    RecordSource,
    SyncResult,
    from_epoch,
    to_epoch,
    utc_now,
)
from src.withings.sync.dedup import unique_by_instant
from src.withings.sync.store import SyncStore
from src.withings.tokens import TokenManager

logger = logging.getLogger("weighttrack.withings.sync")

UNIFIED = "unified"
WEIGHTS = "weights"
BODY_COMPOSITION = "body_composition"


class SyncService:
    """Sync Withings measurements into the weights / body_compositions tables.

    Store and client are injected; the service keeps no per-user state
    between calls, so one instance can serve concurrent syncs for
    different users.

    Usage::

        service = SyncService(client=WithingsClient(...), store=PostgresSyncStore(pool))
        result = await service.sync_all(user_id)
    """

    def __init__(
        self,
        client: WithingsClient,
        store: SyncStore,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config or get_sync_config()
        self._clock = clock
        self.tokens = TokenManager(client, store, clock=clock)

    # ------------------------------------------------------------------
    # Public variants
    # ------------------------------------------------------------------

    async def sync_all(self, user_id: UUID) -> SyncResult:
        """Unified sync into both destination tables."""
        return await self._run(user_id, UNIFIED)

    async def sync_weights(self, user_id: UUID) -> SyncResult:
        """Weight-only sync into the weights table."""
        return await self._run(user_id, WEIGHTS)

    async def sync_body_composition(self, user_id: UUID) -> SyncResult:
        """Body-composition-only sync into the body_compositions table."""
        return await self._run(user_id, BODY_COMPOSITION)

    # ------------------------------------------------------------------
    # Window
    # ------------------------------------------------------------------

    async def watermark(self, user_id: UUID, variant: str = UNIFIED) -> datetime | None:
        """Return the newest already-synced timestamp relevant to a variant."""
        candidates: list[datetime | None] = []
        if variant in (UNIFIED, WEIGHTS):
            candidates.append(
                await self._store.latest_record_date(
                    user_id, WEIGHTS_TABLE, source=RecordSource.withings.value
                )
            )
        if variant in (UNIFIED, BODY_COMPOSITION):
            candidates.append(
                await self._store.latest_record_date(user_id, BODY_COMPOSITIONS_TABLE)
            )
        known = [c for c in candidates if c is not None]
        return max(known) if known else None

    async def compute_window(
        self, user_id: UUID, variant: str = UNIFIED, now: datetime | None = None
    ) -> tuple[int, int]:
        """Return the ``(start, end)`` fetch window in Unix seconds.

        start is one second after the watermark, or ``now - lookback_days``
        when nothing has been synced yet; end is now.
        """
        now = now or self._clock()
        last = await self.watermark(user_id, variant)
        if last is not None:
            start = to_epoch(last) + 1
        else:
            start = to_epoch(now - timedelta(days=self._config.lookback_days))
        return start, to_epoch(now)

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    async def _run(self, user_id: UUID, variant: str) -> SyncResult:
        credential = await self.tokens.load_linked(user_id)
        access_token = await self.tokens.ensure_valid(user_id, credential)

        start, end = await self.compute_window(user_id, variant)
        if start > end:
            logger.info(
                "Withings %s sync for user %s: empty window (start=%d > end=%d), skipping fetch",
                variant, user_id, start, end,
            )
            return SyncResult(last_sync_at=self._clock())

        logger.info(
            "Withings %s sync for user %s: window %s → %s",
            variant, user_id,
            from_epoch(start).isoformat(), from_epoch(end).isoformat(),
        )
        response = await self._client.get_measurements(
            access_token,
            start=start,
            end=end,
            meastypes=self._config.meastypes_param(variant),
            category=self._config.measure_category,
        )

        batch = self._decode(user_id, variant, response.groups)
        weights_synced = await self._write(WEIGHTS_TABLE, batch.weights)
        compositions_synced = await self._write(BODY_COMPOSITIONS_TABLE, batch.body_compositions)

        result = SyncResult(
            weights_synced=weights_synced,
            body_compositions_synced=compositions_synced,
            last_sync_at=self._clock(),
        )
        logger.info(
            "Withings %s sync complete for user %s: %d groups → %d weights, %d body compositions",
            variant, user_id, len(response.groups),
            result.weights_synced, result.body_compositions_synced,
        )
        return result

    @staticmethod
    def _decode(user_id: UUID, variant: str, groups: Sequence[MeasurementGroup]) -> DecodedBatch:
        if variant == WEIGHTS:
            batch = DecodedBatch(weights=decode_weights(user_id, groups))
        elif variant == BODY_COMPOSITION:
            batch = DecodedBatch(body_compositions=decode_body_compositions(user_id, groups))
        else:
            batch = classify_groups(user_id, groups)
        batch.weights = unique_by_instant(batch.weights)
        batch.body_compositions = unique_by_instant(batch.body_compositions)
        return batch

    async def _write(self, table: str, records: Sequence[Any]) -> int:
        if not records:
            return 0
        inserted = await self._store.insert_skip_duplicates(table, [r.to_row() for r in records])
        logger.debug("Inserted %d of %d rows into %s", inserted, len(records), table)
        return inserted
