"""Canonicalization engine: native-priority dedup across producers.

Rule set:
    1. Each metric type is either contestable (a device-native store and a
       third party may both report it) or exclusive (third parties only).
    2. Contestable records are grouped by (metric_type, hour bucket).  If a
       group holds at least one native record, every non-native record in
       it is demoted (``is_canonical = False``).  Native records, and groups
       without a native record, are left alone.
    3. Exclusive metric types are never touched.
    4. The bucket is the UTC wall-clock hour containing ``recorded_at``:
       12:59 and 13:01 fall in different buckets.

Runs are scoped to the metric types an ingestion batch touched, read the
store in keyset pages, and write demotions in bounded bulk statements.  A
run only ever flips canonical rows to non-canonical, so repeating it with
no new data updates nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Sequence
from uuid import UUID

from healthcore.errors import CanonicalizationConflict
from healthcore.metrics.registry import CONTESTABLE, MetricRegistry, get_registry
from healthcore.models.records import ensure_utc
from healthcore.store.base import CanonicalCandidate, HealthStore

logger = logging.getLogger("healthcore.canonical")

BUCKET_WIDTH = timedelta(hours=1)
NATIVE_LOOKUP_WINDOW = timedelta(minutes=30)


def hour_bucket(instant: datetime) -> datetime:
    """Return the top of the UTC hour containing *instant*."""
    return ensure_utc(instant).replace(minute=0, second=0, microsecond=0)


def _bucket_bounds(date_range: tuple[date | datetime, date | datetime]) -> tuple[datetime, datetime]:
    """Widen an inclusive (start, end) range to whole hour buckets.

    Returns a half-open [start, end_exclusive) interval.  Plain dates cover
    whole UTC days.
    """
    lo, hi = date_range
    if isinstance(lo, datetime):
        start = hour_bucket(lo)
    else:
        start = datetime.combine(lo, time.min, tzinfo=timezone.utc)
    if isinstance(hi, datetime):
        end_exclusive = hour_bucket(hi) + BUCKET_WIDTH
    else:
        end_exclusive = datetime.combine(hi + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return start, end_exclusive


@dataclass
class CanonicalizationResult:
    """Outcome of one canonicalization run.

    Attributes:
        updated_count: Rows whose flag actually flipped to non-canonical.
        scanned:       Candidate rows read from the store.
        metric_types:  Contestable metric types the run covered.
    """

    updated_count: int
    scanned: int = 0
    metric_types: tuple[str, ...] = ()


def plan_demotions(rows: Iterable[CanonicalCandidate], registry: MetricRegistry) -> list[UUID]:
    """Return ids of rows that lose to a native record in their bucket.

    Pure: input order is preserved in the output.  Rows already
    non-canonical are skipped.

    Raises:
        CanonicalizationConflict: A row of an exclusive metric type shares a
            bucket with a native record, so the registry and the stored
            data disagree about who may report it.
    """
    rows = list(rows)
    native_groups: set[tuple[str, datetime]] = set()
    for row in rows:
        if registry.is_native(row.producer):
            native_groups.add((row.metric_type, hour_bucket(row.recorded_at)))

    demote: list[UUID] = []
    for row in rows:
        if not row.is_canonical or registry.is_native(row.producer):
            continue
        if (row.metric_type, hour_bucket(row.recorded_at)) not in native_groups:
            continue
        if registry.is_exclusive(row.metric_type):
            raise CanonicalizationConflict(
                f"Demotion plan would touch exclusive metric {row.metric_type!r} (record {row.id})"
            )
        demote.append(row.id)
    return demote


class CanonicalizationEngine:
    """Applies native-priority demotion against a HealthStore.

    Usage::

        engine = CanonicalizationEngine(store)
        result = await engine.run_canonicalization_check("u1", "Strava", ["steps"])
        result.updated_count   # rows demoted by this run
    """

    def __init__(
        self,
        store: HealthStore,
        registry: MetricRegistry | None = None,
        page_size: int = 1000,
        update_batch_size: int = 500,
    ) -> None:
        if page_size <= 0 or update_batch_size <= 0:
            raise ValueError("page_size and update_batch_size must be positive")
        self._store = store
        self._registry = registry or get_registry()
        self._page_size = page_size
        self._update_batch_size = update_batch_size

    def _contestable(self, metric_types_touched: Sequence[str]) -> list[str]:
        touched = list(dict.fromkeys(metric_types_touched))
        if not touched:
            return list(self._registry.contestable_metrics)
        # classify() raises CanonicalizationConflict for unregistered metrics
        return [m for m in touched if self._registry.classify(m) == CONTESTABLE]

    async def run_canonicalization_check(
        self,
        user_id: str,
        producer: str,
        metric_types_touched: Sequence[str],
        date_range: tuple[date | datetime, date | datetime] | None = None,
    ) -> CanonicalizationResult:
        """Demote redundant non-native records for one user.

        Args:
            user_id:              Owner of the records.
            producer:             Producer whose batch triggered the run.
            metric_types_touched: Metric ids the batch wrote; empty means
                                  every contestable metric type.
            date_range:           Optional (start, end); widened to whole
                                  hour buckets.  Dates cover whole days.

        Returns:
            CanonicalizationResult with the number of rows flipped.

        Raises:
            CanonicalizationConflict: A touched metric is not in the registry.
            StoreUnavailable:         The store failed; safe to retry.
        """
        metrics = self._contestable(metric_types_touched)
        if not metrics:
            logger.debug(
                "No contestable metrics touched by %s for user %s; nothing to do",
                producer, user_id,
            )
            return CanonicalizationResult(updated_count=0)

        start: datetime | None = None
        end_exclusive: datetime | None = None
        if date_range is not None:
            start, end_exclusive = _bucket_bounds(date_range)

        updated = 0
        scanned = 0
        async with self._store.canonicalization_lock(user_id):
            carry: list[CanonicalCandidate] = []
            after: tuple[datetime, UUID] | None = None
            while True:
                page = await self._store.fetch_canonicalization_candidates(
                    user_id, metrics, start, end_exclusive, after, self._page_size
                )
                scanned += len(page)
                exhausted = len(page) < self._page_size
                rows = carry + page
                if exhausted:
                    ready, carry = rows, []
                else:
                    # The last bucket may continue on the next page.
                    boundary = hour_bucket(page[-1].recorded_at)
                    ready = [r for r in rows if hour_bucket(r.recorded_at) < boundary]
                    carry = [r for r in rows if hour_bucket(r.recorded_at) >= boundary]
                    after = (page[-1].recorded_at, page[-1].id)

                updated += await self._apply(user_id, plan_demotions(ready, self._registry))
                if exhausted:
                    break

        logger.info(
            "Canonicalization for user %s after %s batch: %d row(s) scanned, %d demoted",
            user_id, producer, scanned, updated,
        )
        return CanonicalizationResult(updated_count=updated, scanned=scanned, metric_types=tuple(metrics))

    async def _apply(self, user_id: str, ids: list[UUID]) -> int:
        updated = 0
        for i in range(0, len(ids), self._update_batch_size):
            chunk = ids[i : i + self._update_batch_size]
            flipped = await self._store.mark_non_canonical(user_id, chunk)
            logger.debug("Demoted %d of %d id(s) for user %s", flipped, len(chunk), user_id)
            updated += flipped
        return updated

    async def has_native_data(self, user_id: str, metric_type: str, recorded_at: datetime) -> bool:
        """True if a native record for the metric lies within ±30 minutes.

        Always False for exclusive metric types.
        """
        if self._registry.is_exclusive(metric_type):
            return False
        instant = ensure_utc(recorded_at)
        return await self._store.has_native_measurement(
            user_id,
            metric_type,
            self._registry.native_producers,
            instant - NATIVE_LOOKUP_WINDOW,
            instant + NATIVE_LOOKUP_WINDOW,
        )
