"""Ingestion pipeline: raw samples in, canonical rows out.

Per call:

1. Normalize every sample (NotMapped and ConversionError are logged and
   skipped; the batch continues).
2. Drop exact in-batch duplicates by identity key.
3. Upsert with conflict-ignore semantics.
4. Run one canonicalization check per producer, scoped to the metric types
   and time span that producer's samples touched.

Re-ingesting the same batch is harmless: the upsert inserts nothing and the
canonicalization check flips nothing.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Sequence

from healthcore.canonical.engine import CanonicalizationEngine
from healthcore.ingest.dedup import InMemoryDedupCache, event_key, measurement_key
from healthcore.metrics.normalizer import NotMapped, normalize_batch
from healthcore.metrics.registry import MetricRegistry, get_registry
from healthcore.models.records import HealthEvent, MeasurementRecord, RawMeasurement, ensure_utc
from healthcore.store.base import HealthStore

logger = logging.getLogger("healthcore.ingest")


@dataclass
class IngestResult:
    """Outcome of one ingestion call.

    Attributes:
        user_id:           Owner of the batch.
        received:          Samples handed in.
        normalized:        Samples that became canonical records.
        inserted:          Rows the store actually inserted.
        duplicates:        Records dropped in-batch or ignored by the store.
        not_mapped:        Samples whose producer field is unknown.
        conversion_errors: Messages for samples whose unit could not be converted.
        demoted:           Rows flipped to non-canonical, across all producers.
    """

    user_id: str
    received: int = 0
    normalized: int = 0
    inserted: int = 0
    duplicates: int = 0
    not_mapped: list[NotMapped] = field(default_factory=list)
    conversion_errors: list[str] = field(default_factory=list)
    demoted: int = 0

    @property
    def skipped(self) -> int:
        return len(self.not_mapped) + len(self.conversion_errors)


@dataclass
class EventIngestResult:
    user_id: str
    received: int = 0
    inserted: int = 0
    duplicates: int = 0


class IngestionPipeline:
    """Normalizes, persists and canonicalizes producer batches.

    Usage::

        pipeline = IngestionPipeline(store)
        result = await pipeline.ingest("u1", samples)
        result.inserted, result.demoted
    """

    def __init__(
        self,
        store: HealthStore,
        registry: MetricRegistry | None = None,
        canonicalizer: CanonicalizationEngine | None = None,
    ) -> None:
        self._store = store
        self._registry = registry or get_registry()
        self._canonicalizer = canonicalizer or CanonicalizationEngine(store, self._registry)

    async def ingest(self, user_id: str, samples: Iterable[RawMeasurement]) -> IngestResult:
        """Ingest one batch of raw samples for a user.

        Raises:
            StoreUnavailable:         The store failed; the batch is safe to resend.
            CanonicalizationConflict: The registry cannot classify a written metric.
        """
        samples = list(samples)
        result = IngestResult(user_id=user_id, received=len(samples))

        batch = normalize_batch(user_id, samples, self._registry)
        result.normalized = len(batch.records)
        result.not_mapped = list(batch.not_mapped)
        result.conversion_errors = [str(exc) for exc in batch.conversion_errors]

        unique = self._drop_duplicates(batch.records)
        if unique:
            result.inserted = await self._store.upsert_measurements(unique)
        result.duplicates = result.normalized - result.inserted

        for producer, records in self._by_producer(unique).items():
            outcome = await self._canonicalizer.run_canonicalization_check(
                user_id,
                producer,
                sorted({r.metric_type for r in records}),
                date_range=self._span(records),
            )
            result.demoted += outcome.updated_count

        logger.info(
            "Ingested batch for user %s: %d received, %d inserted, %d duplicate(s), %d skipped, %d demoted",
            user_id, result.received, result.inserted, result.duplicates, result.skipped, result.demoted,
        )
        return result

    async def ingest_events(self, user_id: str, events: Sequence[HealthEvent]) -> EventIngestResult:
        """Upsert events with conflict-ignore on (user_id, event_type, start_time).

        Events are never canonicalized.  Each event's ``user_id`` is forced to
        *user_id*.
        """
        result = EventIngestResult(user_id=user_id, received=len(events))
        cache = InMemoryDedupCache()
        unique: list[HealthEvent] = []
        for event in events:
            event = replace(event, user_id=user_id)
            key = event_key(event)
            if cache.is_seen(key):
                logger.debug("Skipping duplicate event in batch: %s", key)
                continue
            cache.mark_seen(key)
            unique.append(event)

        if unique:
            result.inserted = await self._store.upsert_events(unique)
        result.duplicates = result.received - result.inserted
        logger.info(
            "Ingested %d of %d event(s) for user %s",
            result.inserted, result.received, user_id,
        )
        return result

    # ------------------------------------------------------------------

    @staticmethod
    def _drop_duplicates(records: Iterable[MeasurementRecord]) -> list[MeasurementRecord]:
        cache = InMemoryDedupCache()
        unique: list[MeasurementRecord] = []
        for record in records:
            key = measurement_key(record)
            if cache.is_seen(key):
                logger.debug("Skipping duplicate sample in batch: %s", key)
                continue
            cache.mark_seen(key)
            unique.append(record)
        return unique

    @staticmethod
    def _by_producer(records: Iterable[MeasurementRecord]) -> dict[str, list[MeasurementRecord]]:
        groups: dict[str, list[MeasurementRecord]] = defaultdict(list)
        for record in records:
            groups[record.producer].append(record)
        return dict(groups)

    @staticmethod
    def _span(records: Sequence[MeasurementRecord]) -> tuple[datetime, datetime]:
        instants = [ensure_utc(r.recorded_at) for r in records]
        return min(instants), max(instants)
