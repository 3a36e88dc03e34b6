"""In-batch deduplication for ingestion.

The store's unique constraints are the authoritative dedup mechanism:

    health_measurements: (user_id, metric_type, recorded_at, producer)
    health_events:       (user_id, event_type, start_time)

Dropping exact duplicates before the upsert keeps a batch from sending the
same row twice and makes the duplicate count visible to the caller.
"""

from __future__ import annotations

import logging

from healthcore.models.records import HealthEvent, MeasurementRecord, ensure_utc

logger = logging.getLogger("healthcore.ingest.dedup")


def measurement_key(record: MeasurementRecord) -> str:
    """Dedup key matching the measurement identity constraint.

    Returns:
        Pipe-separated key; the instant is rendered in UTC ISO format.
    """
    recorded_at = ensure_utc(record.recorded_at).isoformat()
    return f"{record.user_id}|{record.metric_type}|{recorded_at}|{record.producer}"


def event_key(event: HealthEvent) -> str:
    """Dedup key matching the event identity constraint."""
    return f"{event.user_id}|{event.event_type}|{ensure_utc(event.start_time).isoformat()}"


class InMemoryDedupCache:
    """Set of keys seen during one ingestion call.

    Usage::

        cache = InMemoryDedupCache()
        if cache.is_seen(key):
            logger.debug("Skipping duplicate: %s", key)
        else:
            cache.mark_seen(key)
    """

    def __init__(self) -> None:
        self._seen: set[str] = set()

    def is_seen(self, key: str) -> bool:
        return key in self._seen

    def mark_seen(self, key: str) -> None:
        self._seen.add(key)

    def clear(self) -> None:
        self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)
