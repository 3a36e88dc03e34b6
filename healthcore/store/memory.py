"""In-process HealthStore used by tests and single-process embedding."""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import date, datetime
from typing import AsyncIterator, Iterable, Sequence
from uuid import UUID, uuid4

from healthcore.models.records import DailyAggregate, HealthEvent, MeasurementRecord, ensure_utc
from healthcore.store.base import CanonicalCandidate, HealthStore, MeasurementQuery

logger = logging.getLogger("healthcore.store.memory")


def _contains(haystack: str | None, needle: str) -> bool:
    return haystack is not None and needle in haystack.lower()


class InMemoryHealthStore(HealthStore):
    """Dictionary-backed store with the same semantics as the Postgres one.

    Reads return copies, so callers can never mutate stored rows.
    """

    def __init__(self) -> None:
        self._measurements: dict[tuple, MeasurementRecord] = {}
        self._events: dict[tuple, HealthEvent] = {}
        self._daily: dict[tuple[str, date], DailyAggregate] = {}
        # Entries vanish once no run holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self.update_statements = 0  # bulk UPDATEs issued, for batching assertions

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_measurements(self, records: Sequence[MeasurementRecord]) -> int:
        inserted = 0
        for record in records:
            key = record.identity
            if key in self._measurements:
                continue
            self._measurements[key] = replace(
                record, id=record.id or uuid4(), recorded_at=ensure_utc(record.recorded_at)
            )
            inserted += 1
        return inserted

    async def upsert_events(self, events: Sequence[HealthEvent]) -> int:
        inserted = 0
        for event in events:
            key = event.identity
            if key in self._events:
                continue
            self._events[key] = replace(
                event,
                id=event.id or uuid4(),
                start_time=ensure_utc(event.start_time),
                end_time=ensure_utc(event.end_time) if event.end_time else None,
            )
            inserted += 1
        return inserted

    async def upsert_daily_aggregate(self, aggregate: DailyAggregate) -> None:
        self._daily[(aggregate.user_id, aggregate.date)] = replace(aggregate)

    async def mark_non_canonical(self, user_id: str, ids: Iterable[UUID]) -> int:
        wanted = set(ids)
        if not wanted:
            return 0
        self.update_statements += 1
        changed = 0
        for record in self._measurements.values():
            if record.user_id == user_id and record.id in wanted and record.is_canonical:
                record.is_canonical = False
                changed += 1
        return changed

    # ------------------------------------------------------------------
    # Canonicalization reads
    # ------------------------------------------------------------------

    async def fetch_canonicalization_candidates(
        self,
        user_id: str,
        metric_types: Sequence[str],
        start: datetime | None,
        end_exclusive: datetime | None,
        after: tuple[datetime, UUID] | None,
        limit: int,
    ) -> list[CanonicalCandidate]:
        wanted = set(metric_types)
        rows = [
            r for r in self._measurements.values()
            if r.user_id == user_id
            and r.metric_type in wanted
            and (start is None or r.recorded_at >= start)
            and (end_exclusive is None or r.recorded_at < end_exclusive)
        ]
        rows.sort(key=lambda r: (r.recorded_at, str(r.id)))
        if after is not None:
            cursor = (after[0], str(after[1]))
            rows = [r for r in rows if (r.recorded_at, str(r.id)) > cursor]
        return [
            CanonicalCandidate(
                id=r.id,
                metric_type=r.metric_type,
                recorded_at=r.recorded_at,
                producer=r.producer,
                is_canonical=r.is_canonical,
            )
            for r in rows[:limit]
        ]

    async def has_native_measurement(
        self,
        user_id: str,
        metric_type: str,
        producers: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> bool:
        native = set(producers)
        return any(
            r.user_id == user_id
            and r.metric_type == metric_type
            and r.producer in native
            and start <= r.recorded_at <= end
            for r in self._measurements.values()
        )

    @asynccontextmanager
    async def canonicalization_lock(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        async with lock:
            yield

    # ------------------------------------------------------------------
    # Query reads
    # ------------------------------------------------------------------

    async def fetch_measurements(self, user_id: str, query: MeasurementQuery) -> list[MeasurementRecord]:
        start = ensure_utc(query.start) if query.start else None
        end = ensure_utc(query.end) if query.end else None
        rows = [
            r for r in self._measurements.values()
            if r.user_id == user_id
            and (query.include_non_canonical or r.is_canonical)
            and (query.metric_type is None or r.metric_type == query.metric_type)
            and (query.category is None or r.category == query.category)
            and (start is None or r.recorded_at >= start)
            and (end is None or r.recorded_at <= end)
        ]
        rows.sort(key=lambda r: (r.recorded_at, str(r.id)), reverse=query.newest_first)
        if query.limit is not None:
            rows = rows[: query.limit]
        return [replace(r) for r in rows]

    async def fetch_daily_aggregates(self, user_id: str, start: date, end: date) -> list[DailyAggregate]:
        rows = [
            agg for (uid, day), agg in self._daily.items()
            if uid == user_id and start <= day <= end
        ]
        rows.sort(key=lambda a: a.date)
        return [replace(a) for a in rows]

    async def fetch_events(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        event_types: Sequence[str] | None = None,
    ) -> list[HealthEvent]:
        start, end = ensure_utc(start), ensure_utc(end)
        rows = [
            e for e in self._events.values()
            if e.user_id == user_id
            and start <= e.start_time <= end
            and (not event_types or e.event_type in event_types)
        ]
        rows.sort(key=lambda e: e.start_time, reverse=True)
        return [replace(e) for e in rows]

    async def search_measurements(
        self,
        user_id: str,
        text: str,
        limit: int,
        include_non_canonical: bool = False,
    ) -> list[MeasurementRecord]:
        needle = text.lower()
        rows = [
            r for r in self._measurements.values()
            if r.user_id == user_id
            and (include_non_canonical or r.is_canonical)
            and _contains(r.description, needle)
        ]
        rows.sort(key=lambda r: r.recorded_at, reverse=True)
        return [replace(r) for r in rows[:limit]]

    async def search_events(self, user_id: str, text: str, limit: int) -> list[HealthEvent]:
        needle = text.lower()
        rows = [
            e for e in self._events.values()
            if e.user_id == user_id
            and (_contains(e.title, needle) or _contains(e.description, needle))
        ]
        rows.sort(key=lambda e: e.start_time, reverse=True)
        return [replace(e) for e in rows[:limit]]

    async def ping(self) -> None:
        return None
