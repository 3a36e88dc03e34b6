"""asyncpg-backed HealthStore.

Every driver failure is logged and re-raised as ``StoreUnavailable`` so
callers never mistake "couldn't check" for "no data".  Canonicalization
runs are serialized per user with a transaction-level advisory lock keyed
on ``hashtextextended(user_id, 0)``, taken on the connection the run uses.
"""

from __future__ import annotations

import contextvars
import logging
from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import date, datetime
from typing import Any, AsyncIterator, Iterable, Sequence
from uuid import UUID

import asyncpg

from healthcore.errors import StoreUnavailable
from healthcore.models.records import DailyAggregate, HealthEvent, MeasurementRecord, ensure_utc
from healthcore.services.database import get_connection, get_pool
from healthcore.store.base import CanonicalCandidate, HealthStore, MeasurementQuery
from healthcore.store.sql import build_upsert_query, escape_like, parse_row_count

logger = logging.getLogger("healthcore.store.postgres")

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

# (user_id, connection) held by the current task's canonicalization_lock
_locked_connection: contextvars.ContextVar[tuple[str, asyncpg.Connection] | None] = contextvars.ContextVar(
    "healthcore_locked_connection", default=None
)

MEASUREMENT_COLUMNS = [
    "user_id", "metric_type", "category", "value", "unit", "recorded_at", "producer",
    "source_device", "quality_score", "is_canonical", "is_aggregated", "description", "metadata",
]
EVENT_COLUMNS = [
    "user_id", "event_type", "start_time", "end_time", "duration_seconds", "title",
    "description", "metrics", "producer", "source_device", "location", "quality_score",
]
DAILY_COLUMNS = [f.name for f in fields(DailyAggregate)]

_INSERT_MEASUREMENT = build_upsert_query(
    "health_measurements",
    MEASUREMENT_COLUMNS,
    ["user_id", "metric_type", "recorded_at", "producer"],
    update_columns=[],
    returning="id",
)
_INSERT_EVENT = build_upsert_query(
    "health_events",
    EVENT_COLUMNS,
    ["user_id", "event_type", "start_time"],
    update_columns=[],
    returning="id",
)
_UPSERT_DAILY = build_upsert_query("health_daily_metrics", DAILY_COLUMNS, ["user_id", "date"])

_MEASUREMENT_SELECT = (
    "SELECT id, " + ", ".join(MEASUREMENT_COLUMNS) + " FROM health_measurements"
)
_EVENT_SELECT = "SELECT id, " + ", ".join(EVENT_COLUMNS) + " FROM health_events"


def _measurement_from_row(row: asyncpg.Record) -> MeasurementRecord:
    return MeasurementRecord(
        id=row["id"],
        user_id=row["user_id"],
        metric_type=row["metric_type"],
        category=row["category"],
        value=row["value"],
        unit=row["unit"],
        recorded_at=row["recorded_at"],
        producer=row["producer"],
        source_device=row["source_device"],
        quality_score=row["quality_score"],
        is_canonical=row["is_canonical"],
        is_aggregated=row["is_aggregated"],
        description=row["description"],
        metadata=row["metadata"] or {},
    )


def _event_from_row(row: asyncpg.Record) -> HealthEvent:
    return HealthEvent(
        id=row["id"],
        user_id=row["user_id"],
        event_type=row["event_type"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration_seconds=row["duration_seconds"],
        title=row["title"],
        description=row["description"],
        metrics=row["metrics"] or {},
        producer=row["producer"],
        source_device=row["source_device"],
        location=row["location"],
        quality_score=row["quality_score"],
    )


class PostgresHealthStore(HealthStore):
    """HealthStore over the module-level asyncpg pool (or an explicit one)."""

    def __init__(self, pool: asyncpg.Pool | None = None) -> None:
        self._explicit_pool = pool

    def _pool(self) -> asyncpg.Pool:
        if self._explicit_pool is not None:
            return self._explicit_pool
        try:
            return get_pool()
        except RuntimeError as exc:
            raise StoreUnavailable(str(exc)) from exc

    @asynccontextmanager
    async def _connection(self, user_id: str, operation: str) -> AsyncIterator[asyncpg.Connection]:
        locked = _locked_connection.get()
        if locked is not None and locked[0] == user_id:
            # Inside canonicalization_lock: reuse its connection and transaction.
            try:
                yield locked[1]
            except _DRIVER_ERRORS as exc:
                logger.error("Store operation '%s' failed for user %s: %s", operation, user_id, exc)
                raise StoreUnavailable(f"{operation} failed: {exc}") from exc
            return

        pool = self._pool()
        try:
            async with get_connection(user_id=user_id, pool=pool) as conn:
                yield conn
        except _DRIVER_ERRORS as exc:
            logger.error("Store operation '%s' failed for user %s: %s", operation, user_id, exc)
            raise StoreUnavailable(f"{operation} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_measurements(self, records: Sequence[MeasurementRecord]) -> int:
        if not records:
            return 0
        inserted = 0
        async with self._connection(records[0].user_id, "upsert measurements") as conn:
            for r in records:
                new_id = await conn.fetchval(
                    _INSERT_MEASUREMENT,
                    r.user_id, r.metric_type, r.category, r.value, r.unit,
                    ensure_utc(r.recorded_at), r.producer, r.source_device, r.quality_score,
                    r.is_canonical, r.is_aggregated, r.description, r.metadata,
                )
                if new_id is not None:
                    inserted += 1
        return inserted

    async def upsert_events(self, events: Sequence[HealthEvent]) -> int:
        if not events:
            return 0
        inserted = 0
        async with self._connection(events[0].user_id, "upsert events") as conn:
            for e in events:
                new_id = await conn.fetchval(
                    _INSERT_EVENT,
                    e.user_id, e.event_type, ensure_utc(e.start_time),
                    ensure_utc(e.end_time) if e.end_time else None,
                    e.duration_seconds, e.title, e.description, e.metrics,
                    e.producer, e.source_device, e.location, e.quality_score,
                )
                if new_id is not None:
                    inserted += 1
        return inserted

    async def upsert_daily_aggregate(self, aggregate: DailyAggregate) -> None:
        values = [getattr(aggregate, name) for name in DAILY_COLUMNS]
        async with self._connection(aggregate.user_id, "upsert daily aggregate") as conn:
            await conn.execute(_UPSERT_DAILY, *values)

    async def mark_non_canonical(self, user_id: str, ids: Iterable[UUID]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        async with self._connection(user_id, "mark non-canonical") as conn:
            status = await conn.execute(
                """
                UPDATE health_measurements
                SET is_canonical = FALSE, updated_at = NOW()
                WHERE user_id = $1 AND id = ANY($2::uuid[]) AND is_canonical
                """,
                user_id,
                id_list,
            )
        return parse_row_count(status)

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
        after_at, after_id = after if after else (None, None)
        async with self._connection(user_id, "fetch canonicalization candidates") as conn:
            rows = await conn.fetch(
                """
                SELECT id, metric_type, recorded_at, producer, is_canonical
                FROM health_measurements
                WHERE user_id = $1
                  AND metric_type = ANY($2::text[])
                  AND ($3::timestamptz IS NULL OR recorded_at >= $3::timestamptz)
                  AND ($4::timestamptz IS NULL OR recorded_at < $4::timestamptz)
                  AND ($5::timestamptz IS NULL OR (recorded_at, id) > ($5::timestamptz, $6::uuid))
                ORDER BY recorded_at, id
                LIMIT $7
                """,
                user_id, list(metric_types), start, end_exclusive, after_at, after_id, limit,
            )
        return [
            CanonicalCandidate(
                id=row["id"],
                metric_type=row["metric_type"],
                recorded_at=row["recorded_at"],
                producer=row["producer"],
                is_canonical=row["is_canonical"],
            )
            for row in rows
        ]

    async def has_native_measurement(
        self,
        user_id: str,
        metric_type: str,
        producers: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> bool:
        async with self._connection(user_id, "check native data") as conn:
            return bool(
                await conn.fetchval(
                    """
                    SELECT EXISTS (
                        SELECT 1 FROM health_measurements
                        WHERE user_id = $1 AND metric_type = $2
                          AND producer = ANY($3::text[])
                          AND recorded_at BETWEEN $4 AND $5
                    )
                    """,
                    user_id, metric_type, list(producers), start, end,
                )
            )

    @asynccontextmanager
    async def canonicalization_lock(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's advisory lock on one pooled connection.

        The lock is transaction-scoped and every store call for *user_id*
        made inside the block runs on the same connection, so a run needs
        exactly one pool slot.  Demotions commit together when the block
        exits and roll back if it raises.
        """
        pool = self._pool()
        try:
            async with get_connection(user_id=user_id, pool=pool) as conn:
                await conn.execute("SELECT pg_advisory_xact_lock(hashtextextended($1, 0))", user_id)
                token = _locked_connection.set((user_id, conn))
                try:
                    yield
                finally:
                    _locked_connection.reset(token)
        except _DRIVER_ERRORS as exc:
            logger.error("Canonicalization lock failed for user %s: %s", user_id, exc)
            raise StoreUnavailable(f"canonicalization lock failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Query reads
    # ------------------------------------------------------------------

    async def fetch_measurements(self, user_id: str, query: MeasurementQuery) -> list[MeasurementRecord]:
        clauses = ["user_id = $1"]
        args: list[Any] = [user_id]

        def _add(sql: str, value: Any) -> None:
            args.append(value)
            clauses.append(sql.format(n=len(args)))

        if not query.include_non_canonical:
            clauses.append("is_canonical")
        if query.metric_type is not None:
            _add("metric_type = ${n}", query.metric_type)
        if query.category is not None:
            _add("category = ${n}", query.category)
        if query.start is not None:
            _add("recorded_at >= ${n}", ensure_utc(query.start))
        if query.end is not None:
            _add("recorded_at <= ${n}", ensure_utc(query.end))

        order = "DESC" if query.newest_first else "ASC"
        sql = f"{_MEASUREMENT_SELECT} WHERE {' AND '.join(clauses)} ORDER BY recorded_at {order}, id {order}"
        if query.limit is not None:
            args.append(query.limit)
            sql += f" LIMIT ${len(args)}"

        async with self._connection(user_id, "fetch measurements") as conn:
            rows = await conn.fetch(sql, *args)
        return [_measurement_from_row(row) for row in rows]

    async def fetch_daily_aggregates(self, user_id: str, start: date, end: date) -> list[DailyAggregate]:
        async with self._connection(user_id, "fetch daily aggregates") as conn:
            rows = await conn.fetch(
                f"SELECT {', '.join(DAILY_COLUMNS)} FROM health_daily_metrics "
                "WHERE user_id = $1 AND date >= $2 AND date <= $3 ORDER BY date ASC",
                user_id, start, end,
            )
        return [
            DailyAggregate(**{name: row[name] for name in DAILY_COLUMNS}) for row in rows
        ]

    async def fetch_events(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        event_types: Sequence[str] | None = None,
    ) -> list[HealthEvent]:
        sql = f"{_EVENT_SELECT} WHERE user_id = $1 AND start_time >= $2 AND start_time <= $3"
        args: list[Any] = [user_id, ensure_utc(start), ensure_utc(end)]
        if event_types:
            sql += " AND event_type = ANY($4::text[])"
            args.append(list(event_types))
        sql += " ORDER BY start_time DESC"
        async with self._connection(user_id, "fetch events") as conn:
            rows = await conn.fetch(sql, *args)
        return [_event_from_row(row) for row in rows]

    async def search_measurements(
        self,
        user_id: str,
        text: str,
        limit: int,
        include_non_canonical: bool = False,
    ) -> list[MeasurementRecord]:
        canonical = "" if include_non_canonical else " AND is_canonical"
        async with self._connection(user_id, "search measurements") as conn:
            rows = await conn.fetch(
                f"{_MEASUREMENT_SELECT} WHERE user_id = $1{canonical} "
                "AND description ILIKE $2 ESCAPE '\\' "
                "ORDER BY recorded_at DESC LIMIT $3",
                user_id, f"%{escape_like(text)}%", limit,
            )
        return [_measurement_from_row(row) for row in rows]

    async def search_events(self, user_id: str, text: str, limit: int) -> list[HealthEvent]:
        async with self._connection(user_id, "search events") as conn:
            rows = await conn.fetch(
                f"{_EVENT_SELECT} WHERE user_id = $1 "
                "AND (title ILIKE $2 ESCAPE '\\' OR description ILIKE $2 ESCAPE '\\') "
                "ORDER BY start_time DESC LIMIT $3",
                user_id, f"%{escape_like(text)}%", limit,
            )
        return [_event_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def ping(self) -> None:
        pool = self._pool()
        try:
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except _DRIVER_ERRORS as exc:
            raise StoreUnavailable(f"ping failed: {exc}") from exc
