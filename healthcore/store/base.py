"""Abstract store boundary consumed by the engines.

The canonicalization engine, query engine and ingestion pipeline only talk
to a ``HealthStore``.  Two implementations ship: ``PostgresHealthStore``
(asyncpg, production) and ``InMemoryHealthStore`` (tests, embedding).

Range semantics for every timestamp filter: ``start`` inclusive, ``end``
inclusive, either bound may be None (open).  ``end_exclusive`` is used
only by canonicalization, which works on whole hour buckets.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Sequence
from uuid import UUID

from healthcore.models.records import DailyAggregate, HealthEvent, MeasurementRecord


@dataclass(frozen=True)
class CanonicalCandidate:
    """The slice of a measurement row canonicalization needs to decide on it."""

    id: UUID
    metric_type: str
    recorded_at: datetime
    producer: str
    is_canonical: bool


@dataclass(frozen=True)
class MeasurementQuery:
    """Filter for measurement reads.

    Attributes:
        metric_type:           Restrict to one metric id.
        category:              Restrict to one category.
        start:                 Inclusive lower bound on recorded_at.
        end:                   Inclusive upper bound on recorded_at.
        include_non_canonical: Also return demoted rows (audit/debug only).
        limit:                 Maximum rows returned.
        newest_first:          Order by recorded_at descending instead of ascending.
    """

    metric_type: str | None = None
    category: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    include_non_canonical: bool = False
    limit: int | None = None
    newest_first: bool = False


class HealthStore(ABC):
    """Durable, transactional home of measurements, events and daily rows."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_measurements(self, records: Sequence[MeasurementRecord]) -> int:
        """Insert records, ignoring exact identity duplicates.

        Returns:
            Number of rows actually inserted.
        """

    @abstractmethod
    async def upsert_events(self, events: Sequence[HealthEvent]) -> int:
        """Insert events, ignoring duplicates on (user_id, event_type, start_time)."""

    @abstractmethod
    async def upsert_daily_aggregate(self, aggregate: DailyAggregate) -> None:
        """Insert or replace the row for (user_id, date)."""

    @abstractmethod
    async def mark_non_canonical(self, user_id: str, ids: Iterable[UUID]) -> int:
        """Flip ``is_canonical`` to false for the given ids in one statement.

        Only rows that are currently canonical are touched.

        Returns:
            Number of rows whose flag actually changed.
        """

    # ------------------------------------------------------------------
    # Canonicalization reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_canonicalization_candidates(
        self,
        user_id: str,
        metric_types: Sequence[str],
        start: datetime | None,
        end_exclusive: datetime | None,
        after: tuple[datetime, UUID] | None,
        limit: int,
    ) -> list[CanonicalCandidate]:
        """Return one keyset page ordered by ``(recorded_at, id)``.

        Args:
            after: The ``(recorded_at, id)`` of the last row of the previous
                   page, or None for the first page.
        """

    @abstractmethod
    async def has_native_measurement(
        self,
        user_id: str,
        metric_type: str,
        producers: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> bool:
        """True if any row from *producers* lies in ``[start, end]``."""

    @abstractmethod
    def canonicalization_lock(self, user_id: str) -> AbstractAsyncContextManager[None]:
        """Serialize canonicalization runs for one user."""

    # ------------------------------------------------------------------
    # Query reads
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_measurements(self, user_id: str, query: MeasurementQuery) -> list[MeasurementRecord]:
        ...

    @abstractmethod
    async def fetch_daily_aggregates(self, user_id: str, start: date, end: date) -> list[DailyAggregate]:
        """Rows with ``start <= date <= end`` in ascending date order."""

    @abstractmethod
    async def fetch_events(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        event_types: Sequence[str] | None = None,
    ) -> list[HealthEvent]:
        """Events whose start_time is in range, newest first."""

    @abstractmethod
    async def search_measurements(
        self,
        user_id: str,
        text: str,
        limit: int,
        include_non_canonical: bool = False,
    ) -> list[MeasurementRecord]:
        """Case-insensitive substring match on description, newest first."""

    @abstractmethod
    async def search_events(self, user_id: str, text: str, limit: int) -> list[HealthEvent]:
        """Case-insensitive substring match on title or description, newest first."""

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    @abstractmethod
    async def ping(self) -> None:
        """Round-trip to the backing store.

        Raises:
            StoreUnavailable: The store cannot be reached.
        """
