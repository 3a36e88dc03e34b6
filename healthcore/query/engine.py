"""Read-side query engine over canonical health data.

Every operation is a pure read: nothing here writes to the store or touches
``is_canonical``.  Reads default to canonical rows only; the
``include_non_canonical`` flag exists for audit/debug callers.  Store
failures propagate as ``StoreUnavailable``, so an empty result always
means "no data".
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Sequence

from healthcore.errors import InvalidQueryError
from healthcore.metrics.registry import MetricRegistry, get_registry
from healthcore.models.records import DailyAggregate, HealthEvent, MeasurementRecord, ensure_utc
from healthcore.query.aggregation import Aggregation, TimeSeriesPoint, aggregate, parse_aggregation
from healthcore.store.base import HealthStore, MeasurementQuery

logger = logging.getLogger("healthcore.query")

DEFAULT_SEARCH_LIMIT = 50

# Daily-table fields averaged and summed by summary()
SUMMARY_AVERAGE_FIELDS = (
    "steps",
    "distance_km",
    "active_calories",
    "exercise_minutes",
    "avg_heart_rate",
    "resting_heart_rate",
    "heart_rate_variability",
    "sleep_hours",
    "calories_consumed",
    "protein_g",
    "carbs_g",
    "fat_g",
    "water_ml",
)
SUMMARY_TOTAL_FIELDS = (
    "steps",
    "distance_km",
    "active_calories",
    "exercise_minutes",
    "workout_count",
    "strength_sessions",
    "cardio_sessions",
)

# Finer buckets would collide on the per-date row key.
CORRELATION_AGGREGATIONS = (Aggregation.DAILY, Aggregation.WEEKLY, Aggregation.MONTHLY)


class SearchScope(str, Enum):
    ALL = "all"
    MEASUREMENTS = "measurements"
    EVENTS = "events"


@dataclass
class CorrelationRow:
    """One date with a value per metric that has data on it."""

    date: date
    values: dict[str, float] = field(default_factory=dict)


@dataclass
class SearchResults:
    query: str
    measurements: list[MeasurementRecord] = field(default_factory=list)
    events: list[HealthEvent] = field(default_factory=list)


@dataclass
class HealthSummary:
    """Snapshot of a period computed from its daily rows.

    Attributes:
        start:            First requested day.
        end:              Last requested day.
        days:             Days that actually have a daily row.
        requested_days:   Days in the requested range.
        averages:         Mean per field over days with a value (2 dp).
        totals:           Sum per field over days with a value (2 dp).
        events:           Event counts by event type.
        latest_weight_kg: Most recent non-null weight in the range.
    """

    start: date
    end: date
    days: int
    requested_days: int
    averages: dict[str, float] = field(default_factory=dict)
    totals: dict[str, float] = field(default_factory=dict)
    events: dict[str, int] = field(default_factory=dict)
    latest_weight_kg: float | None = None

    @property
    def coverage(self) -> float:
        """Share of requested days that have data (0.0–1.0)."""
        if self.requested_days <= 0:
            return 0.0
        return round(self.days / self.requested_days, 2)


# ---------------------------------------------------------------------------
# Range helpers
# ---------------------------------------------------------------------------


def _start_instant(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _end_instant(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def _as_day(value: date | datetime) -> date:
    return ensure_utc(value).date() if isinstance(value, datetime) else value


def _check_range(start: datetime | date, end: datetime | date) -> None:
    if _end_instant(end) < _start_instant(start):
        raise InvalidQueryError(f"end ({end}) is before start ({start})")


def _numeric_values(rows: Sequence[DailyAggregate], name: str) -> list[float]:
    values = []
    for row in rows:
        v = getattr(row, name)
        if v is None or (isinstance(v, float) and math.isnan(v)):
            continue
        values.append(v)
    return values


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class QueryEngine:
    """Time-series, correlation, daily, event, search, and summary reads."""

    def __init__(
        self,
        store: HealthStore,
        registry: MetricRegistry | None = None,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> None:
        self._store = store
        self._registry = registry or get_registry()
        self._search_limit = search_limit

    async def time_series(
        self,
        user_id: str,
        metric_type: str,
        start: datetime | date,
        end: datetime | date,
        aggregation: Aggregation | str | None = None,
        limit: int | None = None,
        include_non_canonical: bool = False,
    ) -> list[TimeSeriesPoint]:
        """Ordered (timestamp, value) points for one metric.

        With an aggregation, raw values falling in the same bucket are
        averaged.  ``limit`` caps the raw rows read (earliest first).  An
        empty range yields an empty list.

        Raises:
            UnknownMetricError: metric_type is not in the registry.
            InvalidQueryError:  bad range, aggregation or limit.
        """
        self._registry.metric(metric_type)
        agg = parse_aggregation(aggregation)
        _check_range(start, end)
        if limit is not None and limit <= 0:
            raise InvalidQueryError("limit must be positive")

        records = await self._store.fetch_measurements(
            user_id,
            MeasurementQuery(
                metric_type=metric_type,
                start=_start_instant(start),
                end=_end_instant(end),
                include_non_canonical=include_non_canonical,
                limit=limit,
            ),
        )
        points = aggregate(records, agg)
        logger.debug(
            "time_series %s for user %s: %d record(s) → %d point(s) [%s]",
            metric_type, user_id, len(records), len(points), agg.value,
        )
        return points

    async def correlation(
        self,
        user_id: str,
        metric_types: Sequence[str],
        start: datetime | date,
        end: datetime | date,
        aggregation: Aggregation | str = Aggregation.DAILY,
        include_non_canonical: bool = False,
    ) -> list[CorrelationRow]:
        """Align several metrics on a per-date key.

        A metric with no data on a date simply has no entry in that row's
        ``values``; nothing is zero-filled.
        """
        if not metric_types:
            raise InvalidQueryError("correlation needs at least one metric type")
        agg = parse_aggregation(aggregation)
        if agg not in CORRELATION_AGGREGATIONS:
            raise InvalidQueryError(
                f"correlation supports daily, weekly or monthly aggregation, not {agg.value!r}"
            )

        rows: dict[date, CorrelationRow] = {}
        for metric_type in dict.fromkeys(metric_types):
            points = await self.time_series(
                user_id, metric_type, start, end,
                aggregation=agg, include_non_canonical=include_non_canonical,
            )
            for point in points:
                day = point.timestamp.date()
                rows.setdefault(day, CorrelationRow(date=day)).values[metric_type] = point.value

        return [rows[day] for day in sorted(rows)]

    async def daily_metrics(self, user_id: str, start: date | datetime, end: date | datetime) -> list[DailyAggregate]:
        """Pre-aggregated daily rows, ascending by date; never recomputed."""
        _check_range(start, end)
        return await self._store.fetch_daily_aggregates(user_id, _as_day(start), _as_day(end))

    async def health_events(
        self,
        user_id: str,
        start: datetime | date,
        end: datetime | date,
        event_types: Sequence[str] | None = None,
    ) -> list[HealthEvent]:
        """Events starting in range, newest first."""
        _check_range(start, end)
        return await self._store.fetch_events(
            user_id, _start_instant(start), _end_instant(end), list(event_types) if event_types else None
        )

    async def search(
        self,
        user_id: str,
        query: str,
        scope: SearchScope | str = SearchScope.ALL,
        limit: int | None = None,
        include_non_canonical: bool = False,
    ) -> SearchResults:
        """Case-insensitive substring search over descriptions and titles.

        Measurements and events are returned as separate lists, each capped
        at ``limit`` (default 50).
        """
        text = (query or "").strip()
        if not text:
            raise InvalidQueryError("search text must not be blank")
        try:
            scope = SearchScope(scope)
        except ValueError:
            raise InvalidQueryError(f"Unsupported search scope {scope!r}") from None
        cap = limit if limit is not None else self._search_limit
        if cap <= 0:
            raise InvalidQueryError("limit must be positive")

        results = SearchResults(query=text)
        if scope in (SearchScope.ALL, SearchScope.MEASUREMENTS):
            results.measurements = await self._store.search_measurements(
                user_id, text, cap, include_non_canonical=include_non_canonical
            )
        if scope in (SearchScope.ALL, SearchScope.EVENTS):
            results.events = await self._store.search_events(user_id, text, cap)
        return results

    async def summary(self, user_id: str, start: date | datetime, end: date | datetime) -> HealthSummary:
        """Means, sums and event counts over a period's daily rows."""
        first, last = _as_day(start), _as_day(end)
        rows = await self.daily_metrics(user_id, first, last)
        events = await self.health_events(user_id, first, last)

        result = HealthSummary(
            start=first,
            end=last,
            days=len(rows),
            requested_days=(last - first).days + 1,
            events=dict(Counter(e.event_type for e in events)),
        )
        for name in SUMMARY_AVERAGE_FIELDS:
            values = _numeric_values(rows, name)
            if values:
                result.averages[name] = round(sum(values) / len(values), 2)
        for name in SUMMARY_TOTAL_FIELDS:
            values = _numeric_values(rows, name)
            if values:
                result.totals[name] = round(sum(values), 2)
        for row in reversed(rows):
            if row.weight_kg is not None:
                result.latest_weight_kg = row.weight_kg
                break

        if result.requested_days and result.days < result.requested_days:
            logger.debug(
                "Sparse summary for user %s: %d of %d day(s) have data",
                user_id, result.days, result.requested_days,
            )
        return result

    async def canonical_records(
        self,
        user_id: str,
        metric_type: str | None = None,
        category: str | None = None,
        start: datetime | date | None = None,
        end: datetime | date | None = None,
        limit: int | None = None,
    ) -> list[MeasurementRecord]:
        """Canonical measurements, newest first, optionally filtered."""
        if metric_type is not None:
            self._registry.metric(metric_type)
        if category is not None and category not in self._registry.categories:
            raise InvalidQueryError(f"Unknown category {category!r}")
        if start is not None and end is not None:
            _check_range(start, end)
        return await self._store.fetch_measurements(
            user_id,
            MeasurementQuery(
                metric_type=metric_type,
                category=category,
                start=_start_instant(start) if start is not None else None,
                end=_end_instant(end) if end is not None else None,
                limit=limit,
                newest_first=True,
            ),
        )
