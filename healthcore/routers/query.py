"""Read-only query endpoints over canonical data."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Query

from healthcore.dependencies import Queries, Registry
from healthcore.models.api import (
    CorrelationResponse,
    CorrelationRowRead,
    DailyAggregateRead,
    HealthEventRead,
    MeasurementRead,
    SearchResponse,
    SummaryRead,
    TimeSeriesPointRead,
    TimeSeriesResponse,
)
from healthcore.query.aggregation import Aggregation, parse_aggregation
from healthcore.query.engine import SearchScope

router = APIRouter(prefix="/users/{user_id}", tags=["query"])


@router.get("/metrics/{metric_type}/series", response_model=TimeSeriesResponse)
async def time_series(
    user_id: str,
    metric_type: str,
    queries: Queries,
    registry: Registry,
    start: date = Query(...),
    end: date = Query(...),
    aggregation: str | None = Query(default=None, description="hourly, daily, weekly or monthly"),
    limit: int | None = Query(default=None, ge=1, le=100000),
    include_non_canonical: bool = False,
) -> Any:
    metric = registry.metric(metric_type)
    agg = parse_aggregation(aggregation)
    points = await queries.time_series(
        user_id, metric_type, start, end,
        aggregation=agg, limit=limit, include_non_canonical=include_non_canonical,
    )
    return TimeSeriesResponse(
        metric_type=metric_type,
        unit=metric.unit,
        aggregation=agg.value,
        points=[TimeSeriesPointRead.model_validate(p) for p in points],
    )


@router.get("/correlation", response_model=CorrelationResponse)
async def correlation(
    user_id: str,
    queries: Queries,
    metric: list[str] = Query(..., description="Repeat once per metric type"),
    start: date = Query(...),
    end: date = Query(...),
    aggregation: str = Query(default=Aggregation.DAILY.value),
    include_non_canonical: bool = False,
) -> Any:
    rows = await queries.correlation(
        user_id, metric, start, end,
        aggregation=aggregation, include_non_canonical=include_non_canonical,
    )
    return CorrelationResponse(
        metric_types=list(dict.fromkeys(metric)),
        aggregation=parse_aggregation(aggregation).value,
        rows=[CorrelationRowRead.model_validate(r) for r in rows],
    )


@router.get("/daily", response_model=list[DailyAggregateRead])
async def daily_metrics(user_id: str, queries: Queries, start: date = Query(...), end: date = Query(...)) -> Any:
    rows = await queries.daily_metrics(user_id, start, end)
    return [DailyAggregateRead.model_validate(r) for r in rows]


@router.get("/events", response_model=list[HealthEventRead])
async def health_events(
    user_id: str,
    queries: Queries,
    start: date = Query(...),
    end: date = Query(...),
    event_type: list[str] | None = Query(default=None),
) -> Any:
    events = await queries.health_events(user_id, start, end, event_type)
    return [HealthEventRead.model_validate(e) for e in events]


@router.get("/search", response_model=SearchResponse)
async def search(
    user_id: str,
    queries: Queries,
    q: str = Query(..., description="Case-insensitive substring"),
    scope: SearchScope = SearchScope.ALL,
    limit: int | None = Query(default=None, ge=1, le=500),
    include_non_canonical: bool = False,
) -> Any:
    results = await queries.search(user_id, q, scope, limit, include_non_canonical)
    return SearchResponse(
        query=results.query,
        measurements=[MeasurementRead.model_validate(m) for m in results.measurements],
        events=[HealthEventRead.model_validate(e) for e in results.events],
    )


@router.get("/summary", response_model=SummaryRead)
async def summary(user_id: str, queries: Queries, start: date = Query(...), end: date = Query(...)) -> Any:
    result = await queries.summary(user_id, start, end)
    return SummaryRead.model_validate(result)


@router.get("/records", response_model=list[MeasurementRead])
async def canonical_records(
    user_id: str,
    queries: Queries,
    metric_type: str | None = None,
    category: str | None = None,
    start: date | None = None,
    end: date | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
) -> Any:
    """Canonical measurements, newest first."""
    rows = await queries.canonical_records(user_id, metric_type, category, start, end, limit)
    return [MeasurementRead.model_validate(r) for r in rows]
