"""Time bucketing and averaging for time-series reads.

Buckets are computed in UTC.  Weekly buckets start on Sunday, monthly
buckets on the 1st.  The aggregated value of a bucket is the arithmetic
mean of its raw values, never the sum.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable

from healthcore.errors import InvalidQueryError
from healthcore.models.records import MeasurementRecord, ensure_utc


class Aggregation(str, Enum):
    NONE = "none"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def parse_aggregation(value: Aggregation | str | None) -> Aggregation:
    """Coerce a caller-supplied aggregation; None means no bucketing."""
    if value is None:
        return Aggregation.NONE
    try:
        return Aggregation(value)
    except ValueError:
        allowed = ", ".join(a.value for a in Aggregation)
        raise InvalidQueryError(f"Unsupported aggregation {value!r} (expected one of: {allowed})") from None


@dataclass
class TimeSeriesPoint:
    """One point of a time series.

    For raw series ``count`` is 1 and ``sources`` holds the single producer.
    """

    timestamp: datetime
    value: float
    count: int = 1
    sources: list[str] = field(default_factory=list)


def bucket_start(instant: datetime, aggregation: Aggregation) -> datetime:
    """Return the start of the bucket containing *instant*."""
    ts = ensure_utc(instant)
    if aggregation is Aggregation.NONE:
        return ts
    if aggregation is Aggregation.HOURLY:
        return ts.replace(minute=0, second=0, microsecond=0)
    midnight = ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if aggregation is Aggregation.DAILY:
        return midnight
    if aggregation is Aggregation.WEEKLY:
        # weekday(): Monday=0 … Sunday=6
        return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    return midnight.replace(day=1)


def aggregate(records: Iterable[MeasurementRecord], aggregation: Aggregation) -> list[TimeSeriesPoint]:
    """Bucket records and average each bucket, in ascending bucket order."""
    if aggregation is Aggregation.NONE:
        return [
            TimeSeriesPoint(timestamp=ensure_utc(r.recorded_at), value=r.value, sources=[r.producer])
            for r in sorted(records, key=lambda r: ensure_utc(r.recorded_at))
        ]

    values: dict[datetime, list[float]] = defaultdict(list)
    sources: dict[datetime, set[str]] = defaultdict(set)
    for r in records:
        key = bucket_start(r.recorded_at, aggregation)
        values[key].append(r.value)
        sources[key].add(r.producer)

    return [
        TimeSeriesPoint(
            timestamp=key,
            value=sum(values[key]) / len(values[key]),
            count=len(values[key]),
            sources=sorted(sources[key]),
        )
        for key in sorted(values)
    ]
