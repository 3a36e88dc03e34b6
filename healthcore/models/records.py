"""Canonical domain records for the healthcore engine.

These dataclasses are the single source of truth passed between the
normalizer, canonicalization engine, store, query engine, and export
formatter.  API request/response schemas live in ``healthcore.models.api``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as a timezone-aware UTC datetime.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Ingestion input
# ---------------------------------------------------------------------------


@dataclass
class RawMeasurement:
    """One raw sample exactly as a producer reported it.

    Attributes:
        producer:       Producer name (e.g. 'Apple Health', 'Strava').
        producer_field: Producer-specific field identifier.
        raw_value:      Numeric value in ``raw_unit``.
        raw_unit:       Unit string as reported; None means the producer's
                        declared emitted unit.
        recorded_at:    Instant of measurement.
        source_device:  Optional device name.
        description:    Optional free text (searchable).
        metadata:       Opaque provenance bag; never interpreted.
    """

    producer: str
    producer_field: str
    raw_value: float
    recorded_at: datetime
    raw_unit: str | None = None
    source_device: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------


@dataclass
class MeasurementRecord:
    """A normalized point measurement in its metric's canonical unit.

    Identity is ``(user_id, metric_type, recorded_at, producer)``.  The only
    field mutated after insert is ``is_canonical``, and only by the
    canonicalization engine.

    Attributes:
        user_id:       Opaque user identifier.
        metric_type:   Canonical metric id (e.g. 'steps', 'weight_lbs').
        value:         Value in ``unit`` (the metric's canonical unit).
        unit:          Canonical unit symbol.
        recorded_at:   UTC instant of measurement.
        producer:      Originating producer name.
        category:      Denormalized metric category.
        quality_score: 0.0–1.0, fixed at normalization time.
        source_device: Optional device name.
        is_canonical:  True if authoritative for its metric/hour bucket.
        is_aggregated: True for pre-computed rollups, False for raw samples.
        description:   Optional free text for search.
        metadata:      Opaque provenance bag.
        id:            Store-assigned identifier (None before insert).
    """

    user_id: str
    metric_type: str
    value: float
    unit: str
    recorded_at: datetime
    producer: str
    category: str
    quality_score: float
    source_device: str | None = None
    is_canonical: bool = True
    is_aggregated: bool = False
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: UUID | None = None

    @property
    def identity(self) -> tuple[str, str, datetime, str]:
        """Uniqueness key used for conflict-ignore upserts."""
        return (self.user_id, self.metric_type, ensure_utc(self.recorded_at), self.producer)


@dataclass
class DailyAggregate:
    """Pre-aggregated canonical values for one user and calendar day.

    Produced by the external aggregation job; read-only for the query engine.
    Units follow the daily table (metric): km, kg, ml.
    """

    user_id: str
    date: date
    steps: int | None = None
    distance_km: float | None = None
    active_calories: int | None = None
    resting_calories: int | None = None
    exercise_minutes: int | None = None
    flights_climbed: int | None = None
    avg_heart_rate: int | None = None
    resting_heart_rate: int | None = None
    heart_rate_variability: float | None = None
    sleep_hours: float | None = None
    weight_kg: float | None = None
    protein_g: float | None = None
    carbs_g: float | None = None
    fat_g: float | None = None
    calories_consumed: int | None = None
    water_ml: int | None = None
    fiber_g: float | None = None
    sugar_g: float | None = None
    sodium_mg: int | None = None
    workout_count: int | None = None
    total_workout_minutes: int | None = None
    strength_sessions: int | None = None
    cardio_sessions: int | None = None
    flexibility_sessions: int | None = None
    total_volume_kg: float | None = None
    data_sources: dict[str, Any] = field(default_factory=dict)
    data_completeness_score: float = 0.0


@dataclass
class HealthEvent:
    """A time-bounded occurrence (workout, sleep session, meal).

    Unique by ``(user_id, event_type, start_time)``; never subject to the
    same-instant canonicalization rule.
    """

    user_id: str
    event_type: str
    start_time: datetime
    end_time: datetime | None = None
    duration_seconds: int | None = None
    title: str | None = None
    description: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    producer: str | None = None
    source_device: str | None = None
    location: dict[str, Any] | None = None
    quality_score: float = 1.0
    id: UUID | None = None

    @property
    def identity(self) -> tuple[str, str, datetime]:
        return (self.user_id, self.event_type, ensure_utc(self.start_time))
