"""Pydantic request/response schemas for the healthcore API.

Response models are built from the domain dataclasses with
``model_validate(obj)`` (``from_attributes``); request models convert to
domain objects with ``to_domain()``.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import Field

from healthcore.models.base import HealthCoreBase
from healthcore.models.records import HealthEvent, RawMeasurement


# ---------- Ingestion ----------


class RawMeasurementIn(HealthCoreBase):
    producer: str = Field(min_length=1, max_length=100)
    producer_field: str = Field(min_length=1, max_length=200)
    raw_value: float
    raw_unit: str | None = None
    recorded_at: datetime
    source_device: str | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> RawMeasurement:
        return RawMeasurement(**self.model_dump())


class IngestRequest(HealthCoreBase):
    samples: list[RawMeasurementIn] = Field(max_length=10000)


class NotMappedRead(HealthCoreBase):
    producer: str
    producer_field: str
    reason: str


class IngestResponse(HealthCoreBase):
    user_id: str
    received: int
    normalized: int
    inserted: int
    duplicates: int
    skipped: int
    demoted: int
    not_mapped: list[NotMappedRead] = Field(default_factory=list)
    conversion_errors: list[str] = Field(default_factory=list)


class HealthEventIn(HealthCoreBase):
    event_type: str = Field(min_length=1, max_length=50)
    start_time: datetime
    end_time: datetime | None = None
    duration_seconds: int | None = Field(default=None, ge=0)
    title: str | None = None
    description: str | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    producer: str | None = None
    source_device: str | None = None
    location: dict[str, Any] | None = None
    quality_score: float = Field(default=1.0, ge=0, le=1)

    def to_domain(self, user_id: str) -> HealthEvent:
        return HealthEvent(user_id=user_id, **self.model_dump())


class EventIngestRequest(HealthCoreBase):
    events: list[HealthEventIn] = Field(max_length=10000)


class EventIngestResponse(HealthCoreBase):
    user_id: str
    received: int
    inserted: int
    duplicates: int


# ---------- Canonicalization ----------


class CanonicalizationRequest(HealthCoreBase):
    producer: str = Field(min_length=1)
    metric_types: list[str] = Field(default_factory=list)  # empty = every contestable metric
    start: datetime | None = None
    end: datetime | None = None


class CanonicalizationResponse(HealthCoreBase):
    updated_count: int
    scanned: int
    metric_types: list[str]


class NativeDataResponse(HealthCoreBase):
    metric_type: str
    recorded_at: datetime
    has_native_data: bool


# ---------- Records ----------


class MeasurementRead(HealthCoreBase):
    id: uuid.UUID | None = None
    metric_type: str
    value: float
    unit: str
    recorded_at: datetime
    producer: str
    category: str
    quality_score: float
    source_device: str | None = None
    is_canonical: bool
    is_aggregated: bool
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class HealthEventRead(HealthCoreBase):
    id: uuid.UUID | None = None
    event_type: str
    start_time: datetime
    end_time: datetime | None = None
    duration_seconds: int | None = None
    title: str | None = None
    description: str | None = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    producer: str | None = None
    source_device: str | None = None
    location: dict[str, Any] | None = None
    quality_score: float


class DailyAggregateRead(HealthCoreBase):
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
    data_sources: dict[str, Any] = Field(default_factory=dict)
    data_completeness_score: float = 0.0


# ---------- Queries ----------


class TimeSeriesPointRead(HealthCoreBase):
    timestamp: datetime
    value: float
    count: int
    sources: list[str] = Field(default_factory=list)


class TimeSeriesResponse(HealthCoreBase):
    metric_type: str
    unit: str
    aggregation: str
    points: list[TimeSeriesPointRead]


class CorrelationRowRead(HealthCoreBase):
    date: date
    values: dict[str, float]


class CorrelationResponse(HealthCoreBase):
    metric_types: list[str]
    aggregation: str
    rows: list[CorrelationRowRead]


class SearchResponse(HealthCoreBase):
    query: str
    measurements: list[MeasurementRead]
    events: list[HealthEventRead]


class SummaryRead(HealthCoreBase):
    start: date
    end: date
    days: int
    requested_days: int
    coverage: float
    averages: dict[str, float]
    totals: dict[str, float]
    events: dict[str, int]
    latest_weight_kg: float | None = None


# ---------- Export ----------


class ExportChunkRead(HealthCoreBase):
    type: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExportResponse(HealthCoreBase):
    start: date
    end: date
    total_chunks: int
    chunks: list[ExportChunkRead]


# ---------- Registry catalogue ----------


class MetricTypeRead(HealthCoreBase):
    id: str
    category: str
    unit: str
    display_name: str
    contestable: bool


class ProducerRead(HealthCoreBase):
    name: str
    native: bool
    quality_score: float


class RegistryRead(HealthCoreBase):
    version: str
    categories: list[str]
    default_quality_score: float
    metric_types: list[MetricTypeRead]
    producers: list[ProducerRead]
