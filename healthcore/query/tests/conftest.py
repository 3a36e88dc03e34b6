"""Fixtures for query engine tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthcore.metrics.registry import MetricRegistry, load_registry
from healthcore.models.records import HealthEvent, MeasurementRecord
from healthcore.query.engine import QueryEngine
from healthcore.store.memory import InMemoryHealthStore

TEST_USER_ID = "u1"


def at(day: int, hour: int = 9, minute: int = 0) -> datetime:
    return datetime(2026, 2, day, hour, minute, tzinfo=timezone.utc)


def measurement(
    value: float,
    recorded_at: datetime,
    metric_type: str = "steps",
    producer: str = "Apple Health",
    description: str | None = None,
    unit: str = "steps",
    category: str = "activity",
) -> MeasurementRecord:
    return MeasurementRecord(
        user_id=TEST_USER_ID,
        metric_type=metric_type,
        value=value,
        unit=unit,
        recorded_at=recorded_at,
        producer=producer,
        category=category,
        quality_score=1.0,
        description=description,
    )


def event(
    event_type: str,
    start_time: datetime,
    title: str | None = None,
    **kwargs,
) -> HealthEvent:
    return HealthEvent(user_id=TEST_USER_ID, event_type=event_type, start_time=start_time, title=title, **kwargs)


@pytest.fixture
def registry() -> MetricRegistry:
    return load_registry()


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def engine(store: InMemoryHealthStore, registry: MetricRegistry) -> QueryEngine:
    return QueryEngine(store, registry)
