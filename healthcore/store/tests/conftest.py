"""Fixtures for store tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthcore.models.records import HealthEvent, MeasurementRecord
from healthcore.store.memory import InMemoryHealthStore

TEST_USER_ID = "u1"
OTHER_USER_ID = "u2"


def at(hour: int, minute: int = 0, day: int = 23) -> datetime:
    return datetime(2026, 2, day, hour, minute, tzinfo=timezone.utc)


def make_record(
    metric_type: str = "steps",
    value: float = 100.0,
    recorded_at: datetime | None = None,
    producer: str = "Apple Health",
    user_id: str = TEST_USER_ID,
    **kwargs,
) -> MeasurementRecord:
    return MeasurementRecord(
        user_id=user_id,
        metric_type=metric_type,
        value=value,
        unit=kwargs.pop("unit", "steps"),
        recorded_at=recorded_at or at(9),
        producer=producer,
        category=kwargs.pop("category", "activity"),
        quality_score=kwargs.pop("quality_score", 1.0),
        **kwargs,
    )


def make_event(
    event_type: str = "workout",
    start_time: datetime | None = None,
    title: str | None = "Morning Run",
    user_id: str = TEST_USER_ID,
    **kwargs,
) -> HealthEvent:
    return HealthEvent(
        user_id=user_id,
        event_type=event_type,
        start_time=start_time or at(7),
        title=title,
        **kwargs,
    )


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()
