"""Fixtures for export formatter tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from healthcore.export.formatter import ExportFormatter
from healthcore.metrics.registry import load_registry
from healthcore.models.records import DailyAggregate, HealthEvent
from healthcore.query.engine import QueryEngine
from healthcore.store.memory import InMemoryHealthStore

TEST_USER_ID = "u1"
FIRST_DAY = date(2026, 1, 1)
DAY_COUNT = 45


def daily_row(day: date, n: int) -> DailyAggregate:
    return DailyAggregate(
        user_id=TEST_USER_ID,
        date=day,
        steps=8000 + n * 37,
        distance_km=round(5.5 + n * 0.1, 2),
        active_calories=400 + n,
        exercise_minutes=30 + n % 20,
        resting_heart_rate=55 + n % 6,
        sleep_hours=7.5,
        calories_consumed=2100 + n * 3,
        protein_g=140.0,
        workout_count=n % 2,
        weight_kg=80.0 - n * 0.05,
    )


def workout(start: datetime, title: str, description: str | None = None, **kwargs) -> HealthEvent:
    return HealthEvent(
        user_id=TEST_USER_ID,
        event_type="workout",
        start_time=start,
        title=title,
        description=description,
        **kwargs,
    )


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def formatter(store: InMemoryHealthStore) -> ExportFormatter:
    return ExportFormatter(QueryEngine(store, load_registry()))


async def populate(store: InMemoryHealthStore) -> None:
    for n in range(DAY_COUNT):
        await store.upsert_daily_aggregate(daily_row(FIRST_DAY + timedelta(days=n), n))
    events = [
        workout(
            datetime(2026, 1, 1, 7, 0, tzinfo=timezone.utc) + timedelta(days=n),
            f"Run {n}",
            duration_seconds=1800 + n * 60,
            metrics={"distance_km": 5 + n, "avg_hr": 150},
        )
        for n in range(0, DAY_COUNT, 3)
    ]
    # A single event far larger than any small budget
    events.append(
        workout(
            datetime(2026, 1, 20, 18, 0, tzinfo=timezone.utc),
            "Long session",
            description="Intervals. " * 120,
        )
    )
    await store.upsert_events(events)
