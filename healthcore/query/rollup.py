"""Build DailyAggregate rows from canonical records.

A helper for the external aggregation job (and tests).  ``daily_metrics``
never calls this; it only reads rows the job has stored.

Canonical metrics are imperial; the daily table is metric (km, kg, ml), so
values are converted on the way in.  Additive metrics are summed, rates are
averaged, and body mass takes the latest reading of the day.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import date
from typing import Iterable

from healthcore.metrics.units import convert
from healthcore.models.records import DailyAggregate, HealthEvent, MeasurementRecord, ensure_utc

SUM, MEAN, LATEST = "sum", "mean", "latest"

# metric id → (daily field, reduction, target unit or None, integer column)
DAILY_FIELD_MAP: dict[str, tuple[str, str, str | None, bool]] = {
    "steps": ("steps", SUM, None, True),
    "distance_mi": ("distance_km", SUM, "km", False),
    "active_calories_kcal": ("active_calories", SUM, None, True),
    "resting_calories_kcal": ("resting_calories", SUM, None, True),
    "exercise_minutes": ("exercise_minutes", SUM, None, True),
    "flights_climbed": ("flights_climbed", SUM, None, True),
    "heart_rate_bpm": ("avg_heart_rate", MEAN, None, True),
    "resting_heart_rate_bpm": ("resting_heart_rate", MEAN, None, True),
    "heart_rate_variability_ms": ("heart_rate_variability", MEAN, None, False),
    "sleep_duration_hours": ("sleep_hours", SUM, None, False),
    "weight_lbs": ("weight_kg", LATEST, "kg", False),
    "protein_g": ("protein_g", SUM, None, False),
    "carbohydrates_g": ("carbs_g", SUM, None, False),
    "fat_g": ("fat_g", SUM, None, False),
    "fiber_g": ("fiber_g", SUM, None, False),
    "sugar_g": ("sugar_g", SUM, None, False),
    "calories_consumed_kcal": ("calories_consumed", SUM, None, True),
    "water_oz": ("water_ml", SUM, "ml", True),
    "sodium_mg": ("sodium_mg", SUM, None, True),
    "training_volume_lbs": ("total_volume_kg", SUM, "kg", False),
}

# Fields whose presence makes a day "complete" for downstream analysis
COMPLETENESS_FIELDS = ("steps", "active_calories", "resting_heart_rate", "sleep_hours", "calories_consumed")

_WORKOUT_KINDS = {
    "strength_sessions": re.compile(r"\b(strength|weights?|lifting|resistance)\b", re.IGNORECASE),
    "cardio_sessions": re.compile(r"\b(cardio|run|running|cycling|ride|swim|swimming|walk|walking|hiit|rowing)\b", re.IGNORECASE),
    "flexibility_sessions": re.compile(r"\b(yoga|stretch|stretching|pilates|mobility)\b", re.IGNORECASE),
}


def _workout_label(event: HealthEvent) -> str:
    return " ".join(
        str(part) for part in (event.metrics.get("workout_type"), event.title) if part
    )


def build_daily_aggregate(
    user_id: str,
    day: date,
    records: Iterable[MeasurementRecord],
    events: Iterable[HealthEvent] = (),
) -> DailyAggregate:
    """Roll one UTC day of canonical records (and workout events) into a row.

    Records outside *day*, for another user, or non-canonical are ignored.
    """
    values: dict[str, list[tuple]] = defaultdict(list)
    sources: dict[str, set[str]] = defaultdict(set)

    for r in records:
        recorded_at = ensure_utc(r.recorded_at)
        if r.user_id != user_id or not r.is_canonical or recorded_at.date() != day:
            continue
        target = DAILY_FIELD_MAP.get(r.metric_type)
        if target is None:
            continue
        field_name, _, target_unit, _ = target
        value = convert(r.value, r.unit, target_unit, r.metric_type) if target_unit else r.value
        values[r.metric_type].append((recorded_at, value))
        sources[field_name].add(r.producer)

    aggregate = DailyAggregate(user_id=user_id, date=day)
    for metric_type, samples in values.items():
        field_name, reduction, _, integer = DAILY_FIELD_MAP[metric_type]
        if reduction == SUM:
            result = sum(v for _, v in samples)
        elif reduction == MEAN:
            result = sum(v for _, v in samples) / len(samples)
        else:
            result = max(samples, key=lambda s: s[0])[1]
        setattr(aggregate, field_name, int(round(result)) if integer else round(result, 2))

    workouts = [
        e for e in events
        if e.user_id == user_id and e.event_type == "workout" and ensure_utc(e.start_time).date() == day
    ]
    if workouts:
        aggregate.workout_count = len(workouts)
        aggregate.total_workout_minutes = int(round(sum(e.duration_seconds or 0 for e in workouts) / 60))
        for field_name, pattern in _WORKOUT_KINDS.items():
            setattr(aggregate, field_name, sum(1 for e in workouts if pattern.search(_workout_label(e))))
        sources["workout_count"].update(e.producer for e in workouts if e.producer)

    aggregate.data_sources = {k: sorted(v) for k, v in sorted(sources.items())}
    present = sum(1 for name in COMPLETENESS_FIELDS if getattr(aggregate, name) is not None)
    aggregate.data_completeness_score = round(present / len(COMPLETENESS_FIELDS), 2)
    return aggregate
