"""Fixtures for canonicalization tests.

The registry here models one device-native store (``NativeHealth``) and one
third-party service (``ThirdPartyFit``).
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from healthcore.canonical.engine import CanonicalizationEngine
from healthcore.metrics.registry import MetricRegistry, build_registry
from healthcore.models.records import MeasurementRecord
from healthcore.store.memory import InMemoryHealthStore

TEST_USER_ID = "u1"
NATIVE = "NativeHealth"
THIRD_PARTY = "ThirdPartyFit"

SCENARIO_REGISTRY: dict = {
    "version": "test",
    "categories": ["activity", "vitals", "nutrition"],
    "default_quality_score": 0.5,
    "producers": {
        NATIVE: {"native": True, "quality_score": 1.0},
        THIRD_PARTY: {"native": False, "quality_score": 0.95},
    },
    "metric_types": {
        "steps": {"category": "activity", "unit": "steps", "display_name": "Steps"},
        "heart_rate_bpm": {"category": "vitals", "unit": "bpm", "display_name": "Heart Rate"},
        "protein_g": {"category": "nutrition", "unit": "g", "display_name": "Protein"},
    },
    "canonicalization": {
        "contestable": ["steps", "heart_rate_bpm"],
        "exclusive": ["protein_g"],
    },
    "producer_fields": {
        NATIVE: {
            "steps": {"metric": "steps", "unit": "count"},
            "heart_rate": {"metric": "heart_rate_bpm", "unit": "count/min"},
        },
        THIRD_PARTY: {
            "steps": {"metric": "steps", "unit": "steps"},
            "heart_rate": {"metric": "heart_rate_bpm", "unit": "bpm"},
            "protein": {"metric": "protein_g", "unit": "g"},
        },
    },
}


def at(hour: int, minute: int = 0, day: int = 23) -> datetime:
    return datetime(2026, 2, day, hour, minute, tzinfo=timezone.utc)


def record(
    producer: str,
    value: float,
    recorded_at: datetime,
    metric_type: str = "steps",
    user_id: str = TEST_USER_ID,
) -> MeasurementRecord:
    metric = build_registry(SCENARIO_REGISTRY).metric(metric_type)
    return MeasurementRecord(
        user_id=user_id,
        metric_type=metric_type,
        value=value,
        unit=metric.unit,
        recorded_at=recorded_at,
        producer=producer,
        category=metric.category,
        quality_score=1.0 if producer == NATIVE else 0.95,
    )


@pytest.fixture
def scenario_registry() -> MetricRegistry:
    return build_registry(SCENARIO_REGISTRY)


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


@pytest.fixture
def engine(store: InMemoryHealthStore, scenario_registry: MetricRegistry) -> CanonicalizationEngine:
    return CanonicalizationEngine(store, scenario_registry)
