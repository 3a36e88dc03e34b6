"""Shared fixtures for registry, unit, and normalizer tests."""

from __future__ import annotations

import copy
from datetime import datetime, timezone

import pytest

from healthcore.metrics.registry import MetricRegistry, load_registry

TEST_USER_ID = "u1"
TEST_INSTANT = datetime(2026, 2, 23, 9, 15, tzinfo=timezone.utc)

# Minimal registry used by validation tests; deep-copied per test.
MINIMAL_REGISTRY: dict = {
    "version": "test",
    "categories": ["activity", "nutrition"],
    "default_quality_score": 0.5,
    "producers": {
        "NativeHealth": {"native": True, "quality_score": 1.0},
        "ThirdPartyFit": {"native": False, "quality_score": 0.95},
    },
    "metric_types": {
        "steps": {"category": "activity", "unit": "steps", "display_name": "Steps"},
        "protein_g": {"category": "nutrition", "unit": "g", "display_name": "Protein"},
    },
    "canonicalization": {"contestable": ["steps"], "exclusive": ["protein_g"]},
    "producer_fields": {
        "NativeHealth": {"steps": {"metric": "steps", "unit": "count"}},
        "ThirdPartyFit": {
            "steps": {"metric": "steps", "unit": "steps"},
            "protein": {"metric": "protein_g", "unit": "g"},
        },
    },
}


@pytest.fixture
def registry() -> MetricRegistry:
    """Load the real bundled registry."""
    return load_registry()


@pytest.fixture
def minimal_raw() -> dict:
    return copy.deepcopy(MINIMAL_REGISTRY)
