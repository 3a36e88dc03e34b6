"""Persistence boundary: the HealthStore ABC and its implementations."""

from healthcore.store.base import CanonicalCandidate, HealthStore, MeasurementQuery
from healthcore.store.memory import InMemoryHealthStore

__all__ = [
    "CanonicalCandidate",
    "HealthStore",
    "InMemoryHealthStore",
    "MeasurementQuery",
]
