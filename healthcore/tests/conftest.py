"""Fixtures for API tests: the app wired to an in-memory store."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from healthcore.dependencies import get_metric_registry, get_store
from healthcore.main import create_app
from healthcore.metrics.registry import MetricRegistry, load_registry
from healthcore.store.memory import InMemoryHealthStore

TEST_USER_ID = "u1"
API = f"/api/v1/users/{TEST_USER_ID}"


@pytest.fixture
def registry() -> MetricRegistry:
    return load_registry()


@pytest.fixture
def store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


def make_client(store: InMemoryHealthStore, registry: MetricRegistry) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_metric_registry] = lambda: registry
    return TestClient(app)


@pytest.fixture
def client(store: InMemoryHealthStore, registry: MetricRegistry) -> TestClient:
    return make_client(store, registry)
