"""HTTP surface tests against the in-memory store."""

from __future__ import annotations

import asyncio
from datetime import date

from fastapi.testclient import TestClient

from healthcore.errors import StoreUnavailable
from healthcore.metrics.registry import MetricRegistry
from healthcore.models.records import DailyAggregate
from healthcore.store.base import MeasurementQuery
from healthcore.store.memory import InMemoryHealthStore
from healthcore.tests.conftest import API, TEST_USER_ID, make_client

HEART_RATE_BATCH = {
    "samples": [
        {
            "producer": "Apple Health",
            "producer_field": "HKQuantityTypeIdentifierHeartRate",
            "raw_value": 60,
            "raw_unit": "count/min",
            "recorded_at": "2026-02-23T09:10:00Z",
        },
        {
            "producer": "Strava",
            "producer_field": "average_heartrate",
            "raw_value": 70,
            "recorded_at": "2026-02-23T09:45:00Z",
        },
    ]
}
DAY = {"start": "2026-02-23", "end": "2026-02-23"}


class FailingStore(InMemoryHealthStore):
    async def fetch_measurements(self, user_id: str, query: MeasurementQuery):
        raise StoreUnavailable("connection refused")


class BrokenStore(InMemoryHealthStore):
    async def fetch_daily_aggregates(self, user_id: str, start: date, end: date):
        raise RuntimeError("boom")


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["registry_version"] == "1.0"


class TestIngestAndQuery:
    def test_native_wins(self, client: TestClient) -> None:
        resp = client.post(f"{API}/measurements", json=HEART_RATE_BATCH)
        assert resp.status_code == 202
        assert resp.json()["inserted"] == 2
        assert resp.json()["demoted"] == 1

        series = client.get(f"{API}/metrics/heart_rate_bpm/series", params=DAY).json()
        assert series["unit"] == "bpm"
        assert [p["value"] for p in series["points"]] == [60]

        audit = client.get(
            f"{API}/metrics/heart_rate_bpm/series", params={**DAY, "include_non_canonical": "true"}
        ).json()
        assert len(audit["points"]) == 2

    def test_rerun_is_idempotent(self, client: TestClient) -> None:
        client.post(f"{API}/measurements", json=HEART_RATE_BATCH)

        resp = client.post(f"{API}/canonicalization/run", json={"producer": "Strava", "metric_types": ["heart_rate_bpm"]})

        assert resp.status_code == 200
        assert resp.json()["updated_count"] == 0
        assert resp.json()["metric_types"] == ["heart_rate_bpm"]

    def test_unmapped_field_reported(self, client: TestClient) -> None:
        batch = {
            "samples": [
                {"producer": "Strava", "producer_field": "kudos", "raw_value": 3, "recorded_at": "2026-02-23T09:00:00Z"}
            ]
        }
        body = client.post(f"{API}/measurements", json=batch).json()
        assert body["skipped"] == 1
        assert body["not_mapped"][0]["producer_field"] == "kudos"

    def test_native_lookup(self, client: TestClient) -> None:
        client.post(f"{API}/measurements", json=HEART_RATE_BATCH)

        near = client.get(
            f"{API}/canonicalization/native/heart_rate_bpm", params={"recorded_at": "2026-02-23T09:30:00Z"}
        ).json()
        far = client.get(
            f"{API}/canonicalization/native/heart_rate_bpm", params={"recorded_at": "2026-02-23T11:00:00Z"}
        ).json()
        assert near["has_native_data"] is True
        assert far["has_native_data"] is False

    def test_events_round_trip(self, client: TestClient) -> None:
        events = {
            "events": [
                {"event_type": "workout", "start_time": "2026-02-23T07:00:00Z", "title": "Morning Run"},
                {"event_type": "meal", "start_time": "2026-02-23T12:00:00Z", "title": "Lunch"},
            ]
        }
        assert client.post(f"{API}/events", json=events).json()["inserted"] == 2

        workouts = client.get(f"{API}/events", params={**DAY, "event_type": "workout"}).json()
        assert [e["title"] for e in workouts] == ["Morning Run"]

        hits = client.get(f"{API}/search", params={"q": "run", "scope": "events"}).json()
        assert [e["title"] for e in hits["events"]] == ["Morning Run"]
        assert hits["measurements"] == []

    def test_summary_and_export(self, client: TestClient, store: InMemoryHealthStore) -> None:
        asyncio.run(
            store.upsert_daily_aggregate(
                DailyAggregate(user_id=TEST_USER_ID, date=date(2026, 2, 23), steps=9000, sleep_hours=7.5)
            )
        )

        summary = client.get(f"{API}/summary", params={"start": "2026-02-20", "end": "2026-02-23"}).json()
        assert summary["days"] == 1
        assert summary["requested_days"] == 4
        assert summary["averages"]["steps"] == 9000

        daily = client.get(f"{API}/daily", params=DAY).json()
        assert daily[0]["steps"] == 9000

        export = client.get(f"{API}/export", params={**DAY, "max_chunk_size": 200}).json()
        assert export["total_chunks"] == len(export["chunks"])
        assert all(len(c["content"]) <= 200 for c in export["chunks"])
        assert any(c["type"] == "daily_metrics" for c in export["chunks"])


class TestErrors:
    def test_unknown_metric_is_404(self, client: TestClient) -> None:
        resp = client.get(f"{API}/metrics/not_a_metric/series", params=DAY)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "UNKNOWN_METRIC"

    def test_reversed_range_is_400(self, client: TestClient) -> None:
        resp = client.get(f"{API}/metrics/steps/series", params={"start": "2026-02-23", "end": "2026-02-01"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_QUERY"

    def test_hourly_correlation_is_400(self, client: TestClient) -> None:
        resp = client.get(
            f"{API}/correlation", params={"metric": ["steps", "heart_rate_bpm"], **DAY, "aggregation": "hourly"}
        )
        assert resp.status_code == 400

    def test_blank_search_is_400(self, client: TestClient) -> None:
        resp = client.get(f"{API}/search", params={"q": "   "})
        assert resp.status_code == 400

    def test_half_open_run_range_is_400(self, client: TestClient) -> None:
        resp = client.post(f"{API}/canonicalization/run", json={"producer": "Strava", "start": "2026-02-23T00:00:00Z"})
        assert resp.status_code == 400

    def test_store_failure_is_503_not_empty(self, registry: MetricRegistry) -> None:
        client = make_client(FailingStore(), registry)
        resp = client.get(f"{API}/metrics/steps/series", params=DAY)
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "STORE_UNAVAILABLE"

    def test_unhandled_error_is_500_envelope(self, registry: MetricRegistry) -> None:
        client = make_client(BrokenStore(), registry)
        resp = client.get(f"{API}/daily", params=DAY)
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "INTERNAL_ERROR"


class TestRegistryCatalogue:
    def test_catalogue(self, client: TestClient) -> None:
        body = client.get("/api/v1/registry").json()
        ids = {m["id"] for m in body["metric_types"]}
        assert {"steps", "heart_rate_bpm", "protein_g"} <= ids
        native = {p["name"] for p in body["producers"] if p["native"]}
        assert native == {"Apple Health", "Google Fit", "Health Connect"}

    def test_metric_type(self, client: TestClient) -> None:
        body = client.get("/api/v1/registry/metrics/protein_g").json()
        assert body["contestable"] is False
        assert client.get("/api/v1/registry/metrics/nope").status_code == 404
