"""Tests for the canonicalization engine."""

from __future__ import annotations

import asyncio
from datetime import date
from uuid import uuid4

import pytest

from healthcore.canonical.engine import (
    CanonicalizationEngine,
    hour_bucket,
    plan_demotions,
)
from healthcore.canonical.tests.conftest import (
    NATIVE,
    TEST_USER_ID,
    THIRD_PARTY,
    at,
    record,
)
from healthcore.errors import CanonicalizationConflict
from healthcore.metrics.registry import MetricRegistry
from healthcore.store.base import CanonicalCandidate, MeasurementQuery
from healthcore.store.memory import InMemoryHealthStore


async def _flags(store: InMemoryHealthStore, user_id: str = TEST_USER_ID) -> dict[tuple, bool]:
    rows = await store.fetch_measurements(user_id, MeasurementQuery(include_non_canonical=True))
    return {(r.producer, r.metric_type, r.recorded_at): r.is_canonical for r in rows}


class TestHourBucket:
    def test_truncates_to_hour(self) -> None:
        assert hour_bucket(at(9, 40)) == at(9)

    def test_adjacent_minutes_across_hour_differ(self) -> None:
        assert hour_bucket(at(12, 59)) != hour_bucket(at(13, 1))


class TestPlanDemotions:
    def _candidate(self, producer: str, minute: int, metric: str = "steps", canonical: bool = True):
        return CanonicalCandidate(
            id=uuid4(), metric_type=metric, recorded_at=at(9, minute), producer=producer, is_canonical=canonical
        )

    def test_non_native_in_native_group_demoted(self, scenario_registry: MetricRegistry) -> None:
        native = self._candidate(NATIVE, 15)
        third = self._candidate(THIRD_PARTY, 40)
        assert plan_demotions([native, third], scenario_registry) == [third.id]

    def test_group_without_native_untouched(self, scenario_registry: MetricRegistry) -> None:
        rows = [self._candidate(THIRD_PARTY, 10), self._candidate(THIRD_PARTY, 20)]
        assert plan_demotions(rows, scenario_registry) == []

    def test_already_demoted_not_planned_again(self, scenario_registry: MetricRegistry) -> None:
        rows = [self._candidate(NATIVE, 10), self._candidate(THIRD_PARTY, 20, canonical=False)]
        assert plan_demotions(rows, scenario_registry) == []

    def test_native_in_other_metric_does_not_count(self, scenario_registry: MetricRegistry) -> None:
        rows = [self._candidate(NATIVE, 10, metric="heart_rate_bpm"), self._candidate(THIRD_PARTY, 20)]
        assert plan_demotions(rows, scenario_registry) == []

    def test_exclusive_in_native_group_is_integrity_error(self, scenario_registry: MetricRegistry) -> None:
        rows = [self._candidate(NATIVE, 10, metric="protein_g"), self._candidate(THIRD_PARTY, 20, metric="protein_g")]
        with pytest.raises(CanonicalizationConflict, match="protein_g"):
            plan_demotions(rows, scenario_registry)

    def test_exclusive_without_native_passes_through(self, scenario_registry: MetricRegistry) -> None:
        rows = [self._candidate(THIRD_PARTY, 10, metric="protein_g"), self._candidate(THIRD_PARTY, 20)]
        assert plan_demotions(rows, scenario_registry) == []


class TestRunCanonicalizationCheck:
    @pytest.mark.asyncio
    async def test_native_priority(self, store: InMemoryHealthStore, engine: CanonicalizationEngine) -> None:
        await store.upsert_measurements(
            [record(NATIVE, 1000, at(9, 15)), record(THIRD_PARTY, 950, at(9, 40))]
        )
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])

        assert result.updated_count == 1
        flags = await _flags(store)
        assert flags[(NATIVE, "steps", at(9, 15))] is True
        assert flags[(THIRD_PARTY, "steps", at(9, 40))] is False

    @pytest.mark.asyncio
    async def test_idempotent(self, store: InMemoryHealthStore, engine: CanonicalizationEngine) -> None:
        await store.upsert_measurements(
            [record(NATIVE, 1000, at(9, 15)), record(THIRD_PARTY, 950, at(9, 40))]
        )
        first = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])
        second = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])
        assert first.updated_count == 1
        assert second.updated_count == 0

    @pytest.mark.asyncio
    async def test_exclusive_metric_never_demoted(
        self, store: InMemoryHealthStore, engine: CanonicalizationEngine
    ) -> None:
        await store.upsert_measurements(
            [
                record(NATIVE, 1000, at(9, 15)),
                record(NATIVE, 40, at(9, 20), metric_type="protein_g"),
                record(THIRD_PARTY, 30, at(9, 30), metric_type="protein_g"),
            ]
        )
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["protein_g", "steps"])
        full = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, [])

        assert result.updated_count == 0
        assert full.updated_count == 0
        flags = await _flags(store)
        assert flags[(THIRD_PARTY, "protein_g", at(9, 30))] is True

    @pytest.mark.asyncio
    async def test_only_exclusive_touched_is_a_no_op(
        self, store: InMemoryHealthStore, engine: CanonicalizationEngine
    ) -> None:
        await store.upsert_measurements([record(THIRD_PARTY, 30, at(9, 30), metric_type="protein_g")])
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["protein_g"])
        assert result.updated_count == 0
        assert result.scanned == 0

    @pytest.mark.asyncio
    async def test_bucket_boundary(self, store: InMemoryHealthStore, engine: CanonicalizationEngine) -> None:
        await store.upsert_measurements(
            [record(NATIVE, 1000, at(12, 59)), record(THIRD_PARTY, 950, at(13, 1))]
        )
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])
        assert result.updated_count == 0
        assert all((await _flags(store)).values())

    @pytest.mark.asyncio
    async def test_native_batch_after_third_party_still_demotes(
        self, store: InMemoryHealthStore, engine: CanonicalizationEngine
    ) -> None:
        await store.upsert_measurements([record(THIRD_PARTY, 950, at(9, 40))])
        assert (await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])).updated_count == 0

        await store.upsert_measurements([record(NATIVE, 1000, at(9, 5))])
        result = await engine.run_canonicalization_check(TEST_USER_ID, NATIVE, ["steps"])
        assert result.updated_count == 1

    @pytest.mark.asyncio
    async def test_scoped_to_touched_metrics(
        self, store: InMemoryHealthStore, engine: CanonicalizationEngine
    ) -> None:
        await store.upsert_measurements(
            [
                record(NATIVE, 60, at(9, 0), metric_type="heart_rate_bpm"),
                record(THIRD_PARTY, 62, at(9, 1), metric_type="heart_rate_bpm"),
            ]
        )
        scoped = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])
        assert scoped.updated_count == 0

        full = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, [])
        assert full.updated_count == 1
        assert set(full.metric_types) == {"steps", "heart_rate_bpm"}

    @pytest.mark.asyncio
    async def test_unknown_metric_is_integrity_error(self, engine: CanonicalizationEngine) -> None:
        with pytest.raises(CanonicalizationConflict):
            await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["mystery_metric"])

    @pytest.mark.asyncio
    async def test_users_are_independent(self, store: InMemoryHealthStore, engine: CanonicalizationEngine) -> None:
        await store.upsert_measurements(
            [
                record(NATIVE, 1000, at(9, 15), user_id="u2"),
                record(THIRD_PARTY, 950, at(9, 40)),
            ]
        )
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])
        assert result.updated_count == 0

    @pytest.mark.asyncio
    async def test_date_range_widened_to_hour_buckets(
        self, store: InMemoryHealthStore, engine: CanonicalizationEngine
    ) -> None:
        await store.upsert_measurements(
            [
                record(NATIVE, 1000, at(9, 5)),
                record(THIRD_PARTY, 950, at(9, 50)),
                record(NATIVE, 1000, at(11, 5)),
                record(THIRD_PARTY, 950, at(11, 50)),
            ]
        )
        result = await engine.run_canonicalization_check(
            TEST_USER_ID, THIRD_PARTY, ["steps"], date_range=(at(9, 30), at(9, 45))
        )
        assert result.updated_count == 1
        flags = await _flags(store)
        assert flags[(THIRD_PARTY, "steps", at(9, 50))] is False
        assert flags[(THIRD_PARTY, "steps", at(11, 50))] is True

    @pytest.mark.asyncio
    async def test_date_range_of_dates_covers_whole_days(
        self, store: InMemoryHealthStore, engine: CanonicalizationEngine
    ) -> None:
        await store.upsert_measurements(
            [
                record(NATIVE, 1000, at(23, 5)),
                record(THIRD_PARTY, 950, at(23, 55)),
                record(NATIVE, 1000, at(0, 5, day=24)),
                record(THIRD_PARTY, 950, at(0, 55, day=24)),
            ]
        )
        day = date(2026, 2, 23)
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"], date_range=(day, day))
        assert result.updated_count == 1


class TestBatching:
    @pytest.mark.asyncio
    async def test_bucket_straddling_pages_is_resolved(
        self, store: InMemoryHealthStore, scenario_registry: MetricRegistry
    ) -> None:
        await store.upsert_measurements(
            [
                record(THIRD_PARTY, 1, at(9, 5)),
                record(THIRD_PARTY, 2, at(9, 10)),
                record(THIRD_PARTY, 3, at(9, 20)),
                record(NATIVE, 4, at(9, 50)),
                record(THIRD_PARTY, 5, at(10, 5)),
            ]
        )
        engine = CanonicalizationEngine(store, scenario_registry, page_size=2)
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])

        assert result.updated_count == 3
        assert result.scanned == 5
        flags = await _flags(store)
        assert flags[(THIRD_PARTY, "steps", at(10, 5))] is True

    @pytest.mark.asyncio
    async def test_updates_written_in_bounded_chunks(
        self, store: InMemoryHealthStore, scenario_registry: MetricRegistry
    ) -> None:
        await store.upsert_measurements(
            [record(NATIVE, 1000, at(9, 0))] + [record(THIRD_PARTY, 900 + m, at(9, m)) for m in range(1, 6)]
        )
        engine = CanonicalizationEngine(store, scenario_registry, update_batch_size=2)
        result = await engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"])

        assert result.updated_count == 5
        assert store.update_statements == 3

    def test_rejects_non_positive_sizes(self, store: InMemoryHealthStore, scenario_registry: MetricRegistry) -> None:
        with pytest.raises(ValueError):
            CanonicalizationEngine(store, scenario_registry, page_size=0)

    @pytest.mark.asyncio
    async def test_concurrent_runs_never_double_count(
        self, store: InMemoryHealthStore, engine: CanonicalizationEngine
    ) -> None:
        await store.upsert_measurements(
            [record(NATIVE, 1000, at(9, 0))] + [record(THIRD_PARTY, m, at(9, m)) for m in range(1, 4)]
        )
        results = await asyncio.gather(
            engine.run_canonicalization_check(TEST_USER_ID, THIRD_PARTY, ["steps"]),
            engine.run_canonicalization_check(TEST_USER_ID, NATIVE, ["steps"]),
        )
        assert sum(r.updated_count for r in results) == 3


class TestHasNativeData:
    @pytest.mark.asyncio
    async def test_within_window(self, store: InMemoryHealthStore, engine: CanonicalizationEngine) -> None:
        await store.upsert_measurements([record(NATIVE, 1000, at(9, 0))])
        assert await engine.has_native_data(TEST_USER_ID, "steps", at(9, 30))
        assert not await engine.has_native_data(TEST_USER_ID, "steps", at(9, 45))

    @pytest.mark.asyncio
    async def test_third_party_does_not_count(self, store: InMemoryHealthStore, engine: CanonicalizationEngine) -> None:
        await store.upsert_measurements([record(THIRD_PARTY, 1000, at(9, 0))])
        assert not await engine.has_native_data(TEST_USER_ID, "steps", at(9, 0))

    @pytest.mark.asyncio
    async def test_exclusive_is_always_false(self, store: InMemoryHealthStore, engine: CanonicalizationEngine) -> None:
        await store.upsert_measurements([record(NATIVE, 40, at(9, 0), metric_type="protein_g")])
        assert not await engine.has_native_data(TEST_USER_ID, "protein_g", at(9, 0))
