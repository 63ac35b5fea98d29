"""Tests for the in-memory TelemetryStore: merge, dedup gate, expiry."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from nestwatch.domain.record import PilotRecord
from nestwatch.domain.snapshot import Observation
from nestwatch.store.memory_store import InMemoryTelemetryStore

from tests.test_snapshot import T1, T2

_BASE = datetime(2023, 1, 11, 13, 58, 2, tzinfo=timezone.utc)
_T1_MS = 1673445482472
_T2_MS = 1673445484472

_PILOT = PilotRecord(pilot_id="P-testpilot1", first_name="test", last_name="pilot")


class FakeClock:
    def __init__(self, now: datetime = _BASE) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> None:
        self.now += timedelta(**kw)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryTelemetryStore:
    return InMemoryTelemetryStore(clock=clock)


class TestMerge:
    @pytest.mark.asyncio
    async def test_merge_creates_record(self, store: InMemoryTelemetryStore) -> None:
        rec = await store.merge(Observation.at("SN-nottrespas", 250000, 149999), T1)
        assert rec.closest_distance == 100001
        assert not rec.restricted_ever
        assert len(await store.all_records()) == 1

    @pytest.mark.asyncio
    async def test_outside_then_inside_scenario(self, store: InMemoryTelemetryStore) -> None:
        await store.merge(Observation.at("SN-nottrespas", 250000, 149999), T1)
        await store.merge(Observation.at("SN-nottrespas", 250000, 150000), T2)

        [rec] = await store.all_records()
        assert rec.closest_distance == 100000
        assert rec.restricted_ever
        assert rec.first_restricted_at == T2
        assert [fix.timestamp for fix in rec.position_history] == [T2, T1]

    @pytest.mark.asyncio
    async def test_returned_record_is_a_snapshot(self, store: InMemoryTelemetryStore) -> None:
        first = await store.merge(Observation.at("SN-nottrespas", 0, 0), T1)
        await store.merge(Observation.at("SN-nottrespas", 10, 10), T2)
        assert len(first.position_history) == 1

    @pytest.mark.asyncio
    async def test_has_pilot(self, store: InMemoryTelemetryStore) -> None:
        assert not await store.has_pilot("SN-trespassin")
        await store.merge(Observation.at("SN-trespassin", 250000, 250000), T1, pilot=_PILOT)
        assert await store.has_pilot("SN-trespassin")

    @pytest.mark.asyncio
    async def test_concurrent_merges_for_one_drone_serialize(
        self, store: InMemoryTelemetryStore
    ) -> None:
        observations = [
            Observation.at("SN-nottrespas", 1000 * i, 0) for i in range(50)
        ]
        await asyncio.gather(*(
            store.merge(obs, f"2023-01-11T13:58:{i:02d}Z")
            for i, obs in enumerate(observations)
        ))
        [rec] = await store.all_records()
        assert len(rec.position_history) == 50


class TestTtl:
    @pytest.mark.asyncio
    async def test_record_expires_as_a_unit(
        self, store: InMemoryTelemetryStore, clock: FakeClock
    ) -> None:
        await store.merge(Observation.at("SN-trespassin", 250000, 250000), T1, 600, _PILOT)
        clock.advance(seconds=600)
        assert await store.all_records() == []
        assert not await store.has_pilot("SN-trespassin")

    @pytest.mark.asyncio
    async def test_merge_refreshes_ttl(
        self, store: InMemoryTelemetryStore, clock: FakeClock
    ) -> None:
        await store.merge(Observation.at("SN-nottrespas", 0, 0), T1, 600)
        clock.advance(seconds=500)
        await store.merge(Observation.at("SN-nottrespas", 0, 0), T2, 600)
        clock.advance(seconds=500)

        [rec] = await store.all_records()
        assert len(rec.position_history) == 2

    @pytest.mark.asyncio
    async def test_expired_drone_starts_fresh(
        self, store: InMemoryTelemetryStore, clock: FakeClock
    ) -> None:
        await store.merge(Observation.at("SN-trespassin", 250000, 250000), T1, 60)
        clock.advance(seconds=61)
        await store.merge(Observation.at("SN-trespassin", 0, 0), T2, 60)

        [rec] = await store.all_records()
        assert not rec.restricted_ever
        assert rec.first_restricted_at is None
        assert len(rec.position_history) == 1


class TestDedupGate:
    @pytest.mark.asyncio
    async def test_new_timestamp_is_claimed_once(self, store: InMemoryTelemetryStore) -> None:
        assert await store.should_ingest(T1)
        assert not await store.should_ingest(T1)

    @pytest.mark.asyncio
    async def test_ingested_timestamp_is_rejected(self, store: InMemoryTelemetryStore) -> None:
        assert await store.should_ingest(T1)
        await store.record_ingested(T1, _T1_MS)
        assert not await store.should_ingest(T1)
        assert await store.latest_timestamp() == T1

    @pytest.mark.asyncio
    async def test_released_claim_can_be_retried(self, store: InMemoryTelemetryStore) -> None:
        assert await store.should_ingest(T1)
        await store.release_claim(T1)
        assert await store.should_ingest(T1)

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, store: InMemoryTelemetryStore) -> None:
        results = await asyncio.gather(*(store.should_ingest(T1) for _ in range(10)))
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_latest_timestamp_by_score(self, store: InMemoryTelemetryStore) -> None:
        assert await store.latest_timestamp() is None
        await store.record_ingested(T2, _T2_MS)
        await store.record_ingested(T1, _T1_MS)
        assert await store.latest_timestamp() == T2


class TestSweep:
    @pytest.mark.asyncio
    async def test_zero_window_removes_everything(
        self, store: InMemoryTelemetryStore, clock: FakeClock
    ) -> None:
        await store.record_ingested(T1, _T1_MS)
        await store.record_ingested(T2, _T2_MS)
        clock.advance(seconds=3)

        assert await store.sweep_timestamps(0) == 2
        assert await store.latest_timestamp() is None
        assert await store.should_ingest(T1)

    @pytest.mark.asyncio
    async def test_only_old_entries_removed(
        self, store: InMemoryTelemetryStore, clock: FakeClock
    ) -> None:
        await store.record_ingested(T1, _T1_MS)
        await store.record_ingested(T2, _T2_MS)
        clock.now = _BASE + timedelta(seconds=601)

        # T1 is 600.528s old, T2 598.528s
        assert await store.sweep_timestamps(600) == 1
        assert await store.latest_timestamp() == T2

    @pytest.mark.asyncio
    async def test_sweep_leaves_records_alone(self, store: InMemoryTelemetryStore) -> None:
        await store.merge(Observation.at("SN-nottrespas", 0, 0), T1)
        await store.record_ingested(T1, _T1_MS)
        await store.sweep_timestamps(0)
        assert len(await store.all_records()) == 1
