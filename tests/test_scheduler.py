"""Tests for the self-correcting poll scheduler and the dedup sweeper."""

import asyncio

import pytest

from nestwatch.services.expiry import ExpirySweeper
from nestwatch.services.scheduler import PollScheduler, next_delay
from nestwatch.store.memory_store import InMemoryTelemetryStore


class TestNextDelay:
    def test_subtracts_elapsed_time(self) -> None:
        assert next_delay(2.0, 0.5) == 1.5

    def test_overrun_means_no_wait(self) -> None:
        assert next_delay(2.0, 2.0) == 0.0
        assert next_delay(2.0, 7.3) == 0.0

    def test_instant_cycle_waits_full_period(self) -> None:
        assert next_delay(2.0, 0.0) == 2.0


async def _run_until(scheduler: PollScheduler, cycles: int, limit: float = 2.0) -> None:
    scheduler.start()
    deadline = asyncio.get_running_loop().time() + limit
    while scheduler.cycles_run < cycles:
        assert asyncio.get_running_loop().time() < deadline, "scheduler stalled"
        await asyncio.sleep(0.005)
    await scheduler.stop()


class TestPollScheduler:
    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            PollScheduler("bad", lambda: None, interval=0)

    @pytest.mark.asyncio
    async def test_keeps_running_after_failures(self) -> None:
        calls = 0

        async def cycle() -> None:
            nonlocal calls
            calls += 1
            if calls % 2:
                raise RuntimeError("upstream exploded")

        scheduler = PollScheduler("test", cycle, interval=0.01)
        await _run_until(scheduler, 4)

        assert calls >= 4
        assert scheduler.cycles_failed >= 2
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_timed_out_cycle_is_abandoned(self) -> None:
        async def cycle() -> None:
            await asyncio.sleep(10)

        scheduler = PollScheduler("test", cycle, interval=0.01, timeout=0.02)
        await _run_until(scheduler, 2)

        assert scheduler.cycles_failed >= 1

    @pytest.mark.asyncio
    async def test_overrunning_cycle_restarts_immediately(self) -> None:
        async def cycle() -> None:
            await asyncio.sleep(0.03)

        scheduler = PollScheduler("test", cycle, interval=0.01)
        await _run_until(scheduler, 2)

        assert scheduler.last_elapsed >= 0.02
        assert next_delay(0.01, scheduler.last_elapsed) == 0.0

    @pytest.mark.asyncio
    async def test_stop_interrupts_the_wait(self) -> None:
        async def cycle() -> None:
            return None

        scheduler = PollScheduler("test", cycle, interval=60)
        scheduler.start()
        await asyncio.sleep(0.01)
        await asyncio.wait_for(scheduler.stop(), timeout=1)

        assert scheduler.cycles_run == 1

    @pytest.mark.asyncio
    async def test_stats(self) -> None:
        async def cycle() -> None:
            return None

        scheduler = PollScheduler("poll", cycle, interval=0.01)
        await _run_until(scheduler, 1)
        stats = scheduler.stats()
        assert stats["name"] == "poll"
        assert stats["cycles_run"] >= 1
        assert stats["running"] is False


class TestExpirySweeper:
    @pytest.mark.asyncio
    async def test_sweep_counts_removed_entries(self) -> None:
        store = InMemoryTelemetryStore()
        await store.record_ingested("2023-01-11T13:58:02.472Z", 1673445482472)
        await store.record_ingested("2023-01-11T13:58:04.472Z", 1673445484472)

        sweeper = ExpirySweeper(store, retention_seconds=0)
        assert await sweeper.sweep() == 2
        assert await sweeper.sweep() == 0
        assert sweeper.total_removed == 2
