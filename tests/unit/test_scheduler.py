"""Tests for the rollup scheduler."""

import asyncio

import pytest

from edgeinsights.core.rollups import DEFAULT_STAGES, HOUR, MINUTE, bucket_floor
from edgeinsights.services.scheduler import RollupScheduler
from tests.fakes import ManualClock, RecordingRollupStorage

pytestmark = pytest.mark.tier(1)

ALL_STAGES = ["five_minute", "hourly", "daily", "activity"]


def _names(storage: RecordingRollupStorage) -> list[str]:
    return [name for name, _ in storage.refreshes]


class TestRollupScheduler:
    """Tests for RollupScheduler.run_due()."""

    @pytest.mark.unit
    async def test_first_tick_refreshes_every_stage_in_order(
        self, clock: ManualClock
    ) -> None:
        storage = RecordingRollupStorage()
        scheduler = RollupScheduler(storage, now=clock)

        assert await scheduler.run_due() == ALL_STAGES
        assert _names(storage) == ALL_STAGES

    @pytest.mark.unit
    async def test_refresh_window_is_bucket_aligned(self, clock: ManualClock) -> None:
        storage = RecordingRollupStorage()
        await RollupScheduler(storage, now=clock).run_due()

        since = dict(storage.refreshes)["five_minute"]
        assert since == bucket_floor(clock.now - HOUR, 5 * MINUTE)

    @pytest.mark.unit
    async def test_only_due_stages_run(self, clock: ManualClock) -> None:
        storage = RecordingRollupStorage()
        scheduler = RollupScheduler(storage, now=clock)
        await scheduler.run_due()

        clock.advance(MINUTE)
        assert await scheduler.run_due() == ["five_minute"]

        clock.advance(4 * MINUTE)
        assert await scheduler.run_due() == ["five_minute", "hourly"]

    @pytest.mark.unit
    async def test_failed_stage_is_retried_next_tick(self, clock: ManualClock) -> None:
        storage = RecordingRollupStorage(failing=["hourly"])
        scheduler = RollupScheduler(storage, now=clock)

        assert await scheduler.run_due() == ["five_minute", "daily", "activity"]
        assert scheduler.last_run(DEFAULT_STAGES[1]) is None

        storage.failing.clear()
        clock.advance(10)
        assert await scheduler.run_due() == ["hourly"]
        assert scheduler.last_run(DEFAULT_STAGES[1]) == clock.now

    @pytest.mark.unit
    def test_is_due(self, clock: ManualClock) -> None:
        scheduler = RollupScheduler(RecordingRollupStorage(), now=clock)
        assert scheduler.is_due(DEFAULT_STAGES[0], clock.now)

    @pytest.mark.unit
    async def test_start_and_stop(self, clock: ManualClock) -> None:
        storage = RecordingRollupStorage()
        scheduler = RollupScheduler(storage, tick_seconds=60, now=clock)

        scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0)
        await scheduler.stop()

        assert not scheduler.running
        assert _names(storage) == ALL_STAGES

    @pytest.mark.unit
    async def test_unexpected_error_does_not_end_the_loop(self, clock: ManualClock) -> None:
        class BrokenOnceStorage(RecordingRollupStorage):
            def __init__(self) -> None:
                super().__init__()
                self.calls = 0

            async def refresh(self, stage, since):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("connection pool exhausted")
                return await super().refresh(stage, since)

        storage = BrokenOnceStorage()
        scheduler = RollupScheduler(storage, tick_seconds=0, now=clock)

        scheduler.start()
        try:
            for _ in range(20):
                await asyncio.sleep(0)
                if storage.refreshes:
                    break
            assert scheduler.running
        finally:
            await scheduler.stop()

        assert _names(storage)[:1] == ["five_minute"]
