"""Periodic refresh of the rollup tiers."""

import asyncio
import logging
import time
from collections.abc import Callable

from edgeinsights.core.errors import PersistenceError
from edgeinsights.core.logs import log_exception, timed_log
from edgeinsights.core.ports import RollupStoragePort
from edgeinsights.core.rollups import RollupPipeline, RollupStage

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS = 10.0


class RollupScheduler:
    """Runs due rollup stages in pipeline order from one asyncio task.

    On every tick each stage whose schedule interval has elapsed is
    refreshed over its window, lowest tier first, so a tier always reads
    the freshest rows of the tier below it. A failed stage is retried on
    the next tick.

    Args:
        storage: Store that materializes the tiers.
        pipeline: Stages and their refresh policies.
        tick_seconds: How often due stages are checked.
        now: Clock used for scheduling and refresh windows.
    """

    def __init__(
        self,
        storage: RollupStoragePort,
        pipeline: RollupPipeline | None = None,
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._pipeline = pipeline or RollupPipeline()
        self._tick_seconds = tick_seconds
        self._now = now
        self._last_run: dict[str, float] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def last_run(self, stage: RollupStage) -> float | None:
        return self._last_run.get(stage.name)

    def is_due(self, stage: RollupStage, now: float) -> bool:
        last = self._last_run.get(stage.name)
        return last is None or now - last >= stage.schedule_interval

    async def run_due(self) -> list[str]:
        """Refresh every due stage once.

        Returns:
            Names of the stages refreshed successfully.
        """
        now = self._now()
        refreshed: list[str] = []
        for stage in self._pipeline:
            if not self.is_due(stage, now):
                continue
            since = stage.window_start(now)
            try:
                with timed_log(f"Refreshing {stage.name} rollup", logger, stage=stage.name):
                    rows = await self._storage.refresh(stage, since)
            except PersistenceError:
                log_exception("Rollup refresh failed", logger, stage=stage.name)
                continue
            self._last_run[stage.name] = now
            refreshed.append(stage.name)
            logger.debug("Refreshed %s rollup: %d rows since %.0f", stage.name, rows, since)
        return refreshed

    def start(self) -> None:
        """Start the scheduling task on the running loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="rollup-scheduler"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.run_due()
            except Exception:
                log_exception("Rollup tick failed", logger)
            await asyncio.sleep(self._tick_seconds)
