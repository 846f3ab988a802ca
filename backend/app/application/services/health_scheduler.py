from __future__ import annotations

import asyncio
import logging

from app.application.services.platform_health_service import PlatformHealthMonitor

logger = logging.getLogger(__name__)


class HealthMonitorScheduler:
    """Flush and snapshot loops for the lifetime of the API process."""

    def __init__(
        self,
        monitor: PlatformHealthMonitor,
        *,
        flush_interval_seconds: float = 60.0,
        snapshot_interval_seconds: float = 300.0,
    ) -> None:
        self.monitor = monitor
        self.flush_interval_seconds = flush_interval_seconds
        self.snapshot_interval_seconds = snapshot_interval_seconds
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval_seconds)
            await self.monitor.flush_metrics()

    async def _snapshot_loop(self) -> None:
        while True:
            await self.monitor.create_health_snapshot()
            await asyncio.sleep(self.snapshot_interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._flush_loop(), name="api-metrics-flush"),
            asyncio.create_task(self._snapshot_loop(), name="health-snapshot"),
        ]
        logger.info(
            "health_monitoring_started flush_interval=%s snapshot_interval=%s",
            self.flush_interval_seconds,
            self.snapshot_interval_seconds,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.monitor.wait_for_background_tasks()
        flushed = await self.monitor.flush_metrics()
        logger.info("health_monitoring_stopped final_flush_buckets=%s", flushed)
