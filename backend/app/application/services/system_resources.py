from __future__ import annotations

import os
from dataclasses import dataclass

import psutil


@dataclass(frozen=True)
class ResourceUsage:
    memory_usage_percent: float
    cpu_usage_percent: float
    disk_usage_percent: float
    process_rss_bytes: int


class SystemResourceProbe:
    """Host figures for health snapshots, sampled with psutil."""

    def __init__(self, disk_path: str = "/") -> None:
        self.disk_path = disk_path

    def memory_usage_percent(self) -> float:
        memory = psutil.virtual_memory()
        if not memory.total:
            return 0.0
        return (memory.total - memory.available) / memory.total * 100

    def cpu_usage_percent(self) -> float:
        # 1-minute load average spread across all logical cores.
        load_1m, _, _ = psutil.getloadavg()
        cpu_count = psutil.cpu_count() or 1
        return load_1m * 100 / cpu_count

    def disk_usage_percent(self) -> float:
        return float(psutil.disk_usage(self.disk_path).percent)

    def sample(self) -> ResourceUsage:
        process = psutil.Process(os.getpid())
        return ResourceUsage(
            memory_usage_percent=self.memory_usage_percent(),
            cpu_usage_percent=self.cpu_usage_percent(),
            disk_usage_percent=self.disk_usage_percent(),
            process_rss_bytes=process.memory_info().rss,
        )
