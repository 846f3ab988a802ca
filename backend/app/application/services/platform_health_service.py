"""Request telemetry buffering, hourly aggregation and health snapshots.

Samples are buffered in memory per (method, endpoint) and flushed into the
hourly ``api_metrics`` aggregates. Everything here is best-effort: storage
failures are logged, counted and swallowed so that telemetry can never take
the API down with it.
"""

from __future__ import annotations

import asyncio
import logging
import math
import platform
import secrets
import string
import sys
import time
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

from app.application.services.platform_health_store import (
    ApiMetricUpsert,
    DailyApiMetrics,
    PlatformHealthStore,
    RecentApiMetrics,
    StorageUsage,
    VideoHostingCosts,
)
from app.application.services.system_resources import ResourceUsage
from app.infrastructure.observability.metrics import (
    record_api_metrics_flush,
    record_health_telemetry_failure,
    set_api_metrics_buffer_size,
    set_health_scores,
)

logger = logging.getLogger(__name__)

SENSITIVE_FIELD_MARKERS = ("password", "token", "secret", "key", "authorization", "cookie")
REDACTED = "[REDACTED]"

SLOW_RESPONSE_WARNING_MS = 500.0
SLOW_RESPONSE_CRITICAL_MS = 1000.0
ERROR_RATE_WARNING_PERCENT = 1.0
ERROR_RATE_CRITICAL_PERCENT = 5.0
MEMORY_WARNING_PERCENT = 80.0
MEMORY_CRITICAL_PERCENT = 90.0

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class LatencyStats:
    avg: float
    min: float
    max: float
    p50: float
    p95: float
    p99: float


@dataclass(frozen=True)
class HealthAlert:
    type: str
    message: str
    severity: str

    def as_dict(self) -> dict:
        return {"type": self.type, "message": self.message, "severity": self.severity}


@dataclass(frozen=True)
class HealthEvaluation:
    api_health_score: float
    overall_health_score: int
    alerts: list[HealthAlert]


@dataclass
class MetricBucket:
    endpoint: str
    method: str
    response_times: list[float] = field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    error_4xx_count: int = 0
    error_5xx_count: int = 0

    @property
    def total_requests(self) -> int:
        return self.success_count + self.error_count

    def add(self, response_time_ms: float, status_code: int) -> None:
        self.response_times.append(float(response_time_ms))
        if 200 <= status_code < 400:
            self.success_count += 1
            return
        self.error_count += 1
        if 400 <= status_code < 500:
            self.error_4xx_count += 1
        elif status_code >= 500:
            self.error_5xx_count += 1

    def absorb(self, other: MetricBucket) -> None:
        self.response_times[:0] = other.response_times
        self.success_count += other.success_count
        self.error_count += other.error_count
        self.error_4xx_count += other.error_4xx_count
        self.error_5xx_count += other.error_5xx_count


@dataclass(frozen=True)
class PlatformHealthReport:
    current_health: dict | None
    recent_metrics: RecentApiMetrics
    storage_usage: StorageUsage
    video_costs: VideoHostingCosts
    api_time_series: list[DailyApiMetrics]
    storage_time_series: list[dict]
    cost_time_series: list[dict]
    recent_errors: list[dict]


class ResourceProbe(Protocol):
    def sample(self) -> ResourceUsage: ...


def percentile(sorted_values: list[float], p: float) -> float:
    """Nearest-rank percentile of an ascending list; 0 for an empty list."""
    if not sorted_values:
        return 0.0
    index = math.ceil((p / 100) * len(sorted_values)) - 1
    return sorted_values[max(0, min(index, len(sorted_values) - 1))]


def calculate_latency_stats(values: list[float]) -> LatencyStats:
    if not values:
        return LatencyStats(avg=0.0, min=0.0, max=0.0, p50=0.0, p95=0.0, p99=0.0)
    ordered = sorted(values)
    return LatencyStats(
        avg=sum(ordered) / len(ordered),
        min=ordered[0],
        max=ordered[-1],
        p50=percentile(ordered, 50),
        p95=percentile(ordered, 95),
        p99=percentile(ordered, 99),
    )


def sanitize_request_body(body: Any) -> Any:
    if isinstance(body, dict):
        sanitized = {}
        for key, value in body.items():
            lowered = str(key).lower()
            if any(marker in lowered for marker in SENSITIVE_FIELD_MARKERS):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_request_body(value)
        return sanitized
    if isinstance(body, list):
        return [sanitize_request_body(item) for item in body]
    return body


def _is_id_segment(segment: str) -> bool:
    if segment.isdigit():
        return True
    try:
        UUID(segment)
    except ValueError:
        return False
    return len(segment) in (32, 36)


def normalize_endpoint(path: str) -> str:
    """Collapse id-like path segments so /offers/42 and /offers/43 share a bucket."""
    segments = path.split("/")
    return "/".join(":id" if segment and _is_id_segment(segment) else segment for segment in segments)


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_request_id() -> str:
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(9))
    return f"req_{_base36(int(time.time() * 1000))}_{suffix}"


def evaluate_health(
    avg_response_time_ms: float,
    error_rate_percent: float,
    memory_usage_percent: float,
    cpu_usage_percent: float,
) -> HealthEvaluation:
    api_health_score = max(0.0, min(100.0, 100 - (avg_response_time_ms / 50) - (error_rate_percent * 10)))
    overall_health_score = round(
        api_health_score * 0.6
        + max(0.0, 100 - memory_usage_percent) * 0.2
        + max(0.0, 100 - cpu_usage_percent) * 0.2
    )

    alerts: list[HealthAlert] = []
    if avg_response_time_ms > SLOW_RESPONSE_WARNING_MS:
        alerts.append(
            HealthAlert(
                type="slow_response",
                message=f"Average API response time is {round(avg_response_time_ms)}ms",
                severity="critical" if avg_response_time_ms > SLOW_RESPONSE_CRITICAL_MS else "warning",
            )
        )
    if error_rate_percent > ERROR_RATE_WARNING_PERCENT:
        alerts.append(
            HealthAlert(
                type="high_error_rate",
                message=f"Error rate is {error_rate_percent:.2f}%",
                severity="critical" if error_rate_percent > ERROR_RATE_CRITICAL_PERCENT else "warning",
            )
        )
    if memory_usage_percent > MEMORY_WARNING_PERCENT:
        alerts.append(
            HealthAlert(
                type="high_memory",
                message=f"Memory usage is {memory_usage_percent:.1f}%",
                severity="critical" if memory_usage_percent > MEMORY_CRITICAL_PERCENT else "warning",
            )
        )
    return HealthEvaluation(
        api_health_score=api_health_score,
        overall_health_score=overall_health_score,
        alerts=alerts,
    )


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PlatformHealthMonitor:
    def __init__(
        self,
        store: PlatformHealthStore,
        resource_probe: ResourceProbe,
        *,
        flush_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.store = store
        self.resource_probe = resource_probe
        self.flush_interval_seconds = flush_interval_seconds
        self._clock = clock
        self._now = now
        self._started_at = clock()
        self._last_flush = clock()
        self._buffer: dict[str, MetricBucket] = {}
        self._flush_lock = asyncio.Lock()
        self._pending_flush: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()

    def buffered_bucket_count(self) -> int:
        return len(self._buffer)

    def run_in_background(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return None
        task = loop.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def wait_for_background_tasks(self) -> None:
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    def record_api_metric(self, endpoint: str, method: str, response_time_ms: float, status_code: int) -> None:
        key = f"{method}:{endpoint}"
        bucket = self._buffer.get(key)
        if bucket is None:
            bucket = MetricBucket(endpoint=endpoint, method=method)
            self._buffer[key] = bucket
        bucket.add(response_time_ms, status_code)
        set_api_metrics_buffer_size(len(self._buffer))

        if self._clock() - self._last_flush < self.flush_interval_seconds:
            return
        if self._pending_flush is not None and not self._pending_flush.done():
            return
        self._pending_flush = self.run_in_background(self.flush_metrics())

    async def record_api_error(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        error_message: str | None,
        error_stack: str | None = None,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        request_body: Any = None,
        request_id: str | None = None,
    ) -> bool:
        try:
            await self.store.insert_api_error(
                endpoint=endpoint,
                method=method,
                status_code=status_code,
                error_message=error_message,
                error_stack=error_stack,
                request_id=request_id,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                request_body=sanitize_request_body(request_body) if request_body is not None else None,
            )
        except Exception:
            logger.exception("api_error_log_write_failed endpoint=%s method=%s", endpoint, method)
            record_health_telemetry_failure("record_api_error")
            return False
        return True

    async def flush_metrics(self) -> int:
        async with self._flush_lock:
            if not self._buffer:
                return 0

            pending = self._buffer
            self._buffer = {}
            now = self._now()
            rows = []
            for bucket in pending.values():
                stats = calculate_latency_stats(bucket.response_times)
                rows.append(
                    ApiMetricUpsert(
                        endpoint=bucket.endpoint,
                        method=bucket.method,
                        date=now.date(),
                        hour=now.hour,
                        total_requests=bucket.total_requests,
                        successful_requests=bucket.success_count,
                        error_requests=bucket.error_count,
                        error_4xx_count=bucket.error_4xx_count,
                        error_5xx_count=bucket.error_5xx_count,
                        avg_response_time_ms=stats.avg,
                        min_response_time_ms=stats.min,
                        max_response_time_ms=stats.max,
                        p50_response_time_ms=stats.p50,
                        p95_response_time_ms=stats.p95,
                        p99_response_time_ms=stats.p99,
                    )
                )

            try:
                await self.store.upsert_api_metrics(rows)
            except Exception:
                logger.exception("api_metrics_flush_failed buckets=%s", len(rows))
                record_health_telemetry_failure("flush_metrics")
                self._restore(pending)
                return 0

            self._last_flush = self._clock()
            set_api_metrics_buffer_size(len(self._buffer))
            record_api_metrics_flush(len(rows))
            logger.info("api_metrics_flushed buckets=%s", len(rows))
            return len(rows)

    def _restore(self, pending: dict[str, MetricBucket]) -> None:
        for key, bucket in pending.items():
            current = self._buffer.get(key)
            if current is None:
                self._buffer[key] = bucket
            else:
                current.absorb(bucket)
        set_api_metrics_buffer_size(len(self._buffer))

    async def create_health_snapshot(self) -> HealthEvaluation | None:
        recent = await self.get_recent_api_metrics(hours=1)
        try:
            usage = self.resource_probe.sample()
        except Exception:
            logger.exception("system_resource_probe_failed")
            record_health_telemetry_failure("resource_probe")
            return None

        evaluation = evaluate_health(
            recent.avg_response_time,
            recent.error_rate,
            usage.memory_usage_percent,
            usage.cpu_usage_percent,
        )
        try:
            await self.store.insert_health_snapshot(
                overall_health_score=evaluation.overall_health_score,
                api_health_score=round(evaluation.api_health_score),
                avg_response_time_ms=recent.avg_response_time,
                error_rate_percent=recent.error_rate,
                requests_per_minute=recent.requests_per_minute,
                memory_usage_percent=usage.memory_usage_percent,
                cpu_usage_percent=usage.cpu_usage_percent,
                disk_usage_percent=usage.disk_usage_percent,
                uptime_seconds=int(self._clock() - self._started_at),
                alerts=[alert.as_dict() for alert in evaluation.alerts],
                metadata={
                    "python_version": platform.python_version(),
                    "platform": sys.platform,
                    "arch": platform.machine(),
                    "process_rss_bytes": usage.process_rss_bytes,
                },
            )
        except Exception:
            logger.exception("health_snapshot_write_failed")
            record_health_telemetry_failure("create_health_snapshot")
            return None

        set_health_scores(evaluation.overall_health_score, evaluation.api_health_score)
        logger.info(
            "health_snapshot_created score=%s alerts=%s",
            evaluation.overall_health_score,
            len(evaluation.alerts),
        )
        return evaluation

    async def _read(self, operation: str, reader: Callable[[], Awaitable[Any]], default: Any) -> Any:
        try:
            return await reader()
        except Exception:
            logger.exception("platform_health_read_failed operation=%s", operation)
            record_health_telemetry_failure(operation)
            return default

    async def get_recent_api_metrics(self, hours: int = 24) -> RecentApiMetrics:
        return await self._read(
            "get_recent_api_metrics",
            lambda: self.store.get_recent_api_metrics(hours=hours, now=self._now()),
            RecentApiMetrics.empty(),
        )

    async def get_api_metrics_time_series(self, days: int = 7) -> list[DailyApiMetrics]:
        return await self._read(
            "get_api_metrics_time_series",
            lambda: self.store.get_api_metrics_time_series(days=days, today=self._now().date()),
            [],
        )

    async def get_storage_metrics_time_series(self, days: int = 30) -> list[dict]:
        return await self._read(
            "get_storage_metrics_time_series",
            lambda: self.store.get_storage_metrics_time_series(days=days, today=self._now().date()),
            [],
        )

    async def get_video_costs_time_series(self, days: int = 30) -> list[dict]:
        return await self._read(
            "get_video_costs_time_series",
            lambda: self.store.get_video_costs_time_series(days=days, today=self._now().date()),
            [],
        )

    async def get_recent_error_logs(self, limit: int = 50) -> list[dict]:
        return await self._read("get_recent_error_logs", lambda: self.store.get_recent_error_logs(limit=limit), [])

    async def get_latest_health_snapshot(self) -> dict | None:
        return await self._read("get_latest_health_snapshot", self.store.get_latest_health_snapshot, None)

    async def calculate_storage_usage(self) -> StorageUsage:
        return await self._read("calculate_storage_usage", self.store.calculate_storage_usage, StorageUsage.empty())

    async def calculate_video_hosting_costs(self) -> VideoHostingCosts:
        return await self._read(
            "calculate_video_hosting_costs",
            self.store.calculate_video_hosting_costs,
            VideoHostingCosts.empty(),
        )

    async def record_daily_storage_metrics(self) -> bool:
        usage = await self.calculate_storage_usage()
        try:
            await self.store.upsert_storage_metric(self._now().date(), usage)
        except Exception:
            logger.exception("daily_storage_metrics_write_failed")
            record_health_telemetry_failure("record_daily_storage_metrics")
            return False
        logger.info("daily_storage_metrics_recorded total_files=%s", usage.total_files)
        return True

    async def record_daily_video_costs(self) -> bool:
        costs = await self.calculate_video_hosting_costs()
        try:
            await self.store.upsert_video_hosting_cost(self._now().date(), costs)
        except Exception:
            logger.exception("daily_video_costs_write_failed")
            record_health_telemetry_failure("record_daily_video_costs")
            return False
        logger.info("daily_video_costs_recorded total_videos=%s", costs.total_videos)
        return True

    async def get_platform_health_report(self, recent_errors_limit: int = 20) -> PlatformHealthReport:
        (
            current_health,
            recent_metrics,
            storage_usage,
            video_costs,
            api_time_series,
            storage_time_series,
            cost_time_series,
            recent_errors,
        ) = await asyncio.gather(
            self.get_latest_health_snapshot(),
            self.get_recent_api_metrics(24),
            self.calculate_storage_usage(),
            self.calculate_video_hosting_costs(),
            self.get_api_metrics_time_series(7),
            self.get_storage_metrics_time_series(30),
            self.get_video_costs_time_series(30),
            self.get_recent_error_logs(recent_errors_limit),
        )
        return PlatformHealthReport(
            current_health=current_health,
            recent_metrics=recent_metrics,
            storage_usage=storage_usage,
            video_costs=video_costs,
            api_time_series=api_time_series,
            storage_time_series=storage_time_series,
            cost_time_series=cost_time_series,
            recent_errors=recent_errors,
        )

