import asyncio
import re
from datetime import UTC, date, datetime
from uuid import uuid4

import pytest

from app.application.services.platform_health_service import (
    REDACTED,
    MetricBucket,
    PlatformHealthMonitor,
    calculate_latency_stats,
    evaluate_health,
    generate_request_id,
    normalize_endpoint,
    percentile,
    sanitize_request_body,
)
from app.application.services.platform_health_store import RecentApiMetrics, StorageUsage, VideoHostingCosts
from app.application.services.system_resources import ResourceUsage

FIXED_NOW = datetime(2026, 3, 14, 15, 30, tzinfo=UTC)


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class RecordingStore:
    def __init__(self, recent: RecentApiMetrics | None = None) -> None:
        self.recent = recent or RecentApiMetrics.empty()
        self.fail_writes = False
        self.upserted: list[list] = []
        self.errors: list[dict] = []
        self.snapshots: list[dict] = []

    async def upsert_api_metrics(self, rows):
        if self.fail_writes:
            raise RuntimeError("database unavailable")
        self.upserted.append(list(rows))

    async def insert_api_error(self, **fields):
        if self.fail_writes:
            raise RuntimeError("database unavailable")
        self.errors.append(fields)

    async def insert_health_snapshot(self, *, metadata, **fields):
        if self.fail_writes:
            raise RuntimeError("database unavailable")
        self.snapshots.append({**fields, "metadata": metadata})

    async def get_recent_api_metrics(self, *, hours, now):
        return self.recent


class UnavailableStore:
    def __getattr__(self, name):
        async def fail(*args, **kwargs):
            raise RuntimeError(f"{name} unavailable")

        return fail


class StaticResourceProbe:
    def sample(self):
        return ResourceUsage(
            memory_usage_percent=50.0,
            cpu_usage_percent=50.0,
            disk_usage_percent=40.0,
            process_rss_bytes=64 * 1024 * 1024,
        )


class BrokenProbe:
    def sample(self):
        raise OSError("proc unavailable")


def _monitor(store, *, clock=None, probe=None, flush_interval_seconds=60.0) -> PlatformHealthMonitor:
    return PlatformHealthMonitor(
        store,
        probe or StaticResourceProbe(),
        flush_interval_seconds=flush_interval_seconds,
        clock=clock or ManualClock(),
        now=lambda: FIXED_NOW,
    )


def test_percentile_uses_nearest_rank():
    values = [float(value) for value in range(1, 11)]

    assert percentile(values, 50) == 5.0
    assert percentile(values, 95) == 10.0
    assert percentile(values, 99) == 10.0
    assert percentile([100.0, 200.0, 300.0], 50) == 200.0
    assert percentile([], 50) == 0.0


def test_latency_stats():
    stats = calculate_latency_stats([300.0, 100.0, 200.0])

    assert stats.avg == pytest.approx(200.0)
    assert stats.min == 100.0
    assert stats.max == 300.0
    assert stats.p50 == 200.0
    assert stats.p99 == 300.0
    assert calculate_latency_stats([]).avg == 0.0


def test_sanitize_request_body_redacts_nested_secrets():
    body = {
        "email": "creator@marketplace.test",
        "Password": "hunter2",
        "profile": {"api_key": "abc", "display_name": "Creator"},
        "sessions": [{"refresh_token": "t1"}, {"device": "ios"}],
    }

    sanitized = sanitize_request_body(body)

    assert sanitized == {
        "email": "creator@marketplace.test",
        "Password": REDACTED,
        "profile": {"api_key": REDACTED, "display_name": "Creator"},
        "sessions": [{"refresh_token": REDACTED}, {"device": "ios"}],
    }
    assert body["Password"] == "hunter2"
    assert sanitize_request_body("raw text") == "raw text"


def test_normalize_endpoint_collapses_ids():
    company_id = "3f2504e0-4f89-11d3-9a0c-0305e82c3301"

    assert normalize_endpoint(f"/api/companies/{company_id}/offers/42") == "/api/companies/:id/offers/:id"
    assert normalize_endpoint(f"/api/offers/{uuid4().hex}") == "/api/offers/:id"
    assert normalize_endpoint("/api/v1/offers") == "/api/v1/offers"
    assert normalize_endpoint("/api/offers/featured") == "/api/offers/featured"


def test_generate_request_id_format():
    first = generate_request_id()
    second = generate_request_id()

    assert re.fullmatch(r"req_[0-9a-z]+_[0-9a-z]{9}", first)
    assert first != second


def test_evaluate_health_slow_responses_warn():
    evaluation = evaluate_health(600, 0, 50, 50)

    assert evaluation.api_health_score == pytest.approx(88.0)
    assert evaluation.overall_health_score == 73
    assert [alert.as_dict() for alert in evaluation.alerts] == [
        {"type": "slow_response", "message": "Average API response time is 600ms", "severity": "warning"}
    ]


def test_evaluate_health_critical_alerts():
    evaluation = evaluate_health(1500, 6, 95, 10)

    assert evaluation.api_health_score == pytest.approx(10.0)
    assert evaluation.overall_health_score == 25
    assert [(alert.type, alert.severity) for alert in evaluation.alerts] == [
        ("slow_response", "critical"),
        ("high_error_rate", "critical"),
        ("high_memory", "critical"),
    ]
    assert evaluation.alerts[1].message == "Error rate is 6.00%"
    assert evaluation.alerts[2].message == "Memory usage is 95.0%"


def test_evaluate_health_thresholds_are_exclusive_and_scores_clamped():
    assert evaluate_health(500, 1.0, 80, 0).alerts == []

    floored = evaluate_health(10000, 50, 0, 0)
    assert floored.api_health_score == 0.0
    assert floored.overall_health_score == 40


def test_metric_bucket_classifies_status_codes():
    bucket = MetricBucket(endpoint="/api/offers", method="GET")
    for status_code in (200, 201, 302, 400, 404, 500, 503):
        bucket.add(25.0, status_code)

    assert bucket.success_count == 3
    assert bucket.error_count == 4
    assert bucket.error_4xx_count == 2
    assert bucket.error_5xx_count == 2
    assert bucket.total_requests == 7


@pytest.mark.anyio
async def test_flush_with_empty_buffer_is_noop():
    store = RecordingStore()

    assert await _monitor(store).flush_metrics() == 0
    assert store.upserted == []


@pytest.mark.anyio
async def test_flush_writes_one_row_per_endpoint_and_empties_buffer():
    store = RecordingStore()
    monitor = _monitor(store)
    monitor.record_api_metric("/api/offers", "GET", 100, 200)
    monitor.record_api_metric("/api/offers", "GET", 300, 404)
    monitor.record_api_metric("/api/offers", "GET", 200, 500)
    monitor.record_api_metric("/api/offers", "POST", 50, 201)

    assert await monitor.flush_metrics() == 2
    assert monitor.buffered_bucket_count() == 0
    assert await monitor.flush_metrics() == 0

    rows = {(row.method, row.endpoint): row for row in store.upserted[0]}
    get_row = rows[("GET", "/api/offers")]
    assert get_row.date == date(2026, 3, 14)
    assert get_row.hour == 15
    assert get_row.total_requests == 3
    assert get_row.successful_requests == 1
    assert get_row.error_4xx_count == 1
    assert get_row.error_5xx_count == 1
    assert get_row.avg_response_time_ms == pytest.approx(200.0)
    assert get_row.min_response_time_ms == 100.0
    assert get_row.max_response_time_ms == 300.0
    assert rows[("POST", "/api/offers")].total_requests == 1


@pytest.mark.anyio
async def test_failed_flush_keeps_samples_for_next_attempt():
    store = RecordingStore()
    store.fail_writes = True
    monitor = _monitor(store)
    monitor.record_api_metric("/api/offers", "GET", 100, 200)
    monitor.record_api_metric("/api/offers", "GET", 120, 200)

    assert await monitor.flush_metrics() == 0
    assert monitor.buffered_bucket_count() == 1

    monitor.record_api_metric("/api/offers", "GET", 140, 500)
    store.fail_writes = False

    assert await monitor.flush_metrics() == 1
    row = store.upserted[0][0]
    assert row.total_requests == 3
    assert row.error_requests == 1
    assert row.avg_response_time_ms == pytest.approx(120.0)


@pytest.mark.anyio
async def test_flush_is_scheduled_once_interval_elapses():
    store = RecordingStore()
    clock = ManualClock()
    monitor = _monitor(store, clock=clock, flush_interval_seconds=60)

    monitor.record_api_metric("/api/offers", "GET", 100, 200)
    await asyncio.sleep(0)
    assert store.upserted == []

    clock.now = 61
    monitor.record_api_metric("/api/offers", "GET", 100, 200)
    for _ in range(5):
        await asyncio.sleep(0)

    assert len(store.upserted) == 1
    assert store.upserted[0][0].total_requests == 2
    assert monitor.buffered_bucket_count() == 0


def test_recording_outside_event_loop_only_buffers():
    store = RecordingStore()
    clock = ManualClock()
    monitor = _monitor(store, clock=clock)
    clock.now = 120

    monitor.record_api_metric("/api/offers", "GET", 100, 200)

    assert monitor.buffered_bucket_count() == 1
    assert store.upserted == []


@pytest.mark.anyio
async def test_record_api_error_stores_sanitized_body():
    store = RecordingStore()
    monitor = _monitor(store)

    recorded = await monitor.record_api_error(
        "/api/auth/login",
        "POST",
        401,
        "Invalid credentials",
        ip_address="203.0.113.9",
        request_body={"email": "creator@marketplace.test", "password": "hunter2"},
        request_id="req_abc_123456789",
    )

    assert recorded is True
    assert store.errors[0]["request_body"] == {"email": "creator@marketplace.test", "password": REDACTED}
    assert store.errors[0]["request_id"] == "req_abc_123456789"
    assert store.errors[0]["ip_address"] == "203.0.113.9"


@pytest.mark.anyio
async def test_record_api_error_failure_is_swallowed():
    store = RecordingStore()
    store.fail_writes = True

    assert await _monitor(store).record_api_error("/api/offers", "GET", 500, "boom") is False


@pytest.mark.anyio
async def test_create_health_snapshot_scores_recent_traffic():
    recent = RecentApiMetrics(
        total_requests=120,
        successful_requests=120,
        error_requests=0,
        avg_response_time=600.0,
        error_rate=0.0,
        requests_per_minute=2,
    )
    store = RecordingStore(recent=recent)
    clock = ManualClock()
    monitor = _monitor(store, clock=clock)
    clock.now = 3600

    evaluation = await monitor.create_health_snapshot()

    assert evaluation is not None
    assert evaluation.overall_health_score == 73
    snapshot = store.snapshots[0]
    assert snapshot["overall_health_score"] == 73
    assert snapshot["api_health_score"] == 88
    assert snapshot["requests_per_minute"] == 2
    assert snapshot["uptime_seconds"] == 3600
    assert snapshot["alerts"][0]["type"] == "slow_response"
    assert {"python_version", "platform", "arch", "process_rss_bytes"} <= set(snapshot["metadata"])


@pytest.mark.anyio
async def test_create_health_snapshot_without_resource_sample_is_skipped():
    store = RecordingStore()

    assert await _monitor(store, probe=BrokenProbe()).create_health_snapshot() is None
    assert store.snapshots == []


@pytest.mark.anyio
async def test_report_degrades_to_defaults_when_store_is_unavailable():
    monitor = _monitor(UnavailableStore())

    report = await monitor.get_platform_health_report()

    assert report.current_health is None
    assert report.recent_metrics == RecentApiMetrics.empty()
    assert report.storage_usage == StorageUsage.empty()
    assert report.video_costs == VideoHostingCosts.empty()
    assert report.api_time_series == []
    assert report.recent_errors == []
    assert await monitor.record_daily_storage_metrics() is False
    assert await monitor.record_daily_video_costs() is False
