from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response

LATENCY_BUCKETS_SECONDS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "HTTP requests served, by normalized route",
    labelnames=("method", "endpoint", "status"),
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration, by normalized route",
    labelnames=("method", "endpoint"),
    buckets=LATENCY_BUCKETS_SECONDS,
)
DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Database statement duration",
    labelnames=("operation",),
    buckets=LATENCY_BUCKETS_SECONDS,
)
REDIS_COMMAND_DURATION_SECONDS = Histogram(
    "redis_command_duration_seconds",
    "Redis command duration",
    labelnames=("operation",),
    buckets=LATENCY_BUCKETS_SECONDS,
)

FEE_CALCULATIONS_TOTAL = Counter(
    "fee_calculations_total",
    "Fee calculations, by where the platform rate came from",
    labelnames=("source",),
)
FEE_LOOKUP_FALLBACKS_TOTAL = Counter(
    "fee_lookup_fallbacks_total",
    "Fee lookups that fell back to default rates after an error",
    labelnames=("lookup",),
)

HEALTH_TELEMETRY_FAILURES_TOTAL = Counter(
    "health_telemetry_failures_total",
    "Platform health telemetry operations abandoned after a storage error",
    labelnames=("operation",),
)
API_METRICS_BUFFER_BUCKETS = Gauge(
    "api_metrics_buffer_buckets",
    "Endpoint buckets currently held in the in-memory API metrics buffer",
)
API_METRICS_FLUSHED_BUCKETS_TOTAL = Counter(
    "api_metrics_flushed_buckets_total",
    "Endpoint buckets written to the hourly api_metrics aggregates",
)
PLATFORM_HEALTH_SCORE = Gauge(
    "platform_health_score",
    "Score from the most recent health snapshot (0-100)",
    labelnames=("component",),
)


def record_request(method: str, path: str, status_code: int, duration_seconds: float) -> None:
    HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=path, status=str(status_code)).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(method=method, endpoint=path).observe(duration_seconds)


def observe_db_query(duration_seconds: float, operation: str = "sql") -> None:
    DB_QUERY_DURATION_SECONDS.labels(operation=operation).observe(duration_seconds)


@contextmanager
def measure_redis(operation: str):
    started_at = perf_counter()
    try:
        yield
    finally:
        REDIS_COMMAND_DURATION_SECONDS.labels(operation=operation).observe(perf_counter() - started_at)


def record_fee_calculation(source: str) -> None:
    FEE_CALCULATIONS_TOTAL.labels(source=source).inc()


def record_fee_lookup_fallback(lookup: str) -> None:
    FEE_LOOKUP_FALLBACKS_TOTAL.labels(lookup=lookup).inc()


def record_health_telemetry_failure(operation: str) -> None:
    HEALTH_TELEMETRY_FAILURES_TOTAL.labels(operation=operation).inc()


def set_api_metrics_buffer_size(bucket_count: int) -> None:
    API_METRICS_BUFFER_BUCKETS.set(bucket_count)


def record_api_metrics_flush(bucket_count: int) -> None:
    API_METRICS_FLUSHED_BUCKETS_TOTAL.inc(bucket_count)


def set_health_scores(overall: float, api: float) -> None:
    PLATFORM_HEALTH_SCORE.labels(component="overall").set(overall)
    PLATFORM_HEALTH_SCORE.labels(component="api").set(api)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
