from time import perf_counter

from fastapi import APIRouter, Request, Response, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import AsyncSessionLocal
from app.infrastructure.observability.metrics import measure_redis, metrics_response

router = APIRouter()


def _elapsed_ms(started_at: float) -> float:
    return round((perf_counter() - started_at) * 1000, 2)


async def _probe_database() -> tuple[str, float | None]:
    started_at = perf_counter()
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        return "down", None
    return "up", _elapsed_ms(started_at)


async def _probe_redis() -> tuple[str, float | None]:
    started_at = perf_counter()
    try:
        with measure_redis("health_ping"):
            await run_in_threadpool(get_redis_client().ping)
    except RedisError:
        return "down", None
    return "up", _elapsed_ms(started_at)


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request) -> dict:
    db_status, db_latency_ms = await _probe_database()
    redis_status, redis_latency_ms = await _probe_redis()
    monitor = getattr(request.app.state, "health_monitor", None)

    return {
        "status": "ok" if db_status == redis_status == "up" else "degraded",
        "services": {
            "api": "up",
            "database": db_status,
            "redis": redis_status,
            "db_latency_ms": db_latency_ms,
            "redis_latency_ms": redis_latency_ms,
        },
        "telemetry": {
            "buffered_endpoints": monitor.buffered_bucket_count() if monitor is not None else 0,
        },
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(request: Request, response: Response) -> dict:
    payload = await health_check(request)
    services = payload["services"]
    if services["database"] != "up" or services["redis"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "services": services}
    return {"status": "ready", "services": services}


@router.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_response()
