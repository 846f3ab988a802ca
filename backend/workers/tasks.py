import asyncio
import logging
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.application.services.platform_health_service import PlatformHealthMonitor
from app.application.services.platform_health_store import PlatformHealthStore
from app.application.services.system_resources import SystemResourceProbe
from app.core.config import settings
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _record_daily_platform_usage(database_uri: str) -> dict:
    # Connections must not outlive the loop created by asyncio.run.
    engine = create_async_engine(database_uri, poolclass=NullPool)
    try:
        session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
        monitor = PlatformHealthMonitor(PlatformHealthStore(session_factory), SystemResourceProbe())
        storage_recorded = await monitor.record_daily_storage_metrics()
        video_costs_recorded = await monitor.record_daily_video_costs()
    finally:
        await engine.dispose()
    return {
        "storage_metrics_recorded": storage_recorded,
        "video_costs_recorded": video_costs_recorded,
    }


@celery_app.task(name="workers.tasks.record_daily_platform_usage")
def record_daily_platform_usage() -> dict:
    result = asyncio.run(_record_daily_platform_usage(settings.sqlalchemy_database_uri))
    logger.info(
        "daily_platform_usage_recorded storage=%s video_costs=%s",
        result["storage_metrics_recorded"],
        result["video_costs_recorded"],
    )
    return {**result, "recorded_at": datetime.now(UTC).isoformat()}
