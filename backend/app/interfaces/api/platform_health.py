from fastapi import APIRouter, Depends, Query, status

from app.application.services.platform_health_service import PlatformHealthMonitor
from app.core.config import settings
from app.interfaces.api.deps import AdminPrincipal, get_health_monitor, require_platform_admin

router = APIRouter(prefix="/admin/platform-health", tags=["platform-health"])


@router.get("", status_code=status.HTTP_200_OK)
async def get_platform_health(
    admin: AdminPrincipal = Depends(require_platform_admin),
    monitor: PlatformHealthMonitor = Depends(get_health_monitor),
):
    return await monitor.get_platform_health_report(settings.health_report_recent_errors_limit)


@router.get("/api-metrics", status_code=status.HTTP_200_OK)
async def get_api_metrics(
    hours: int = Query(default=24, ge=1, le=24 * 30),
    admin: AdminPrincipal = Depends(require_platform_admin),
    monitor: PlatformHealthMonitor = Depends(get_health_monitor),
):
    return await monitor.get_recent_api_metrics(hours)


@router.get("/api-metrics/time-series", status_code=status.HTTP_200_OK)
async def get_api_metrics_time_series(
    days: int = Query(default=7, ge=1, le=365),
    admin: AdminPrincipal = Depends(require_platform_admin),
    monitor: PlatformHealthMonitor = Depends(get_health_monitor),
) -> dict:
    return {"items": await monitor.get_api_metrics_time_series(days)}


@router.get("/errors", status_code=status.HTTP_200_OK)
async def get_recent_errors(
    limit: int = Query(default=50, ge=1, le=500),
    admin: AdminPrincipal = Depends(require_platform_admin),
    monitor: PlatformHealthMonitor = Depends(get_health_monitor),
) -> dict:
    return {"items": await monitor.get_recent_error_logs(limit)}


@router.post("/snapshots", status_code=status.HTTP_201_CREATED)
async def create_snapshot(
    admin: AdminPrincipal = Depends(require_platform_admin),
    monitor: PlatformHealthMonitor = Depends(get_health_monitor),
) -> dict:
    evaluation = await monitor.create_health_snapshot()
    if evaluation is None:
        return {"created": False}
    return {
        "created": True,
        "overall_health_score": evaluation.overall_health_score,
        "api_health_score": round(evaluation.api_health_score),
        "alerts": [alert.as_dict() for alert in evaluation.alerts],
    }
