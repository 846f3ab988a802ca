import json
import logging
import logging.config
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.application.services.fee_calculator import FeeCalculator
from app.application.services.fee_settings_cache import build_fee_settings_cache
from app.application.services.health_scheduler import HealthMonitorScheduler
from app.application.services.platform_health_service import PlatformHealthMonitor
from app.application.services.platform_health_store import PlatformHealthStore
from app.application.services.system_resources import SystemResourceProbe
from app.core.config import settings
from app.domain import models  # noqa: F401
from app.infrastructure.db.session import AsyncSessionLocal
from app.interfaces.api.router import api_router
from app.interfaces.http.middleware import MetricsMiddleware, RequestIDMiddleware, SecurityHeadersMiddleware

LOGGING_CONFIG_PATH = Path(__file__).with_name("logging.json")


def configure_logging() -> None:
    if not LOGGING_CONFIG_PATH.exists():
        logging.basicConfig(level=logging.INFO)
        return
    logging.config.dictConfig(json.loads(LOGGING_CONFIG_PATH.read_text(encoding="utf-8")))


configure_logging()
logger = logging.getLogger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.health_monitoring_enabled:
        logger.info("health_monitoring_disabled")
        yield
        return

    scheduler = HealthMonitorScheduler(
        app.state.health_monitor,
        flush_interval_seconds=settings.health_metrics_flush_interval_seconds,
        snapshot_interval_seconds=settings.health_snapshot_interval_seconds,
    )
    scheduler.start()
    try:
        yield
    finally:
        await scheduler.stop()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# Built without touching the database or redis; connections open on first use.
app.state.fee_calculator = FeeCalculator(AsyncSessionLocal, build_fee_settings_cache(settings))
app.state.health_monitor = PlatformHealthMonitor(
    PlatformHealthStore(AsyncSessionLocal),
    SystemResourceProbe(),
    flush_interval_seconds=settings.health_metrics_flush_interval_seconds,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestIDMiddleware)


def _error_response(
    request: Request,
    *,
    status_code: int,
    error_code: str,
    message: str,
    headers: dict | None = None,
    **extra,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": message,
            "trace_id": getattr(request.state, "request_id", None),
            **extra,
        },
        headers=headers,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and {"error_code", "message"} <= detail.keys():
        error_code, message = str(detail["error_code"]), str(detail["message"])
    else:
        error_code = str(exc.status_code)
        message = detail if isinstance(detail, str) else "Request failed"
    return _error_response(
        request,
        status_code=exc.status_code,
        error_code=error_code,
        message=message,
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
    return _error_response(
        request,
        status_code=422,
        error_code="validation_error",
        message="Request validation failed",
        fields=fields,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception path=%s method=%s", request.url.path, request.method)
    return _error_response(
        request,
        status_code=500,
        error_code="internal_server_error",
        message="Internal server error",
    )


app.include_router(api_router)
