import json
import traceback
from time import perf_counter

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import StreamingResponse

from app.application.services.platform_health_service import generate_request_id, normalize_endpoint
from app.core.config import settings
from app.infrastructure.logging.context import reset_request_id, set_request_id
from app.infrastructure.observability.metrics import record_request

MAX_CAPTURED_BODY_BYTES = 64 * 1024


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


def _wants_body_capture(request: Request) -> bool:
    if request.method.upper() not in {"POST", "PUT", "PATCH"}:
        return False
    if "application/json" not in request.headers.get("content-type", ""):
        return False
    content_length = request.headers.get("content-length")
    if content_length is None:
        return False
    try:
        return int(content_length) <= MAX_CAPTURED_BODY_BYTES
    except ValueError:
        return False


def _decode_body(raw_body: bytes | None):
    if not raw_body:
        return None
    try:
        return json.loads(raw_body)
    except ValueError:
        return None


async def _read_error_message(response: StreamingResponse) -> str | None:
    if "application/json" not in response.headers.get("content-type", ""):
        return None
    body = b"".join([chunk async for chunk in response.body_iterator])

    async def replay_body():
        yield body

    response.body_iterator = replay_body()
    payload = _decode_body(body)
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    return None


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        sampled = path.startswith(settings.health_metrics_path_prefix)
        endpoint = normalize_endpoint(path)
        raw_body = await request.body() if sampled and _wants_body_capture(request) else None

        started_at = perf_counter()
        status_code = 500
        error_message: str | None = None
        error_stack: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            if sampled and status_code >= 400:
                error_message = await _read_error_message(response)
            return response
        except Exception as exc:
            error_message = str(exc) or exc.__class__.__name__
            error_stack = traceback.format_exc()
            raise
        finally:
            duration_seconds = perf_counter() - started_at
            record_request(
                method=request.method,
                path=endpoint,
                status_code=status_code,
                duration_seconds=duration_seconds,
            )
            monitor = getattr(request.app.state, "health_monitor", None)
            if sampled and monitor is not None:
                monitor.record_api_metric(endpoint, request.method, duration_seconds * 1000.0, status_code)
                if status_code >= 400:
                    monitor.run_in_background(
                        monitor.record_api_error(
                            endpoint=endpoint,
                            method=request.method,
                            status_code=status_code,
                            error_message=error_message or f"HTTP {status_code}",
                            error_stack=error_stack,
                            user_id=getattr(request.state, "user_id", None),
                            ip_address=client_ip(request),
                            user_agent=request.headers.get("User-Agent"),
                            request_body=_decode_body(raw_body),
                            request_id=getattr(request.state, "request_id", None),
                        )
                    )


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        request.state.request_id = request_id
        request_token = set_request_id(request_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_request_id(request_token)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'; object-src 'none';"
        return response
