"""SQLAlchemy persistence for platform health telemetry.

Every method opens its own session from the factory so that the dashboard
report can run its reads concurrently. Errors propagate; the monitor decides
what to swallow.
"""

from __future__ import annotations

import datetime
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.domain.models.api_error_log import ApiErrorLog
from app.domain.models.api_metric import ApiMetric
from app.domain.models.company_verification_document import CompanyVerificationDocument
from app.domain.models.offer import Offer, OfferVideo
from app.domain.models.platform_health_snapshot import PlatformHealthSnapshot
from app.domain.models.storage_metric import StorageMetric
from app.domain.models.user import User
from app.domain.models.video_hosting_cost import VideoHostingCost

BYTES_PER_GB = 1024**3

AVG_VIDEO_SIZE_BYTES = 50 * 1024 * 1024
AVG_DOCUMENT_SIZE_BYTES = 500 * 1024
AVG_IMAGE_SIZE_BYTES = 200 * 1024

STORAGE_COST_PER_GB_USD = 0.023
BANDWIDTH_COST_PER_GB_USD = 0.09
TRANSCODING_COST_PER_MIN_USD = 0.015
AVG_VIDEO_LENGTH_MIN = 3
AVG_VIDEO_SIZE_GB = 0.05
AVG_BANDWIDTH_PER_VIEW_MB = 100

TOP_ENDPOINTS_LIMIT = 10


@dataclass(frozen=True)
class ApiMetricUpsert:
    endpoint: str
    method: str
    date: datetime.date
    hour: int
    total_requests: int
    successful_requests: int
    error_requests: int
    error_4xx_count: int
    error_5xx_count: int
    avg_response_time_ms: float
    min_response_time_ms: float
    max_response_time_ms: float
    p50_response_time_ms: float
    p95_response_time_ms: float
    p99_response_time_ms: float


@dataclass(frozen=True)
class EndpointTraffic:
    endpoint: str
    method: str
    total_requests: int
    avg_response_time: float
    error_requests: int


@dataclass(frozen=True)
class EndpointErrors:
    endpoint: str
    method: str
    error_requests: int
    error_4xx_count: int
    error_5xx_count: int


@dataclass(frozen=True)
class RecentApiMetrics:
    total_requests: int
    successful_requests: int
    error_requests: int
    avg_response_time: float
    error_rate: float
    requests_per_minute: int
    top_endpoints: list[EndpointTraffic] = field(default_factory=list)
    errors_by_endpoint: list[EndpointErrors] = field(default_factory=list)

    @classmethod
    def empty(cls) -> RecentApiMetrics:
        return cls(
            total_requests=0,
            successful_requests=0,
            error_requests=0,
            avg_response_time=0.0,
            error_rate=0.0,
            requests_per_minute=0,
        )


@dataclass(frozen=True)
class DailyApiMetrics:
    date: datetime.date
    total_requests: int
    successful_requests: int
    error_requests: int
    avg_response_time: float
    error_rate: float


@dataclass(frozen=True)
class StorageUsage:
    total_files: int
    total_storage_bytes: int
    video_files: int
    video_storage_bytes: int
    image_files: int
    image_storage_bytes: int
    document_files: int
    document_storage_bytes: int

    @classmethod
    def empty(cls) -> StorageUsage:
        return cls(0, 0, 0, 0, 0, 0, 0, 0)


@dataclass(frozen=True)
class VideoHostingCosts:
    total_videos: int
    total_video_storage_gb: float
    total_bandwidth_gb: float
    storage_cost_usd: float
    bandwidth_cost_usd: float
    transcoding_cost_usd: float
    total_cost_usd: float
    cost_per_video_usd: float
    views_count: int

    @classmethod
    def empty(cls) -> VideoHostingCosts:
        return cls(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0)


def estimate_storage_usage(video_count: int, document_count: int, image_count: int) -> StorageUsage:
    video_bytes = video_count * AVG_VIDEO_SIZE_BYTES
    document_bytes = document_count * AVG_DOCUMENT_SIZE_BYTES
    image_bytes = image_count * AVG_IMAGE_SIZE_BYTES
    return StorageUsage(
        total_files=video_count + document_count + image_count,
        total_storage_bytes=video_bytes + document_bytes + image_bytes,
        video_files=video_count,
        video_storage_bytes=video_bytes,
        image_files=image_count,
        image_storage_bytes=image_bytes,
        document_files=document_count,
        document_storage_bytes=document_bytes,
    )


def estimate_video_hosting_costs(total_videos: int, views_count: int) -> VideoHostingCosts:
    storage_gb = total_videos * AVG_VIDEO_SIZE_GB
    bandwidth_gb = (views_count * AVG_BANDWIDTH_PER_VIEW_MB) / 1024
    storage_cost = storage_gb * STORAGE_COST_PER_GB_USD
    bandwidth_cost = bandwidth_gb * BANDWIDTH_COST_PER_GB_USD
    transcoding_cost = total_videos * AVG_VIDEO_LENGTH_MIN * TRANSCODING_COST_PER_MIN_USD
    total_cost = storage_cost + bandwidth_cost + transcoding_cost
    return VideoHostingCosts(
        total_videos=total_videos,
        total_video_storage_gb=storage_gb,
        total_bandwidth_gb=bandwidth_gb,
        storage_cost_usd=storage_cost,
        bandwidth_cost_usd=bandwidth_cost,
        transcoding_cost_usd=transcoding_cost,
        total_cost_usd=total_cost,
        cost_per_video_usd=total_cost / total_videos if total_videos > 0 else 0.0,
        views_count=views_count,
    )


def _as_float(value) -> float:
    if value is None:
        return 0.0
    return float(value)


def _isoformat(value) -> str | None:
    return value.isoformat() if value is not None else None


def _weighted_avg(weighted_sum, total) -> float:
    total = int(total or 0)
    if total <= 0:
        return 0.0
    return _as_float(weighted_sum) / total


def _error_rate(errors, total) -> float:
    total = int(total or 0)
    if total <= 0:
        return 0.0
    return int(errors or 0) / total * 100


def _dialect_insert(db: AsyncSession):
    if db.bind.dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class PlatformHealthStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def upsert_api_metrics(self, rows: list[ApiMetricUpsert]) -> None:
        if not rows:
            return
        async with self.session_factory() as db:
            insert = _dialect_insert(db)
            for row in rows:
                stmt = insert(ApiMetric).values(**asdict(row))
                new = stmt.excluded
                merged_total = ApiMetric.total_requests + new.total_requests
                stmt = stmt.on_conflict_do_update(
                    index_elements=[ApiMetric.endpoint, ApiMetric.method, ApiMetric.date, ApiMetric.hour],
                    set_={
                        "total_requests": merged_total,
                        "successful_requests": ApiMetric.successful_requests + new.successful_requests,
                        "error_requests": ApiMetric.error_requests + new.error_requests,
                        "error_4xx_count": ApiMetric.error_4xx_count + new.error_4xx_count,
                        "error_5xx_count": ApiMetric.error_5xx_count + new.error_5xx_count,
                        "avg_response_time_ms": func.coalesce(
                            (
                                ApiMetric.avg_response_time_ms * ApiMetric.total_requests
                                + new.avg_response_time_ms * new.total_requests
                            )
                            / func.nullif(merged_total, 0),
                            0.0,
                        ),
                        "min_response_time_ms": case(
                            (new.min_response_time_ms < ApiMetric.min_response_time_ms, new.min_response_time_ms),
                            else_=ApiMetric.min_response_time_ms,
                        ),
                        "max_response_time_ms": case(
                            (new.max_response_time_ms > ApiMetric.max_response_time_ms, new.max_response_time_ms),
                            else_=ApiMetric.max_response_time_ms,
                        ),
                        "p50_response_time_ms": new.p50_response_time_ms,
                        "p95_response_time_ms": new.p95_response_time_ms,
                        "p99_response_time_ms": new.p99_response_time_ms,
                        "updated_at": func.now(),
                    },
                )
                await db.execute(stmt)
            await db.commit()

    async def insert_api_error(self, **fields) -> None:
        async with self.session_factory() as db:
            db.add(ApiErrorLog(**fields))
            await db.commit()

    async def insert_health_snapshot(self, *, metadata: dict, **fields) -> None:
        async with self.session_factory() as db:
            db.add(PlatformHealthSnapshot(metadata_json=metadata, **fields))
            await db.commit()

    async def upsert_storage_metric(self, day: datetime.date, usage: StorageUsage) -> None:
        values = asdict(usage)
        async with self.session_factory() as db:
            stmt = _dialect_insert(db)(StorageMetric).values(date=day, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[StorageMetric.date],
                set_={**values, "updated_at": func.now()},
            )
            await db.execute(stmt)
            await db.commit()

    async def upsert_video_hosting_cost(self, day: datetime.date, costs: VideoHostingCosts) -> None:
        values = {
            key: Decimal(str(round(value, 4))) if isinstance(value, float) else value
            for key, value in asdict(costs).items()
        }
        async with self.session_factory() as db:
            stmt = _dialect_insert(db)(VideoHostingCost).values(date=day, **values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[VideoHostingCost.date],
                set_={**values, "updated_at": func.now()},
            )
            await db.execute(stmt)
            await db.commit()

    async def get_recent_api_metrics(self, *, hours: int, now: datetime.datetime) -> RecentApiMetrics:
        since = now - timedelta(hours=hours)
        since_date = since.date()
        window = or_(
            ApiMetric.date > since_date,
            and_(ApiMetric.date == since_date, ApiMetric.hour >= since.hour),
        )
        total_col = func.sum(ApiMetric.total_requests)
        weighted_col = func.sum(ApiMetric.avg_response_time_ms * ApiMetric.total_requests)
        errors_col = func.sum(ApiMetric.error_requests)

        async with self.session_factory() as db:
            totals = (
                await db.execute(
                    select(
                        total_col,
                        func.sum(ApiMetric.successful_requests),
                        errors_col,
                        weighted_col,
                    ).where(window)
                )
            ).one()

            top_rows = (
                await db.execute(
                    select(
                        ApiMetric.endpoint,
                        ApiMetric.method,
                        total_col.label("total_requests"),
                        weighted_col.label("weighted_response_time"),
                        errors_col.label("error_requests"),
                    )
                    .where(window)
                    .group_by(ApiMetric.endpoint, ApiMetric.method)
                    .order_by(total_col.desc(), ApiMetric.endpoint.asc())
                    .limit(TOP_ENDPOINTS_LIMIT)
                )
            ).all()

            error_rows = (
                await db.execute(
                    select(
                        ApiMetric.endpoint,
                        ApiMetric.method,
                        errors_col.label("error_requests"),
                        func.sum(ApiMetric.error_4xx_count).label("error_4xx_count"),
                        func.sum(ApiMetric.error_5xx_count).label("error_5xx_count"),
                    )
                    .where(window)
                    .group_by(ApiMetric.endpoint, ApiMetric.method)
                    .having(errors_col > 0)
                    .order_by(errors_col.desc(), ApiMetric.endpoint.asc())
                    .limit(TOP_ENDPOINTS_LIMIT)
                )
            ).all()

        total_requests = int(totals[0] or 0)
        error_requests = int(totals[2] or 0)
        return RecentApiMetrics(
            total_requests=total_requests,
            successful_requests=int(totals[1] or 0),
            error_requests=error_requests,
            avg_response_time=_weighted_avg(totals[3], total_requests),
            error_rate=_error_rate(error_requests, total_requests),
            requests_per_minute=round(total_requests / (hours * 60)) if hours > 0 else 0,
            top_endpoints=[
                EndpointTraffic(
                    endpoint=row.endpoint,
                    method=row.method,
                    total_requests=int(row.total_requests or 0),
                    avg_response_time=_weighted_avg(row.weighted_response_time, row.total_requests),
                    error_requests=int(row.error_requests or 0),
                )
                for row in top_rows
            ],
            errors_by_endpoint=[
                EndpointErrors(
                    endpoint=row.endpoint,
                    method=row.method,
                    error_requests=int(row.error_requests or 0),
                    error_4xx_count=int(row.error_4xx_count or 0),
                    error_5xx_count=int(row.error_5xx_count or 0),
                )
                for row in error_rows
            ],
        )

    async def get_api_metrics_time_series(self, *, days: int, today: datetime.date) -> list[DailyApiMetrics]:
        since = today - timedelta(days=days - 1)
        total_col = func.sum(ApiMetric.total_requests)
        async with self.session_factory() as db:
            rows = (
                await db.execute(
                    select(
                        ApiMetric.date,
                        total_col.label("total_requests"),
                        func.sum(ApiMetric.successful_requests).label("successful_requests"),
                        func.sum(ApiMetric.error_requests).label("error_requests"),
                        func.sum(ApiMetric.avg_response_time_ms * ApiMetric.total_requests).label("weighted"),
                    )
                    .where(ApiMetric.date >= since)
                    .group_by(ApiMetric.date)
                    .order_by(ApiMetric.date.asc())
                )
            ).all()
        return [
            DailyApiMetrics(
                date=row.date,
                total_requests=int(row.total_requests or 0),
                successful_requests=int(row.successful_requests or 0),
                error_requests=int(row.error_requests or 0),
                avg_response_time=_weighted_avg(row.weighted, row.total_requests),
                error_rate=_error_rate(row.error_requests, row.total_requests),
            )
            for row in rows
        ]

    async def get_storage_metrics_time_series(self, *, days: int, today: datetime.date) -> list[dict]:
        since = today - timedelta(days=days - 1)
        async with self.session_factory() as db:
            metrics = (
                await db.execute(
                    select(StorageMetric).where(StorageMetric.date >= since).order_by(StorageMetric.date.asc())
                )
            ).scalars().all()
        return [
            {
                "date": metric.date.isoformat(),
                "total_files": metric.total_files,
                "total_storage_gb": metric.total_storage_bytes / BYTES_PER_GB,
                "video_files": metric.video_files,
                "video_storage_gb": metric.video_storage_bytes / BYTES_PER_GB,
                "image_files": metric.image_files,
                "image_storage_gb": metric.image_storage_bytes / BYTES_PER_GB,
                "document_files": metric.document_files,
                "document_storage_gb": metric.document_storage_bytes / BYTES_PER_GB,
            }
            for metric in metrics
        ]

    async def get_video_costs_time_series(self, *, days: int, today: datetime.date) -> list[dict]:
        since = today - timedelta(days=days - 1)
        async with self.session_factory() as db:
            costs = (
                await db.execute(
                    select(VideoHostingCost)
                    .where(VideoHostingCost.date >= since)
                    .order_by(VideoHostingCost.date.asc())
                )
            ).scalars().all()
        return [
            {
                "date": cost.date.isoformat(),
                "total_videos": cost.total_videos,
                "total_video_storage_gb": _as_float(cost.total_video_storage_gb),
                "total_bandwidth_gb": _as_float(cost.total_bandwidth_gb),
                "storage_cost_usd": _as_float(cost.storage_cost_usd),
                "bandwidth_cost_usd": _as_float(cost.bandwidth_cost_usd),
                "transcoding_cost_usd": _as_float(cost.transcoding_cost_usd),
                "total_cost_usd": _as_float(cost.total_cost_usd),
                "cost_per_video_usd": _as_float(cost.cost_per_video_usd),
                "views_count": cost.views_count,
            }
            for cost in costs
        ]

    async def get_recent_error_logs(self, *, limit: int) -> list[dict]:
        async with self.session_factory() as db:
            logs = (
                await db.execute(select(ApiErrorLog).order_by(ApiErrorLog.timestamp.desc()).limit(limit))
            ).scalars().all()
        return [
            {
                "id": str(log.id),
                "endpoint": log.endpoint,
                "method": log.method,
                "status_code": log.status_code,
                "error_message": log.error_message,
                "request_id": log.request_id,
                "user_id": log.user_id,
                "ip_address": log.ip_address,
                "user_agent": log.user_agent,
                "request_body": log.request_body,
                "timestamp": _isoformat(log.timestamp),
            }
            for log in logs
        ]

    async def get_latest_health_snapshot(self) -> dict | None:
        async with self.session_factory() as db:
            snapshot = (
                await db.execute(
                    select(PlatformHealthSnapshot).order_by(PlatformHealthSnapshot.timestamp.desc()).limit(1)
                )
            ).scalar_one_or_none()
        if snapshot is None:
            return None
        return {
            "id": str(snapshot.id),
            "timestamp": _isoformat(snapshot.timestamp),
            "overall_health_score": snapshot.overall_health_score,
            "api_health_score": snapshot.api_health_score,
            "storage_health_score": snapshot.storage_health_score,
            "database_health_score": snapshot.database_health_score,
            "avg_response_time_ms": snapshot.avg_response_time_ms,
            "error_rate_percent": snapshot.error_rate_percent,
            "requests_per_minute": snapshot.requests_per_minute,
            "memory_usage_percent": snapshot.memory_usage_percent,
            "cpu_usage_percent": snapshot.cpu_usage_percent,
            "disk_usage_percent": snapshot.disk_usage_percent,
            "uptime_seconds": snapshot.uptime_seconds,
            "alerts": snapshot.alerts or [],
            "metadata": snapshot.metadata_json or {},
        }

    async def calculate_storage_usage(self) -> StorageUsage:
        async with self.session_factory() as db:
            video_count = (await db.execute(select(func.count(OfferVideo.id)))).scalar_one()
            document_count = (await db.execute(select(func.count(CompanyVerificationDocument.id)))).scalar_one()
            user_count = (await db.execute(select(func.count(User.id)))).scalar_one()
        return estimate_storage_usage(int(video_count or 0), int(document_count or 0), int(user_count or 0))

    async def calculate_video_hosting_costs(self) -> VideoHostingCosts:
        async with self.session_factory() as db:
            total_videos = (await db.execute(select(func.count(OfferVideo.id)))).scalar_one()
            views_count = (await db.execute(select(func.coalesce(func.sum(Offer.view_count), 0)))).scalar_one()
        return estimate_video_hosting_costs(int(total_videos or 0), int(views_count or 0))
