import datetime
import uuid

from sqlalchemy import Date, DateTime, Float, Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.base import Base


class ApiMetric(Base):
    """Hourly request aggregate for one endpoint and method."""

    __tablename__ = "api_metrics"
    __table_args__ = (
        UniqueConstraint("endpoint", "method", "date", "hour", name="uq_api_metrics_endpoint_method_date_hour"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    hour: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    min_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    max_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # Percentiles describe the most recent flushed batch only.
    p50_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    p95_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    p99_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    error_4xx_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_5xx_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
