import uuid

from sqlalchemy import BigInteger, DateTime, Float, Integer, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.base import Base, JSONType


class PlatformHealthSnapshot(Base):
    """Append-only; rows are never updated after insert."""

    __tablename__ = "platform_health_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    overall_health_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    api_health_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    storage_health_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    database_health_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    avg_response_time_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    error_rate_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    active_users_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    requests_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    memory_usage_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cpu_usage_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    disk_usage_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    database_connections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uptime_seconds: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    alerts: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    metadata_json: Mapped[dict] = mapped_column("metadata", JSONType, nullable=False, default=dict)
