import datetime
import uuid

from sqlalchemy import BigInteger, Date, DateTime, Integer, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.infrastructure.db.base import Base


class StorageMetric(Base):
    __tablename__ = "storage_metrics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, unique=True)
    total_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_storage_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    video_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_storage_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    image_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_storage_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    document_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    document_storage_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
