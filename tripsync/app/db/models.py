"""SQLAlchemy ORM models for the local store."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TripRow(Base):
    """Trip table - full trip document plus indexed columns."""

    __tablename__ = "trip"
    __table_args__ = (
        Index("idx_trip_local_only", "is_local_only"),
        Index("idx_trip_last_accessed", "last_accessed_at"),
    )

    trip_id: Mapped[str] = mapped_column(Text, primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    is_local_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Trip.model_dump(mode="json"); source of truth for every other column
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)


class SyncQueueRow(Base):
    """Sync queue table - pending remote operations in delivery order."""

    __tablename__ = "sync_queue"
    __table_args__ = (Index("idx_sync_queue_trip", "trip_id"),)

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    trip_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
