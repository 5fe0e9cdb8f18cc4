"""
Database Models for ForgeHeal
=============================

SQLAlchemy models for persisting learning memory and finished cycles.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class KVBlob(Base):
    """A JSON document stored under a fixed key (e.g. the fix-pattern array)."""
    __tablename__ = "kv_blobs"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TaskRecord(Base):
    """Summary of one finished improvement cycle."""
    __tablename__ = "task_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_uuid: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    description: Mapped[str] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(30))
    status: Mapped[str] = mapped_column(String(20))  # completed, failed, cancelled
    risk_level: Mapped[str] = mapped_column(String(10), default="low")
    iterations: Mapped[int] = mapped_column(Integer, default=0)
    files_changed: Mapped[list[str]] = mapped_column(JSON, default=list)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
