# backend/app/models.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


# -----------------------------
# External records (read-only to the sync engine)
# -----------------------------
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # "type" is the column name used by the order/property store
    property_type: Mapped[Optional[str]] = mapped_column("type", String(60), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    property_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)

    # raw channel text: "2026-02-17" or "2026-02-17T12:00:00Z"; normalized on read
    checkin: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)
    checkout: Mapped[Optional[str]] = mapped_column(String(40), nullable=True, index=True)
    nights: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="confirmed")
    cleaning_fee: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    guest_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    confirmation_code: Mapped[Optional[str]] = mapped_column(String(80), nullable=True, index=True)
    source: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# -----------------------------
# Owned by the sync engine
# -----------------------------
class CleaningTask(Base):
    __tablename__ = "cleaning_tasks"
    __table_args__ = (
        UniqueConstraint("order_id", "task_type", name="uq_cleaning_tasks_order_task_type"),
        Index("idx_cleaning_tasks_task_date", "task_date"),
        Index("idx_cleaning_tasks_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    task_type: Mapped[str] = mapped_column(String(30), nullable=False)  # checkout_clean|checkin_clean
    property_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    task_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="low")
    service_type: Mapped[str] = mapped_column(String(20), nullable=False, default="standard")
    rooms: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recommended_start_day: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # field-operations owned
    assignee_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    auto_sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reschedule_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sync_fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="auto")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class CleaningSyncLog(Base):
    """Append-only; one row per reconciliation attempt of one (order, task_type)."""

    __tablename__ = "cleaning_sync_logs"
    __table_args__ = (
        Index("idx_cleaning_sync_logs_created_at", "created_at"),
        Index("idx_cleaning_sync_logs_action", "action"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    task_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    mode: Mapped[str] = mapped_column(String(20), nullable=False, default="realtime")  # realtime|batch
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # success|failed|skipped
    actor: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
