# backend/app/schemas.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# -------------------- Single-order sync --------------------

class TaskSyncOut(BaseModel):
    task_type: str
    action: str
    status: str
    task_id: Optional[str] = None
    error: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


class SyncOrderOut(BaseModel):
    ok: bool
    order_id: str
    mode: str
    action: str
    status: str
    error: Optional[str] = None
    duration_ms: int = 0
    items: list[TaskSyncOut]


# -------------------- Backfill / sweep --------------------

class BackfillIn(BaseModel):
    # "YYYY-MM-DD" or a full timestamp
    date_from: str
    date_to: str
    concurrency: Optional[int] = None


class BackfillItemOut(BaseModel):
    order_id: str
    ok: bool
    action: str
    status: str
    error: Optional[str] = None


class BackfillOut(BaseModel):
    ok: bool = True
    error: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    concurrency: int
    started_at: datetime
    total: int
    success: int
    failed: int
    skipped: int
    counts: dict[str, int]
    tasks_before: Optional[int] = None
    tasks_after: Optional[int] = None
    tasks_in_range_after: Optional[int] = None
    duration_ms: int
    items: list[BackfillItemOut]


# -------------------- Read side --------------------

class TaskPreviewOut(BaseModel):
    order_id: str
    task_type: str
    task_date: date
    rooms: int
    service_type: str
    priority: str
    content: str
    recommended_start_day: date
    warnings: list[str] = Field(default_factory=list)


class CleaningTaskOut(BaseModel):
    id: str
    order_id: str
    task_type: str
    property_id: Optional[str] = None
    task_date: date
    status: str
    priority: str
    service_type: str
    rooms: int
    content: Optional[str] = None
    recommended_start_day: Optional[date] = None
    assignee_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    auto_sync_enabled: bool
    reschedule_required: bool
    sync_fingerprint: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SyncLogOut(BaseModel):
    id: int
    order_id: str
    task_id: Optional[str] = None
    task_type: Optional[str] = None
    mode: str
    action: str
    status: str
    actor: Optional[str] = None
    error: Optional[str] = None
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
