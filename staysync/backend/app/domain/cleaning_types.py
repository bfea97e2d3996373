from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Optional

# persisted task types
CHECKOUT_CLEAN = "checkout_clean"
CHECKIN_CLEAN = "checkin_clean"
TASK_TYPES = (CHECKOUT_CLEAN, CHECKIN_CLEAN)

# derivation task types
CHECKOUT_CLEANING = "checkout_cleaning"
CHECKIN_CLEANING = "checkin_cleaning"

DERIVE_TYPE_FOR_TASK = {
    CHECKOUT_CLEAN: CHECKOUT_CLEANING,
    CHECKIN_CLEAN: CHECKIN_CLEANING,
}

STATUS_PENDING = "pending"
STATUS_CANCELLED = "cancelled"

MODE_REALTIME = "realtime"
MODE_BATCH = "batch"
MODES = (MODE_REALTIME, MODE_BATCH)

# per-task actions
ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_CANCELLED = "cancelled"
ACTION_NO_CHANGE = "no_change"
ACTION_SKIPPED_LOCKED = "skipped_locked"
ACTION_FAILED = "failed"

# strongest first
ACTION_PRECEDENCE = (
    ACTION_FAILED,
    ACTION_CREATED,
    ACTION_UPDATED,
    ACTION_CANCELLED,
    ACTION_SKIPPED_LOCKED,
    ACTION_NO_CHANGE,
)

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"

OUTCOME_FOR_ACTION = {
    ACTION_CREATED: OUTCOME_SUCCESS,
    ACTION_UPDATED: OUTCOME_SUCCESS,
    ACTION_CANCELLED: OUTCOME_SUCCESS,
    ACTION_NO_CHANGE: OUTCOME_SKIPPED,
    ACTION_SKIPPED_LOCKED: OUTCOME_SKIPPED,
    ACTION_FAILED: OUTCOME_FAILED,
}

# fields a lock protects; also the fields a sync derives
SCHEDULE_FIELDS = (
    "property_id",
    "task_date",
    "priority",
    "service_type",
    "rooms",
    "content",
    "recommended_start_day",
)


@dataclass(frozen=True)
class OrderSnapshot:
    id: str
    property_id: Optional[str] = None
    checkin: Any = None
    checkout: Any = None
    nights: Any = None
    status: Optional[str] = None
    cleaning_fee: Any = None
    note: Optional[str] = None
    guest_name: Optional[str] = None
    confirmation_code: Optional[str] = None
    source: Optional[str] = None


@dataclass(frozen=True)
class PropertySnapshot:
    id: str
    code: Optional[str] = None
    capacity: Optional[int] = None
    type: Optional[str] = None


@dataclass
class CleaningTaskRecord:
    id: str
    order_id: str
    task_type: str
    task_date: date
    property_id: Optional[str] = None
    status: str = STATUS_PENDING
    priority: str = "low"
    service_type: str = "standard"
    rooms: int = 1
    content: Optional[str] = None
    recommended_start_day: Optional[date] = None
    assignee_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    auto_sync_enabled: bool = True
    reschedule_required: bool = False
    sync_fingerprint: Optional[str] = None
    source: str = "auto"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.order_id, self.task_type)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SyncLogEntry:
    order_id: str
    task_type: Optional[str]
    mode: str
    action: str
    status: str
    created_at: datetime
    task_id: Optional[str] = None
    actor: Optional[str] = None
    error: Optional[str] = None
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    meta: dict[str, Any] = field(default_factory=dict)


def is_inactive_status(raw: Any) -> bool:
    s = str(raw or "").strip().lower()
    if not s:
        return True
    if s == "invalid":
        return True
    return "cancel" in s
