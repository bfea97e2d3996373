from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Optional

from .cleaning_types import (
    CHECKIN_CLEANING,
    CHECKOUT_CLEANING,
    OrderSnapshot,
    PropertySnapshot,
)
from .errors import OrderMissingDates
from .stay_normalizer import add_days, diff_days, normalize_stay

SERVICE_STANDARD = "standard"
SERVICE_DEEP = "deep"
SERVICE_LINEN_ONLY = "linen_only"
SERVICE_INSPECTION = "inspection"

PRIORITY_LABELS = ("low", "medium", "high", "urgent")

DEEP_CLEAN_FEE_THRESHOLD = 180.0
LARGE_PROPERTY_ROOMS = 4

_NOTE_DEEP = re.compile(r"deep|深度")
_NOTE_LINEN = re.compile(r"linen|bed|床品")
_PROPERTY_INSPECTION = re.compile(r"inspection")


@dataclass(frozen=True)
class ServiceTypeContext:
    note: str  # lowercased
    cleaning_fee: float
    property_type: str  # lowercased


@dataclass(frozen=True)
class ServiceTypeRule:
    name: str
    matches: Callable[[ServiceTypeContext], bool]
    service_type: str


# Evaluated top to bottom; the LAST matching rule decides. Do not reorder:
# a fee >= 180 overrides any note keyword, and an inspection property
# overrides everything above it.
SERVICE_TYPE_RULES: tuple[ServiceTypeRule, ...] = (
    ServiceTypeRule("note_mentions_deep", lambda c: bool(_NOTE_DEEP.search(c.note)), SERVICE_DEEP),
    ServiceTypeRule("note_mentions_linen", lambda c: bool(_NOTE_LINEN.search(c.note)), SERVICE_LINEN_ONLY),
    ServiceTypeRule("cleaning_fee_forces_deep", lambda c: c.cleaning_fee >= DEEP_CLEAN_FEE_THRESHOLD, SERVICE_DEEP),
    ServiceTypeRule("inspection_property", lambda c: bool(_PROPERTY_INSPECTION.search(c.property_type)), SERVICE_INSPECTION),
)


@dataclass(frozen=True)
class DerivedTaskFields:
    date: date
    rooms: int
    service_type: str
    priority: str
    content: str
    recommended_start_day: date
    warnings: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "rooms": self.rooms,
            "service_type": self.service_type,
            "priority": self.priority,
            "content": self.content,
            "recommended_start_day": self.recommended_start_day.isoformat(),
            "warnings": list(self.warnings),
        }


def _safe_float(v: Any, default: float = 0.0) -> float:
    if v is None or isinstance(v, bool):
        return default
    try:
        x = float(v)
    except (TypeError, ValueError):
        return default
    return x if math.isfinite(x) else default


def _rooms(prop: Optional[PropertySnapshot]) -> int:
    cap = _safe_float(prop.capacity if prop else None, 0.0)
    return max(1, int(cap) if cap else 1)


def classify_service_type(ctx: ServiceTypeContext) -> str:
    out = SERVICE_STANDARD
    for rule in SERVICE_TYPE_RULES:
        if rule.matches(ctx):
            out = rule.service_type
    return out


def clamp_priority(p: int) -> str:
    if p <= 0:
        return "low"
    if p == 1:
        return "medium"
    if p == 2:
        return "high"
    return "urgent"


def _urgency_points(days_to: int) -> int:
    if days_to <= 1:
        return 3
    if days_to <= 3:
        return 2
    if days_to <= 7:
        return 1
    return 0


def compute_task_fields(
    order: OrderSnapshot,
    prop: Optional[PropertySnapshot],
    task_type: str,
    now_day: Optional[date] = None,
) -> DerivedTaskFields:
    """
    Derive a cleaning task's scheduling attributes from a booking.

    task_type is checkout_cleaning or checkin_cleaning. The task date is the
    matching stay boundary, falling back to the other one; when neither
    resolves this raises OrderMissingDates.
    """
    if task_type not in (CHECKOUT_CLEANING, CHECKIN_CLEANING):
        raise ValueError(f"unknown task_type={task_type}")

    today = now_day or datetime.utcnow().date()
    stay = normalize_stay(order.checkin, order.checkout, order.nights)
    co, ci = stay.checkout, stay.checkin

    primary = co if task_type == CHECKOUT_CLEANING else ci
    task_date = primary or co or ci
    if task_date is None:
        raise OrderMissingDates(f"order {order.id} has no resolvable checkin/checkout")

    rooms = _rooms(prop)
    service_type = classify_service_type(
        ServiceTypeContext(
            note=str(order.note or "").lower(),
            cleaning_fee=_safe_float(order.cleaning_fee),
            property_type=str((prop.type if prop else None) or "").lower(),
        )
    )

    src = str(order.source or "").strip().lower()

    p = _urgency_points(diff_days(today, task_date))
    if rooms >= LARGE_PROPERTY_ROOMS:
        p += 1
    if service_type == SERVICE_DEEP:
        p += 1
    if "booking" in src:
        p += 1
    priority = clamp_priority(p)

    lines: list[str] = []
    prop_code = str((prop.code if prop else None) or order.property_id or "").strip()
    if prop_code:
        lines.append(f"property:{prop_code}")
    if src:
        lines.append(f"source:{src}")
    lines.append(f"type:{task_type}")
    lines.append(f"service:{service_type}")
    lines.append(f"rooms:{rooms}")
    if order.guest_name and str(order.guest_name).strip():
        lines.append(f"guest:{str(order.guest_name).strip()}")
    if order.confirmation_code and str(order.confirmation_code).strip():
        lines.append(f"code:{str(order.confirmation_code).strip()}")
    if task_type == CHECKOUT_CLEANING and co:
        lines.append(f"checkout:{co.isoformat()}")
    if task_type == CHECKIN_CLEANING and ci:
        lines.append(f"checkin:{ci.isoformat()}")

    # checkin cleans get a one-day prep window
    recommended_start_day = task_date if task_type == CHECKOUT_CLEANING else add_days(task_date, -1)

    return DerivedTaskFields(
        date=task_date,
        rooms=rooms,
        service_type=service_type,
        priority=priority,
        content="\n".join(lines),
        recommended_start_day=recommended_start_day,
        warnings=list(stay.warnings),
    )


def schedule_fingerprint(values: dict[str, Any]) -> str:
    parts = []
    for k in sorted(values):
        v = values[k]
        parts.append(f"{k}={v.isoformat() if isinstance(v, date) else ('' if v is None else v)}")
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
