# backend/app/services/cleaning_sync.py
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Optional

from ..domain.cleaning_rules import compute_task_fields, schedule_fingerprint
from ..domain.cleaning_types import (
    ACTION_CANCELLED,
    ACTION_CREATED,
    ACTION_FAILED,
    ACTION_NO_CHANGE,
    ACTION_PRECEDENCE,
    ACTION_SKIPPED_LOCKED,
    ACTION_UPDATED,
    DERIVE_TYPE_FOR_TASK,
    MODE_REALTIME,
    MODES,
    OUTCOME_FAILED,
    OUTCOME_FOR_ACTION,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCESS,
    SCHEDULE_FIELDS,
    STATUS_CANCELLED,
    STATUS_PENDING,
    TASK_TYPES,
    CleaningTaskRecord,
    OrderSnapshot,
    PropertySnapshot,
    SyncLogEntry,
    is_inactive_status,
)
from ..domain.errors import CleaningSyncError, InvalidSyncMode, error_code
from .cleaning_repository import SyncStore
from .runtime_metrics import METRICS
from .sync_ledger import SyncLedger

log = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True)
class TaskSyncOutcome:
    task_type: str
    action: str
    task_id: Optional[str] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return OUTCOME_FOR_ACTION[self.action]

    def as_dict(self) -> dict[str, Any]:
        return {
            "task_type": self.task_type,
            "action": self.action,
            "status": self.status,
            "task_id": self.task_id,
            "error": self.error,
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class SyncOrderResult:
    order_id: str
    mode: str
    action: str
    status: str
    items: list[TaskSyncOutcome]
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status != OUTCOME_FAILED

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "order_id": self.order_id,
            "mode": self.mode,
            "action": self.action,
            "status": self.status,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "items": [i.as_dict() for i in self.items],
        }


def aggregate_action(actions: list[str]) -> str:
    for a in ACTION_PRECEDENCE:
        if a in actions:
            return a
    return ACTION_NO_CHANGE


def aggregate_status(items: list[TaskSyncOutcome]) -> str:
    statuses = {i.status for i in items}
    if OUTCOME_FAILED in statuses:
        return OUTCOME_FAILED
    if OUTCOME_SUCCESS in statuses:
        return OUTCOME_SUCCESS
    return OUTCOME_SKIPPED


@dataclass
class TaskSyncPlan:
    action: str
    record: Optional[CleaningTaskRecord]  # None: nothing to write
    warnings: list[str] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)


def _desired_schedule(order: OrderSnapshot, prop: Optional[PropertySnapshot], task_type: str, now: datetime):
    derived = compute_task_fields(order, prop, DERIVE_TYPE_FOR_TASK[task_type], now_day=now.date())
    desired = {
        "property_id": order.property_id,
        "task_date": derived.date,
        "priority": derived.priority,
        "service_type": derived.service_type,
        "rooms": derived.rooms,
        "content": derived.content,
        "recommended_start_day": derived.recommended_start_day,
    }
    return desired, list(derived.warnings)


def plan_task_sync(
    order: Optional[OrderSnapshot],
    prop: Optional[PropertySnapshot],
    existing: Optional[CleaningTaskRecord],
    task_type: str,
    now: datetime,
) -> TaskSyncPlan:
    """
    Decide what one (order, task_type) row should become.

    Pure: no I/O, the caller supplies the current row and the current order.
    Raises OrderMissingDates when an active order has no usable dates.
    """
    # -------- desired = none / cancelled --------
    if order is None or is_inactive_status(order.status):
        reason = "order_not_found" if order is None else "order_inactive"
        if existing is None or existing.status == STATUS_CANCELLED:
            return TaskSyncPlan(ACTION_NO_CHANGE, None, meta={"reason": reason})
        # cancellation applies to locked rows too
        rec = replace(existing, status=STATUS_CANCELLED, updated_at=now)
        return TaskSyncPlan(ACTION_CANCELLED, rec, meta={"reason": reason, "locked": not existing.auto_sync_enabled})

    # -------- desired = scheduled --------
    desired, warnings = _desired_schedule(order, prop, task_type, now)
    fp = schedule_fingerprint(desired)

    if existing is None:
        rec = CleaningTaskRecord(
            id=str(uuid.uuid4()),
            order_id=str(order.id),
            task_type=task_type,
            status=STATUS_PENDING,
            assignee_id=None,
            scheduled_at=None,
            auto_sync_enabled=True,
            reschedule_required=False,
            sync_fingerprint=fp,
            created_at=now,
            updated_at=now,
            **desired,
        )
        return TaskSyncPlan(ACTION_CREATED, rec, warnings, meta={"fingerprint": fp})

    drift = [k for k in SCHEDULE_FIELDS if getattr(existing, k) != desired[k]]

    if not existing.auto_sync_enabled:
        meta = {"fingerprint": fp, "drift": drift}
        if drift and not existing.reschedule_required:
            return TaskSyncPlan(ACTION_SKIPPED_LOCKED, replace(existing, reschedule_required=True, updated_at=now), warnings, meta)
        return TaskSyncPlan(ACTION_SKIPPED_LOCKED, None, warnings, meta)

    changes: dict[str, Any] = {k: desired[k] for k in drift}
    if "property_id" in changes:
        # an on-site assignment belongs to the old property
        if existing.assignee_id is not None:
            changes["assignee_id"] = None
        if existing.scheduled_at is not None:
            changes["scheduled_at"] = None
    if existing.status == STATUS_CANCELLED:
        changes["status"] = STATUS_PENDING
    if existing.reschedule_required:
        changes["reschedule_required"] = False
    if existing.sync_fingerprint != fp:
        changes["sync_fingerprint"] = fp

    if not changes:
        return TaskSyncPlan(ACTION_NO_CHANGE, None, warnings, meta={"fingerprint": fp})

    rec = replace(existing, updated_at=now, **changes)
    return TaskSyncPlan(ACTION_UPDATED, rec, warnings, meta={"fingerprint": fp, "changed": sorted(changes)})


class SyncReconciler:
    """
    Brings the cleaning_tasks rows of one order in line with the order.

    Each task type runs in its own unit of work: the row is read for update,
    then the order is read, so concurrent syncs of the same order serialize on
    the row and always apply the latest order state. Every attempt is written
    to the ledger; nothing is raised to the caller.
    """

    def __init__(self, store: SyncStore, ledger: SyncLedger, *, clock: Optional[Clock] = None) -> None:
        self.store = store
        self.ledger = ledger
        self.clock: Clock = clock or _utcnow

    def sync_order(
        self,
        order_id: str,
        *,
        mode: str = MODE_REALTIME,
        actor: Optional[str] = None,
        deleted: bool = False,
    ) -> SyncOrderResult:
        order_id = str(order_id)
        if mode not in MODES:
            # rejected before any task is touched, so there is nothing to ledger
            log.warning("cleaning sync rejected order=%s mode=%s", order_id, mode, extra={"order_id": order_id})
            METRICS.inc("cleaning_sync.invalid_mode")
            return SyncOrderResult(
                order_id=order_id,
                mode=str(mode),
                action=ACTION_FAILED,
                status=OUTCOME_FAILED,
                items=[],
                error=InvalidSyncMode.code,
            )

        t0 = time.perf_counter()
        items = [
            self._sync_task(order_id, task_type, mode=mode, actor=actor, deleted=deleted)
            for task_type in TASK_TYPES
        ]

        action = aggregate_action([i.action for i in items])
        status = aggregate_status(items)
        first_error = next((i.error for i in items if i.error), None)
        result = SyncOrderResult(
            order_id=order_id,
            mode=mode,
            action=action,
            status=status,
            items=items,
            error=first_error,
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )

        log.info(
            "cleaning sync order=%s action=%s status=%s",
            order_id,
            action,
            status,
            extra={"order_id": order_id, "mode": mode, "action": action, "outcome": status},
        )
        return result

    def _sync_task(
        self,
        order_id: str,
        task_type: str,
        *,
        mode: str,
        actor: Optional[str],
        deleted: bool,
    ) -> TaskSyncOutcome:
        now = self.clock()
        before: Optional[dict[str, Any]] = None
        after: Optional[dict[str, Any]] = None
        task_id: Optional[str] = None
        meta: dict[str, Any] = {"deleted": bool(deleted)}

        try:
            with self.store.unit_of_work() as uow:
                existing = uow.tasks.find_by_order_and_type(order_id, task_type, for_update=True)
                order = None if deleted else uow.orders.get_order(order_id)
                prop = uow.orders.get_property(order.property_id) if order and order.property_id else None

                if existing is not None:
                    before = existing.as_dict()
                    task_id = existing.id

                plan = plan_task_sync(order, prop, existing, task_type, now)
                if plan.record is not None:
                    saved = uow.tasks.upsert(plan.record)
                    uow.commit()
                    after = saved.as_dict()
                    task_id = saved.id

            meta.update(plan.meta)
            outcome = TaskSyncOutcome(task_type, plan.action, task_id=task_id, warnings=plan.warnings)
        except CleaningSyncError as e:
            log.warning(
                "cleaning sync failed order=%s task_type=%s code=%s: %s",
                order_id,
                task_type,
                e.code,
                e,
                extra={"order_id": order_id, "task_type": task_type, "mode": mode, "action": ACTION_FAILED},
            )
            meta["detail"] = str(e)
            outcome = TaskSyncOutcome(task_type, ACTION_FAILED, task_id=task_id, error=e.code)
        except Exception as e:
            log.exception(
                "cleaning sync crashed order=%s task_type=%s",
                order_id,
                task_type,
                extra={"order_id": order_id, "task_type": task_type, "mode": mode, "action": ACTION_FAILED},
            )
            meta["detail"] = f"{type(e).__name__}: {e}"
            outcome = TaskSyncOutcome(task_type, ACTION_FAILED, task_id=task_id, error=error_code(e))

        METRICS.inc(f"cleaning_sync.{outcome.action}")
        if outcome.warnings:
            meta["warnings"] = list(outcome.warnings)

        self._append_ledger(
            SyncLogEntry(
                order_id=order_id,
                task_type=task_type,
                mode=mode,
                action=outcome.action,
                status=outcome.status,
                created_at=now,
                task_id=task_id,
                actor=actor,
                error=outcome.error,
                before=before,
                after=after,
                meta=meta,
            )
        )
        return outcome

    def _append_ledger(self, entry: SyncLogEntry) -> None:
        try:
            self.ledger.append(entry)
        except Exception:
            # the sync itself already committed or rolled back
            METRICS.inc("cleaning_sync.ledger_errors")
            log.exception(
                "cleaning sync ledger append failed order=%s task_type=%s",
                entry.order_id,
                entry.task_type,
                extra={"order_id": entry.order_id, "task_type": entry.task_type, "action": entry.action},
            )
