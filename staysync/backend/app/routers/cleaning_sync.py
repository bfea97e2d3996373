# backend/app/routers/cleaning_sync.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal, require_operator, require_role
from ..config import settings
from ..db import get_db
from ..domain.cleaning_rules import compute_task_fields
from ..domain.cleaning_types import CHECKOUT_CLEANING
from ..domain.errors import OrderMissingDates
from ..schemas import (
    BackfillIn,
    BackfillOut,
    CleaningTaskOut,
    SyncLogOut,
    SyncOrderOut,
    TaskPreviewOut,
)
from ..services.cleaning_backfill import BackfillOrchestrator, parse_range
from ..services.cleaning_sync import SyncReconciler
from ..services.cleaning_sync_runtime import get_backfill, get_reconciler
from ..services.sync_ledger import list_sync_logs, sync_log_to_dict

router = APIRouter(prefix="/cleaning-sync", tags=["cleaning-sync"])


@router.post("/orders/{order_id}/sync", response_model=SyncOrderOut)
def sync_order(
    order_id: str,
    deleted: bool = Query(default=False),
    p: Principal = Depends(get_principal),
    reconciler: SyncReconciler = Depends(get_reconciler),
):
    if deleted:
        # cancels tasks without looking at the order row
        require_role(p, "operator")
    # sync failures come back as ok=false, never as a 5xx
    res = reconciler.sync_order(order_id, actor=p.email, deleted=deleted)
    return res.as_dict()


@router.post("/backfill", response_model=BackfillOut)
def backfill(
    payload: BackfillIn,
    p: Principal = Depends(require_operator),
    orchestrator: BackfillOrchestrator = Depends(get_backfill),
):
    try:
        d0, d1 = parse_range(payload.date_from, payload.date_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    report = orchestrator.run(d0, d1, payload.concurrency, actor=p.email)
    return report.as_dict()


@router.post("/sweep-orphans", response_model=BackfillOut)
def sweep_orphans(
    p: Principal = Depends(require_operator),
    orchestrator: BackfillOrchestrator = Depends(get_backfill),
):
    return orchestrator.sweep_orphans(actor=p.email).as_dict()


@router.get("/orders/{order_id}/preview", response_model=TaskPreviewOut)
def preview(
    order_id: str,
    task_type: str = Query(default=CHECKOUT_CLEANING, pattern="^(checkout_cleaning|checkin_cleaning)$"),
    p: Principal = Depends(get_principal),
    reconciler: SyncReconciler = Depends(get_reconciler),
):
    with reconciler.store.unit_of_work() as uow:
        order = uow.orders.get_order(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        prop = uow.orders.get_property(order.property_id) if order.property_id else None

    try:
        derived = compute_task_fields(order, prop, task_type, now_day=reconciler.clock().date())
    except OrderMissingDates as e:
        raise HTTPException(status_code=422, detail={"code": e.code, "message": str(e)})

    out = derived.as_dict()
    out["task_date"] = out.pop("date")
    return {"order_id": order.id, "task_type": task_type, **out}


@router.get("/tasks", response_model=list[CleaningTaskOut])
def list_tasks(
    date_from: str = Query(...),
    date_to: str = Query(...),
    p: Principal = Depends(get_principal),
    reconciler: SyncReconciler = Depends(get_reconciler),
):
    try:
        d0, d1 = parse_range(date_from, date_to)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    with reconciler.store.unit_of_work() as uow:
        rows = uow.tasks.list_in_range(d0, d1)
    return [r.as_dict() for r in rows]


@router.get("/logs", response_model=list[SyncLogOut])
def list_logs(
    order_id: Optional[str] = Query(default=None),
    action: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    p: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    rows = list_sync_logs(
        db,
        order_id=order_id,
        action=action,
        limit=limit or settings.sync_log_default_limit,
    )
    return [sync_log_to_dict(r) for r in rows]
