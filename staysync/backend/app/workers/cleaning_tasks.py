# backend/app/workers/cleaning_tasks.py
from __future__ import annotations

import logging
from typing import Optional

from ..domain.cleaning_types import MODE_REALTIME
from ..services.cleaning_sync_runtime import build_backfill, build_reconciler
from .celery_app import celery_app

log = logging.getLogger(__name__)

WORKER_ACTOR = "worker"


@celery_app.task(name="app.workers.cleaning_tasks.sync_order_to_cleaning_tasks")
def sync_order_to_cleaning_tasks(order_id: str, deleted: bool = False) -> dict:
    """
    Fired by the order service on create/update/cancel/delete.

    Not retried: the reconciler never raises for a sync failure, the failed
    attempt is in cleaning_sync_logs and the next order event or backfill
    repairs it.
    """
    res = build_reconciler().sync_order(str(order_id), mode=MODE_REALTIME, actor=WORKER_ACTOR, deleted=bool(deleted))
    return res.as_dict()


@celery_app.task(name="app.workers.cleaning_tasks.backfill_cleaning_tasks")
def backfill_cleaning_tasks(date_from: str, date_to: str, concurrency: Optional[int] = None) -> dict:
    try:
        report = build_backfill().run(date_from, date_to, concurrency, actor=WORKER_ACTOR)
    except ValueError as e:
        log.warning("cleaning backfill rejected: %s", e)
        return {"ok": False, "error": str(e)}
    return report.as_dict()


@celery_app.task(name="app.workers.cleaning_tasks.sweep_orphaned_cleaning_tasks")
def sweep_orphaned_cleaning_tasks() -> dict:
    """Periodic; schedule with celery-beat."""
    return build_backfill().sweep_orphans(actor=WORKER_ACTOR).as_dict()
