# backend/app/workers/celery_app.py
from __future__ import annotations

from celery import Celery

from ..config import settings

celery_app = Celery(
    "staysync",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.workers.cleaning_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
)

# order events and bulk repairs must not queue behind each other
celery_app.conf.task_routes = {
    "app.workers.cleaning_tasks.sync_order_to_cleaning_tasks": {"queue": "cleaning_sync"},
    "app.workers.cleaning_tasks.backfill_cleaning_tasks": {"queue": "cleaning_backfill"},
    "app.workers.cleaning_tasks.sweep_orphaned_cleaning_tasks": {"queue": "cleaning_backfill"},
}
