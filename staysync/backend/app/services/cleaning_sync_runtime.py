# backend/app/services/cleaning_sync_runtime.py
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..db import SessionLocal
from .cleaning_backfill import BackfillOrchestrator
from .cleaning_repository_sql import SqlSyncStore
from .cleaning_sync import Clock, SyncReconciler
from .sync_ledger import SqlSyncLedger


def build_reconciler(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    clock: Optional[Clock] = None,
) -> SyncReconciler:
    return SyncReconciler(SqlSyncStore(session_factory), SqlSyncLedger(session_factory), clock=clock)


def build_backfill(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    clock: Optional[Clock] = None,
) -> BackfillOrchestrator:
    reconciler = build_reconciler(session_factory, clock=clock)
    return BackfillOrchestrator(reconciler.store, reconciler, clock=clock)


def get_reconciler() -> SyncReconciler:
    """FastAPI dependency; tests override it."""
    return build_reconciler()


def get_backfill() -> BackfillOrchestrator:
    return build_backfill()
