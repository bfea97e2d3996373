# backend/app/services/sync_ledger.py
from __future__ import annotations

import json
import threading
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..domain.cleaning_types import SyncLogEntry
from ..models import CleaningSyncLog


class SyncLedger(Protocol):
    def append(self, entry: SyncLogEntry) -> None: ...


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def _loads(s: Optional[str], default: Any):
    if not s:
        return default
    try:
        return json.loads(s)
    except Exception:
        return default


class InMemorySyncLedger:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[SyncLogEntry] = []

    def append(self, entry: SyncLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> list[SyncLogEntry]:
        with self._lock:
            return list(self._entries)

    def for_order(self, order_id: str) -> list[SyncLogEntry]:
        with self._lock:
            return [e for e in self._entries if e.order_id == str(order_id)]


class SqlSyncLedger:
    """
    Writes each entry in its own short transaction.

    Kept apart from the sync's unit of work so a rolled-back attempt still
    leaves its failed row behind.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def append(self, entry: SyncLogEntry) -> None:
        db = self._session_factory()
        try:
            db.add(
                CleaningSyncLog(
                    order_id=str(entry.order_id),
                    task_id=entry.task_id,
                    task_type=entry.task_type,
                    mode=entry.mode,
                    action=entry.action,
                    status=entry.status,
                    actor=entry.actor,
                    error=entry.error,
                    before_json=_dumps(entry.before),
                    after_json=_dumps(entry.after),
                    meta_json=_dumps(entry.meta),
                    created_at=entry.created_at,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def sync_log_to_dict(row: CleaningSyncLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "order_id": row.order_id,
        "task_id": row.task_id,
        "task_type": row.task_type,
        "mode": row.mode,
        "action": row.action,
        "status": row.status,
        "actor": row.actor,
        "error": row.error,
        "before": _loads(row.before_json, None),
        "after": _loads(row.after_json, None),
        "meta": _loads(row.meta_json, {}),
        "created_at": row.created_at,
    }


def list_sync_logs(
    db: Session,
    *,
    order_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 200,
) -> list[CleaningSyncLog]:
    # read side for operators; the reconciler never calls this
    limit = max(1, min(int(limit), 1000))
    q = select(CleaningSyncLog)
    if order_id:
        q = q.where(CleaningSyncLog.order_id == str(order_id))
    if action:
        q = q.where(CleaningSyncLog.action == str(action))
    q = q.order_by(desc(CleaningSyncLog.id)).limit(limit)
    return list(db.scalars(q).all())
