# backend/app/services/cleaning_backfill.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from ..config import settings
from ..domain.cleaning_types import (
    ACTION_CANCELLED,
    ACTION_CREATED,
    ACTION_FAILED,
    ACTION_NO_CHANGE,
    ACTION_SKIPPED_LOCKED,
    ACTION_UPDATED,
    MODE_BATCH,
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCESS,
)
from ..domain.errors import CleaningSyncError, error_code
from ..domain.stay_normalizer import day_only
from .cleaning_repository import SyncStore
from .cleaning_sync import Clock, SyncReconciler
from .runtime_metrics import METRICS

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


_COUNTED_ACTIONS = (
    ACTION_CREATED,
    ACTION_UPDATED,
    ACTION_CANCELLED,
    ACTION_NO_CHANGE,
    ACTION_SKIPPED_LOCKED,
    ACTION_FAILED,
)


@dataclass(frozen=True)
class BackfillItem:
    order_id: str
    ok: bool
    action: str
    status: str
    error: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "ok": self.ok,
            "action": self.action,
            "status": self.status,
            "error": self.error,
        }


@dataclass
class BackfillReport:
    date_from: Optional[date]
    date_to: Optional[date]
    concurrency: int
    started_at: datetime
    items: list[BackfillItem] = field(default_factory=list)
    # None when the count could not be read
    tasks_before: Optional[int] = None
    tasks_after: Optional[int] = None
    tasks_in_range_after: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def total(self) -> int:
        return len(self.items)

    def _count_status(self, status: str) -> int:
        return sum(1 for i in self.items if i.status == status)

    @property
    def success(self) -> int:
        return self._count_status(OUTCOME_SUCCESS)

    @property
    def failed(self) -> int:
        return self._count_status(OUTCOME_FAILED)

    @property
    def skipped(self) -> int:
        return self._count_status(OUTCOME_SKIPPED)

    @property
    def counts(self) -> dict[str, int]:
        out = {a: 0 for a in _COUNTED_ACTIONS}
        for i in self.items:
            out[i.action] = out.get(i.action, 0) + 1
        return out

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "error": self.error,
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "concurrency": self.concurrency,
            "started_at": self.started_at.isoformat(),
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "counts": self.counts,
            "tasks_before": self.tasks_before,
            "tasks_after": self.tasks_after,
            "tasks_in_range_after": self.tasks_in_range_after,
            "duration_ms": self.duration_ms,
            "items": [i.as_dict() for i in self.items],
        }


class _Cursor:
    """Shared index over the candidate list; take() is the only synchronized step."""

    def __init__(self, size: int) -> None:
        self._lock = threading.Lock()
        self._next = 0
        self._size = size

    def take(self) -> Optional[int]:
        with self._lock:
            if self._next >= self._size:
                return None
            i = self._next
            self._next += 1
            return i


def clamp_concurrency(value: Optional[int], *, default: int, maximum: int) -> int:
    try:
        n = int(value) if value is not None else int(default)
    except (TypeError, ValueError):
        n = int(default)
    return max(1, min(int(maximum), n))


def parse_range(date_from: Any, date_to: Any) -> tuple[date, date]:
    d0 = day_only(date_from)
    d1 = day_only(date_to)
    if d0 is None or d1 is None:
        raise ValueError("date_from and date_to must be dates (YYYY-MM-DD)")
    if d0 > d1:
        raise ValueError(f"date_from {d0.isoformat()} is after date_to {d1.isoformat()}")
    return d0, d1


class BackfillOrchestrator:
    """
    Re-syncs every order touching a date range through a bounded thread pool.

    Workers pull indexes from one shared cursor; each order is reconciled in
    batch mode and a crash in one never stops the others.
    """

    def __init__(
        self,
        store: SyncStore,
        reconciler: SyncReconciler,
        *,
        clock: Optional[Clock] = None,
        default_concurrency: Optional[int] = None,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self.store = store
        self.reconciler = reconciler
        self.clock: Clock = clock or _utcnow
        self.default_concurrency = int(default_concurrency or settings.backfill_default_concurrency)
        self.max_concurrency = int(max_concurrency or settings.backfill_max_concurrency)

    def run(
        self,
        date_from: Any,
        date_to: Any,
        concurrency: Optional[int] = None,
        *,
        actor: Optional[str] = None,
    ) -> BackfillReport:
        d0, d1 = parse_range(date_from, date_to)
        workers = clamp_concurrency(concurrency, default=self.default_concurrency, maximum=self.max_concurrency)

        try:
            with self.store.unit_of_work() as uow:
                order_ids = uow.orders.list_order_ids_overlapping(d0, d1)
                tasks_before = uow.tasks.count()
        except CleaningSyncError as e:
            report = BackfillReport(date_from=d0, date_to=d1, concurrency=workers, started_at=self.clock())
            self._abort(report, "candidates", e)
            METRICS.inc("cleaning_backfill.runs")
            return report

        report = self._fan_out(order_ids, workers, actor=actor, date_from=d0, date_to=d1)
        report.tasks_before = tasks_before

        try:
            with self.store.unit_of_work() as uow:
                report.tasks_after = uow.tasks.count()
                report.tasks_in_range_after = len(uow.tasks.list_in_range(d0, d1))
        except CleaningSyncError as e:
            self._abort(report, "closing counts", e)

        METRICS.inc("cleaning_backfill.runs")
        METRICS.inc("cleaning_backfill.failed_orders", report.failed)
        log.info(
            "cleaning backfill %s..%s total=%s success=%s failed=%s skipped=%s",
            d0.isoformat(),
            d1.isoformat(),
            report.total,
            report.success,
            report.failed,
            report.skipped,
            extra={"mode": MODE_BATCH},
        )
        return report

    def sweep_orphans(self, *, actor: Optional[str] = None, concurrency: Optional[int] = None) -> BackfillReport:
        """Cancel live tasks whose order row no longer exists."""
        workers = clamp_concurrency(concurrency, default=self.default_concurrency, maximum=self.max_concurrency)
        try:
            with self.store.unit_of_work() as uow:
                order_ids = uow.tasks.list_orphaned_order_ids()
                tasks_before = uow.tasks.count()
        except CleaningSyncError as e:
            report = BackfillReport(date_from=None, date_to=None, concurrency=workers, started_at=self.clock())
            self._abort(report, "orphan scan", e)
            METRICS.inc("cleaning_backfill.sweeps")
            return report

        report = self._fan_out(order_ids, workers, actor=actor)
        report.tasks_before = tasks_before
        try:
            with self.store.unit_of_work() as uow:
                report.tasks_after = uow.tasks.count()
        except CleaningSyncError as e:
            self._abort(report, "closing counts", e)

        METRICS.inc("cleaning_backfill.sweeps")
        log.info("cleaning orphan sweep total=%s cancelled=%s", report.total, report.counts[ACTION_CANCELLED])
        return report

    def _abort(self, report: BackfillReport, step: str, exc: CleaningSyncError) -> None:
        log.warning("cleaning backfill %s failed code=%s: %s", step, exc.code, exc, extra={"mode": MODE_BATCH})
        METRICS.inc("cleaning_backfill.errors")
        report.error = exc.code

    def _fan_out(
        self,
        order_ids: list[str],
        workers: int,
        *,
        actor: Optional[str],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> BackfillReport:
        t0 = time.perf_counter()
        report = BackfillReport(date_from=date_from, date_to=date_to, concurrency=workers, started_at=self.clock())

        results: list[Optional[BackfillItem]] = [None] * len(order_ids)
        cursor = _Cursor(len(order_ids))

        def worker() -> None:
            while True:
                i = cursor.take()
                if i is None:
                    return
                results[i] = self._sync_one(order_ids[i], actor=actor)

        if order_ids:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cleaning-backfill") as pool:
                futures = [pool.submit(worker) for _ in range(min(workers, len(order_ids)))]
                for f in futures:
                    f.result()

        report.items = [r for r in results if r is not None]
        report.duration_ms = int((time.perf_counter() - t0) * 1000)
        return report

    def _sync_one(self, order_id: str, *, actor: Optional[str]) -> BackfillItem:
        try:
            res = self.reconciler.sync_order(order_id, mode=MODE_BATCH, actor=actor)
        except Exception as e:
            log.exception("cleaning backfill order crashed order=%s", order_id, extra={"order_id": order_id, "mode": MODE_BATCH})
            return BackfillItem(order_id=order_id, ok=False, action=ACTION_FAILED, status=OUTCOME_FAILED, error=error_code(e))
        return BackfillItem(order_id=order_id, ok=res.ok, action=res.action, status=res.status, error=res.error)
