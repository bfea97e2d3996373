# backend/app/services/cleaning_repository_sql.py
from __future__ import annotations

from contextlib import contextmanager
from datetime import date, timedelta
from typing import Callable, Iterator, Optional

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain.cleaning_types import (
    STATUS_CANCELLED,
    CleaningTaskRecord,
    OrderSnapshot,
    PropertySnapshot,
)
from ..domain.errors import StorageError, WriteConflict
from ..models import CleaningTask, Order, Property
from .cleaning_repository import candidate_sort_key, overlaps_range

_TASK_COLUMNS = (
    "id",
    "order_id",
    "task_type",
    "property_id",
    "task_date",
    "status",
    "priority",
    "service_type",
    "rooms",
    "content",
    "recommended_start_day",
    "assignee_id",
    "scheduled_at",
    "auto_sync_enabled",
    "reschedule_required",
    "sync_fingerprint",
    "source",
    "created_at",
    "updated_at",
)

# stored checkin/checkout text is matched on its YYYY-MM-DD prefix; the window
# is widened so UTC day shifts of offset timestamps are not missed
_PREFILTER_SLACK_DAYS = 1


@contextmanager
def storage_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as e:
        raise WriteConflict(f"write_conflict: {e.orig}") from e
    except SQLAlchemyError as e:
        raise StorageError(f"storage_error: {type(e).__name__}: {e}") from e


def task_to_record(row: CleaningTask) -> CleaningTaskRecord:
    return CleaningTaskRecord(**{k: getattr(row, k) for k in _TASK_COLUMNS})


def _apply_record(row: CleaningTask, rec: CleaningTaskRecord) -> None:
    for k in _TASK_COLUMNS:
        if k in ("id", "order_id", "task_type", "created_at"):
            continue
        setattr(row, k, getattr(rec, k))


def order_to_snapshot(o: Order) -> OrderSnapshot:
    return OrderSnapshot(
        id=str(o.id),
        property_id=str(o.property_id) if o.property_id else None,
        checkin=o.checkin,
        checkout=o.checkout,
        nights=o.nights,
        status=o.status,
        cleaning_fee=o.cleaning_fee,
        note=o.note,
        guest_name=o.guest_name,
        confirmation_code=o.confirmation_code,
        source=o.source,
    )


class SqlOrderReader:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        with storage_errors():
            o = self.db.get(Order, str(order_id))
        return order_to_snapshot(o) if o else None

    def get_property(self, property_id: str) -> Optional[PropertySnapshot]:
        with storage_errors():
            p = self.db.get(Property, str(property_id))
        if p is None:
            return None
        return PropertySnapshot(id=str(p.id), code=p.code, capacity=p.capacity, type=p.property_type)

    def list_order_ids_overlapping(self, date_from: date, date_to: date) -> list[str]:
        lo = (date_from - timedelta(days=_PREFILTER_SLACK_DAYS)).isoformat()
        hi = (date_to + timedelta(days=_PREFILTER_SLACK_DAYS)).isoformat()
        ci_day = func.substr(Order.checkin, 1, 10)
        co_day = func.substr(Order.checkout, 1, 10)
        with storage_errors():
            rows = self.db.scalars(
                select(Order).where(
                    or_(
                        ci_day.between(lo, hi),
                        co_day.between(lo, hi),
                        # checkout may be replaced by checkin + nights, which can
                        # land in range even when the stored checkout does not
                        and_(Order.nights.is_not(None), Order.nights > 0, ci_day <= hi),
                    )
                )
            ).all()
        hits = [s for s in (order_to_snapshot(o) for o in rows) if overlaps_range(s, date_from, date_to)]
        return [s.id for s in sorted(hits, key=candidate_sort_key)]


class SqlCleaningTaskRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _select_row(self, order_id: str, task_type: str, *, for_update: bool = False) -> Optional[CleaningTask]:
        stmt = select(CleaningTask).where(
            CleaningTask.order_id == str(order_id),
            CleaningTask.task_type == str(task_type),
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.scalar(stmt)

    def find_by_order_and_type(
        self, order_id: str, task_type: str, *, for_update: bool = False
    ) -> Optional[CleaningTaskRecord]:
        with storage_errors():
            row = self._select_row(order_id, task_type, for_update=for_update)
        return task_to_record(row) if row else None

    def upsert(self, record: CleaningTaskRecord) -> CleaningTaskRecord:
        """
        Insert-or-update on (order_id, task_type).

        The insert runs in a SAVEPOINT; if a concurrent writer committed the
        same key first, the unique constraint fires and the winner's row is
        updated instead.
        """
        with storage_errors():
            row = self._select_row(record.order_id, record.task_type, for_update=True)
            if row is None:
                try:
                    with self.db.begin_nested():
                        row = CleaningTask(**{k: getattr(record, k) for k in _TASK_COLUMNS})
                        self.db.add(row)
                        self.db.flush()
                    return task_to_record(row)
                except IntegrityError:
                    row = self._select_row(record.order_id, record.task_type, for_update=True)
                    if row is None:
                        raise
            _apply_record(row, record)
            self.db.add(row)
            self.db.flush()
            return task_to_record(row)

    def list_in_range(self, date_from: date, date_to: date) -> list[CleaningTaskRecord]:
        with storage_errors():
            rows = self.db.scalars(
                select(CleaningTask)
                .where(CleaningTask.task_date >= date_from, CleaningTask.task_date <= date_to)
                .order_by(CleaningTask.task_date.asc(), CleaningTask.order_id.asc(), CleaningTask.task_type.asc())
            ).all()
        return [task_to_record(r) for r in rows]

    def count(self) -> int:
        with storage_errors():
            n = self.db.scalar(select(func.count()).select_from(CleaningTask))
        return int(n or 0)

    def list_orphaned_order_ids(self) -> list[str]:
        has_order = exists().where(Order.id == CleaningTask.order_id)
        with storage_errors():
            ids = self.db.scalars(
                select(CleaningTask.order_id)
                .where(CleaningTask.status != STATUS_CANCELLED, ~has_order)
                .distinct()
                .order_by(CleaningTask.order_id.asc())
            ).all()
        return [str(x) for x in ids]


class SqlUnitOfWork:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.orders = SqlOrderReader(db)
        self.tasks = SqlCleaningTaskRepository(db)

    def commit(self) -> None:
        with storage_errors():
            self.db.commit()


class SqlSyncStore:
    """One Session (one transaction) per unit of work."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def unit_of_work(self) -> Iterator[SqlUnitOfWork]:
        db = self._session_factory()
        try:
            yield SqlUnitOfWork(db)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
