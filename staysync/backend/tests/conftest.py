from __future__ import annotations

import os
import tempfile
from datetime import datetime

import pytest

# must be set before app.config / app.db are imported
_DB_DIR = tempfile.mkdtemp(prefix="staysync-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'staysync_test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["AUTH_MODE"] = "dev"

from sqlalchemy import delete, select  # noqa: E402

from app.db import SessionLocal, init_db  # noqa: E402
from app.domain.cleaning_types import CleaningTaskRecord, OrderSnapshot, PropertySnapshot  # noqa: E402
from app.models import CleaningSyncLog, CleaningTask, Order, Property  # noqa: E402
from app.services.cleaning_repository import InMemorySyncStore  # noqa: E402
from app.services.cleaning_repository_sql import SqlSyncStore, task_to_record  # noqa: E402
from app.services.runtime_metrics import METRICS  # noqa: E402
from app.services.sync_ledger import InMemorySyncLedger, SqlSyncLedger  # noqa: E402

FIXED_NOW = datetime(2026, 2, 17, 9, 0, 0)

init_db()


@pytest.fixture(autouse=True)
def _clean_state():
    db = SessionLocal()
    try:
        for model in (CleaningSyncLog, CleaningTask, Order, Property):
            db.execute(delete(model))
        db.commit()
    finally:
        db.close()
    METRICS.reset()
    yield


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


class MemoryHarness:
    """Order store + task store + ledger, all in memory."""

    kind = "memory"

    def __init__(self) -> None:
        self.store = InMemorySyncStore()
        self.ledger = InMemorySyncLedger()

    def put_property(self, prop: PropertySnapshot) -> None:
        self.store.put_property(prop)

    def put_order(self, order: OrderSnapshot) -> None:
        self.store.put_order(order)

    def update_order(self, order_id: str, **changes) -> None:
        self.store.update_order(order_id, **changes)

    def delete_order(self, order_id: str) -> None:
        self.store.delete_order(order_id)

    def patch_task(self, order_id: str, task_type: str, **changes) -> None:
        self.store.patch_task(order_id, task_type, **changes)

    def get_task(self, order_id: str, task_type: str) -> CleaningTaskRecord | None:
        return self.store.get_task(order_id, task_type)

    def all_tasks(self) -> list[CleaningTaskRecord]:
        return self.store.all_tasks()

    def ledger_entries(self) -> list[dict]:
        return [
            {
                "order_id": e.order_id,
                "task_type": e.task_type,
                "mode": e.mode,
                "action": e.action,
                "status": e.status,
                "error": e.error,
            }
            for e in self.ledger.entries()
        ]


class SqlHarness:
    """Same surface as MemoryHarness, backed by the test SQLite database."""

    kind = "sql"

    def __init__(self) -> None:
        self.store = SqlSyncStore(SessionLocal)
        self.ledger = SqlSyncLedger(SessionLocal)

    def put_property(self, prop: PropertySnapshot) -> None:
        db = SessionLocal()
        try:
            db.merge(Property(id=prop.id, code=prop.code, capacity=prop.capacity, property_type=prop.type))
            db.commit()
        finally:
            db.close()

    def put_order(self, order: OrderSnapshot) -> None:
        db = SessionLocal()
        try:
            db.merge(
                Order(
                    id=order.id,
                    property_id=order.property_id,
                    checkin=None if order.checkin is None else str(order.checkin),
                    checkout=None if order.checkout is None else str(order.checkout),
                    nights=order.nights,
                    status=order.status or "",
                    cleaning_fee=order.cleaning_fee,
                    note=order.note,
                    guest_name=order.guest_name,
                    confirmation_code=order.confirmation_code,
                    source=order.source,
                )
            )
            db.commit()
        finally:
            db.close()

    def update_order(self, order_id: str, **changes) -> None:
        db = SessionLocal()
        try:
            row = db.get(Order, order_id)
            for k, v in changes.items():
                setattr(row, k, v)
            db.commit()
        finally:
            db.close()

    def delete_order(self, order_id: str) -> None:
        db = SessionLocal()
        try:
            db.execute(delete(Order).where(Order.id == order_id))
            db.commit()
        finally:
            db.close()

    def patch_task(self, order_id: str, task_type: str, **changes) -> None:
        db = SessionLocal()
        try:
            row = db.scalar(
                select(CleaningTask).where(CleaningTask.order_id == order_id, CleaningTask.task_type == task_type)
            )
            for k, v in changes.items():
                setattr(row, k, v)
            db.commit()
        finally:
            db.close()

    def get_task(self, order_id: str, task_type: str) -> CleaningTaskRecord | None:
        db = SessionLocal()
        try:
            row = db.scalar(
                select(CleaningTask).where(CleaningTask.order_id == order_id, CleaningTask.task_type == task_type)
            )
            return task_to_record(row) if row else None
        finally:
            db.close()

    def all_tasks(self) -> list[CleaningTaskRecord]:
        db = SessionLocal()
        try:
            return [task_to_record(r) for r in db.scalars(select(CleaningTask)).all()]
        finally:
            db.close()

    def ledger_entries(self) -> list[dict]:
        db = SessionLocal()
        try:
            rows = db.scalars(select(CleaningSyncLog).order_by(CleaningSyncLog.id.asc())).all()
            return [
                {
                    "order_id": r.order_id,
                    "task_type": r.task_type,
                    "mode": r.mode,
                    "action": r.action,
                    "status": r.status,
                    "error": r.error,
                }
                for r in rows
            ]
        finally:
            db.close()


@pytest.fixture(params=["memory", "sql"])
def harness(request):
    return MemoryHarness() if request.param == "memory" else SqlHarness()


@pytest.fixture
def sql_harness():
    return SqlHarness()


@pytest.fixture
def memory_harness():
    return MemoryHarness()
