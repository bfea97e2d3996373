# backend/app/services/cleaning_repository.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date
from typing import ContextManager, Iterator, Optional, Protocol

from ..domain.cleaning_types import (
    STATUS_CANCELLED,
    CleaningTaskRecord,
    OrderSnapshot,
    PropertySnapshot,
)
from ..domain.stay_normalizer import normalize_stay

# -----------------------------------------------------------------------------
# Storage contract for the cleaning sync engine
# -----------------------------------------------------------------------------
# The reconciler only talks to these protocols. A unit of work is one
# transaction: rows read with for_update=True stay locked until the block
# exits, writes become visible on commit(), and leaving without commit() rolls
# back. (order_id, task_type) is unique in every backend.
# -----------------------------------------------------------------------------


class OrderReader(Protocol):
    def get_order(self, order_id: str) -> Optional[OrderSnapshot]: ...

    def get_property(self, property_id: str) -> Optional[PropertySnapshot]: ...

    def list_order_ids_overlapping(self, date_from: date, date_to: date) -> list[str]: ...


class CleaningTaskRepository(Protocol):
    def find_by_order_and_type(
        self, order_id: str, task_type: str, *, for_update: bool = False
    ) -> Optional[CleaningTaskRecord]: ...

    def upsert(self, record: CleaningTaskRecord) -> CleaningTaskRecord: ...

    def list_in_range(self, date_from: date, date_to: date) -> list[CleaningTaskRecord]: ...

    def count(self) -> int: ...

    def list_orphaned_order_ids(self) -> list[str]: ...


class SyncUnitOfWork(Protocol):
    orders: OrderReader
    tasks: CleaningTaskRepository

    def commit(self) -> None: ...


class SyncStore(Protocol):
    def unit_of_work(self) -> ContextManager[SyncUnitOfWork]: ...


def stay_window(order: OrderSnapshot) -> tuple[Optional[date], Optional[date]]:
    stay = normalize_stay(order.checkin, order.checkout, order.nights)
    return stay.checkin, stay.checkout


def overlaps_range(order: OrderSnapshot, date_from: date, date_to: date) -> bool:
    ci, co = stay_window(order)
    return any(d is not None and date_from <= d <= date_to for d in (ci, co))


def candidate_sort_key(order: OrderSnapshot) -> tuple[date, str]:
    ci, co = stay_window(order)
    days = [d for d in (ci, co) if d is not None]
    return (min(days) if days else date.max, str(order.id))


# -----------------------------------------------------------------------------
# In-memory backend
# -----------------------------------------------------------------------------
class _RowLock:
    """Lock for one (order_id, task_type) key; users counts holders and waiters."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class InMemorySyncStore:
    """
    Dict-backed store used by tests and local tooling.

    Mirrors the relational backend: the task dict is keyed by the unique
    (order_id, task_type) pair, for_update reads take a per-key row lock held
    until the unit of work ends, and writes are buffered until commit.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._orders: dict[str, OrderSnapshot] = {}
        self._properties: dict[str, PropertySnapshot] = {}
        self._tasks: dict[tuple[str, str], CleaningTaskRecord] = {}
        self._row_locks: dict[tuple[str, str], _RowLock] = {}

    # ---- order/property store side (external data) ----
    def put_order(self, order: OrderSnapshot) -> None:
        with self._lock:
            self._orders[str(order.id)] = order

    def update_order(self, order_id: str, **changes) -> OrderSnapshot:
        with self._lock:
            cur = self._orders[str(order_id)]
            nxt = replace(cur, **changes)
            self._orders[str(order_id)] = nxt
            return nxt

    def delete_order(self, order_id: str) -> None:
        with self._lock:
            self._orders.pop(str(order_id), None)

    def put_property(self, prop: PropertySnapshot) -> None:
        with self._lock:
            self._properties[str(prop.id)] = prop

    # ---- field-operations side (writes the sync engine does not own) ----
    def patch_task(self, order_id: str, task_type: str, **changes) -> CleaningTaskRecord:
        with self._lock:
            key = (str(order_id), str(task_type))
            nxt = replace(self._tasks[key], **changes)
            self._tasks[key] = nxt
            return replace(nxt)

    def get_task(self, order_id: str, task_type: str) -> Optional[CleaningTaskRecord]:
        with self._lock:
            row = self._tasks.get((str(order_id), str(task_type)))
            return replace(row) if row else None

    def all_tasks(self) -> list[CleaningTaskRecord]:
        with self._lock:
            return [replace(r) for r in self._tasks.values()]

    # ---- unit of work ----
    def _acquire_row(self, key: tuple[str, str]) -> None:
        with self._lock:
            row_lock = self._row_locks.get(key)
            if row_lock is None:
                row_lock = self._row_locks[key] = _RowLock()
            row_lock.users += 1
        row_lock.lock.acquire()

    def _release_row(self, key: tuple[str, str]) -> None:
        with self._lock:
            row_lock = self._row_locks[key]
            row_lock.lock.release()
            row_lock.users -= 1
            # waiters are counted in users, so nobody can still need this lock
            if row_lock.users == 0:
                del self._row_locks[key]

    def row_lock_count(self) -> int:
        with self._lock:
            return len(self._row_locks)

    @contextmanager
    def unit_of_work(self) -> Iterator["_InMemoryUnitOfWork"]:
        uow = _InMemoryUnitOfWork(self)
        try:
            yield uow
        finally:
            uow.release()


class _InMemoryOrderReader:
    def __init__(self, store: InMemorySyncStore) -> None:
        self._store = store

    def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        with self._store._lock:
            return self._store._orders.get(str(order_id))

    def get_property(self, property_id: str) -> Optional[PropertySnapshot]:
        with self._store._lock:
            return self._store._properties.get(str(property_id))

    def list_order_ids_overlapping(self, date_from: date, date_to: date) -> list[str]:
        with self._store._lock:
            orders = list(self._store._orders.values())
        hits = [o for o in orders if overlaps_range(o, date_from, date_to)]
        return [str(o.id) for o in sorted(hits, key=candidate_sort_key)]


class _InMemoryTaskRepository:
    def __init__(self, store: InMemorySyncStore, uow: "_InMemoryUnitOfWork") -> None:
        self._store = store
        self._uow = uow

    def find_by_order_and_type(
        self, order_id: str, task_type: str, *, for_update: bool = False
    ) -> Optional[CleaningTaskRecord]:
        key = (str(order_id), str(task_type))
        if for_update:
            self._uow.lock_row(key)
        if key in self._uow.pending:
            return replace(self._uow.pending[key])
        with self._store._lock:
            row = self._store._tasks.get(key)
        return replace(row) if row else None

    def upsert(self, record: CleaningTaskRecord) -> CleaningTaskRecord:
        key = record.key
        with self._store._lock:
            current = self._store._tasks.get(key)
        nxt = replace(record)
        if current is not None and current.id != nxt.id:
            # insert-on-conflict-update: the existing row keeps its identity
            nxt = replace(nxt, id=current.id, created_at=current.created_at)
        self._uow.pending[key] = nxt
        return replace(nxt)

    def list_in_range(self, date_from: date, date_to: date) -> list[CleaningTaskRecord]:
        with self._store._lock:
            rows = [replace(r) for r in self._store._tasks.values() if date_from <= r.task_date <= date_to]
        return sorted(rows, key=lambda r: (r.task_date, r.order_id, r.task_type))

    def count(self) -> int:
        with self._store._lock:
            return len(self._store._tasks)

    def list_orphaned_order_ids(self) -> list[str]:
        with self._store._lock:
            ids = {
                r.order_id
                for r in self._store._tasks.values()
                if r.status != STATUS_CANCELLED and r.order_id not in self._store._orders
            }
        return sorted(ids)


class _InMemoryUnitOfWork:
    def __init__(self, store: InMemorySyncStore) -> None:
        self._store = store
        self._held: list[tuple[str, str]] = []
        self.pending: dict[tuple[str, str], CleaningTaskRecord] = {}
        self.orders = _InMemoryOrderReader(store)
        self.tasks = _InMemoryTaskRepository(store, self)

    def lock_row(self, key: tuple[str, str]) -> None:
        if key in self._held:
            return
        self._store._acquire_row(key)
        self._held.append(key)

    def commit(self) -> None:
        with self._store._lock:
            for key, rec in self.pending.items():
                self._store._tasks[key] = replace(rec)
        self.pending.clear()

    def release(self) -> None:
        self.pending.clear()
        for key in self._held:
            self._store._release_row(key)
        self._held.clear()
