from __future__ import annotations

from datetime import date

import pytest

from app.domain.cleaning_types import CHECKIN_CLEAN, CHECKOUT_CLEAN, OrderSnapshot, PropertySnapshot
from app.domain.errors import StorageError
from app.services import cleaning_repository, cleaning_sync
from app.services.cleaning_backfill import BackfillOrchestrator, clamp_concurrency, parse_range
from app.services.cleaning_sync import SyncReconciler
from app.services.runtime_metrics import METRICS


def _seed_month(h) -> None:
    h.put_property(PropertySnapshot(id="p-1", code="SEA-101", capacity=2))
    for i in range(1, 11):
        day = f"2026-02-{i + 10:02d}"
        out = f"2026-02-{i + 12:02d}"
        h.put_order(OrderSnapshot(id=f"o-{i:02d}", property_id="p-1", checkin=day, checkout=out, status="confirmed"))
    # outside the window on both ends
    h.put_order(OrderSnapshot(id="o-march", property_id="p-1", checkin="2026-03-10", checkout="2026-03-12", status="confirmed"))


def _orchestrator(h, fixed_clock) -> BackfillOrchestrator:
    reconciler = SyncReconciler(h.store, h.ledger, clock=fixed_clock)
    return BackfillOrchestrator(h.store, reconciler, clock=fixed_clock, default_concurrency=4, max_concurrency=25)


def test_backfill_creates_tasks_for_orders_in_range(harness, fixed_clock):
    _seed_month(harness)
    report = _orchestrator(harness, fixed_clock).run("2026-02-01", "2026-02-28", concurrency=4)

    assert report.total == 10
    assert report.success == 10
    assert report.failed == 0
    assert report.counts["created"] == 10
    assert report.tasks_before == 0
    assert report.tasks_after == 20
    assert report.tasks_in_range_after == 20
    assert "o-march" not in {i.order_id for i in report.items}
    assert harness.get_task("o-march", CHECKOUT_CLEAN) is None


def test_backfill_twice_keeps_the_same_row_count(harness, fixed_clock):
    _seed_month(harness)
    orch = _orchestrator(harness, fixed_clock)

    first = orch.run("2026-02-01", "2026-02-28", concurrency=8)
    second = orch.run("2026-02-01", "2026-02-28", concurrency=8)

    assert first.tasks_after == second.tasks_after == 20
    assert second.tasks_before == 20
    assert second.success == 0
    assert second.skipped == 10
    assert second.counts["no_change"] == 10
    assert len(harness.all_tasks()) == 20


def test_backfill_items_follow_candidate_order(harness, fixed_clock):
    _seed_month(harness)
    report = _orchestrator(harness, fixed_clock).run("2026-02-01", "2026-02-28", concurrency=3)

    assert [i.order_id for i in report.items] == [f"o-{i:02d}" for i in range(1, 11)]


def test_range_matches_checkout_only_overlap(harness, fixed_clock):
    harness.put_order(OrderSnapshot(id="o-late", property_id=None, checkin="2026-01-25", checkout="2026-02-02T10:00Z", status="confirmed"))
    report = _orchestrator(harness, fixed_clock).run("2026-02-01", "2026-02-05")

    assert [i.order_id for i in report.items] == ["o-late"]
    assert harness.get_task("o-late", CHECKIN_CLEAN) is not None


def test_backfill_repairs_cancellations(harness, fixed_clock):
    _seed_month(harness)
    orch = _orchestrator(harness, fixed_clock)
    orch.run("2026-02-01", "2026-02-28")

    harness.update_order("o-03", status="cancelled")
    report = orch.run("2026-02-01", "2026-02-28")

    assert report.counts["cancelled"] == 1
    assert harness.get_task("o-03", CHECKOUT_CLEAN).status == "cancelled"
    assert report.tasks_after == 20


def test_one_bad_order_does_not_abort_the_batch(harness, fixed_clock, monkeypatch):
    real = cleaning_sync.compute_task_fields

    def flaky(order, prop, task_type, now_day=None):
        if order.id == "o-05":
            raise ConnectionError("store went away")
        return real(order, prop, task_type, now_day=now_day)

    monkeypatch.setattr(cleaning_sync, "compute_task_fields", flaky)
    _seed_month(harness)
    report = _orchestrator(harness, fixed_clock).run("2026-02-01", "2026-02-28", concurrency=5)

    assert report.total == 10
    assert report.failed == 1
    assert report.success == 9
    bad = [i for i in report.items if not i.ok]
    assert [(i.order_id, i.error) for i in bad] == [("o-05", "sync_failed:ConnectionError")]
    assert report.tasks_after == 18
    assert METRICS.get("cleaning_backfill.failed_orders") == 1


def test_report_is_returned_even_when_everything_fails(harness, fixed_clock, monkeypatch):
    def always_fail(order, prop, task_type, now_day=None):
        raise RuntimeError("nope")

    monkeypatch.setattr(cleaning_sync, "compute_task_fields", always_fail)
    _seed_month(harness)
    report = _orchestrator(harness, fixed_clock).run("2026-02-01", "2026-02-28")

    assert report.total == 10
    assert report.failed == 10
    assert report.as_dict()["failed"] == 10


def test_empty_range_is_a_valid_run(harness, fixed_clock):
    report = _orchestrator(harness, fixed_clock).run("2030-01-01", "2030-01-31")
    assert report.total == 0
    assert report.items == []
    assert METRICS.get("cleaning_backfill.runs") == 1


def test_sweep_orphans_cancels_tasks_of_deleted_orders(harness, fixed_clock):
    _seed_month(harness)
    orch = _orchestrator(harness, fixed_clock)
    orch.run("2026-02-01", "2026-02-28")

    harness.delete_order("o-07")
    report = orch.sweep_orphans(actor="ops@example.com")

    assert [i.order_id for i in report.items] == ["o-07"]
    assert report.counts["cancelled"] == 1
    assert harness.get_task("o-07", CHECKIN_CLEAN).status == "cancelled"

    # nothing left to sweep
    assert orch.sweep_orphans().total == 0


def test_invalid_range_is_rejected(harness, fixed_clock):
    orch = _orchestrator(harness, fixed_clock)
    with pytest.raises(ValueError):
        orch.run("2026-02-28", "2026-02-01")
    with pytest.raises(ValueError):
        orch.run("someday", "2026-02-01")


def test_parse_range_accepts_timestamps():
    d0, d1 = parse_range("2026-02-01T00:00:00Z", "2026-02-28")
    assert (d0.isoformat(), d1.isoformat()) == ("2026-02-01", "2026-02-28")


@pytest.mark.parametrize(
    "value,expected",
    [(None, 10), (1, 1), (0, 1), (-3, 1), (25, 25), (100, 25), ("7", 7), ("x", 10)],
)
def test_clamp_concurrency(value, expected):
    assert clamp_concurrency(value, default=10, maximum=25) == expected


def test_range_matches_checkout_corrected_from_nights(harness, fixed_clock):
    # stored checkout is far off; checkin + nights puts it on 2026-01-29
    harness.put_order(
        OrderSnapshot(id="o-nights", property_id=None, checkin="2026-01-20", checkout="2026-03-05", nights=9, status="confirmed")
    )
    harness.put_order(OrderSnapshot(id="o-early", property_id=None, checkin="2026-01-02", nights=3, status="confirmed"))
    report = _orchestrator(harness, fixed_clock).run("2026-01-28", "2026-01-30")

    assert [i.order_id for i in report.items] == ["o-nights"]
    assert harness.get_task("o-nights", CHECKOUT_CLEAN).task_date == date(2026, 1, 29)


def test_closing_count_failure_still_returns_the_report(memory_harness, fixed_clock, monkeypatch):
    real = cleaning_repository._InMemoryTaskRepository.count
    calls = []

    def count(self):
        calls.append(1)
        if len(calls) > 1:
            raise StorageError("db gone")
        return real(self)

    monkeypatch.setattr(cleaning_repository._InMemoryTaskRepository, "count", count)
    _seed_month(memory_harness)
    report = _orchestrator(memory_harness, fixed_clock).run("2026-02-01", "2026-02-28")

    assert report.ok is False
    assert report.error == "storage_error"
    assert report.total == 10
    assert report.success == 10
    assert report.tasks_before == 0
    assert report.tasks_after is None
    assert report.as_dict()["ok"] is False
    assert len(memory_harness.all_tasks()) == 20
    assert METRICS.get("cleaning_backfill.errors") == 1


def test_candidate_lookup_failure_returns_an_empty_report(memory_harness, fixed_clock, monkeypatch):
    def broken(self, date_from, date_to):
        raise StorageError("db gone")

    monkeypatch.setattr(cleaning_repository._InMemoryOrderReader, "list_order_ids_overlapping", broken)
    _seed_month(memory_harness)
    report = _orchestrator(memory_harness, fixed_clock).run("2026-02-01", "2026-02-28")

    assert report.error == "storage_error"
    assert report.total == 0
    assert report.tasks_before is None
    assert memory_harness.all_tasks() == []


def test_sweep_scan_failure_returns_a_report(memory_harness, fixed_clock, monkeypatch):
    def broken(self):
        raise StorageError("db gone")

    monkeypatch.setattr(cleaning_repository._InMemoryTaskRepository, "list_orphaned_order_ids", broken)
    report = _orchestrator(memory_harness, fixed_clock).sweep_orphans()

    assert report.ok is False
    assert report.error == "storage_error"
    assert report.total == 0
