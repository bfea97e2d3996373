from __future__ import annotations

from datetime import date

import pytest

from app.domain.cleaning_rules import (
    SERVICE_DEEP,
    SERVICE_INSPECTION,
    SERVICE_LINEN_ONLY,
    SERVICE_STANDARD,
    SERVICE_TYPE_RULES,
    ServiceTypeContext,
    clamp_priority,
    classify_service_type,
    compute_task_fields,
    schedule_fingerprint,
)
from app.domain.cleaning_types import CHECKIN_CLEANING, CHECKOUT_CLEANING, OrderSnapshot, PropertySnapshot
from app.domain.errors import OrderMissingDates

NOW = date(2026, 2, 17)


def _order(**kw) -> OrderSnapshot:
    base = dict(
        id="o-1",
        property_id="p-1",
        checkin="2026-02-17T12:00Z",
        checkout="2026-02-20T11:00Z",
        status="confirmed",
        cleaning_fee=120,
    )
    base.update(kw)
    return OrderSnapshot(**base)


PROP = PropertySnapshot(id="p-1", code="SEA-101", capacity=2, type="apartment")


def test_checkout_cleaning_scenario():
    out = compute_task_fields(_order(), PROP, CHECKOUT_CLEANING, now_day=NOW)
    assert out.date == date(2026, 2, 20)
    assert out.rooms == 2
    assert out.priority in {"medium", "high", "urgent"}
    # 3 days out -> 2 points, nothing else applies
    assert out.priority == "high"
    assert "property:SEA-101" in out.content.split("\n")
    assert "type:checkout_cleaning" in out.content.split("\n")
    assert out.recommended_start_day == out.date


def test_checkin_cleaning_gets_prep_day():
    out = compute_task_fields(_order(), PROP, CHECKIN_CLEANING, now_day=NOW)
    assert out.date == date(2026, 2, 17)
    assert out.recommended_start_day == date(2026, 2, 16)
    assert "checkin:2026-02-17" in out.content


def test_content_tags_are_ordered_and_absent_fields_omitted():
    order = _order(source=" Booking.com ", guest_name="Ada", confirmation_code="HM123")
    out = compute_task_fields(order, PROP, CHECKOUT_CLEANING, now_day=NOW)
    assert out.content.split("\n") == [
        "property:SEA-101",
        "source:booking.com",
        "type:checkout_cleaning",
        "service:standard",
        "rooms:2",
        "guest:Ada",
        "code:HM123",
        "checkout:2026-02-20",
    ]

    bare = compute_task_fields(_order(property_id=None), None, CHECKIN_CLEANING, now_day=NOW)
    assert bare.content.split("\n") == [
        "type:checkin_cleaning",
        "service:standard",
        "rooms:1",
        "checkin:2026-02-17",
    ]


def test_falls_back_to_the_other_boundary():
    out = compute_task_fields(_order(checkin=None), PROP, CHECKIN_CLEANING, now_day=NOW)
    assert out.date == date(2026, 2, 20)


def test_missing_dates_raises_order_missing_dates():
    with pytest.raises(OrderMissingDates) as ei:
        compute_task_fields(_order(checkin="garbage", checkout=None), PROP, CHECKOUT_CLEANING, now_day=NOW)
    assert ei.value.code == "order_missing_dates"


def test_unknown_task_type_is_rejected():
    with pytest.raises(ValueError):
        compute_task_fields(_order(), PROP, "deep_cleaning", now_day=NOW)


@pytest.mark.parametrize("capacity,rooms", [(None, 1), (0, 1), (1, 1), (6, 6)])
def test_rooms_is_at_least_one(capacity, rooms):
    prop = PropertySnapshot(id="p-1", code="X", capacity=capacity)
    assert compute_task_fields(_order(), prop, CHECKOUT_CLEANING, now_day=NOW).rooms == rooms


def test_priority_points_stack_and_clamp():
    big = PropertySnapshot(id="p-1", code="VILLA", capacity=5)
    # 3 days out (2) + big property (1) + deep fee (1) + booking (1) -> urgent
    out = compute_task_fields(_order(cleaning_fee=200, source="booking"), big, CHECKOUT_CLEANING, now_day=NOW)
    assert out.service_type == SERVICE_DEEP
    assert out.priority == "urgent"

    far = compute_task_fields(_order(checkin="2026-03-20", checkout="2026-03-25"), PROP, CHECKOUT_CLEANING, now_day=NOW)
    assert far.priority == "low"


@pytest.mark.parametrize(
    "p,label",
    [(-2, "low"), (0, "low"), (1, "medium"), (2, "high"), (3, "urgent"), (7, "urgent")],
)
def test_clamp_priority(p, label):
    assert clamp_priority(p) == label


@pytest.mark.parametrize(
    "note,fee,ptype,expected",
    [
        ("", 0, "", SERVICE_STANDARD),
        ("please deep clean", 0, "", SERVICE_DEEP),
        ("需要深度清洁", 0, "", SERVICE_DEEP),
        ("change linen only", 0, "", SERVICE_LINEN_ONLY),
        ("床品更换", 0, "", SERVICE_LINEN_ONLY),
        # both keywords: the linen rule is later in the list
        ("deep clean + fresh bed sheets", 0, "", SERVICE_LINEN_ONLY),
        ("linen", 180, "", SERVICE_DEEP),
        ("linen", 179.99, "", SERVICE_LINEN_ONLY),
        ("deep", 500, "inspection unit", SERVICE_INSPECTION),
    ],
)
def test_service_type_last_match_wins(note, fee, ptype, expected):
    ctx = ServiceTypeContext(note=note.lower(), cleaning_fee=float(fee), property_type=ptype.lower())
    assert classify_service_type(ctx) == expected


def test_service_type_rules_order_is_fixed():
    assert [r.name for r in SERVICE_TYPE_RULES] == [
        "note_mentions_deep",
        "note_mentions_linen",
        "cleaning_fee_forces_deep",
        "inspection_property",
    ]


def test_service_type_reads_note_case_insensitively():
    out = compute_task_fields(_order(note="DEEP CLEAN"), PROP, CHECKOUT_CLEANING, now_day=NOW)
    assert out.service_type == SERVICE_DEEP

    insp = PropertySnapshot(id="p-1", code="X", capacity=2, type="Inspection")
    assert compute_task_fields(_order(), insp, CHECKOUT_CLEANING, now_day=NOW).service_type == SERVICE_INSPECTION


def test_schedule_fingerprint_is_stable():
    a = {"task_date": date(2026, 2, 20), "rooms": 2, "property_id": None}
    b = {"property_id": None, "rooms": 2, "task_date": date(2026, 2, 20)}
    assert schedule_fingerprint(a) == schedule_fingerprint(b)
    assert schedule_fingerprint(a) != schedule_fingerprint({**a, "rooms": 3})
    assert len(schedule_fingerprint(a)) == 64
