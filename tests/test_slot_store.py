"""Capacity accounting and scheduling in the time slot store."""
import threading
from datetime import date, time, timedelta

import pytest

from models import db, atomic
from models.slot import TimeSlot
from services import slot_store
from services.errors import NotFound, SlotExists, SlotInUse, SlotUnavailable, ValidationFailed

from conftest import make_slot

pytestmark = pytest.mark.unit


def _next_monday():
    today = date.today()
    return today + timedelta(days=7 - today.weekday())


def test_reserve_until_full(slot):
    with atomic():
        slot_store.reserve(slot.id)

    assert db.session.get(TimeSlot, slot.id).booked_count == 1
    with pytest.raises(SlotUnavailable):
        with atomic():
            slot_store.reserve(slot.id)
    assert db.session.get(TimeSlot, slot.id).booked_count == 1


def test_reserve_refuses_disabled_slot(slot):
    slot.is_available = False
    db.session.commit()

    with pytest.raises(SlotUnavailable):
        slot_store.reserve(slot.id)


def test_release_floors_at_zero(slot):
    with atomic():
        assert slot_store.release(slot.id) is False
    assert db.session.get(TimeSlot, slot.id).booked_count == 0


def test_concurrent_reserves_never_oversell(app, center):
    slot = make_slot(center, capacity=3)
    results = []

    def worker():
        with app.app_context():
            try:
                with atomic():
                    slot_store.reserve(slot.id)
                results.append("ok")
            except SlotUnavailable:
                results.append("full")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 3
    assert results.count("full") == 5
    db.session.expire_all()
    assert db.session.get(TimeSlot, slot.id).booked_count == 3


def test_bulk_creates_weekdays_only(center):
    monday = _next_monday()
    templates = [
        {"start_time": "08:00", "end_time": "08:30", "capacity": 2, "price": 35000},
        {"start_time": "08:30", "end_time": "09:00"},
        {"start_time": "09:00", "end_time": "09:30"},
        {"start_time": "10:00", "end_time": "10:30"},
        {"start_time": "11:00", "end_time": "11:30"},
    ]

    summary = slot_store.create_bulk(center.id, monday, monday + timedelta(days=6), templates)

    # Monday..Sunday with weekends skipped: 5 dates x 5 templates
    assert summary["created"] == 25
    assert summary["skipped"] == 0
    assert summary["total_dates"] == 5
    assert summary["slots_per_date"] == 5
    assert TimeSlot.query.filter_by(center_id=center.id).count() == 25


def test_bulk_keeps_weekends_when_asked(center):
    monday = _next_monday()
    summary = slot_store.create_bulk(
        center.id, monday, monday + timedelta(days=6),
        [{"start_time": "08:00", "end_time": "08:30"}],
        skip_weekends=False,
    )
    assert summary["created"] == 7


def test_bulk_skips_existing_keys(center):
    monday = _next_monday()
    make_slot(center, day=monday, start=time(8, 0), end=time(8, 30))

    summary = slot_store.create_bulk(
        center.id, monday, monday,
        [{"start_time": "08:00", "end_time": "08:30"}, {"start_time": "09:00", "end_time": "09:30"}],
    )

    assert summary["created"] == 1
    assert summary["skipped"] == 1


def test_bulk_with_nothing_new_reports_skipped(center):
    monday = _next_monday()
    make_slot(center, day=monday, start=time(8, 0), end=time(8, 30))

    with pytest.raises(ValidationFailed) as exc:
        slot_store.create_bulk(center.id, monday, monday, [{"start_time": "08:00", "end_time": "08:30"}])
    assert exc.value.details["skipped"] == 1


@pytest.mark.parametrize("templates", [
    [{"start_time": "10:00", "end_time": "09:00"}],
    [{"start_time": "09:00", "end_time": "10:00"}, {"start_time": "09:30", "end_time": "10:30"}],
    [{"start_time": "9h", "end_time": "10:00"}],
    [],
])
def test_bulk_rejects_bad_templates_before_writing(center, templates):
    monday = _next_monday()
    with pytest.raises(ValidationFailed):
        slot_store.create_bulk(center.id, monday, monday + timedelta(days=4), templates)
    assert TimeSlot.query.count() == 0


def test_bulk_rejects_inverted_range(center):
    monday = _next_monday()
    with pytest.raises(ValidationFailed):
        slot_store.create_bulk(center.id, monday, monday - timedelta(days=1),
                               [{"start_time": "08:00", "end_time": "08:30"}])


def test_bulk_unknown_center(ctx):
    with pytest.raises(NotFound):
        slot_store.create_bulk(999, date.today(), date.today(), [{"start_time": "08:00", "end_time": "08:30"}])


def test_create_slot_duplicate_key(slot):
    with pytest.raises(SlotExists):
        slot_store.create_slot(slot.center_id, slot.date, "09:00", "09:45", capacity=1, price=0)


def test_update_capacity_not_below_booked(center):
    slot = make_slot(center, capacity=3)
    with atomic():
        slot_store.reserve(slot.id)
        slot_store.reserve(slot.id)

    with pytest.raises(SlotInUse):
        slot_store.update_slot(slot.id, {"capacity": 1})

    updated = slot_store.update_slot(slot.id, {"capacity": 2, "price": 40000})
    assert updated.capacity == 2
    assert updated.price == 40000


def test_update_rejects_inverted_times(slot):
    with pytest.raises(ValidationFailed):
        slot_store.update_slot(slot.id, {"end_time": "08:00"})


def test_delete_free_slot(slot):
    assert slot_store.delete_slot(slot.id) == {"deleted": True, "deactivated": False}
    assert db.session.get(TimeSlot, slot.id) is None


def test_delete_booked_slot_refused(slot):
    with atomic():
        slot_store.reserve(slot.id)
    with pytest.raises(SlotInUse):
        slot_store.delete_slot(slot.id)


def test_list_available_marks_full_slots(center):
    day = date.today() + timedelta(days=5)
    full = make_slot(center, day=day, start=time(8, 0), end=time(8, 30))
    make_slot(center, day=day, start=time(9, 0), end=time(9, 30))
    with atomic():
        slot_store.reserve(full.id)

    listed = [s.to_dict() for s in slot_store.list_available(center.id, day.isoformat())]

    assert [s["start_time"] for s in listed] == ["08:00", "09:00"]
    assert [s["available"] for s in listed] == [False, True]
