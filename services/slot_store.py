"""
Time slot store.

Holds per-center, per-day capacity and the booked count. ``reserve`` and
``release`` are the only writers of ``booked_count`` and both are single
conditional UPDATE statements, so concurrent requests racing for the last
unit cannot push the count past capacity or lose an update. Neither commits:
they run inside the caller's transaction.
"""
import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.util import identity_key

from models import db, atomic
from models.booking import Booking, BookingStatus
from models.center import InspectionCenter
from models.slot import TimeSlot
from services.errors import NotFound, SlotExists, SlotInUse, SlotUnavailable, ValidationFailed
from utils.audit import log_event

logger = logging.getLogger(__name__)

MAX_BULK_DAYS = 366
DEFAULT_ADMIN_WINDOW_DAYS = 30


def _expire_cached(slot_id: int) -> None:
    # the UPDATE bypasses the ORM; drop any stale copy from the identity map
    cached = db.session.identity_map.get(identity_key(TimeSlot, slot_id))
    if cached is not None:
        db.session.expire(cached, ["booked_count"])


def reserve(slot_id: int) -> None:
    """Take one capacity unit or raise SlotUnavailable."""
    result = db.session.execute(
        update(TimeSlot)
        .where(
            TimeSlot.id == slot_id,
            TimeSlot.is_available.is_(True),
            TimeSlot.booked_count < TimeSlot.capacity,
        )
        .values(booked_count=TimeSlot.booked_count + 1)
        .execution_options(synchronize_session=False)
    )
    _expire_cached(slot_id)
    if result.rowcount != 1:
        raise SlotUnavailable()


def release(slot_id: int) -> bool:
    """Give one unit back, floored at zero. Returns False if already at zero."""
    result = db.session.execute(
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.booked_count > 0)
        .values(booked_count=TimeSlot.booked_count - 1)
        .execution_options(synchronize_session=False)
    )
    _expire_cached(slot_id)
    if result.rowcount != 1:
        logger.warning("release on slot %s with booked_count already 0", slot_id)
        return False
    return True


# ---------- parsing helpers ----------

def parse_day(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationFailed(f"Invalid date '{value}'. Use YYYY-MM-DD")


def parse_clock(value) -> time:
    if isinstance(value, time):
        return value
    try:
        return datetime.strptime(str(value), "%H:%M").time()
    except ValueError:
        raise ValidationFailed(f"Invalid time '{value}'. Use HH:MM")


def _positive_int(value, field: str, minimum: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be an integer")
    if number < minimum:
        raise ValidationFailed(f"{field} must be >= {minimum}")
    return number


def _active_center(center_id) -> InspectionCenter:
    center = db.session.get(InspectionCenter, center_id) if center_id else None
    if center is None or not center.is_active:
        raise NotFound("Inspection center not found")
    return center


def _parse_templates(templates):
    if not templates:
        raise ValidationFailed("At least one time slot template is required")

    parsed = []
    for tpl in templates:
        start = parse_clock(tpl.get("start_time"))
        end = parse_clock(tpl.get("end_time"))
        if start >= end:
            raise ValidationFailed(f"start_time must be before end_time: {tpl.get('start_time')} - {tpl.get('end_time')}")
        parsed.append({
            "start_time": start,
            "end_time": end,
            "capacity": _positive_int(tpl.get("capacity", 1), "capacity", 1),
            "price": _positive_int(tpl.get("price", 0), "price", 0),
        })

    parsed.sort(key=lambda t: t["start_time"])
    for prev, cur in zip(parsed, parsed[1:]):
        if cur["start_time"] < prev["end_time"]:
            raise ValidationFailed(
                "Time slot templates overlap: "
                f"{prev['start_time']:%H:%M}-{prev['end_time']:%H:%M} and "
                f"{cur['start_time']:%H:%M}-{cur['end_time']:%H:%M}"
            )
    return parsed


def _dates_in_range(start: date, end: date, skip_weekends: bool):
    day = start
    while day <= end:
        # weekday(): Monday 0 .. Sunday 6
        if not (skip_weekends and day.weekday() >= 5):
            yield day
        day += timedelta(days=1)


# ---------- scheduling ----------

def create_bulk(center_id, start_date, end_date, templates, skip_weekends: bool = True, actor_id=None) -> dict:
    """
    Create one slot per (date x template), skipping (center, date, start)
    keys that already exist. Nothing is written if any template is invalid.
    """
    center = _active_center(center_id)
    first = parse_day(start_date)
    last = parse_day(end_date)
    if first > last:
        raise ValidationFailed("start_date must be on or before end_date")
    if (last - first).days >= MAX_BULK_DAYS:
        raise ValidationFailed(f"Date range may not exceed {MAX_BULK_DAYS} days")

    parsed = _parse_templates(templates)
    dates = list(_dates_in_range(first, last, skip_weekends))

    existing = {
        (row.date, row.start_time)
        for row in db.session.query(TimeSlot.date, TimeSlot.start_time).filter(
            TimeSlot.center_id == center.id,
            TimeSlot.date >= first,
            TimeSlot.date <= last,
        )
    }

    to_create = []
    skipped = 0
    for day in dates:
        for tpl in parsed:
            if (day, tpl["start_time"]) in existing:
                skipped += 1
                continue
            to_create.append(TimeSlot(center_id=center.id, date=day, booked_count=0, is_available=True, **tpl))

    summary = {
        "created": len(to_create),
        "skipped": skipped,
        "total_dates": len(dates),
        "slots_per_date": len(parsed),
        "date_range": {"start": first.isoformat(), "end": last.isoformat()},
    }
    if not to_create:
        raise ValidationFailed("No new time slots to create; all of them already exist", details=summary)

    try:
        with atomic() as session:
            session.add_all(to_create)
            log_event("SLOT_BULK_CREATE", user_id=actor_id, entity="center", entity_id=center.id, metadata=summary)
    except IntegrityError:
        # a concurrent scheduler inserted one of our keys first
        raise SlotExists("Some of these time slots were created concurrently; retry the request")

    logger.info("bulk scheduling for center %s: %s created, %s skipped", center.id, summary["created"], skipped)
    return summary


def create_slot(center_id, day, start_time, end_time, capacity, price, actor_id=None) -> TimeSlot:
    center = _active_center(center_id)
    day = parse_day(day)
    start = parse_clock(start_time)
    end = parse_clock(end_time)
    if start >= end:
        raise ValidationFailed("start_time must be before end_time")

    slot = TimeSlot(
        center_id=center.id,
        date=day,
        start_time=start,
        end_time=end,
        capacity=_positive_int(capacity, "capacity", 1),
        price=_positive_int(price, "price", 0),
    )
    try:
        with atomic() as session:
            session.add(slot)
            session.flush()
            log_event("SLOT_CREATE", user_id=actor_id, entity="slot", entity_id=slot.id)
    except IntegrityError:
        raise SlotExists("Time slot already exists for that center, date and start time")
    return slot


def get_slot(slot_id, lock: bool = False) -> TimeSlot:
    q = db.session.query(TimeSlot).filter(TimeSlot.id == slot_id)
    if lock:
        q = q.with_for_update().populate_existing()
    slot = q.first()
    if slot is None:
        raise NotFound("Time slot not found")
    return slot


def _active_booking_count(slot_id: int) -> int:
    return (
        db.session.query(func.count(Booking.id))
        .filter(Booking.slot_id == slot_id, Booking.status.in_(BookingStatus.ACTIVE))
        .scalar()
    )


def update_slot(slot_id, changes: dict, actor_id=None) -> TimeSlot:
    """
    Date/time changes are refused while PENDING/CONFIRMED bookings exist;
    capacity may never drop below the current booked count.
    """
    try:
        with atomic():
            slot = get_slot(slot_id, lock=True)

            moves = {k for k in ("date", "start_time", "end_time", "center_id") if changes.get(k) is not None}
            if moves and _active_booking_count(slot.id) > 0:
                raise SlotInUse("Cannot change date/time: the slot has active bookings")

            if changes.get("center_id") is not None:
                slot.center_id = _active_center(changes["center_id"]).id
            if changes.get("date") is not None:
                slot.date = parse_day(changes["date"])
            if changes.get("start_time") is not None:
                slot.start_time = parse_clock(changes["start_time"])
            if changes.get("end_time") is not None:
                slot.end_time = parse_clock(changes["end_time"])
            if slot.start_time >= slot.end_time:
                raise ValidationFailed("start_time must be before end_time")

            if changes.get("capacity") is not None:
                capacity = _positive_int(changes["capacity"], "capacity", 1)
                if capacity < slot.booked_count:
                    raise SlotInUse(f"Cannot reduce capacity below {slot.booked_count} (current bookings)")
                slot.capacity = capacity
            if changes.get("price") is not None:
                slot.price = _positive_int(changes["price"], "price", 0)
            if changes.get("is_available") is not None:
                slot.is_available = bool(changes["is_available"])

            db.session.flush()
            log_event("SLOT_UPDATE", user_id=actor_id, entity="slot", entity_id=slot.id,
                      metadata={k: v for k, v in changes.items() if v is not None})
    except IntegrityError:
        raise SlotExists("A time slot already exists for that date and time")
    return slot


def delete_slot(slot_id, actor_id=None) -> dict:
    """
    Remove a slot without bookings. A slot that only carries cancelled
    bookings is kept for their history and deactivated instead.
    """
    with atomic() as session:
        slot = get_slot(slot_id, lock=True)
        if slot.booked_count > 0 or _active_booking_count(slot.id) > 0:
            raise SlotInUse("Cannot delete the slot: it has active bookings")

        has_history = session.query(Booking.id).filter(Booking.slot_id == slot.id).first() is not None
        if has_history:
            slot.is_available = False
            log_event("SLOT_DEACTIVATE", user_id=actor_id, entity="slot", entity_id=slot.id)
            return {"deleted": False, "deactivated": True}

        session.delete(slot)
        log_event("SLOT_DELETE", user_id=actor_id, entity="slot", entity_id=slot_id)
    return {"deleted": True, "deactivated": False}


# ---------- listings ----------

def list_available(center_id, day):
    day = parse_day(day)
    return (
        TimeSlot.query
        .filter_by(center_id=center_id, date=day, is_available=True)
        .order_by(TimeSlot.start_time.asc())
        .all()
    )


def list_admin(center_id=None, day=None, start_date=None, end_date=None):
    q = TimeSlot.query
    if center_id:
        q = q.filter(TimeSlot.center_id == center_id)

    if day:
        q = q.filter(TimeSlot.date == parse_day(day))
    elif start_date and end_date:
        q = q.filter(TimeSlot.date >= parse_day(start_date), TimeSlot.date <= parse_day(end_date))
    else:
        today = date.today()
        q = q.filter(TimeSlot.date >= today, TimeSlot.date <= today + timedelta(days=DEFAULT_ADMIN_WINDOW_DAYS))

    return q.order_by(TimeSlot.date.asc(), TimeSlot.start_time.asc()).all()
