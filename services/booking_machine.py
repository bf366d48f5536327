"""
Booking lifecycle.

    PENDING --payment--> CONFIRMED --admin--> COMPLETED
    PENDING/CONFIRMED --> CANCELLED | NO_SHOW

Transitions that change capacity consumption (create, cancel) run in one
transaction together with the slot store mutation. Status changes are
conditional UPDATEs on the current status, so a racing duplicate request
finds zero rows and fails instead of applying twice.
"""
import logging
import secrets
import time as _time
from datetime import datetime
from zoneinfo import ZoneInfo

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from models import db, atomic
from models.booking import Booking, BookingStatus
from models.car import Car
from models.payment import Payment, PaymentStatus
from models.slot import TimeSlot
from services import notifications, slot_store
from services.errors import (
    CutoffWindow,
    DuplicateBooking,
    Forbidden,
    InvalidState,
    NotFound,
    PastAppointment,
    SlotUnavailable,
    ValidationFailed,
)
from utils.audit import log_event

logger = logging.getLogger(__name__)


def generate_booking_number(prefix: str = "VT") -> str:
    """PREFIX + last 8 digits of epoch millis + 3 random digits."""
    millis = str(int(_time.time() * 1000))[-8:]
    return f"{prefix}{millis}{secrets.randbelow(1000):03d}"


def _is_number_collision(exc: IntegrityError) -> bool:
    return "booking_number" in str(exc.orig)


def center_now() -> datetime:
    """Current wall-clock time at the centers, naive like slot dates and times."""
    zone = ZoneInfo(current_app.config.get("CENTER_TIMEZONE", "Africa/Casablanca"))
    return datetime.now(zone).replace(tzinfo=None)


def _hours_until(slot: TimeSlot) -> float:
    return (slot.starts_at - center_now()).total_seconds() / 3600


def as_id(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationFailed(f"{field} must be an integer id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be an integer id")


def get_booking(booking_id) -> Booking:
    booking = db.session.get(Booking, as_id(booking_id, "booking_id")) if booking_id else None
    if booking is None:
        raise NotFound("Booking not found")
    return booking


def _insert_with_unique_number(booking: Booking) -> None:
    prefix = current_app.config.get("BOOKING_NUMBER_PREFIX", "VT")
    retries = current_app.config.get("BOOKING_NUMBER_RETRIES", 5)
    for attempt in range(1, retries + 1):
        booking.booking_number = generate_booking_number(prefix)
        try:
            with db.session.begin_nested():
                db.session.add(booking)
                db.session.flush()
            return
        except IntegrityError as exc:
            if not _is_number_collision(exc):
                raise
            logger.warning("booking number %s collided (attempt %s)", booking.booking_number, attempt)
    raise RuntimeError("Could not allocate a unique booking number")


def create_booking(user, car_id, center_id, slot_id, notes=None) -> Booking:
    slot_id = as_id(slot_id, "slot_id")
    car_id = as_id(car_id, "car_id")
    if center_id is not None:
        center_id = as_id(center_id, "center_id")

    slot = db.session.get(TimeSlot, slot_id)
    if slot is None:
        raise NotFound("Time slot not found")
    if center_id is not None and center_id != slot.center_id:
        raise ValidationFailed("Time slot does not belong to this inspection center")

    car = db.session.get(Car, car_id)
    if car is None or (car.owner_id != user.id and not user.is_admin()):
        raise NotFound("Car not found")

    if not slot.has_room:
        raise SlotUnavailable()
    if slot.starts_at <= center_now():
        raise ValidationFailed("Cannot book past or started time slots")

    duplicate = Booking.query.filter(
        Booking.user_id == user.id,
        Booking.slot_id == slot.id,
        Booking.status != BookingStatus.CANCELLED,
    ).first()
    if duplicate:
        raise DuplicateBooking()

    booking = Booking(
        user_id=user.id,
        car_id=car.id,
        center_id=slot.center_id,
        slot_id=slot.id,
        status=BookingStatus.PENDING,
        total_amount=slot.price,
        notes=(notes or "").strip() or None,
    )
    try:
        with atomic():
            slot_store.reserve(slot.id)
            _insert_with_unique_number(booking)
            log_event("BOOKING_CREATE", user_id=user.id, entity="booking", entity_id=booking.id,
                      metadata={"slot_id": slot.id, "booking_number": booking.booking_number})
            queued = notifications.queue(notifications.BOOKING_CREATED, booking)
    except IntegrityError:
        # partial unique index: a concurrent request booked the same slot for this user
        raise DuplicateBooking()

    logger.info("booking %s created on slot %s", booking.booking_number, slot.id)
    notifications.dispatch_after_commit([queued])
    return booking


def _check_actor(booking: Booking, actor) -> None:
    if actor.id != booking.user_id and not actor.is_admin():
        raise Forbidden()


def _check_not_terminal(booking: Booking) -> None:
    if booking.status == BookingStatus.CANCELLED:
        raise InvalidState("Booking is already cancelled")
    if booking.status == BookingStatus.COMPLETED:
        raise InvalidState("Cannot cancel a completed booking")
    if booking.status == BookingStatus.NO_SHOW:
        raise InvalidState("Cannot cancel a booking marked as no-show")


def _apply_cancel(booking: Booking, actor, reason, action: str) -> Booking:
    now = datetime.utcnow()
    with atomic():
        result = db.session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status.in_(BookingStatus.ACTIVE))
            .values(
                status=BookingStatus.CANCELLED,
                cancelled_at=now,
                cancelled_by=actor.id,
                cancel_reason=(reason or "")[:120] or None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # lost a race with another status change; report where it ended up
            db.session.refresh(booking)
            _check_not_terminal(booking)
            raise InvalidState(f"Booking in status {booking.status} cannot be cancelled")

        slot_store.release(booking.slot_id)

        refunded = False
        payment = (
            db.session.query(Payment)
            .filter(Payment.booking_id == booking.id)
            .with_for_update().populate_existing()
            .first()
        )
        if payment is not None and payment.status == PaymentStatus.COMPLETED:
            # refund execution belongs to the gateway back office
            payment.transition_to(PaymentStatus.REFUNDED)
            payment.refunded_at = now
            refunded = True

        db.session.expire(booking)
        log_event(action, user_id=actor.id, entity="booking", entity_id=booking.id,
                  metadata={"reason": reason, "refunded": refunded})
        queued = notifications.queue(notifications.BOOKING_CANCELLED, booking)

    logger.info("booking %s cancelled by user %s (refund=%s)", booking.booking_number, actor.id, refunded)
    notifications.dispatch_after_commit([queued])
    return booking


def cancel_booking(booking_id, actor, reason=None) -> Booking:
    """
    Customer-facing cancellation. Refused for terminal bookings, for
    appointments inside the cutoff window and for appointments that have
    already started (those go through ``cancel_past_booking``).
    """
    booking = get_booking(booking_id)
    _check_actor(booking, actor)
    _check_not_terminal(booking)

    cutoff = current_app.config.get("CANCEL_CUTOFF_HOURS", 24)
    hours_left = _hours_until(booking.slot)
    if hours_left <= 0:
        raise PastAppointment("The appointment has already started; contact the inspection center")
    if hours_left < cutoff:
        raise CutoffWindow(f"Cannot cancel a booking less than {cutoff} hours before the appointment")

    return _apply_cancel(booking, actor, reason, "BOOKING_CANCEL")


def cancel_past_booking(booking_id, actor, reason=None) -> Booking:
    """Administrative cleanup of a booking whose appointment time has passed."""
    if not actor.is_admin():
        raise Forbidden()
    booking = get_booking(booking_id)
    _check_not_terminal(booking)
    if _hours_until(booking.slot) > 0:
        raise InvalidState("The appointment is still upcoming; use the regular cancellation")
    return _apply_cancel(booking, actor, reason or "Past appointment cleanup", "BOOKING_CANCEL_PAST")


def _move_status(booking_id, from_statuses, to_status) -> int:
    return db.session.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status.in_(from_statuses))
        .values(status=to_status, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount


def confirm_booking(booking: Booking) -> bool:
    """
    PENDING -> CONFIRMED inside the caller's transaction. Returns False if
    the booking was already confirmed; raises for any other state.
    """
    if _move_status(booking.id, (BookingStatus.PENDING,), BookingStatus.CONFIRMED) == 1:
        db.session.expire(booking, ["status", "updated_at"])
        return True
    db.session.refresh(booking)
    if booking.status == BookingStatus.CONFIRMED:
        return False
    raise InvalidState(f"Booking in status {booking.status} cannot be confirmed")


def complete_booking(booking_id, actor) -> Booking:
    booking = get_booking(booking_id)
    with atomic():
        if _move_status(booking.id, (BookingStatus.CONFIRMED,), BookingStatus.COMPLETED) != 1:
            raise InvalidState(f"Only confirmed bookings can be completed (status {booking.status})")
        log_event("BOOKING_COMPLETE", user_id=actor.id, entity="booking", entity_id=booking.id)
    db.session.refresh(booking)
    return booking


def mark_no_show(booking_id, actor) -> Booking:
    booking = get_booking(booking_id)
    with atomic():
        if _move_status(booking.id, BookingStatus.ACTIVE, BookingStatus.NO_SHOW) != 1:
            raise InvalidState(f"Booking in status {booking.status} cannot be marked as no-show")
        log_event("BOOKING_NO_SHOW", user_id=actor.id, entity="booking", entity_id=booking.id)
    db.session.refresh(booking)
    return booking


def list_for_user(user_id, status=None):
    q = Booking.query.filter_by(user_id=user_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Booking.created_at.desc()).all()


def list_all(status=None, limit: int = 200):
    q = Booking.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Booking.created_at.desc()).limit(limit).all()
