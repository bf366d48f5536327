"""
Booking notifications: a transactional outbox plus a thread-pool dispatcher.

``queue`` stages a Notification row inside the caller's transaction, keyed by
(event, booking) so a replayed operation can never queue the same message
twice. Once the transaction commits, ``dispatch`` hands the row ids to a
worker that sends them by e-mail and/or SMS, following the customer's channel
preferences. Per-channel results are recorded on the row and logged; delivery
problems never reach the booking/payment code path.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from flask import current_app

from models import db
from models.booking import Booking
from models.notification import Notification
from utils.emailer import send_email
from utils.sms import send_sms

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking_created"
BOOKING_CONFIRMED = "booking_confirmed"
BOOKING_CANCELLED = "booking_cancelled"
PAYMENT_CONFIRMED = "payment_confirmed"

SUBJECTS = {
    "fr": {
        BOOKING_CREATED: "Réservation {number} enregistrée",
        BOOKING_CONFIRMED: "Réservation {number} confirmée",
        BOOKING_CANCELLED: "Réservation {number} annulée",
        PAYMENT_CONFIRMED: "Paiement reçu pour la réservation {number}",
    },
    "en": {
        BOOKING_CREATED: "Booking {number} received",
        BOOKING_CONFIRMED: "Booking {number} confirmed",
        BOOKING_CANCELLED: "Booking {number} cancelled",
        PAYMENT_CONFIRMED: "Payment received for booking {number}",
    },
}


def queue(event: str, booking: Booking):
    """Stage a notification; returns None when this event was already queued."""
    exists = Notification.query.filter_by(event=event, booking_id=booking.id).first()
    if exists is not None:
        return None
    row = Notification(event=event, booking_id=booking.id, status="QUEUED")
    db.session.add(row)
    db.session.flush()
    return row


def render(event: str, booking: Booking):
    lang = booking.user.preferred_language if booking.user else "fr"
    subjects = SUBJECTS.get(lang, SUBJECTS["fr"])
    subject = subjects[event].format(number=booking.booking_number)

    slot = booking.slot
    lines = [
        subject,
        "",
        f"Booking: {booking.booking_number}",
        f"Vehicle: {booking.car.label() if booking.car else '-'}",
        f"Center: {booking.center.name}, {booking.center.address}" if booking.center else "Center: -",
        f"Date: {slot.date.isoformat()} {slot.start_time:%H:%M}-{slot.end_time:%H:%M}" if slot else "Date: -",
        f"Amount: {booking.total_amount / 100:.2f} MAD",
    ]
    if booking.payment and booking.payment.transaction_id:
        lines.append(f"Transaction: {booking.payment.transaction_id}")
    return subject, "\n".join(lines)


def render_sms(event: str, booking: Booking) -> str:
    """Short text for the SMS channel: subject, center and appointment time."""
    lang = booking.user.preferred_language if booking.user else "fr"
    subject = SUBJECTS.get(lang, SUBJECTS["fr"])[event].format(number=booking.booking_number)
    slot = booking.slot
    when = f"{slot.date.isoformat()} {slot.start_time:%H:%M}" if slot else "-"
    center = booking.center.name if booking.center else "-"
    return f"VisitSlot: {subject}\n{center}\n{when}"


def _send_channels(row: Notification, user):
    """Send over every channel the user opted into. Returns (email_sent, sms_sent, errors)."""
    email_sent = sms_sent = None
    errors = []

    if user.email_notifications:
        subject, body = render(row.event, row.booking)
        email_sent, error = send_email(user.email, subject, body, language=user.preferred_language or "fr")
        if error:
            errors.append(f"email: {error}")

    if user.sms_notifications and user.phone_number:
        sms_sent, error = send_sms(user.phone_number, render_sms(row.event, row.booking))
        if error:
            errors.append(f"sms: {error}")

    return email_sent, sms_sent, errors


def deliver(notification_id: int) -> Notification:
    row = db.session.get(Notification, notification_id)
    if row is None or row.status != "QUEUED":
        return row

    email_sent, sms_sent, errors = _send_channels(row, row.booking.user)

    row.email_sent = email_sent
    row.sms_sent = sms_sent
    row.error = "; ".join(errors)[:255] or None
    if email_sent is None and sms_sent is None:
        row.status = "SKIPPED"
    else:
        row.status = "SENT" if (email_sent or sms_sent) else "FAILED"
    row.attempted_at = datetime.utcnow()
    db.session.commit()

    if errors:
        logger.warning("notification %s (%s, booking %s) delivery problems: %s",
                       row.id, row.event, row.booking_id, row.error)
    return row


class NotificationDispatcher:
    """Flask extension owning the worker pool (``app.extensions["notifier"]``)."""

    def __init__(self, app=None):
        self.app = None
        self.inline = False
        self._executor = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self.inline = bool(app.config.get("NOTIFY_INLINE", False))
        if not self.inline:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config.get("NOTIFY_WORKERS", 2),
                thread_name_prefix="notify",
            )
        app.extensions["notifier"] = self

    def dispatch(self, notification_ids) -> None:
        for notification_id in notification_ids:
            if self.inline:
                self._run(notification_id)
            else:
                self._executor.submit(self._run, notification_id)

    def _run(self, notification_id: int) -> None:
        with self.app.app_context():
            try:
                deliver(notification_id)
            except Exception:
                # the booking is already committed; a failed send is only logged
                logger.exception("notification %s dispatch failed", notification_id)
                db.session.rollback()

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)


def dispatch_after_commit(rows) -> None:
    ids = [r.id for r in rows if r is not None]
    if ids:
        current_app.extensions["notifier"].dispatch(ids)
