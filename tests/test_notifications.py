"""Notification outbox: dedupe, rendering and delivery bookkeeping."""
import pytest

from models import atomic
from models.notification import Notification
from services import booking_machine, notifications
from utils import emailer, sms

from conftest import make_car, make_user

pytestmark = pytest.mark.unit


@pytest.fixture
def booking(customer, car, slot):
    return booking_machine.create_booking(customer, car.id, slot.center_id, slot.id)


def test_queue_is_deduplicated(booking):
    with atomic():
        assert notifications.queue(notifications.BOOKING_CREATED, booking) is None
        again = notifications.queue(notifications.BOOKING_CANCELLED, booking)
    assert again is not None
    assert Notification.query.filter_by(booking_id=booking.id).count() == 2


def test_render_follows_user_language(ctx, center, slot):
    english = make_user("tourist@example.com", language="en")
    booking = booking_machine.create_booking(english, make_car(english, plate="55555-C-7").id, center.id, slot.id)

    subject, body = notifications.render(notifications.BOOKING_CONFIRMED, booking)

    assert subject == f"Booking {booking.booking_number} confirmed"
    assert "Dacia Logan (55555-C-7)" in body
    assert "350.00 MAD" in body


def test_failed_delivery_is_recorded_not_raised(booking, monkeypatch):
    monkeypatch.setattr(notifications, "send_email", lambda *a, **kw: (False, "connection refused"))
    with atomic():
        row = notifications.queue(notifications.BOOKING_CANCELLED, booking)

    delivered = notifications.deliver(row.id)

    assert delivered.status == "FAILED"
    assert delivered.email_sent is False
    assert delivered.sms_sent is None
    assert delivered.error == "email: connection refused"
    assert delivered.attempted_at is not None


def test_deliver_skips_already_sent(booking, outbox):
    row = Notification.query.filter_by(booking_id=booking.id, event=notifications.BOOKING_CREATED).one()
    assert row.status == "SENT"
    before = len(outbox)

    notifications.deliver(row.id)

    assert len(outbox) == before


def test_dispatcher_survives_worker_errors(ctx, booking, monkeypatch):
    def broken(notification_id):
        raise RuntimeError("template exploded")

    monkeypatch.setattr(notifications, "deliver", broken)
    ctx.extensions["notifier"].dispatch([12345])


def test_emailer_reports_missing_configuration(ctx):
    assert emailer.send_email("driver@example.com", "Hello", "Body") == (False, "Email not configured")


def test_message_headers():
    msg = emailer.build_message("noreply@visitslot.ma", "driver@example.com", "Réservation", "Bonjour", "ar")
    assert msg["Content-Language"] == "ar"
    assert msg["Message-ID"].endswith("@visitslot.ma>")


def test_sms_sent_when_customer_opted_in(ctx, center, slot, texts, outbox):
    texter = make_user("texter@example.com", sms_notifications=True)
    booking = booking_machine.create_booking(texter, make_car(texter, plate="77777-D-1").id, center.id, slot.id)

    row = Notification.query.filter_by(booking_id=booking.id, event=notifications.BOOKING_CREATED).one()
    assert row.status == "SENT"
    assert row.email_sent is True
    assert row.sms_sent is True
    assert texts[-1]["to"] == "+212600000000"
    assert booking.booking_number in texts[-1]["body"]
    assert outbox[-1]["to"] == "texter@example.com"


def test_sms_only_customer_gets_no_email(ctx, center, slot, texts, outbox):
    quiet = make_user("sms.only@example.com", email_notifications=False, sms_notifications=True)
    booking = booking_machine.create_booking(quiet, make_car(quiet, plate="77777-D-2").id, center.id, slot.id)

    row = Notification.query.filter_by(booking_id=booking.id).one()
    assert row.email_sent is None
    assert row.sms_sent is True
    assert all(m["to"] != "sms.only@example.com" for m in outbox)


def test_no_channel_is_skipped(ctx, center, slot, texts, outbox):
    silent = make_user("silent@example.com", email_notifications=False)
    booking = booking_machine.create_booking(silent, make_car(silent, plate="77777-D-3").id, center.id, slot.id)

    row = Notification.query.filter_by(booking_id=booking.id).one()
    assert row.status == "SKIPPED"
    assert row.email_sent is None and row.sms_sent is None
    assert texts == []


def test_sms_failure_does_not_hide_email_success(ctx, center, slot, monkeypatch):
    monkeypatch.setattr(notifications, "send_sms", lambda *a, **kw: (False, "invalid number"))
    texter = make_user("texter@example.com", sms_notifications=True)
    booking = booking_machine.create_booking(texter, make_car(texter, plate="77777-D-4").id, center.id, slot.id)

    row = Notification.query.filter_by(booking_id=booking.id).one()
    assert row.status == "SENT"
    assert row.email_sent is True
    assert row.sms_sent is False
    assert row.error == "sms: invalid number"


def test_sms_reports_missing_configuration(ctx):
    assert sms.send_sms("0612345678", "Bonjour") == (False, "SMS not configured")


@pytest.mark.parametrize("raw, expected", [
    ("0612345678", "+212612345678"),
    ("06 12 34 56 78", "+212612345678"),
    ("612345678", "+212612345678"),
    ("+212 612-345-678", "+212612345678"),
    ("+33612345678", "+33612345678"),
])
def test_phone_numbers_are_normalised_for_morocco(raw, expected):
    assert sms.format_phone_number(raw) == expected
