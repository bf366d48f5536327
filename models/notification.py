from datetime import datetime
from models.db import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    event = db.Column(db.String(40), nullable=False)  # booking_created, payment_confirmed, ...
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default="QUEUED")  # QUEUED, SENT, FAILED, SKIPPED
    email_sent = db.Column(db.Boolean, nullable=True)  # None: channel not used
    sms_sent = db.Column(db.Boolean, nullable=True)
    error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    attempted_at = db.Column(db.DateTime, nullable=True)

    booking = db.relationship("Booking")

    __table_args__ = (
        # dedupe key: a booking never gets the same event twice
        db.UniqueConstraint("event", "booking_id", name="uq_notification_event_booking"),
    )
