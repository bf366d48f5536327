from datetime import datetime
from models.db import db


class BookingStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    ACTIVE = (PENDING, CONFIRMED)
    TERMINAL = (COMPLETED, CANCELLED, NO_SHOW)
    ALL = ACTIVE + TERMINAL


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)
    booking_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    car_id = db.Column(db.Integer, db.ForeignKey("cars.id"), nullable=False)
    center_id = db.Column(db.Integer, db.ForeignKey("inspection_centers.id"), nullable=False, index=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("time_slots.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING, index=True)
    total_amount = db.Column(db.Integer, nullable=False)  # centimes, copied from slot price
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)

    user = db.relationship("User", foreign_keys=[user_id])
    car = db.relationship("Car")
    center = db.relationship("InspectionCenter")
    slot = db.relationship("TimeSlot", back_populates="bookings")
    payment = db.relationship("Payment", back_populates="booking", uselist=False)

    __table_args__ = (
        # a user holds at most one non-cancelled booking per slot
        db.Index(
            "uq_booking_user_slot_active",
            "user_id",
            "slot_id",
            unique=True,
            sqlite_where=db.text("status != 'CANCELLED'"),
            postgresql_where=db.text("status != 'CANCELLED'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in BookingStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_number": self.booking_number,
            "status": self.status,
            "total_amount": self.total_amount,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "car": {
                "id": self.car.id,
                "license_plate": self.car.license_plate,
                "brand": self.car.brand,
                "model": self.car.model,
            } if self.car else None,
            "center": {
                "id": self.center.id,
                "name": self.center.name,
                "city": self.center.city,
                "address": self.center.address,
            } if self.center else None,
            "slot": self.slot.to_dict() if self.slot else None,
            "payment": self.payment.to_dict() if self.payment else None,
        }
