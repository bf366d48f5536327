from datetime import datetime
from models.db import db

class TimeSlot(db.Model):
    __tablename__ = "time_slots"

    id = db.Column(db.Integer, primary_key=True)

    center_id = db.Column(db.Integer, db.ForeignKey("inspection_centers.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    capacity = db.Column(db.Integer, nullable=False, default=1)
    booked_count = db.Column(db.Integer, nullable=False, default=0)
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    price = db.Column(db.Integer, nullable=False, default=0)  # centimes (MAD)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    center = db.relationship("InspectionCenter", back_populates="slots")
    bookings = db.relationship("Booking", back_populates="slot")

    __table_args__ = (
        # One slot per center, day and start time
        db.UniqueConstraint("center_id", "date", "start_time", name="uq_center_day_start"),
        db.CheckConstraint("capacity > 0", name="ck_slot_capacity_positive"),
        db.CheckConstraint("booked_count >= 0 AND booked_count <= capacity", name="ck_slot_booked_within_capacity"),
        db.CheckConstraint("start_time < end_time", name="ck_slot_time_order"),
    )

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    @property
    def has_room(self) -> bool:
        return self.is_available and self.booked_count < self.capacity

    def to_dict(self, admin: bool = False) -> dict:
        out = {
            "id": self.id,
            "center_id": self.center_id,
            "date": self.date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "capacity": self.capacity,
            "booked_count": self.booked_count,
            "available": self.has_room,
            "price": self.price,
        }
        if admin:
            out["is_available"] = self.is_available
            out["created_at"] = self.created_at.isoformat()
            out["updated_at"] = self.updated_at.isoformat()
        return out
