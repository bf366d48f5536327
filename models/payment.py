from datetime import datetime
from models.db import db


class PaymentStatus:
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# Allowed moves. COMPLETED is only reachable from PENDING/PROCESSING and
# REFUNDED only from COMPLETED; FAILED -> PENDING is a customer retry.
PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True, index=True)

    payment_method = db.Column(db.String(20), nullable=False, default="CMI")
    amount = db.Column(db.Integer, nullable=False)  # centimes
    currency = db.Column(db.String(10), nullable=False, default="MAD")

    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING, index=True)
    cmi_order_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    transaction_id = db.Column(db.String(64), nullable=True)
    response_code = db.Column(db.String(32), nullable=True)
    response_message = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    payment_date = db.Column(db.DateTime, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)

    booking = db.relationship("Booking", back_populates="payment")

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in PAYMENT_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: str) -> None:
        if not self.can_transition_to(new_status):
            # local import keeps models free of the service layer at import time
            from services.errors import InvalidTransition
            raise InvalidTransition(f"Payment cannot move from {self.status} to {new_status}")
        self.status = new_status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "transaction_id": self.transaction_id,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
        }
