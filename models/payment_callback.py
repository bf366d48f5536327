from datetime import datetime
from models.db import db


class PaymentCallback(db.Model):
    """Ledger of processed gateway callbacks; one row per order id and outcome."""

    __tablename__ = "payment_callbacks"

    id = db.Column(db.Integer, primary_key=True)
    cmi_order_id = db.Column(db.String(64), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    outcome = db.Column(db.String(20), nullable=False)  # SUCCESS, FAILURE, INVALID_HASH
    hash_valid = db.Column(db.Boolean, nullable=False, default=False)
    response_code = db.Column(db.String(32), nullable=True)
    response_message = db.Column(db.String(255), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)  # hash redacted

    received_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_retry_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("cmi_order_id", "outcome", name="uq_callback_order_outcome"),
    )
