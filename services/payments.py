import logging
import time as _time

from flask import current_app

from models import db, atomic
from models.booking import BookingStatus
from models.payment import Payment, PaymentStatus
from services import cmi
from services.booking_machine import get_booking
from services.errors import (
    Forbidden,
    GatewayNotConfigured,
    InvalidState,
    PaymentAlreadyCompleted,
)
from utils.audit import log_event

logger = logging.getLogger(__name__)


def gateway_config() -> cmi.CMIConfig:
    return current_app.extensions["cmi"]


def new_order_id(booking_number: str) -> str:
    return f"VT-{booking_number}-{int(_time.time() * 1000)}"


def initiate_payment(booking_id, actor, config: cmi.CMIConfig = None):
    """
    Prepare a gateway redirect for a booking. Returns (payment, html form).

    The payment row is created PENDING (or a FAILED one is reset to PENDING),
    gets a fresh external order id, and moves to PROCESSING once the form is
    handed out.
    """
    config = config or gateway_config()
    booking = get_booking(booking_id)
    if actor.id != booking.user_id and not actor.is_admin():
        raise Forbidden()

    if booking.status not in BookingStatus.ACTIVE:
        raise InvalidState("Booking is not in a valid state for payment", status_code=400)
    if booking.payment is not None and booking.payment.status == PaymentStatus.COMPLETED:
        raise PaymentAlreadyCompleted()
    if not config.is_configured():
        logger.error("payment requested for booking %s but CMI credentials are missing", booking.booking_number)
        raise GatewayNotConfigured()

    with atomic():
        payment = (
            db.session.query(Payment)
            .filter(Payment.booking_id == booking.id)
            .with_for_update().populate_existing()
            .first()
        )
        if payment is None:
            payment = Payment(
                booking_id=booking.id,
                amount=booking.total_amount,
                currency=current_app.config.get("CMI_CURRENCY_CODE", "MAD"),
                status=PaymentStatus.PENDING,
                payment_method="CMI",
            )
            db.session.add(payment)
        elif payment.status == PaymentStatus.COMPLETED:
            raise PaymentAlreadyCompleted()
        elif payment.status == PaymentStatus.REFUNDED:
            raise InvalidState("Payment was refunded; book again", status_code=400)
        elif payment.status == PaymentStatus.FAILED:
            payment.transition_to(PaymentStatus.PENDING)

        payment.amount = booking.total_amount
        payment.cmi_order_id = new_order_id(booking.booking_number)
        payment.response_code = None
        payment.response_message = None
        if payment.status == PaymentStatus.PENDING:
            payment.transition_to(PaymentStatus.PROCESSING)
        db.session.flush()

        user = booking.user
        fields = cmi.build_request(
            config,
            amount=booking.total_amount,
            order_id=payment.cmi_order_id,
            customer_email=user.email,
            customer_name=user.full_name or "",
            customer_phone=user.phone_number or "",
            language="ar" if user.preferred_language == "ar" else "fr",
            description=f"Visite technique - {booking.car.license_plate} - {booking.center.name}",
        )
        log_event("PAYMENT_INITIATE", user_id=actor.id, entity="payment", entity_id=payment.id,
                  metadata={"booking_id": booking.id, "cmi_order_id": payment.cmi_order_id})

    logger.info("payment %s handed to CMI for booking %s", payment.cmi_order_id, booking.booking_number)
    return payment, cmi.render_form(config, fields)
