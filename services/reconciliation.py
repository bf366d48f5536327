"""
Gateway callback reconciliation.

    resolve payment by order id -> verify hash -> interpret outcome -> apply

The order matters: nothing in an unverified payload is trusted, so a bad
hash is handled before the response code is even read. Every processed
(order id, outcome) pair is written to the PaymentCallback ledger in the same
transaction as its side effects; a replay hits the ledger and returns the
recorded result without touching payment, booking or notifications again.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError

from models import db, atomic
from models.booking import Booking, BookingStatus
from models.payment import Payment, PaymentStatus
from models.payment_callback import PaymentCallback
from services import cmi, notifications
from services.booking_machine import confirm_booking
from utils.audit import log_event

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"
FAILURE = "FAILURE"
INVALID_HASH = "INVALID_HASH"

HASH_ERROR_CODE = "HASH_ERROR"
HASH_ERROR_MESSAGE = "integrity check failed"
GENERIC_FAILURE_MESSAGE = "Le paiement a échoué"

# success callbacks that could not be applied; replays answer with the same error
CONFLICT_CODE = "payment-conflict"
CANCELLED_CODE = "booking-cancelled"
CLOSED_CODE = "booking-closed"
APPLY_ERROR_CODES = (CONFLICT_CODE, CANCELLED_CODE, CLOSED_CODE)


@dataclass(frozen=True)
class CallbackResult:
    outcome: str  # SUCCESS, FAILURE, INVALID_HASH, ERROR
    booking_number: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    replayed: bool = False

    @property
    def success(self) -> bool:
        return self.outcome == SUCCESS


def _error(code: str, booking_number: str = None) -> CallbackResult:
    return CallbackResult(outcome="ERROR", booking_number=booking_number, code=code, message=GENERIC_FAILURE_MESSAGE)


def _ledger_row(payment: Payment, order_id: str, outcome: str, fields, hash_valid: bool, code=None, message=None):
    return PaymentCallback(
        cmi_order_id=order_id,
        payment_id=payment.id,
        outcome=outcome,
        hash_valid=hash_valid,
        response_code=code,
        response_message=(message or "")[:255] or None,
        payload_json=json.dumps(cmi.redact(fields)),
    )


def _replay(order_id: str, outcome: str, booking_number: str) -> Optional[CallbackResult]:
    row = PaymentCallback.query.filter_by(cmi_order_id=order_id, outcome=outcome).first()
    if row is None:
        return None
    row.retry_count = (row.retry_count or 0) + 1
    row.last_retry_at = datetime.utcnow()
    db.session.commit()
    logger.info("callback replay for %s (%s), retry #%s ignored", order_id, outcome, row.retry_count)
    if outcome == INVALID_HASH:
        return CallbackResult(INVALID_HASH, booking_number, HASH_ERROR_CODE, GENERIC_FAILURE_MESSAGE, replayed=True)
    if row.response_code in APPLY_ERROR_CODES:
        return CallbackResult("ERROR", booking_number, row.response_code, GENERIC_FAILURE_MESSAGE, replayed=True)
    return CallbackResult(outcome, booking_number, row.response_code, row.response_message, replayed=True)


def process_callback(fields: Mapping[str, str], config: cmi.CMIConfig) -> CallbackResult:
    fields = dict(fields)
    order_id = fields.get("oid") or fields.get("orderId")
    if not order_id:
        logger.warning("CMI callback without order id: %s", cmi.redact(fields))
        with atomic():
            log_event("PAYMENT_CALLBACK_NO_ORDER", entity="payment", metadata=cmi.redact(fields))
        return _error("no-order-id")

    payment = Payment.query.filter_by(cmi_order_id=order_id).first()
    if payment is None:
        logger.warning("CMI callback for unknown order %s: %s", order_id, cmi.redact(fields))
        with atomic():
            log_event("PAYMENT_CALLBACK_UNKNOWN_ORDER", entity="payment", entity_id=order_id,
                      metadata=cmi.redact(fields))
        return _error("payment-not-found")

    booking_number = payment.booking.booking_number

    if not cmi.verify_callback(config, fields):
        return _reject_invalid_hash(payment, order_id, fields, booking_number)

    outcome = cmi.interpret_outcome(fields)
    kind = SUCCESS if outcome.success else FAILURE

    replay = _replay(order_id, kind, booking_number)
    if replay is not None:
        return replay

    try:
        if outcome.success:
            return _apply_success(payment, order_id, fields, outcome, booking_number)
        return _apply_failure(payment, order_id, fields, outcome, booking_number)
    except IntegrityError:
        # a concurrent delivery of the same callback won the ledger insert
        db.session.rollback()
        replay = _replay(order_id, kind, booking_number)
        if replay is not None:
            return replay
        raise


def _reject_invalid_hash(payment, order_id, fields, booking_number) -> CallbackResult:
    logger.error("SECURITY: invalid CMI hash for order %s payload=%s", order_id, cmi.redact(fields))

    replay = _replay(order_id, INVALID_HASH, booking_number)
    if replay is not None:
        return replay

    try:
        with atomic() as session:
            locked = session.query(Payment).filter(Payment.id == payment.id).with_for_update().populate_existing().one()
            if locked.can_transition_to(PaymentStatus.FAILED):
                locked.transition_to(PaymentStatus.FAILED)
                locked.response_code = HASH_ERROR_CODE
                locked.response_message = HASH_ERROR_MESSAGE
            else:
                # a forged callback must never downgrade a settled payment
                logger.error("invalid hash for order %s on payment in status %s; payment left unchanged",
                             order_id, locked.status)
            session.add(_ledger_row(locked, order_id, INVALID_HASH, fields, False, HASH_ERROR_CODE, HASH_ERROR_MESSAGE))
            log_event("PAYMENT_HASH_INVALID", entity="payment", entity_id=locked.id,
                      metadata={"cmi_order_id": order_id, "payload": cmi.redact(fields)})
    except IntegrityError:
        db.session.rollback()
    return CallbackResult(INVALID_HASH, booking_number, HASH_ERROR_CODE, GENERIC_FAILURE_MESSAGE)


def _apply_failure(payment, order_id, fields, outcome, booking_number) -> CallbackResult:
    with atomic() as session:
        locked = session.query(Payment).filter(Payment.id == payment.id).with_for_update().populate_existing().one()
        if locked.can_transition_to(PaymentStatus.FAILED):
            locked.transition_to(PaymentStatus.FAILED)
            locked.response_code = outcome.code or None
            locked.response_message = outcome.message[:255]
            locked.transaction_id = outcome.transaction_id or locked.transaction_id
        else:
            logger.error("failure callback for order %s contradicts payment status %s; ignored",
                         order_id, locked.status)
        session.add(_ledger_row(locked, order_id, FAILURE, fields, True, outcome.code, outcome.message))
        log_event("PAYMENT_FAILED", entity="payment", entity_id=locked.id,
                  metadata={"cmi_order_id": order_id, "code": outcome.code})

    logger.info("payment %s failed: %s %s", order_id, outcome.code, outcome.message)
    return CallbackResult(FAILURE, booking_number, outcome.code or "payment-failed", outcome.message)


def _apply_success(payment, order_id, fields, outcome, booking_number) -> CallbackResult:
    now = datetime.utcnow()
    queued = []
    error_code = None
    with atomic() as session:
        locked = session.query(Payment).filter(Payment.id == payment.id).with_for_update().populate_existing().one()

        if not locked.can_transition_to(PaymentStatus.COMPLETED):
            error_code = CONFLICT_CODE
            logger.error("success callback for order %s but payment is %s; left unchanged",
                         order_id, locked.status)
            log_event("PAYMENT_CALLBACK_CONFLICT", entity="payment", entity_id=locked.id,
                      metadata={"cmi_order_id": order_id, "status": locked.status})
        else:
            locked.transition_to(PaymentStatus.COMPLETED)
            locked.response_code = outcome.code
            locked.response_message = outcome.message[:255]
            locked.transaction_id = outcome.transaction_id or None
            locked.payment_date = now

            booking = (
                session.query(Booking).filter(Booking.id == locked.booking_id)
                .with_for_update().populate_existing().one()
            )
            if booking.status == BookingStatus.CANCELLED:
                # money arrived for a booking cancelled meanwhile: owe it back
                error_code = CANCELLED_CODE
                locked.transition_to(PaymentStatus.REFUNDED)
                locked.refunded_at = now
                logger.warning("payment %s completed for cancelled booking %s; marked REFUNDED",
                               order_id, booking_number)
                log_event("PAYMENT_REFUND_CANCELLED_BOOKING", entity="payment", entity_id=locked.id,
                          metadata={"cmi_order_id": order_id})
            elif booking.status not in BookingStatus.ACTIVE:
                # completed or no-show already; the money is kept on the payment and the
                # booking is left alone, settling it is a back-office decision
                error_code = CLOSED_CODE
                logger.warning("payment %s completed for booking %s in status %s; booking unchanged",
                               order_id, booking_number, booking.status)
                log_event("PAYMENT_BOOKING_CLOSED", entity="payment", entity_id=locked.id,
                          metadata={"cmi_order_id": order_id, "booking_status": booking.status})
            else:
                confirm_booking(booking)
                log_event("PAYMENT_COMPLETED", entity="payment", entity_id=locked.id,
                          metadata={"cmi_order_id": order_id, "transaction_id": locked.transaction_id})
                queued.append(notifications.queue(notifications.PAYMENT_CONFIRMED, booking))
                queued.append(notifications.queue(notifications.BOOKING_CONFIRMED, booking))

        session.add(_ledger_row(locked, order_id, SUCCESS, fields, True,
                                error_code or outcome.code, outcome.message))

    if error_code is not None:
        return _error(error_code, booking_number)

    logger.info("payment %s completed, booking %s confirmed", order_id, booking_number)
    notifications.dispatch_after_commit(queued)
    return CallbackResult(SUCCESS, booking_number, outcome.code, outcome.message)
