from flask import Blueprint, request, jsonify, g

from models import db
from models.booking import BookingStatus
from models.user import User
from security.rbac import require_admin
from services import booking_machine
from services.errors import Forbidden, NotFound
from utils.auth_context import login_required, ensure_owner_or_admin

booking_bp = Blueprint("booking", __name__)


def _booking_owner(data) -> User:
    """Admins may book on behalf of a customer; customers only for themselves."""
    user_id = data.get("user_id")
    if user_id is not None:
        user_id = booking_machine.as_id(user_id, "user_id")
    if user_id is None or user_id == g.user.id:
        return g.user
    if not g.user.is_admin():
        raise Forbidden("Cannot create a booking for another user")
    owner = db.session.get(User, user_id)
    if owner is None:
        raise NotFound("User not found")
    return owner


# ---------- CUSTOMERS: book a slot (OVERBOOKING SAFE) ----------
@booking_bp.post("/bookings")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("car_id", "center_id", "slot_id") if not data.get(k)]
    if missing:
        return jsonify(error=f"Missing fields: {', '.join(missing)}"), 400

    booking = booking_machine.create_booking(
        _booking_owner(data),
        car_id=data["car_id"],
        center_id=data["center_id"],
        slot_id=data["slot_id"],
        notes=data.get("notes"),
    )
    return jsonify(booking.to_dict()), 201


@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    status = request.args.get("status")
    bookings = booking_machine.list_for_user(g.user.id, status=status)
    return jsonify([b.to_dict() for b in bookings]), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(booking_id):
    booking = booking_machine.get_booking(booking_id)
    ensure_owner_or_admin(booking.user_id)
    return jsonify(booking.to_dict()), 200


@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id):
    data = request.get_json(silent=True) or {}
    booking = booking_machine.cancel_booking(booking_id, g.user, reason=data.get("reason"))
    return jsonify(message="Booking cancelled", booking=booking.to_dict()), 200


# ---------- ADMIN: oversight ----------
@booking_bp.get("/bookings")
@require_admin
def list_all():
    status = request.args.get("status")
    if status and status not in BookingStatus.ALL:
        return jsonify(error=f"Unknown status '{status}'"), 400
    limit = request.args.get("limit", type=int) or 200
    bookings = booking_machine.list_all(status=status, limit=max(1, min(limit, 500)))
    return jsonify([b.to_dict() for b in bookings]), 200


@booking_bp.post("/bookings/<int:booking_id>/cancel-past")
@require_admin
def cancel_past(booking_id):
    data = request.get_json(silent=True) or {}
    booking = booking_machine.cancel_past_booking(booking_id, g.user, reason=data.get("reason"))
    return jsonify(message="Past booking cancelled", booking=booking.to_dict()), 200


@booking_bp.post("/bookings/<int:booking_id>/complete")
@require_admin
def complete(booking_id):
    booking = booking_machine.complete_booking(booking_id, g.user)
    return jsonify(booking.to_dict()), 200


@booking_bp.post("/bookings/<int:booking_id>/no-show")
@require_admin
def no_show(booking_id):
    booking = booking_machine.mark_no_show(booking_id, g.user)
    return jsonify(booking.to_dict()), 200
