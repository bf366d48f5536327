from flask import Blueprint, request, jsonify, g

from services import payments
from utils.auth_context import login_required

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/cmi/initiate")
@login_required
def initiate():
    data = request.get_json(silent=True) or {}
    booking_id = data.get("booking_id")
    if not booking_id:
        return jsonify(error="booking_id required"), 400

    payment, html = payments.initiate_payment(booking_id, g.user)
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}
