import logging
from urllib.parse import urlencode

from flask import Blueprint, request, redirect, current_app

from models import db
from services import cmi, payments
from services.reconciliation import process_callback

logger = logging.getLogger(__name__)

callback_bp = Blueprint("cmi_callback", __name__, url_prefix="/payments/cmi")


def _result_url(path: str, params: dict) -> str:
    base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    query = urlencode({k: v for k, v in params.items() if v})
    return f"{base_url}{path}?{query}" if query else f"{base_url}{path}"


@callback_bp.route("/callback", methods=["GET", "POST"])
def callback():
    """
    Gateway return/notification endpoint. Answers with a redirect to the
    result pages on every path; the gateway never sees a JSON error.
    """
    fields = request.form.to_dict() if request.method == "POST" else request.args.to_dict()

    try:
        result = process_callback(fields, payments.gateway_config())
    except Exception:
        db.session.rollback()
        logger.exception("CMI callback processing failed: %s", cmi.redact(fields))
        return redirect(_result_url("/payment/failed", {
            "booking": "",
            "error": "callback-error",
            "message": "Erreur lors du traitement du paiement",
        }), code=302)

    if result.success:
        return redirect(_result_url("/payment/success", {"booking": result.booking_number}), code=302)

    return redirect(_result_url("/payment/failed", {
        "booking": result.booking_number,
        "error": result.code,
        "message": result.message,
    }), code=302)
