from html import escape

from flask import Blueprint, request

pay_pages_bp = Blueprint("pay_pages", __name__, url_prefix="/payment")

_PAGE = """<!DOCTYPE html>
<html>
  <head><meta charset="UTF-8"><title>{title}</title></head>
  <body style="font-family: system-ui; max-width: 720px; margin: 40px auto;">
    <h1>{title}</h1>
    {body}
  </body>
</html>
"""


@pay_pages_bp.get("/success")
def pay_success():
    booking = escape(request.args.get("booking") or "")
    body = "<p>Votre paiement a été accepté et votre rendez-vous est confirmé.</p>"
    if booking:
        body += f"<p>Numéro de réservation : <b>{booking}</b></p>"
    html = _PAGE.format(title="Paiement réussi", body=body)
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}


@pay_pages_bp.get("/failed")
def pay_failed():
    booking = escape(request.args.get("booking") or "")
    message = escape(request.args.get("message") or "Le paiement n'a pas abouti.")
    error = escape(request.args.get("error") or "")

    body = f"<p>{message}</p>"
    if booking:
        body += f"<p>Numéro de réservation : <b>{booking}</b></p>"
        body += "<p>Aucun montant n'a été débité. Vous pouvez réessayer depuis vos réservations.</p>"
    if error:
        body += f"<p style=\"color: #666;\">Code : {error}</p>"
    html = _PAGE.format(title="Paiement échoué", body=body)
    return html, 200, {"Content-Type": "text/html; charset=utf-8"}
