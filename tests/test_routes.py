"""HTTP surface: status codes, CSRF, payment form and callback redirects."""
import dataclasses
import re
from datetime import date, timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import signed_callback

pytestmark = pytest.mark.integration

ORDER_ID_RE = re.compile(r'name="oid" value="([^"]+)"')


def _book(client, world, slot_key="slot_id"):
    return client.post("/bookings", json={
        "car_id": world["car_id"],
        "center_id": world["center_id"],
        "slot_id": world[slot_key],
    }, headers=client.csrf)


def _initiate(client, booking_id):
    return client.post("/payments/cmi/initiate", json={"booking_id": booking_id}, headers=client.csrf)


def _redirect(resp):
    assert resp.status_code == 302
    location = urlparse(resp.headers["Location"])
    return location.path, {k: v[0] for k, v in parse_qs(location.query).items()}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_register_login_me_logout(client):
    resp = client.post("/auth/register", json={
        "email": "New.Driver@Example.com",
        "password": "long-enough-1",
        "preferred_language": "ar",
    })
    assert resp.status_code == 201
    assert client.post("/auth/register", json={"email": "new.driver@example.com", "password": "long-enough-1"}).status_code == 409

    resp = client.post("/auth/login", json={"email": "new.driver@example.com", "password": "long-enough-1"})
    assert resp.status_code == 200
    csrf = {"X-CSRF-Token": client.get_cookie("csrf_token").value}

    me = client.get("/auth/me").get_json()
    assert me["email"] == "new.driver@example.com"
    assert me["roles"] == ["CUSTOMER"]
    assert me["preferred_language"] == "ar"
    assert me["email_notifications"] is True
    assert me["sms_notifications"] is False

    prefs = client.patch("/auth/me/preferences", json={"sms_notifications": True, "preferred_language": "en"}, headers=csrf)
    assert prefs.status_code == 200
    assert prefs.get_json()["sms_notifications"] is True
    assert prefs.get_json()["preferred_language"] == "en"
    assert client.patch("/auth/me/preferences", json={"email_notifications": "yes"}, headers=csrf).status_code == 400

    assert client.post("/auth/logout", headers=csrf).status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_login_with_wrong_password(client, world):
    resp = client.post("/auth/login", json={"email": "driver@example.com", "password": "nope-nope-nope"})
    assert resp.status_code == 401


def test_booking_requires_login(client, world):
    resp = client.post("/bookings", json={"car_id": world["car_id"], "center_id": world["center_id"], "slot_id": world["slot_id"]})
    assert resp.status_code == 401


def test_state_change_requires_csrf_header(customer_client, world):
    resp = customer_client.post("/bookings", json={
        "car_id": world["car_id"], "center_id": world["center_id"], "slot_id": world["slot_id"],
    })
    assert resp.status_code == 403


def test_create_booking_and_error_codes(customer_client, admin_client, world):
    resp = _book(customer_client, world)
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["status"] == "PENDING"
    assert body["total_amount"] == 35000
    assert body["slot"]["booked_count"] == 1

    dup = _book(customer_client, world)
    assert dup.status_code == 409
    assert dup.get_json()["code"] == "duplicate_booking"

    assert _book(customer_client, world, "other_slot_id").status_code == 201
    full = _book(admin_client, world, "other_slot_id")
    assert full.status_code == 409
    assert full.get_json()["code"] == "slot_unavailable"

    missing = customer_client.post("/bookings", json={
        "car_id": world["car_id"], "center_id": world["center_id"], "slot_id": 9999,
    }, headers=customer_client.csrf)
    assert missing.status_code == 404

    mine = customer_client.get("/bookings/me").get_json()
    assert len(mine) == 2



def test_non_numeric_ids_are_bad_requests(customer_client, admin_client, world):
    resp = customer_client.post("/bookings", json={
        "car_id": world["car_id"], "center_id": "abc", "slot_id": world["slot_id"],
    }, headers=customer_client.csrf)
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "invalid_request"

    resp = admin_client.post("/bookings", json={
        "car_id": world["car_id"], "center_id": world["center_id"], "slot_id": world["slot_id"], "user_id": "me",
    }, headers=admin_client.csrf)
    assert resp.status_code == 400

def test_customer_cannot_book_for_someone_else(customer_client, world):
    resp = customer_client.post("/bookings", json={
        "user_id": world["admin_id"], "car_id": world["car_id"],
        "center_id": world["center_id"], "slot_id": world["slot_id"],
    }, headers=customer_client.csrf)
    assert resp.status_code == 403


def test_cancel_twice(customer_client, world):
    booking_id = _book(customer_client, world).get_json()["id"]

    first = customer_client.post(f"/bookings/{booking_id}/cancel", json={"reason": "travel"}, headers=customer_client.csrf)
    assert first.status_code == 200
    assert first.get_json()["booking"]["status"] == "CANCELLED"

    second = customer_client.post(f"/bookings/{booking_id}/cancel", headers=customer_client.csrf)
    assert second.status_code == 409
    assert second.get_json()["code"] == "invalid_state"


def test_admin_only_endpoints(customer_client, admin_client, world):
    booking_id = _book(customer_client, world).get_json()["id"]

    assert customer_client.get("/bookings").status_code == 403
    assert customer_client.post(f"/bookings/{booking_id}/no-show", headers=customer_client.csrf).status_code == 403

    listed = admin_client.get("/bookings?status=PENDING").get_json()
    assert [b["id"] for b in listed] == [booking_id]
    assert admin_client.get("/bookings?status=LOST").status_code == 400

    resp = admin_client.post(f"/bookings/{booking_id}/no-show", headers=admin_client.csrf)
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "NO_SHOW"


def test_payment_form_and_success_callback(customer_client, client, world):
    booking = _book(customer_client, world).get_json()

    resp = _initiate(customer_client, booking["id"])
    assert resp.status_code == 200
    assert resp.mimetype == "text/html"
    html = resp.get_data(as_text=True)
    assert 'action="https://testpayment.cmi.co.ma/fim/est3Dgate"' in html
    assert 'name="HASH"' in html
    order_id = ORDER_ID_RE.search(html).group(1)

    path, query = _redirect(client.post("/payments/cmi/callback", data=signed_callback(order_id)))
    assert path == "/payment/success"
    assert query == {"booking": booking["booking_number"]}

    status = customer_client.get(f"/bookings/{booking['id']}").get_json()
    assert status["status"] == "CONFIRMED"
    assert status["payment"]["status"] == "COMPLETED"

    again = _initiate(customer_client, booking["id"])
    assert again.status_code == 400
    assert again.get_json()["code"] == "payment_completed"


def test_callback_via_query_string(customer_client, client, world):
    booking = _book(customer_client, world).get_json()
    order_id = ORDER_ID_RE.search(_initiate(customer_client, booking["id"]).get_data(as_text=True)).group(1)

    path, query = _redirect(client.get("/payments/cmi/callback", query_string=signed_callback(order_id)))
    assert path == "/payment/success"


def test_tampered_callback_redirects_to_failure(customer_client, client, world):
    booking = _book(customer_client, world).get_json()
    order_id = ORDER_ID_RE.search(_initiate(customer_client, booking["id"]).get_data(as_text=True)).group(1)
    fields = signed_callback(order_id)
    fields["amount"] = "1"

    path, query = _redirect(client.post("/payments/cmi/callback", data=fields))

    assert path == "/payment/failed"
    assert query["booking"] == booking["booking_number"]
    assert query["error"] == "HASH_ERROR"
    assert customer_client.get(f"/bookings/{booking['id']}").get_json()["status"] == "PENDING"


def test_callback_errors_never_return_json(client, world, monkeypatch):
    path, query = _redirect(client.post("/payments/cmi/callback", data={"Response": "Approved"}))
    assert path == "/payment/failed"
    assert query["error"] == "no-order-id"

    path, query = _redirect(client.post("/payments/cmi/callback", data=signed_callback("VT-unknown-1")))
    assert query["error"] == "payment-not-found"

    def explode(fields, config):
        raise RuntimeError("database unreachable")

    monkeypatch.setattr("routes.cmi_callback.process_callback", explode)
    path, query = _redirect(client.post("/payments/cmi/callback", data=signed_callback("VT-x-1")))
    assert path == "/payment/failed"
    assert query["error"] == "callback-error"


def test_initiate_error_codes(app, customer_client, world):
    assert _initiate(customer_client, 9999).status_code == 404

    booking_id = _book(customer_client, world).get_json()["id"]
    app.extensions["cmi"] = dataclasses.replace(app.extensions["cmi"], secret_key="")
    resp = _initiate(customer_client, booking_id)
    assert resp.status_code == 500
    assert resp.get_json()["code"] == "gateway_not_configured"


def test_initiate_for_cancelled_booking(customer_client, world):
    booking_id = _book(customer_client, world).get_json()["id"]
    customer_client.post(f"/bookings/{booking_id}/cancel", headers=customer_client.csrf)

    assert _initiate(customer_client, booking_id).status_code == 400


def test_result_pages_escape_parameters(client):
    resp = client.get("/payment/failed?booking=<b>x</b>&error=HASH_ERROR&message=Le+paiement+a+%C3%A9chou%C3%A9")
    html = resp.get_data(as_text=True)
    assert resp.status_code == 200
    assert "<b>x</b>" not in html
    assert "Le paiement a échoué" in html

    assert "VT12345678001" in client.get("/payment/success?booking=VT12345678001").get_data(as_text=True)


def test_admin_slot_scheduling(admin_client, customer_client, client, world):
    monday = date.today() + timedelta(days=14 - date.today().weekday())
    payload = {
        "center_id": world["center_id"],
        "start_date": monday.isoformat(),
        "end_date": (monday + timedelta(days=4)).isoformat(),
        "time_slots": [
            {"start_time": "08:00", "end_time": "08:30", "capacity": 2, "price": 35000},
            {"start_time": "08:30", "end_time": "09:00", "capacity": 2, "price": 35000},
        ],
    }

    assert customer_client.post("/admin/time-slots/bulk", json=payload, headers=customer_client.csrf).status_code == 403

    resp = admin_client.post("/admin/time-slots/bulk", json=payload, headers=admin_client.csrf)
    assert resp.status_code == 201
    assert resp.get_json()["created"] == 10

    again = admin_client.post("/admin/time-slots/bulk", json=payload, headers=admin_client.csrf)
    assert again.status_code == 400
    assert again.get_json()["skipped"] == 10

    overlapping = dict(payload, time_slots=[
        {"start_time": "12:00", "end_time": "13:00"},
        {"start_time": "12:30", "end_time": "13:30"},
    ])
    assert admin_client.post("/admin/time-slots/bulk", json=overlapping, headers=admin_client.csrf).status_code == 400

    listed = client.get(f"/time-slots?center_id={world['center_id']}&date={monday.isoformat()}").get_json()
    assert [s["start_time"] for s in listed] == ["08:00", "08:30"]
    assert client.get("/time-slots").status_code == 400


def test_admin_cannot_delete_booked_slot(admin_client, customer_client, world):
    _book(customer_client, world)

    resp = admin_client.delete(f"/admin/time-slots/{world['slot_id']}", headers=admin_client.csrf)
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "slot_in_use"

    free = admin_client.delete(f"/admin/time-slots/{world['other_slot_id']}", headers=admin_client.csrf)
    assert free.status_code == 200
    assert free.get_json()["deleted"] is True


def test_audit_log_is_super_admin_only(admin_client):
    assert admin_client.get("/super-admin/audit-logs").status_code == 403
