from datetime import date, datetime, time, timedelta

import pytest

from app import create_app
from models import db
from models.car import Car
from models.center import InspectionCenter
from models.slot import TimeSlot
from models.user import User, Role
from security.password import hash_password
from services import cmi

CMI_SECRET = "TEST_STORE_KEY"
PASSWORD = "correct-horse-9"


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        # file database: inline notification workers open their own connection
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'visitslot-test.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
        "CREATE_ALL": True,
        "NOTIFY_INLINE": True,
        "LOG_LEVEL": "WARNING",
        "CENTER_TIMEZONE": "UTC",
        "APP_BASE_URL": "http://testserver",
        "CMI_MERCHANT_ID": "600000000",
        "CMI_SECRET_KEY": CMI_SECRET,
        "CMI_GATEWAY_URL": "https://testpayment.cmi.co.ma/fim/est3Dgate",
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Captured e-mails instead of SMTP."""
    sent = []

    def fake_send(to_email, subject, body, language="fr"):
        sent.append({"to": to_email, "subject": subject, "body": body, "language": language})
        return True, None

    monkeypatch.setattr("services.notifications.send_email", fake_send)
    return sent


@pytest.fixture(autouse=True)
def texts(monkeypatch):
    """Captured SMS instead of Twilio."""
    sent = []

    def fake_send(to_number, body):
        sent.append({"to": to_number, "body": body})
        return True, None

    monkeypatch.setattr("services.notifications.send_sms", fake_send)
    return sent


# ---------- builders ----------

def make_user(email, roles=("CUSTOMER",), language="fr", email_notifications=True, sms_notifications=False):
    user = User(
        email=email,
        password_hash=hash_password(PASSWORD),
        full_name="Karim Bennani",
        phone_number="+212600000000",
        preferred_language=language,
        email_notifications=email_notifications,
        sms_notifications=sms_notifications,
    )
    user.roles = Role.query.filter(Role.name.in_(roles)).all()
    db.session.add(user)
    db.session.commit()
    return user


def make_center(name="Centre Casablanca Ain Sebaa"):
    center = InspectionCenter(name=name, city="Casablanca", address="Route de Rabat", phone="+212522000001")
    db.session.add(center)
    db.session.commit()
    return center


def make_car(owner, plate="12345-A-6"):
    car = Car(owner_id=owner.id, license_plate=plate, brand="Dacia", model="Logan", year=2019)
    db.session.add(car)
    db.session.commit()
    return car


def make_slot(center, day=None, start=time(9, 0), end=time(9, 30), capacity=1, price=35000):
    slot = TimeSlot(
        center_id=center.id,
        date=day or date.today() + timedelta(days=3),
        start_time=start,
        end_time=end,
        capacity=capacity,
        price=price,
    )
    db.session.add(slot)
    db.session.commit()
    return slot


def make_slot_at(center, when: datetime, capacity=1, price=35000):
    start = when.replace(second=0, microsecond=0)
    end = (start + timedelta(minutes=30)).time()
    if end <= start.time():
        end = time(23, 59, 59)
    return make_slot(center, day=start.date(), start=start.time(), end=end, capacity=capacity, price=price)


def signed_callback(order_id, response="Approved", md_status="1", proc_code="00", **extra):
    fields = {
        "oid": order_id,
        "Response": response,
        "ProcReturnCode": proc_code,
        "mdStatus": md_status,
        "TransId": "26001ABC123",
        "AuthCode": "P41234",
        "amount": "35000",
        "currency": "504",
        "clientid": "600000000",
    }
    fields.update(extra)
    fields["HASH"] = cmi.compute_hash(fields, CMI_SECRET)
    return fields


# ---------- fixtures for service tests (inside an app context) ----------

@pytest.fixture
def customer(ctx):
    return make_user("driver@example.com")


@pytest.fixture
def other_customer(ctx):
    return make_user("neighbour@example.com")


@pytest.fixture
def admin(ctx):
    return make_user("admin@example.com", roles=("ADMIN",))


@pytest.fixture
def center(ctx):
    return make_center()


@pytest.fixture
def car(customer):
    return make_car(customer)


@pytest.fixture
def slot(center):
    return make_slot(center)


@pytest.fixture
def gateway(ctx):
    return ctx.extensions["cmi"]


# ---------- fixtures for HTTP tests (no context left pushed) ----------

@pytest.fixture
def world(app):
    """Ids of a customer with a car, an admin, a center and two future slots."""
    with app.app_context():
        customer = make_user("driver@example.com")
        admin = make_user("admin@example.com", roles=("ADMIN",))
        center = make_center()
        car = make_car(customer)
        slot = make_slot(center, start=time(9, 0), end=time(9, 30), capacity=2)
        other_slot = make_slot(center, start=time(10, 0), end=time(10, 30))
        return {
            "customer_id": customer.id,
            "admin_id": admin.id,
            "center_id": center.id,
            "car_id": car.id,
            "slot_id": slot.id,
            "other_slot_id": other_slot.id,
        }


def login(client, email):
    resp = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return {"X-CSRF-Token": client.get_cookie("csrf_token").value}


@pytest.fixture
def customer_client(app, world):
    client = app.test_client()
    client.csrf = login(client, "driver@example.com")
    return client


@pytest.fixture
def admin_client(app, world):
    client = app.test_client()
    client.csrf = login(client, "admin@example.com")
    return client
