import itertools
import os
import re
import tempfile

import mongomock
import pytest

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "best_wishes_test"
os.environ["USE_TRANSACTIONS"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="best-wishes-media-")
os.environ["STRIPE_SECRET_KEY"] = ""

_mongo = mongomock.patch(servers=(("localhost", 27017),), on_new="create")
_mongo.start()

import stripe  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import mailer  # noqa: E402
import main  # noqa: E402
import security  # noqa: E402
from config import settings  # noqa: E402
from database import create_document, db, ensure_indexes, find_by_id  # noqa: E402
from schemas import Product, User  # noqa: E402

PASSWORD = "Secret1!pass"


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    ensure_indexes()
    security.admin_create_user_limiter.reset()
    yield


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []

    def fake_send(to, subject, html=None, text=None):
        if not to or not subject or not (html or text):
            raise mailer.EmailError("Missing required email fields")
        sent.append({"to": to, "subject": subject, "html": html, "text": text})
        return {"success": True, "message_id": f"<{len(sent)}@test>"}

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def make_user():
    counter = itertools.count(1)

    def _make(role="user", email=None, password=PASSWORD, **extra):
        email = email or f"{role}.{next(counter)}@example.com"
        user = User(
            first_name=extra.pop("first_name", role.title()),
            last_name=extra.pop("last_name", "Tester"),
            email=email,
            hashed_password=security.hash_password(password),
            role=role,
            **extra,
        )
        return find_by_id("user", create_document("user", user))
    return _make


def headers_for(user):
    return {"Authorization": f"Bearer {security.create_token(user)}"}


@pytest.fixture
def auth():
    return headers_for


@pytest.fixture
def customer(make_user):
    return make_user("user", email="customer@example.com", address="12 Rose Street")


@pytest.fixture
def admin(make_user):
    return make_user("admin", email="admin@example.com")


@pytest.fixture
def inventory_manager(make_user):
    return make_user("inventory_manager", email="inventory@example.com")


@pytest.fixture
def delivery_staff(make_user):
    return make_user("delivery_staff", email="driver@example.com")


@pytest.fixture
def customer_headers(customer):
    return headers_for(customer)


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def inventory_headers(inventory_manager):
    return headers_for(inventory_manager)


@pytest.fixture
def delivery_headers(delivery_staff):
    return headers_for(delivery_staff)


@pytest.fixture
def make_product():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Gift Box {counter['n']}",
            "sku": f"GB-{counter['n']:03d}",
            "short_description": "A lovely gift box",
            "main_category": "Gifts",
            "cost_price": 10.0,
            "retail_price": 25.0,
            "stock": 20,
            "status": "active",
        }
        data.update(overrides)
        return find_by_id("product", create_document("product", Product(**data)))
    return _make


@pytest.fixture
def stripe_stub(monkeypatch):
    calls = {"intents": [], "refunds": []}

    def create_intent(**kwargs):
        calls["intents"].append(kwargs)
        n = len(calls["intents"])
        return {"id": f"pi_test_{n}", "client_secret": f"pi_test_{n}_secret"}

    def create_refund(**kwargs):
        calls["refunds"].append(kwargs)
        return {"id": f"re_test_{len(calls['refunds'])}"}

    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setattr(stripe.PaymentIntent, "create", create_intent)
    monkeypatch.setattr(stripe.Refund, "create", create_refund)
    return calls


@pytest.fixture
def code_in():
    def _code(message):
        return re.search(r">(\d{6})<", message["html"]).group(1)
    return _code
