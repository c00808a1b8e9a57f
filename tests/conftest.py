import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret")

import mongomock  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth import create_token, register_user  # noqa: E402
from database import ensure_indexes, get_db, utcnow  # noqa: E402
from notifications import EmailPort, OrderNotifier, get_notifier  # noqa: E402


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["storefront_test"]
    ensure_indexes(database)
    return database


class RecordingEmailAdapter(EmailPort):
    """Keeps sent messages in memory; set should_succeed to False to simulate a transport failure."""

    def __init__(self):
        self.sent_emails = []
        self.should_succeed = True

    def send(self, to, subject, body, html_body=None):
        if not self.should_succeed:
            return {"message_id": None, "status": "failed", "error": "Email delivery failed"}
        message_id = f"email-{len(self.sent_emails) + 1}"
        self.sent_emails.append({"message_id": message_id, "to": to, "subject": subject,
                                 "body": body, "html_body": html_body})
        return {"message_id": message_id, "status": "sent"}


@pytest.fixture
def email_adapter():
    return RecordingEmailAdapter()


@pytest.fixture
def notifier(email_adapter):
    return OrderNotifier(email_adapter)


@pytest.fixture
def client(db, notifier):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def add_product(db, name, price, sizes, category="Men", stock=10, image_url=None):
    timestamp = utcnow()
    return str(db["product"].insert_one({
        "name": name,
        "description": f"{name} description",
        "price": price,
        "image_url": image_url or f"https://img.example.com/{name.lower().replace(' ', '-')}.jpg",
        "category": category,
        "sizes": sizes,
        "stock": stock,
        "created_at": timestamp,
        "updated_at": timestamp,
    }).inserted_id)


@pytest.fixture
def products(db):
    """Two products: a tee in every size at 19.99 and jeans in M/L at 59.99."""
    return {
        "tee": add_product(db, "Classic Tee", 19.99, ["S", "M", "L", "XL"]),
        "jeans": add_product(db, "Slim Jeans", 59.99, ["M", "L"], category="Women"),
    }


@pytest.fixture
def user(db):
    return register_user(db, "Shopper", "shopper@example.com", "secret123")


@pytest.fixture
def other_user(db):
    return register_user(db, "Other", "other@example.com", "secret123")


@pytest.fixture
def admin(db):
    return register_user(db, "Admin", "admin@example.com", "secret123", role="admin")


def bearer(user):
    return {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture
def auth_headers(user):
    return bearer(user)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def address():
    return {
        "street": "1 Main St",
        "city": "Springfield",
        "state": "IL",
        "zipCode": "62701",
        "country": "USA",
    }
