import mongomock
import pytest

import database

# Swap in an in-memory database before anything reads database.db.
database.db = mongomock.MongoClient()["sparkle_test"]

from fastapi.testclient import TestClient  # noqa: E402

import auth  # noqa: E402
import config  # noqa: E402
import main  # noqa: E402
import payments  # noqa: E402
from schemas import Category, Product  # noqa: E402

GATEWAY_SECRET = "test_key_secret"


class FakeOrders:
    def __init__(self):
        self.created = []
        self.error = None

    def create(self, data=None, timeout=None):
        if self.error is not None:
            raise self.error
        self.created.append({"data": data, "timeout": timeout})
        return {
            "id": f"order_TEST{len(self.created)}",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "status": "created",
        }


class FakeRazorpayClient:
    def __init__(self):
        self.order = FakeOrders()


def sign(gateway_order_id, gateway_payment_id, secret=GATEWAY_SECRET):
    return payments.compute_signature(gateway_order_id, gateway_payment_id, secret)


@pytest.fixture(autouse=True)
def clean_db(monkeypatch):
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    database.ensure_indexes()
    monkeypatch.setattr(config, "FREE_SHIPPING_THRESHOLD", 2000)
    monkeypatch.setattr(config, "STANDARD_SHIPPING_COST", 99)
    monkeypatch.setattr(config, "PAYMENT_CURRENCY", "INR")
    yield


@pytest.fixture
def gateway():
    return payments.RazorpayGateway("rzp_test_key", GATEWAY_SECRET, timeout=5, client=FakeRazorpayClient())


@pytest.fixture
def client(gateway):
    main.app.dependency_overrides[payments.get_gateway] = lambda: gateway
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


def _make_user(email, role="user"):
    result = auth.register_user("Test", "User", email, "9876543210", "secret123")
    if role != "user":
        database.collection("user").update_one(
            {"_id": database.to_object_id(result["id"])}, {"$set": {"role": role}},
        )
    token = auth.create_token(result["id"], role)
    return {"id": result["id"], "email": email, "role": role, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
def customer():
    return _make_user("asha@example.com")


@pytest.fixture
def other_customer():
    return _make_user("ravi@example.com")


@pytest.fixture
def admin():
    return _make_user("admin@example.com", role="admin")


@pytest.fixture
def category():
    return database.create_document("category", Category(name="Sky Shots", description="Aerial shots"))


@pytest.fixture
def make_product(category):
    def _make(name="Rocket Pack", price=100, mrp=None, stock=5, images=None):
        product = Product(
            category_id=category,
            name=name,
            images=images or [f"https://img.example.com/{name.replace(' ', '-').lower()}.jpg"],
            description=f"{name} description",
            short_description=name,
            mrp=mrp if mrp is not None else price,
            price=price,
            sound_level="High",
            stock=stock,
        )
        return database.create_document("product", product)
    return _make


@pytest.fixture
def shipping_address():
    return {
        "firstName": "Asha",
        "lastName": "Kumar",
        "email": "asha@example.com",
        "phone": "9876543210",
        "street": "12 Gandhi Road",
        "city": "Sivakasi",
        "state": "Tamil Nadu",
        "pincode": "626123",
    }
