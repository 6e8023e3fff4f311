import pytest

import database
import orders
from conftest import sign
from errors import (
    InsufficientStock, InvalidAmount, PaymentVerificationFailed, PostPaymentOrderCreationFailure,
    ProductNotFound,
)
from schemas import OrderItemIn, PaymentProof, ShippingAddress


def _items(*pairs):
    return [OrderItemIn(product_id=pid, quantity=qty) for pid, qty in pairs]


def _address(shipping_address):
    return ShippingAddress(**shipping_address)


def _stock(product_id):
    return database.get_raw_by_id("product", product_id)["stock"]


def _proof(order_id="order_ABC", payment_id="pay_XYZ", signature=None):
    return PaymentProof(
        gateway_order_id=order_id,
        gateway_payment_id=payment_id,
        signature=signature if signature is not None else sign(order_id, payment_id),
    )


# ----------------------- Draft payment -----------------------
def test_draft_payment_prices_server_side_and_persists_nothing(customer, make_product, gateway):
    rocket = make_product(price=100, stock=5)
    intent = orders.create_draft_payment(customer["id"], _items((rocket, 3)), gateway)
    assert intent["intentId"] == "order_TEST1"
    assert intent["amount"] == 39900
    assert intent["currency"] == "INR"
    assert intent["receipt"].startswith("rcpt_order_")
    assert database.count_documents("order") == 0
    assert _stock(rocket) == 5


def test_draft_payment_rejects_non_positive_total(customer, make_product, gateway, monkeypatch):
    import config
    monkeypatch.setattr(config, "STANDARD_SHIPPING_COST", 0)
    freebie = make_product(price=0, stock=5)
    with pytest.raises(InvalidAmount):
        orders.create_draft_payment(customer["id"], _items((freebie, 1)), gateway)
    assert gateway.client.order.created == []


def test_draft_payment_checks_stock(customer, make_product, gateway):
    rocket = make_product(stock=1)
    with pytest.raises(InsufficientStock):
        orders.create_draft_payment(customer["id"], _items((rocket, 2)), gateway)


# ----------------------- Finalize -----------------------
def test_cod_order_scenario(customer, make_product, shipping_address):
    rocket = make_product(price=100, stock=5)
    order = orders.finalize_order(customer["id"], _items((rocket, 3)), _address(shipping_address), "cod")

    assert order["subtotal"] == 300
    assert order["shipping_fee"] == 99
    assert order["total"] == 399
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["payment_result"] is None
    assert order["user_id"] == customer["id"]
    assert _stock(rocket) == 2

    with pytest.raises(InsufficientStock) as exc:
        orders.finalize_order(customer["id"], _items((rocket, 3)), _address(shipping_address), "cod")
    assert exc.value.available == 2
    assert _stock(rocket) == 2
    assert database.count_documents("order") == 1


def test_verified_payment_marks_order_paid(customer, make_product, shipping_address, gateway):
    rocket = make_product(price=100, stock=5)
    order = orders.finalize_order(
        customer["id"], _items((rocket, 2)), _address(shipping_address), "online",
        payment_proof=_proof(), gateway=gateway,
    )
    assert order["payment_status"] == "paid"
    assert order["payment_method"] == "online"
    assert order["payment_result"]["gateway_order_id"] == "order_ABC"
    assert order["payment_result"]["gateway_payment_id"] == "pay_XYZ"
    assert _stock(rocket) == 3


def test_invalid_signature_creates_nothing(customer, make_product, shipping_address, gateway):
    rocket = make_product(stock=5)
    bad = _proof(signature=sign("order_ABC", "pay_XYz"))
    with pytest.raises(PaymentVerificationFailed):
        orders.finalize_order(
            customer["id"], _items((rocket, 2)), _address(shipping_address), "online",
            payment_proof=bad, gateway=gateway,
        )
    assert database.count_documents("order") == 0
    assert _stock(rocket) == 5


def test_card_without_proof_is_rejected(customer, make_product, shipping_address, gateway):
    rocket = make_product(stock=5)
    with pytest.raises(PaymentVerificationFailed):
        orders.finalize_order(customer["id"], _items((rocket, 1)), _address(shipping_address), "card", gateway=gateway)
    assert _stock(rocket) == 5


def test_items_snapshot_product_at_order_time(customer, make_product, shipping_address):
    rocket = make_product("Rocket Pack", price=100, stock=5, images=["https://img.example.com/a.jpg"])
    order = orders.finalize_order(customer["id"], _items((rocket, 1)), _address(shipping_address), "cod")

    database.update_document("product", rocket, {"name": "Rocket Pack v2", "price": 150, "images": ["b.jpg"]})

    stored = database.get_document_by_id("order", order["id"])
    item = stored["items"][0]
    assert item["product_id"] == rocket
    assert item["price_at_order"] == 100
    assert item["name_at_order"] == "Rocket Pack"
    assert item["image_at_order"] == "https://img.example.com/a.jpg"
    assert stored["total"] == 199


def test_total_ignores_anything_but_catalog_prices(customer, make_product, shipping_address):
    cake = make_product("Sky Cake", price=1450, stock=10)
    sparkler = make_product("Sparkler", price=90, stock=10)
    order = orders.finalize_order(
        customer["id"], _items((cake, 1), (sparkler, 7)), _address(shipping_address), "cod",
    )
    assert order["subtotal"] == 2080
    assert order["shipping_fee"] == 0
    assert order["total"] == 2080
    assert _stock(cake) == 9
    assert _stock(sparkler) == 3


def test_unknown_product_fails_cod_order(customer, shipping_address):
    with pytest.raises(ProductNotFound):
        orders.finalize_order(
            customer["id"], _items(("64b7f0c2a1b2c3d4e5f60718", 1)), _address(shipping_address), "cod",
        )


def test_duplicate_lines_cannot_oversell(customer, make_product, shipping_address):
    rocket = make_product(stock=5)
    with pytest.raises(InsufficientStock) as exc:
        orders.finalize_order(
            customer["id"], _items((rocket, 3), (rocket, 3)), _address(shipping_address), "cod",
        )
    assert exc.value.available == 5
    assert _stock(rocket) == 5
    assert database.count_documents("order") == 0


def test_duplicate_lines_become_one_item(customer, make_product, shipping_address):
    rocket = make_product(price=100, stock=10)
    order = orders.finalize_order(
        customer["id"], _items((rocket, 3), (rocket, 1)), _address(shipping_address), "cod",
    )
    assert [(i["product_id"], i["quantity"]) for i in order["items"]] == [(rocket, 4)]
    assert order["subtotal"] == 400
    assert _stock(rocket) == 6


def test_draft_payment_sums_duplicate_lines_against_stock(customer, make_product, gateway):
    rocket = make_product(price=100, stock=5)
    with pytest.raises(InsufficientStock) as exc:
        orders.create_draft_payment(customer["id"], _items((rocket, 3), (rocket, 3)), gateway)
    assert exc.value.available == 5
    assert gateway.client.order.created == []


def test_stock_taken_between_check_and_commit_is_rolled_back(customer, make_product, shipping_address, monkeypatch):
    rocket = make_product("Rocket Pack", stock=5)
    fountain = make_product("Fountain", stock=5)
    original = orders._commit_stock

    def racing_commit(lines):
        # Another order drains the fountain after the authoritative check.
        database.collection("product").update_one(
            {"_id": database.to_object_id(fountain)}, {"$set": {"stock": 1}},
        )
        return original(lines)

    monkeypatch.setattr(orders, "_commit_stock", racing_commit)
    with pytest.raises(InsufficientStock) as exc:
        orders.finalize_order(
            customer["id"], _items((rocket, 2), (fountain, 2)), _address(shipping_address), "cod",
        )
    assert exc.value.product_name == "Fountain"
    assert exc.value.available == 1
    assert _stock(rocket) == 5
    assert _stock(fountain) == 1
    assert database.count_documents("order") == 0


def test_failed_insert_restores_stock(customer, make_product, shipping_address, monkeypatch):
    rocket = make_product(stock=5)

    def broken_insert(collection_name, data):
        raise RuntimeError("write concern timeout")

    monkeypatch.setattr(orders, "create_document", broken_insert)
    with pytest.raises(RuntimeError):
        orders.finalize_order(customer["id"], _items((rocket, 2)), _address(shipping_address), "cod")
    assert _stock(rocket) == 5


def test_failure_after_payment_is_distinct(customer, make_product, shipping_address, gateway, caplog):
    rocket = make_product(stock=1)
    with pytest.raises(PostPaymentOrderCreationFailure) as exc:
        orders.finalize_order(
            customer["id"], _items((rocket, 2)), _address(shipping_address), "online",
            payment_proof=_proof(payment_id="pay_LOST"), gateway=gateway,
        )
    assert exc.value.status_code == 500
    assert "pay_LOST" in exc.value.message
    assert "contact support" in exc.value.message
    assert isinstance(exc.value.cause, InsufficientStock)
    assert any(r.levelname == "CRITICAL" and "pay_LOST" in r.getMessage() for r in caplog.records)
    assert database.count_documents("order") == 0
    assert _stock(rocket) == 1


def test_insert_failure_after_payment_is_distinct(customer, make_product, shipping_address, gateway, monkeypatch):
    rocket = make_product(stock=5)

    def broken_insert(collection_name, data):
        raise RuntimeError("primary stepped down")

    monkeypatch.setattr(orders, "create_document", broken_insert)
    with pytest.raises(PostPaymentOrderCreationFailure):
        orders.finalize_order(
            customer["id"], _items((rocket, 2)), _address(shipping_address), "online",
            payment_proof=_proof(), gateway=gateway,
        )
    assert _stock(rocket) == 5


def test_read_back_failure_after_paid_insert_is_not_a_lost_payment(
        customer, make_product, shipping_address, gateway, monkeypatch):
    rocket = make_product(stock=5)

    def broken_read(collection_name, _id, projection=None):
        raise RuntimeError("read timed out")

    monkeypatch.setattr(orders, "get_document_by_id", broken_read)
    with pytest.raises(RuntimeError):
        orders.finalize_order(
            customer["id"], _items((rocket, 2)), _address(shipping_address), "online",
            payment_proof=_proof(), gateway=gateway,
        )
    stored = database.collection("order").find_one({"user_id": customer["id"]})
    assert stored["payment_status"] == "paid"
    assert _stock(rocket) == 3
