"""
Order orchestration.

Creating a payment intent prices the cart and asks the gateway for an order id.
Finalizing an order verifies the payment (unless cash on delivery), re-checks
stock against the catalog, snapshots prices, commits stock and stores the
order. Status changes afterwards are admin-only and move forward only.
"""
import logging
import math
from datetime import timedelta
from typing import List, Optional

from pymongo import ReturnDocument

import config
import database
from catalog import first_image
from database import create_document, get_document_by_id, get_raw_by_id, now_utc, serialize_doc
from errors import (
    AppError, Forbidden, InsufficientStock, InvalidAmount, NotFound, PaymentVerificationFailed,
    PostPaymentOrderCreationFailure, ProductNotFound, ValidationError,
)
from payments import make_receipt
from pricing import (
    QuoteLine, load_product, merge_quantities, price_lines, quote_items, to_smallest_unit, validate_quantity,
)
from schemas import Order, OrderItem, PaymentProof, PaymentResult, ShippingAddress

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")
STATUS_FLOW = ("pending", "confirmed", "processing", "shipped", "delivered")
TERMINAL_STATUSES = ("delivered", "cancelled")
PAYMENT_METHODS = ("cod", "card", "upi", "online")
DELIVERY_ESTIMATE_DAYS = 5


# ----------------------- Payment intent -----------------------
def create_draft_payment(user_id: str, items, gateway) -> dict:
    """Prices the items and opens a gateway order. Persists nothing."""
    quote = quote_items(items)
    if quote.total <= 0:
        raise InvalidAmount()
    amount = to_smallest_unit(quote.total)
    if amount <= 0:
        logger.error("Calculated invalid amount %s from total %s", amount, quote.total)
        raise InvalidAmount()
    logger.info(
        "Calculated amount for user %s: subtotal=%s shipping=%s total=%s (%s minor units)",
        user_id, quote.subtotal, quote.shipping_fee, quote.total, amount,
    )
    intent = gateway.create_intent(amount, config.PAYMENT_CURRENCY, make_receipt(user_id))
    return {
        "intentId": intent["id"],
        "amount": intent["amount"],
        "currency": intent["currency"],
        "receipt": intent["receipt"],
    }


# ----------------------- Order creation -----------------------
def _validate_items(items) -> List[tuple]:
    pairs = []
    for item in items or []:
        product_id, quantity = item.product_id, item.quantity
        database.to_object_id(product_id, "Product ID")
        pairs.append((product_id, validate_quantity(product_id, quantity)))
    if not pairs:
        raise ValidationError("Order items are required")
    return merge_quantities(pairs)


def _release_stock(lines: List[QuoteLine]):
    products = database.collection("product")
    for line in lines:
        try:
            products.update_one({"_id": line.product["_id"]}, {"$inc": {"stock": line.quantity}})
        except Exception:
            logger.exception(
                "Failed to restore %s units of stock to product %s", line.quantity, line.product["_id"],
            )


def _commit_stock(lines: List[QuoteLine]):
    """Decrements stock line by line, only where enough remains.

    On the first line that cannot be covered, the lines already taken are put
    back and InsufficientStock is raised.
    """
    products = database.collection("product")
    taken = []
    for line in lines:
        product_id = line.product["_id"]
        updated = products.find_one_and_update(
            {"_id": product_id, "stock": {"$gte": line.quantity}},
            {"$inc": {"stock": -line.quantity}, "$set": {"updated_at": now_utc()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            current = products.find_one({"_id": product_id}, {"name": 1, "stock": 1})
            _release_stock(taken)
            if current is None:
                raise ProductNotFound(str(product_id))
            logger.warning(
                "Stock commit failed for product %s: wanted %s, have %s",
                product_id, line.quantity, current.get("stock", 0),
            )
            raise InsufficientStock(current.get("name", str(product_id)), current.get("stock", 0))
        taken.append(line)


def _place_order(user_id, pairs, shipping_address: ShippingAddress, payment_method: str,
                 payment_result: Optional[PaymentResult]) -> str:
    lines = []
    for product_id, quantity in pairs:
        product = load_product(product_id)
        stock = product.get("stock", 0)
        if stock < quantity:
            raise InsufficientStock(product.get("name", product_id), stock)
        lines.append(QuoteLine(product=product, quantity=quantity))

    quote = price_lines(lines)
    order = Order(
        user_id=user_id,
        items=[
            OrderItem(
                product_id=str(line.product["_id"]),
                quantity=line.quantity,
                price_at_order=line.product["price"],
                name_at_order=line.product["name"],
                image_at_order=first_image(line.product),
            )
            for line in lines
        ],
        shipping_address=shipping_address,
        payment_method=payment_method,
        payment_status="paid" if payment_result else "pending",
        status="pending",
        subtotal=quote.subtotal,
        shipping_fee=quote.shipping_fee,
        total=quote.total,
        payment_result=payment_result,
    )

    _commit_stock(lines)
    try:
        order_id = create_document("order", order)
    except Exception:
        _release_stock(lines)
        raise
    logger.info("Order %s created for user %s (total=%s, method=%s)", order_id, user_id, quote.total, payment_method)
    return order_id


def finalize_order(user_id: str, items, shipping_address: ShippingAddress, payment_method: str,
                   payment_proof: Optional[PaymentProof] = None, gateway=None) -> dict:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Valid payment method required. Received: {payment_method}")
    pairs = _validate_items(items)

    payment_result = None
    if payment_method != "cod":
        if payment_proof is None or gateway is None or not gateway.verify_signature(
            payment_proof.gateway_order_id, payment_proof.gateway_payment_id, payment_proof.signature,
        ):
            logger.warning(
                "Payment signature verification failed for gateway order %s",
                payment_proof.gateway_order_id if payment_proof else None,
            )
            raise PaymentVerificationFailed()
        logger.info("Payment signature verified for gateway order %s", payment_proof.gateway_order_id)
        payment_result = PaymentResult(
            gateway_order_id=payment_proof.gateway_order_id,
            gateway_payment_id=payment_proof.gateway_payment_id,
            signature=payment_proof.signature,
            status="paid",
            update_time=now_utc(),
        )

    try:
        order_id = _place_order(user_id, pairs, shipping_address, payment_method, payment_result)
    except Exception as exc:
        if payment_result is None:
            raise
        logger.critical(
            "Payment %s (gateway order %s) succeeded but order creation failed for user %s: %s. "
            "MANUAL INTERVENTION NEEDED.",
            payment_proof.gateway_payment_id, payment_proof.gateway_order_id, user_id,
            exc.message if isinstance(exc, AppError) else repr(exc),
            exc_info=not isinstance(exc, AppError),
        )
        raise PostPaymentOrderCreationFailure(payment_proof.gateway_payment_id, cause=exc) from exc
    # Stored with stock taken from here on.
    return get_document_by_id("order", order_id)


# ----------------------- Queries -----------------------
def _attach_user(order: dict) -> dict:
    user = None
    if order.get("user_id"):
        try:
            user = get_raw_by_id("user", order["user_id"], {"first_name": 1, "last_name": 1, "email": 1, "phone": 1})
        except ValidationError:
            user = None
    order["user"] = serialize_doc(user)
    return order


def list_user_orders(user_id: str) -> list:
    return database.get_documents("order", {"user_id": user_id}, sort=[("created_at", -1)])


def get_order_for(order_id: str, user: dict) -> dict:
    order = get_document_by_id("order", order_id)
    if not order:
        raise NotFound("Order not found")
    if user.get("role") != "admin" and order.get("user_id") != user["id"]:
        logger.warning("User %s tried to access order %s owned by %s", user["id"], order_id, order.get("user_id"))
        raise Forbidden("Not authorized to view this order")
    return _attach_user(order)


def list_orders(page: int = 1, limit: int = 10) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    total = database.count_documents("order")
    orders = database.get_documents("order", {}, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit)
    return {
        "orders": [_attach_user(o) for o in orders],
        "current_page": page,
        "total_pages": math.ceil(total / limit),
        "total_orders": total,
    }


# ----------------------- Status changes -----------------------
def can_transition(current: str, new: str) -> bool:
    if new == current:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if new == "cancelled":
        return True
    if current not in STATUS_FLOW or new not in STATUS_FLOW:
        return False
    return STATUS_FLOW.index(new) > STATUS_FLOW.index(current)


def update_order_status(order_id: str, status: str, tracking_number: Optional[str] = None) -> dict:
    """Admin status change.

    ``tracking_number`` of None leaves it untouched, an empty string clears it.
    """
    if status not in ORDER_STATUSES:
        raise ValidationError("Invalid status provided")
    order = get_raw_by_id("order", order_id)
    if not order:
        raise NotFound("Order not found")
    current = order.get("status", "pending")
    if not can_transition(current, status):
        raise ValidationError(f"Cannot change order status from {current} to {status}")

    now = now_utc()
    set_fields = {"status": status, "updated_at": now}
    unset_fields = {}
    if tracking_number is not None:
        if tracking_number:
            set_fields["tracking_number"] = tracking_number
        else:
            unset_fields["tracking_number"] = ""
    if status == "shipped" and not order.get("estimated_delivery"):
        set_fields["estimated_delivery"] = now + timedelta(days=DELIVERY_ESTIMATE_DAYS)
    if status == "delivered" and order.get("payment_method") == "cod":
        set_fields["payment_status"] = "paid"
    if status == "cancelled" and current != "cancelled":
        logger.warning("Order %s cancelled; stock is not restored automatically", order_id)

    update = {"$set": set_fields}
    if unset_fields:
        update["$unset"] = unset_fields
    database.collection("order").update_one({"_id": order["_id"]}, update)
    logger.info("Order %s status %s -> %s", order_id, current, status)
    return _attach_user(get_document_by_id("order", order_id))
