"""
Server-side pricing.

Totals are always computed from current catalog prices; nothing the client
sends is trusted beyond product ids and quantities.
"""
import logging
from dataclasses import dataclass, field
from numbers import Number
from typing import Iterable, List, Tuple

import config
import database
from errors import InsufficientStock, InvalidQuantity, ProductNotFound, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class QuoteLine:
    product: dict
    quantity: int

    @property
    def line_total(self) -> float:
        return self.product["price"] * self.quantity


@dataclass
class Quote:
    subtotal: float
    shipping_fee: float
    total: float
    lines: List[QuoteLine] = field(default_factory=list)


def shipping_fee_for(subtotal: float) -> float:
    """Free above the configured threshold, flat fee otherwise."""
    return 0 if subtotal > config.FREE_SHIPPING_THRESHOLD else config.STANDARD_SHIPPING_COST


def to_smallest_unit(amount: float) -> int:
    return int(round(amount * 100))


def _item_pair(item) -> Tuple[str, object]:
    if isinstance(item, dict):
        return item.get("product_id") or item.get("productId"), item.get("quantity")
    return item.product_id, item.quantity


def validate_quantity(product_id, quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(product_id, quantity)
    return quantity


def merge_quantities(pairs: Iterable[Tuple[str, int]]) -> List[Tuple[str, int]]:
    """Folds repeated product ids into one pair, keeping first-seen order."""
    merged = {}
    for product_id, quantity in pairs:
        merged[product_id] = merged.get(product_id, 0) + quantity
    return list(merged.items())


def load_product(product_id: str) -> dict:
    product = database.get_raw_by_id("product", product_id)
    if not product:
        raise ProductNotFound(product_id)
    price = product.get("price")
    if isinstance(price, bool) or not isinstance(price, Number) or price < 0:
        logger.error("Invalid price found for product %s: %r", product_id, price)
        raise ValidationError(f"Invalid price configured for product {product.get('name', product_id)}.")
    return product


def price_lines(lines: List[QuoteLine]) -> Quote:
    subtotal = sum(line.line_total for line in lines)
    fee = shipping_fee_for(subtotal)
    return Quote(subtotal=subtotal, shipping_fee=fee, total=subtotal + fee, lines=lines)


def quote_items(items: Iterable) -> Quote:
    """Prices ``(product_id, quantity)`` pairs against the catalog as it is now.

    Repeated ids are summed before the stock check. Raises ProductNotFound,
    InvalidQuantity or InsufficientStock. Reads only.
    """
    items = list(items or [])
    if not items:
        raise ValidationError("No items provided")
    pairs = []
    for item in items:
        product_id, quantity = _item_pair(item)
        database.to_object_id(product_id, "Product ID")
        pairs.append((product_id, validate_quantity(product_id, quantity)))
    lines = []
    for product_id, quantity in merge_quantities(pairs):
        product = load_product(product_id)
        stock = product.get("stock", 0)
        if stock < quantity:
            raise InsufficientStock(product.get("name", product_id), stock)
        lines.append(QuoteLine(product=product, quantity=quantity))
    quote = price_lines(lines)
    logger.debug("Quote: subtotal=%s shipping=%s total=%s", quote.subtotal, quote.shipping_fee, quote.total)
    return quote
