"""
Per-user documents: addresses, cart, wishlist and profile.

Embedded lists are read, changed in Python and written back whole, so
concurrent edits to the same user are last-write-wins.
"""
import logging
from typing import List

from bson import ObjectId

import database
from auth import hash_password, public_user
from database import get_raw_by_id, now_utc, serialize_doc
from errors import Conflict, InsufficientStock, NotFound, ValidationError
from schemas import Address, AdminUserUpdate, ProfileUpdate

logger = logging.getLogger(__name__)


def _load_user(user_id: str) -> dict:
    user = get_raw_by_id("user", user_id)
    if not user:
        raise NotFound("User not found")
    return user


def _save(user: dict, **fields):
    fields["updated_at"] = now_utc()
    database.collection("user").update_one({"_id": user["_id"]}, {"$set": fields})


def _products_by_id(product_ids: List[str]) -> dict:
    oids = [ObjectId(pid) for pid in product_ids if ObjectId.is_valid(pid)]
    if not oids:
        return {}
    found = database.collection("product").find({"_id": {"$in": oids}})
    return {str(p["_id"]): serialize_doc(p) for p in found}


def _require_product(product_id: str) -> dict:
    product = get_raw_by_id("product", product_id)
    if not product:
        raise NotFound("Product not found")
    return product


# ----------------------- Addresses -----------------------
def ensure_single_default(addresses: List[dict]) -> List[dict]:
    """With at least one address, exactly one is default: the first flagged one, else the first."""
    if not addresses:
        return addresses
    chosen = next((i for i, a in enumerate(addresses) if a.get("is_default")), 0)
    for i, addr in enumerate(addresses):
        addr["is_default"] = i == chosen
    return addresses


def _find_address(addresses: List[dict], address_id: str) -> int:
    for i, addr in enumerate(addresses):
        if addr.get("id") == address_id:
            return i
    raise NotFound("Address not found")


def list_addresses(user_id: str) -> List[dict]:
    return _load_user(user_id).get("addresses") or []


def add_address(user_id: str, body: Address) -> dict:
    user = _load_user(user_id)
    addresses = user.get("addresses") or []
    new_address = body.model_dump()
    new_address["id"] = str(ObjectId())
    if body.is_default:
        for addr in addresses:
            addr["is_default"] = False
        new_address["is_default"] = True
    else:
        # The very first address is always the default.
        new_address["is_default"] = not addresses
    addresses.append(new_address)
    _save(user, addresses=ensure_single_default(addresses))
    return new_address


def update_address(user_id: str, address_id: str, body: Address) -> dict:
    user = _load_user(user_id)
    addresses = user.get("addresses") or []
    idx = _find_address(addresses, address_id)
    current = addresses[idx]

    if body.is_default is True:
        for i, addr in enumerate(addresses):
            addr["is_default"] = i == idx
    elif body.is_default is False and current.get("is_default"):
        if len(addresses) == 1:
            raise ValidationError("Cannot unset the default status of the only address.")
        promoted = next(i for i in range(len(addresses)) if i != idx)
        addresses[promoted]["is_default"] = True
        current["is_default"] = False
        logger.warning("User %s unset default address %s; promoted %s", user_id, address_id, addresses[promoted]["id"])

    fields = body.model_dump(exclude={"is_default"})
    current.update(fields)
    _save(user, addresses=ensure_single_default(addresses))
    return current


def delete_address(user_id: str, address_id: str):
    user = _load_user(user_id)
    addresses = user.get("addresses") or []
    idx = _find_address(addresses, address_id)
    addresses.pop(idx)
    _save(user, addresses=ensure_single_default(addresses))


def set_default_address(user_id: str, address_id: str) -> List[dict]:
    user = _load_user(user_id)
    addresses = user.get("addresses") or []
    idx = _find_address(addresses, address_id)
    for i, addr in enumerate(addresses):
        addr["is_default"] = i == idx
    _save(user, addresses=addresses)
    return addresses


# ----------------------- Cart -----------------------
def get_cart(user_id: str) -> List[dict]:
    cart = _load_user(user_id).get("cart") or []
    products = _products_by_id([entry["product_id"] for entry in cart])
    items = []
    for entry in cart:
        product = products.get(entry["product_id"])
        if product is None:
            logger.warning("Product %s missing for a cart entry of user %s; it may have been deleted",
                           entry["product_id"], user_id)
            continue
        items.append({"product": product, "quantity": entry["quantity"]})
    return items


def add_to_cart(user_id: str, product_id: str, quantity: int = 1) -> List[dict]:
    if quantity <= 0:
        raise ValidationError("Valid Product ID and positive quantity required")
    user = _load_user(user_id)
    product = _require_product(product_id)
    stock = product.get("stock", 0)
    cart = user.get("cart") or []
    entry = next((e for e in cart if e["product_id"] == product_id), None)
    new_quantity = quantity + (entry["quantity"] if entry else 0)
    if stock < new_quantity:
        raise InsufficientStock(product["name"], stock)
    if entry:
        entry["quantity"] = new_quantity
    else:
        cart.append({"product_id": product_id, "quantity": quantity})
    _save(user, cart=cart)
    return get_cart(user_id)


def update_cart_item(user_id: str, product_id: str, quantity: int) -> List[dict]:
    if quantity <= 0:
        return remove_from_cart(user_id, product_id)
    database.to_object_id(product_id, "Product ID")
    user = _load_user(user_id)
    product = _require_product(product_id)
    if product.get("stock", 0) < quantity:
        raise InsufficientStock(product["name"], product.get("stock", 0))
    cart = user.get("cart") or []
    entry = next((e for e in cart if e["product_id"] == product_id), None)
    if entry is None:
        raise NotFound("Item not found in cart")
    entry["quantity"] = quantity
    _save(user, cart=cart)
    return get_cart(user_id)


def remove_from_cart(user_id: str, product_id: str) -> List[dict]:
    database.to_object_id(product_id, "Product ID")
    user = _load_user(user_id)
    cart = user.get("cart") or []
    remaining = [e for e in cart if e["product_id"] != product_id]
    if len(remaining) == len(cart):
        raise NotFound("Item not found in cart")
    _save(user, cart=remaining)
    return get_cart(user_id)


def clear_cart(user_id: str) -> List[dict]:
    _save(_load_user(user_id), cart=[])
    return []


# ----------------------- Wishlist -----------------------
def get_wishlist(user_id: str) -> List[dict]:
    wishlist = _load_user(user_id).get("wishlist") or []
    products = _products_by_id(wishlist)
    return [products[pid] for pid in wishlist if pid in products]


def add_to_wishlist(user_id: str, product_id: str) -> List[dict]:
    database.to_object_id(product_id, "Product ID")
    user = _load_user(user_id)
    _require_product(product_id)
    database.collection("user").update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": product_id}})
    return get_wishlist(user_id)


def remove_from_wishlist(user_id: str, product_id: str) -> List[dict]:
    database.to_object_id(product_id, "Product ID")
    user = _load_user(user_id)
    database.collection("user").update_one({"_id": user["_id"]}, {"$pull": {"wishlist": product_id}})
    return get_wishlist(user_id)


# ----------------------- Profile -----------------------
def get_profile(user_id: str) -> dict:
    profile = public_user(_load_user(user_id))
    profile["wishlist"] = get_wishlist(user_id)
    return profile


def _check_email_free(email: str, user_oid):
    clash = database.collection("user").find_one({"email": email, "_id": {"$ne": user_oid}})
    if clash:
        raise Conflict("Email already in use")


def merge_user(user: dict, patch) -> dict:
    """The ``$set`` fields for a profile or admin patch; omitted fields stay as they are."""
    changes = patch.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if changes["email"] != user.get("email"):
            _check_email_free(changes["email"], user["_id"])
    if "password" in changes:
        changes["password_hash"] = hash_password(changes.pop("password"))
    return changes


def update_profile(user_id: str, patch: ProfileUpdate) -> dict:
    user = _load_user(user_id)
    changes = merge_user(user, patch)
    if changes:
        _save(user, **changes)
    return get_profile(user_id)


# ----------------------- Admin -----------------------
def list_users() -> List[dict]:
    return database.get_documents("user", sort=[("created_at", -1)])


def get_user(user_id: str) -> dict:
    return get_profile(user_id)


def update_user(user_id: str, patch: AdminUserUpdate) -> dict:
    user = _load_user(user_id)
    changes = merge_user(user, patch)
    if changes:
        _save(user, **changes)
    return get_profile(user_id)


def delete_user(user_id: str):
    user = _load_user(user_id)
    if user.get("role") == "admin":
        raise ValidationError("Cannot delete admin users")
    database.collection("user").delete_one({"_id": user["_id"]})
    logger.info("Deleted user %s", user_id)
