import logging
import math
import re
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import DuplicateKeyError

import database
from database import (
    count_documents, create_document, delete_document, get_document_by_id, get_documents,
    get_raw_by_id, update_document,
)
from errors import Conflict, NotFound, ValidationError
from schemas import Category, CategoryUpdate, Product, ProductUpdate

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = tuple(Product.model_fields)


def _first_error(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    return err.get("msg", "Invalid data").replace("Value error, ", "")


# ----------------------- Categories -----------------------
def list_categories():
    return get_documents("category", sort=[("name", 1)])


def get_category(category_id: str) -> dict:
    category = get_document_by_id("category", category_id)
    if not category:
        raise NotFound("Category not found")
    return category


def create_category(body: Category) -> dict:
    if database.collection("category").find_one({"name": body.name}):
        raise Conflict("Category name already exists")
    try:
        category_id = create_document("category", body)
    except DuplicateKeyError:
        raise Conflict("Category name already exists")
    logger.info("Created category %s (%s)", category_id, body.name)
    return get_document_by_id("category", category_id)


def merge_category(existing: dict, patch: CategoryUpdate) -> dict:
    merged = {k: existing.get(k) for k in Category.model_fields}
    merged.update(patch.model_dump(exclude_unset=True))
    try:
        return Category(**merged).model_dump()
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc))


def update_category(category_id: str, patch: CategoryUpdate) -> dict:
    existing = get_raw_by_id("category", category_id)
    if not existing:
        raise NotFound("Category not found")
    merged = merge_category(existing, patch)
    clash = database.collection("category").find_one({"name": merged["name"], "_id": {"$ne": existing["_id"]}})
    if clash:
        raise Conflict("Category name already exists")
    update_document("category", category_id, merged)
    return get_document_by_id("category", category_id)


def delete_category(category_id: str):
    if not get_raw_by_id("category", category_id):
        raise NotFound("Category not found")
    product_count = count_documents("product", {"category_id": category_id})
    if product_count > 0:
        raise Conflict(
            f"Cannot delete category with {product_count} associated products. Reassign products first."
        )
    delete_document("category", category_id)
    logger.info("Deleted category %s", category_id)


# ----------------------- Products -----------------------
def list_products(category_id: Optional[str] = None, q: Optional[str] = None, page: int = 1, limit: int = 12) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    filt = {}
    if category_id:
        filt["category_id"] = category_id
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    total = count_documents("product", filt)
    products = get_documents(
        "product", filt, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit,
    )
    return {
        "products": products,
        "page": page,
        "total_pages": math.ceil(total / limit),
        "total_products": total,
    }


def list_category_products(category_id: str) -> list:
    """Every product of one category, unpaginated. Unknown categories are a 404."""
    get_category(category_id)
    return get_documents("product", {"category_id": category_id}, sort=[("name", 1)])


def get_product(product_id: str) -> dict:
    product = get_document_by_id("product", product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def _require_category(category_id: str):
    if not get_raw_by_id("category", category_id):
        raise ValidationError("Invalid category ID")


def create_product(body: Product) -> dict:
    _require_category(body.category_id)
    product_id = create_document("product", body)
    logger.info("Created product %s (%s)", product_id, body.name)
    return get_document_by_id("product", product_id)


def merge_product(existing: dict, patch: ProductUpdate) -> dict:
    """Applies the set fields of ``patch`` and re-validates the whole product."""
    merged = {k: existing.get(k) for k in PRODUCT_FIELDS if existing.get(k) is not None}
    merged.update(patch.model_dump(exclude_unset=True, exclude_none=True))
    try:
        return Product(**merged).model_dump()
    except PydanticValidationError as exc:
        raise ValidationError(_first_error(exc))


def update_product(product_id: str, patch: ProductUpdate) -> dict:
    existing = get_raw_by_id("product", product_id)
    if not existing:
        raise NotFound("Product not found")
    merged = merge_product(existing, patch)
    if merged["category_id"] != existing.get("category_id"):
        _require_category(merged["category_id"])
    update_document("product", product_id, merged)
    return get_document_by_id("product", product_id)


def delete_product(product_id: str):
    if not delete_document("product", product_id):
        raise NotFound("Product not found")
    logger.info("Deleted product %s", product_id)


def first_image(product: dict) -> str:
    images = product.get("images") or []
    return images[0] if images else "/placeholder.png"
