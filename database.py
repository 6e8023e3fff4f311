"""
Database Helper Functions

MongoDB helpers shared by the services. Collections are named after the
lowercased schema class (Product -> "product", Order -> "order").
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

import config
from errors import ValidationError

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=config.DATABASE_TIMEOUT_MS)
    db = _client[config.DATABASE_NAME]


def _ensure_db():
    if db is None:
        logger.error("Database access attempted without DATABASE_URL / DATABASE_NAME")
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def collection(name: str):
    _ensure_db()
    return db[name]


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: str, what: str = "ID") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    if not id_str or not ObjectId.is_valid(id_str):
        raise ValidationError(f"Invalid {what} format")
    return ObjectId(id_str)


def ensure_indexes():
    _ensure_db()
    db["category"].create_index([("name", ASCENDING)], unique=True)
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["product"].create_index([("category_id", ASCENDING)])
    db["order"].create_index([("user_id", ASCENDING)])
    db["order"].create_index([("status", ASCENDING)])
    db["order"].create_index([("created_at", DESCENDING)])


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    _ensure_db()
    payload = _to_dict(data)
    now = now_utc()
    payload['created_at'] = now
    payload['updated_at'] = now
    result = db[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None, skip: Optional[int] = None,
                  projection: Optional[dict] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(int(skip))
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def get_raw_by_id(collection_name: str, _id: str, projection: Optional[dict] = None) -> Optional[dict]:
    """Unserialized document, or None. Malformed ids raise ValidationError."""
    _ensure_db()
    return db[collection_name].find_one({"_id": to_object_id(_id)}, projection)


def get_document_by_id(collection_name: str, _id: str, projection: Optional[dict] = None) -> Optional[dict]:
    doc = get_raw_by_id(collection_name, _id, projection)
    return serialize_doc(doc) if doc else None


def update_document(collection_name: str, _id: str, update_data: Dict[str, Any]) -> bool:
    """Returns True when a document matched, even if nothing changed."""
    _ensure_db()
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = now_utc()
    result = db[collection_name].update_one({"_id": to_object_id(_id)}, update)
    return result.matched_count > 0


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    result = db[collection_name].delete_one({"_id": to_object_id(_id)})
    return result.deleted_count > 0


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    _ensure_db()
    return db[collection_name].count_documents(filter_dict or {})


# Utility

def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    """JSON-ready copy of a document with ``_id`` exposed as ``id``."""
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    d.pop("reset_password_token", None)
    d.pop("reset_password_expires", None)
    return _serialize_value(d)
