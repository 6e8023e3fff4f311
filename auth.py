import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

import config
import database
from database import create_document, get_raw_by_id, now_utc, serialize_doc
from errors import Conflict, Forbidden, Unauthorized, ValidationError
from schemas import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user_id: str, role: str) -> str:
    exp = now_utc() + timedelta(days=config.JWT_EXPIRES_DAYS)
    return jwt.encode({"id": user_id, "role": role, "exp": exp}, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")


def public_user(user: dict) -> dict:
    """Serialized user without credentials."""
    return serialize_doc(user)


def _auth_response(user: dict) -> dict:
    suser = public_user(user)
    return {
        "id": suser["id"],
        "first_name": suser["first_name"],
        "last_name": suser["last_name"],
        "email": suser["email"],
        "phone": suser["phone"],
        "role": suser["role"],
        "token": create_token(suser["id"], suser["role"]),
    }


# ----------------------- Dependencies -----------------------
def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Not authorized, no token")
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    try:
        user = get_raw_by_id("user", user_id)
    except ValidationError:
        raise Unauthorized("Invalid token payload")
    if not user or not user.get("is_active", True):
        raise Unauthorized("User not found")
    return public_user(user)


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        logger.warning("Admin route denied for user %s", user["id"])
        raise Forbidden("Admin only")
    return user


# ----------------------- Accounts -----------------------
def register_user(first_name: str, last_name: str, email: str, phone: str, password: str) -> dict:
    email = email.lower()
    users = database.collection("user")
    if users.find_one({"email": email}):
        raise Conflict("User already exists")
    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
        password_hash=hash_password(password),
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise Conflict("User already exists")
    logger.info("Registered user %s", user_id)
    return _auth_response(users.find_one({"_id": database.to_object_id(user_id)}))


def login_user(email: str, password: str) -> dict:
    user = database.collection("user").find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash")):
        raise Unauthorized("Invalid email or password")
    if not user.get("is_active", True):
        raise Unauthorized("Account is disabled")
    return _auth_response(user)


def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def create_password_reset(email: str) -> Optional[str]:
    """Stores a hashed single-use reset token. Returns the raw token, or None for unknown emails."""
    users = database.collection("user")
    user = users.find_one({"email": email.lower()})
    if not user:
        return None
    token = secrets.token_hex(20)
    users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_password_token": _hash_reset_token(token),
            "reset_password_expires": now_utc() + timedelta(minutes=config.RESET_TOKEN_TTL_MINUTES),
            "updated_at": now_utc(),
        }},
    )
    logger.info("Password reset token issued for user %s", user["_id"])
    return token


def reset_password(token: str, new_password: str) -> dict:
    if not new_password or len(new_password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    users = database.collection("user")
    user = users.find_one({"reset_password_token": _hash_reset_token(token)})
    expires = user.get("reset_password_expires") if user else None
    if expires is not None and expires.tzinfo is None:
        # Mongo hands back naive UTC datetimes.
        expires = expires.replace(tzinfo=now_utc().tzinfo)
    if not user or expires is None or expires < now_utc():
        raise ValidationError("Invalid or expired reset token")
    users.update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(new_password), "updated_at": now_utc()},
            "$unset": {"reset_password_token": "", "reset_password_expires": ""},
        },
    )
    logger.info("Password reset completed for user %s", user["_id"])
    return _auth_response(users.find_one({"_id": user["_id"]}))
