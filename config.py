"""
Environment configuration.

Values are read once at import from the process environment (a local .env file
is loaded first). Other modules read them as ``config.NAME`` at call time.
"""
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.error("Invalid %s=%r in environment, using %s", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.error("Invalid %s=%r in environment, using %s", name, raw, default)
        return default


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
DATABASE_TIMEOUT_MS = _int_env("DATABASE_TIMEOUT_MS", 5000)

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRES_DAYS = _int_env("JWT_EXPIRES_DAYS", 30)
RESET_TOKEN_TTL_MINUTES = _int_env("RESET_TOKEN_TTL_MINUTES", 10)
EXPOSE_RESET_TOKEN = _bool_env("EXPOSE_RESET_TOKEN")

# Payments
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
PAYMENT_TIMEOUT_SECONDS = _float_env("PAYMENT_TIMEOUT_SECONDS", 10.0)

# Shipping, in rupees
FREE_SHIPPING_THRESHOLD = _int_env("FREE_SHIPPING_THRESHOLD", 2000)
STANDARD_SHIPPING_COST = _int_env("STANDARD_SHIPPING_COST", 99)

# Server
FRONTEND_URL = os.getenv("FRONTEND_URL")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = _int_env("PORT", 8000)


_logging_configured = False


def setup_logging():
    """Configures the root logger once."""
    global _logging_configured
    if _logging_configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(LOG_LEVEL)
    _logging_configured = True
