"""
Razorpay gateway adapter.

Only intent creation goes over the network. Signature verification is a local
HMAC check against the key secret.
"""
import hashlib
import hmac
import logging
import time
from typing import Optional

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

import config
from errors import UpstreamError

logger = logging.getLogger(__name__)


def compute_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    body = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def make_receipt(user_id: str) -> str:
    return f"rcpt_order_{int(time.time() * 1000)}_{str(user_id)[-6:]}"


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, timeout: float = 10.0, client=None):
        self.key_secret = key_secret
        self.timeout = timeout
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_intent(self, amount: int, currency: str, receipt: str) -> dict:
        """Creates a gateway order for ``amount`` in the currency's smallest unit."""
        options = {"amount": amount, "currency": currency, "receipt": receipt}
        logger.info("Creating gateway order: %s", options)
        try:
            order = self.client.order.create(data=options, timeout=self.timeout)
        except BadRequestError as exc:
            logger.warning("Gateway rejected order %s: %s", receipt, exc)
            raise UpstreamError(f"Payment gateway error: {exc}", user_actionable=True)
        except (ServerError, GatewayError) as exc:
            logger.error("Gateway failure creating order %s: %s", receipt, exc)
            raise UpstreamError()
        except requests.exceptions.RequestException as exc:
            logger.error("Gateway unreachable creating order %s: %s", receipt, exc)
            raise UpstreamError()
        logger.info("Gateway order created: %s", order.get("id"))
        return {
            "id": order["id"],
            "amount": order.get("amount", amount),
            "currency": order.get("currency", currency),
            "receipt": order.get("receipt", receipt),
        }

    def verify_signature(self, gateway_order_id: str, gateway_payment_id: str, signature: str) -> bool:
        if not (gateway_order_id and gateway_payment_id and signature and self.key_secret):
            return False
        expected = compute_signature(gateway_order_id, gateway_payment_id, self.key_secret)
        return hmac.compare_digest(expected.encode(), signature.encode())


_gateway: Optional[RazorpayGateway] = None


def get_gateway() -> RazorpayGateway:
    """FastAPI dependency; tests override it with a fake."""
    global _gateway
    if _gateway is None:
        if not config.RAZORPAY_KEY_ID or not config.RAZORPAY_KEY_SECRET:
            logger.warning("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET not set; payments will fail")
        _gateway = RazorpayGateway(
            config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET, timeout=config.PAYMENT_TIMEOUT_SECONDS,
        )
    return _gateway
