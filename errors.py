"""
Application error taxonomy.

Every error carries a user-safe ``message`` and the HTTP ``status_code`` it is
rendered with by the handlers registered in main.py.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class InvalidQuantity(ValidationError):
    def __init__(self, product_id, quantity):
        self.product_id = product_id
        self.quantity = quantity
        super().__init__(f"Invalid quantity for product {product_id}: {quantity}")


class InvalidAmount(ValidationError):
    default_message = "Calculated order amount must be positive."


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class ProductNotFound(AppError):
    # Raised for ids inside request bodies, so it is a 400 rather than a 404.
    status_code = 400

    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class Unauthorized(AppError):
    status_code = 401
    default_message = "Not authorized"


class Forbidden(AppError):
    status_code = 403
    default_message = "Forbidden"


class Conflict(AppError):
    status_code = 409
    default_message = "Conflict"


class InsufficientStock(Conflict):
    status_code = 400

    def __init__(self, product_name, available):
        self.product_name = product_name
        self.available = available
        super().__init__(f"Insufficient stock for {product_name}. Only {available} available.")


class PaymentVerificationFailed(AppError):
    status_code = 400
    default_message = "Invalid payment signature"


class PostPaymentOrderCreationFailure(AppError):
    """Payment was captured by the gateway but the order could not be stored."""

    status_code = 500

    def __init__(self, payment_id, cause=None):
        self.payment_id = payment_id
        self.cause = cause
        super().__init__(
            "Your payment was received but we could not create your order. "
            f"Please contact support with your payment reference: {payment_id}"
        )


class UpstreamError(AppError):
    """Payment gateway failure. 400 when the gateway gave a user-actionable reason."""

    def __init__(self, message=None, user_actionable=False):
        self.status_code = 400 if user_actionable else 500
        super().__init__(message or "Payment gateway error. Please try again later.")
