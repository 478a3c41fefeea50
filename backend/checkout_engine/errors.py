"""
Checkout and order error taxonomy.

Every failure that leaves the service layer is one of these. Storage-layer
exceptions are translated before they cross the boundary, so routes only
ever see a CheckoutError (or a programming error, which is a 500).
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for checkout/order operation errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CheckoutError):
    """Malformed input. Raised before any storage access."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}", details={"field": field, "reason": reason})
        self.field = field
        self.reason = reason


class EmptyCartError(CheckoutError):
    """No line items could be resolved for the checkout."""

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class ProductUnavailableError(CheckoutError):
    status_code = 409

    def __init__(self, product_name: str, product_id: int | None = None):
        super().__init__(
            f"Product {product_name} is no longer available",
            details={"product_name": product_name, "product_id": product_id},
        )
        self.product_name = product_name
        self.product_id = product_id


class InsufficientStockError(CheckoutError):
    status_code = 409

    def __init__(self, product_name: str, available: int, product_id: int | None = None):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}",
            details={"product_name": product_name, "product_id": product_id, "available": available},
        )
        self.product_name = product_name
        self.available = available
        self.product_id = product_id


class OrderNumberCollisionError(CheckoutError):
    """Generated order number already exists. Internal; retried by the engine."""

    def __init__(self, order_number: str):
        super().__init__(f"Order number {order_number} already exists")
        self.order_number = order_number


class NotFoundError(CheckoutError):
    status_code = 404


class InvalidStatusTransitionError(CheckoutError):
    status_code = 409

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move order from {current} to {requested}",
            details={"current_status": current, "requested_status": requested},
        )


class PermissionDeniedError(CheckoutError):
    status_code = 403


class TransientError(CheckoutError):
    """Contention, timeout or serialization conflict. Safe to retry the whole call."""
    status_code = 503

    def __init__(self, message: str = "Please try again"):
        super().__init__(message, details={"retryable": True})
