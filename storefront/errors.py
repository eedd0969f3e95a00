# storefront/errors.py
"""Exceptions raised by the storefront services.

Handlers turn these into JSON error envelopes; ``status`` is the HTTP
status code the error maps to.
"""

from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StorefrontError):
    """Request rejected before any external call."""

    status = 400


class InventoryError(StorefrontError):
    """A cart line cannot be satisfied by the catalog."""

    status = 409

    def __init__(self, message: str, product_id: int):
        self.product_id = product_id
        super().__init__(message)


class ProductNotFound(InventoryError):
    def __init__(self, product_id: int):
        super().__init__(f"Product not found: {product_id}", product_id)


class ProductUnavailable(InventoryError):
    def __init__(self, product_id: int, name: Optional[str] = None):
        super().__init__(f"Product {name or product_id} is currently unavailable", product_id)


class OutOfStock(InventoryError):
    def __init__(self, product_id: int, available: int, name: Optional[str] = None):
        self.available = available
        super().__init__(
            f"Insufficient stock for {name or product_id}. Available: {available}",
            product_id,
        )


class CouponError(StorefrontError):
    status = 400


class CouponNotFound(CouponError):
    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        super().__init__(message or "Invalid or expired coupon code")


class CouponExpired(CouponError):
    def __init__(self, code: str):
        self.code = code
        super().__init__("Coupon has expired")


class CouponNotOwned(CouponError):
    def __init__(self, code: str):
        self.code = code
        super().__init__("This coupon is not valid for your account")


class CouponLimitExceeded(CouponError):
    def __init__(self, code: str):
        self.code = code
        super().__init__("Coupon usage limit exceeded")


class CouponConflict(CouponError):
    status = 409


class ExternalServiceError(StorefrontError):
    """A payment, shipping or mail collaborator failed or timed out."""

    status = 502

    def __init__(self, service: str, message: str, retryable: bool = True):
        self.service = service
        self.retryable = retryable
        super().__init__(f"{service}: {message}")


class SessionExpired(StorefrontError):
    status = 410

    def __init__(self, gateway_order_id: str):
        self.gateway_order_id = gateway_order_id
        super().__init__(
            "Order data not found. Session may have expired, please contact support "
            f"with reference {gateway_order_id}"
        )


class OrderNotFound(StorefrontError):
    status = 404

    def __init__(self, reference):
        self.reference = reference
        super().__init__(f"Order not found: {reference}")


class InvalidTransition(StorefrontError):
    status = 409

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from {current} to {requested}")


class ShipmentError(StorefrontError):
    """Shipment operation not possible in the order's current state."""

    status = 400


class ShipmentCreationInProgress(ShipmentError):
    status = 409

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Shipment creation for order {order_id} is already in progress")


class AuthenticationRequired(StorefrontError):
    status = 401


class WebhookAuthError(AuthenticationRequired):
    """Webhook signature or key missing or wrong."""


class AccessDenied(StorefrontError):
    status = 403
