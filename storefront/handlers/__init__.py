"""HTTP handlers"""
from .base_handler import error_middleware
from .payment_handlers import PaymentHandler
from .order_handlers import OrderHandler
from .coupon_handlers import CouponHandler
from .shipment_handlers import ShipmentHandler
from .admin_handlers import AdminHandler

__all__ = [
    'error_middleware',
    'PaymentHandler',
    'OrderHandler',
    'CouponHandler',
    'ShipmentHandler',
    'AdminHandler',
]
