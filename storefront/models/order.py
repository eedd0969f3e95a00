# storefront/models/order.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Set
from pydantic import BaseModel
from .base import TimeStampedModel

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"

class PaymentMethod(str, Enum):
    UPI = "upi"
    CARD = "card"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    ONLINE = "online"

    @classmethod
    def from_gateway(cls, payment_group: Optional[str]) -> "PaymentMethod":
        """Normalize a gateway payment group (e.g. ``credit_card``, ``upi``)"""
        if not payment_group:
            return cls.ONLINE
        group = payment_group.lower()
        if "upi" in group:
            return cls.UPI
        if "card" in group or "credit" in group or "debit" in group:
            return cls.CARD
        if "net" in group or "bank" in group:
            return cls.NETBANKING
        if "wallet" in group:
            return cls.WALLET
        return cls.ONLINE

_PIPELINE = [
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
]

def allowed_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Forward moves along the pipeline, plus cancellation before delivery"""
    if current not in _PIPELINE or current == OrderStatus.DELIVERED:
        return set()
    index = _PIPELINE.index(current)
    return set(_PIPELINE[index + 1:]) | {OrderStatus.CANCELLED}

def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in allowed_transitions(current)

# Carrier status -> order status. Lookup is on the upper-cased carrier string.
SHIPMENT_STATUS_MAP: Dict[str, OrderStatus] = {
    "PICKUP SCHEDULED": OrderStatus.PROCESSING,
    "PICKUP QUEUED": OrderStatus.PROCESSING,
    "AWB ASSIGNED": OrderStatus.PROCESSING,
    "MANIFESTED": OrderStatus.PROCESSING,
    "PICKED UP": OrderStatus.PROCESSING,
    "SHIPMENT PICKED UP": OrderStatus.PROCESSING,
    "SHIPPED": OrderStatus.SHIPPED,
    "IN TRANSIT": OrderStatus.SHIPPED,
    "SHIPMENT OUT FOR DELIVERY": OrderStatus.SHIPPED,
    "OUT FOR DELIVERY": OrderStatus.SHIPPED,
    "DELIVERED": OrderStatus.DELIVERED,
    "SHIPMENT DELIVERED": OrderStatus.DELIVERED,
    "RTO INITIATED": OrderStatus.CANCELLED,
    "RTO DELIVERED": OrderStatus.CANCELLED,
    "CANCELLED": OrderStatus.CANCELLED,
    "LOST": OrderStatus.CANCELLED,
}

def map_shipment_status(carrier_status: Optional[str]) -> Optional[OrderStatus]:
    if not carrier_status:
        return None
    return SHIPMENT_STATUS_MAP.get(carrier_status.strip().upper())

class Address(BaseModel):
    full_name: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    pincode: str
    country: str = "India"

class Customer(BaseModel):
    name: str
    email: str
    phone: str

class OrderItem(BaseModel):
    """Individual item in an order"""
    product_id: int
    name: str
    quantity: int
    price_per_unit: Decimal
    sku: Optional[str] = None
    weight: Optional[Decimal] = None

    @property
    def total_price(self) -> Decimal:
        return self.price_per_unit * self.quantity

class ShipmentInfo(BaseModel):
    """Carrier-side state of an order's shipment"""
    carrier_order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    awb_code: Optional[str] = None
    courier_id: Optional[int] = None
    courier_name: Optional[str] = None
    status: Optional[str] = None
    status_code: Optional[int] = None
    current_status: Optional[str] = None
    pickup_scheduled: bool = False
    cancelled: bool = False
    created_at: Optional[datetime] = None
    awb_assigned_at: Optional[datetime] = None
    pickup_scheduled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None

class Order(TimeStampedModel):
    """Order created once per confirmed gateway order id"""
    order_id: int
    user_id: Optional[str] = None
    customer: Customer
    items: List[OrderItem]
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal = Decimal(0)
    total_amount: Decimal
    shipping_address: Address
    billing_address: Address
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_method: Optional[PaymentMethod] = None
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    coupon_code: Optional[str] = None
    shipment: ShipmentInfo = ShipmentInfo()
    shipment_claimed_at: Optional[datetime] = None
    confirmation_completed: bool = False

    @property
    def is_completed(self) -> bool:
        return self.status in [OrderStatus.DELIVERED, OrderStatus.CANCELLED]

    @property
    def has_shipment(self) -> bool:
        return bool(self.shipment.shipment_id)
