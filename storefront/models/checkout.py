# storefront/models/checkout.py
from datetime import datetime
from enum import Enum
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field
from .coupon import AppliedCoupon
from .order import Address, Customer, Order
from .product import CartLine, PricedLine

class CheckoutRequest(BaseModel):
    """Body of a checkout session request"""
    customer: Customer = Field(alias="customerDetails")
    shipping_address: Address = Field(alias="shippingAddress")
    billing_address: Optional[Address] = Field(default=None, alias="billingAddress")
    items: List[CartLine] = Field(alias="products")
    coupon_code: Optional[str] = Field(default=None, alias="couponCode")

    model_config = {"populate_by_name": True}

class CheckoutTotals(BaseModel):
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal = Decimal(0)

    @property
    def total(self) -> Decimal:
        return self.subtotal + self.shipping + self.tax - self.discount

class PendingCheckout(BaseModel):
    """Priced cart snapshot held between session creation and payment confirmation"""
    gateway_order_id: str
    user_id: Optional[str] = None
    customer: Customer
    shipping_address: Address
    billing_address: Address
    items: List[PricedLine]
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal = Decimal(0)
    total: Decimal
    applied_coupon: Optional[AppliedCoupon] = None
    payment_session_id: Optional[str] = None
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

class CheckoutSession(BaseModel):
    """What the client needs to open the gateway's payment UI"""
    payment_session_id: str
    order_id: str
    order_amount: Decimal

class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    NOT_PAID = "not_paid"

class ConfirmationResult(BaseModel):
    """Outcome of a payment confirmation; ``order`` is set unless not paid"""
    status: ConfirmationStatus
    order: Optional[Order] = None
    payment_status: Optional[str] = None
