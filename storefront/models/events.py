# storefront/models/events.py
"""Normalized webhook events.

Gateways and carriers push payloads whose field names vary by event type.
They are decoded here, once, into a single internal shape; anything that
cannot be decoded becomes ``None`` and is acknowledged and logged by the
caller instead of raising.
"""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ValidationError

class PaymentEventType(str, Enum):
    SUCCESS = "PAYMENT_SUCCESS_WEBHOOK"
    FAILED = "PAYMENT_FAILED_WEBHOOK"
    USER_DROPPED = "PAYMENT_USER_DROPPED_WEBHOOK"

class PaymentEvent(BaseModel):
    type: PaymentEventType
    order_id: str
    payment_id: Optional[str] = None
    payment_status: Optional[str] = None
    payment_group: Optional[str] = None

class ShipmentEvent(BaseModel):
    shipment_id: Optional[str] = None
    order_id: Optional[str] = None
    awb: Optional[str] = None
    status: Optional[str] = None

    @property
    def has_reference(self) -> bool:
        return bool(self.shipment_id or self.order_id or self.awb)

def _as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)

def decode_payment_event(payload: Any) -> Optional[PaymentEvent]:
    """Decode a Cashfree webhook body; ``None`` for test pings and unknown shapes"""
    if not isinstance(payload, dict):
        return None

    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    order = data.get("order")
    if not isinstance(order, dict) or not order.get("order_id"):
        return None
    payment = data.get("payment") if isinstance(data.get("payment"), dict) else {}

    try:
        return PaymentEvent(
            type=payload.get("type"),
            order_id=str(order["order_id"]),
            payment_id=_as_str(payment.get("cf_payment_id")),
            payment_status=_as_str(payment.get("payment_status")),
            payment_group=_as_str(payment.get("payment_group")),
        )
    except ValidationError:
        return None

def decode_shipment_event(payload: Dict[str, Any]) -> Optional[ShipmentEvent]:
    """Decode a Shiprocket webhook body; ``None`` when nothing identifies an order"""
    if not isinstance(payload, dict):
        return None

    event = ShipmentEvent(
        shipment_id=_as_str(payload.get("shipment_id")),
        order_id=_as_str(payload.get("order_id")),
        awb=_as_str(payload.get("awb")),
        status=_as_str(payload.get("current_status") or payload.get("shipment_status")),
    )
    return event if event.has_reference else None
