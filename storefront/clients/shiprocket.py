# storefront/clients/shiprocket.py
import asyncio
import logging
import re
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional
import aiohttp
from ..config import Config
from ..errors import ExternalServiceError, ValidationError

BASE_URL = "https://apiv2.shiprocket.in/v1/external"

# Tokens live 10 days; refresh after 9
TOKEN_TTL_SECONDS = 9 * 24 * 60 * 60

_PHONE_RE = re.compile(r"^\d{10}$")
_PINCODE_RE = re.compile(r"^\d{6}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

def sanitize(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return value.replace("<", "").replace(">", "").strip()

class ShiprocketClient:
    """Async client for the Shiprocket external API"""

    service = "shiprocket"

    def __init__(self, email: Optional[str] = None, password: Optional[str] = None,
                 timeout: Optional[float] = None, base_url: str = BASE_URL):
        self.email = email if email is not None else Config.SHIPROCKET_EMAIL
        self.password = password if password is not None else Config.SHIPROCKET_PASSWORD
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.EXTERNAL_TIMEOUT_SECONDS)
        self.token: Optional[str] = None
        self.token_expiry: float = 0
        self.logger = logging.getLogger(__name__)

    async def _raw_request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                           params: Optional[Dict[str, Any]] = None,
                           headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    f"{self.base_url}{path}",
                    json=payload,
                    params=params,
                    headers=headers or {"Content-Type": "application/json"}
                ) as response:
                    data = await response.json(content_type=None)
                    if response.status >= 400:
                        message = data.get("message") if isinstance(data, dict) else None
                        self.logger.error(f"Shiprocket {method} {path} failed: {response.status} {data}")
                        raise ExternalServiceError(
                            self.service,
                            message or f"HTTP {response.status}",
                            retryable=response.status >= 500
                        )
                    return data
        except asyncio.TimeoutError as e:
            raise ExternalServiceError(self.service, "request timed out") from e
        except aiohttp.ClientError as e:
            raise ExternalServiceError(self.service, str(e)) from e

    async def authenticate(self) -> str:
        if not self.email or not self.password:
            raise ExternalServiceError(self.service, "credentials not configured", retryable=False)

        data = await self._raw_request("POST", "/auth/login", {
            "email": self.email,
            "password": self.password,
        })
        self.token = data.get("token")
        if not self.token:
            raise ExternalServiceError(self.service, "authentication returned no token")
        self.token_expiry = time.time() + TOKEN_TTL_SECONDS
        return self.token

    async def get_token(self) -> str:
        if not self.token or time.time() >= self.token_expiry:
            await self.authenticate()
        return self.token

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        token = await self.get_token()
        return await self._raw_request(method, path, payload, params, headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        })

    @staticmethod
    def _validate_order(order: Dict[str, Any]) -> None:
        for field in ("order_id", "email", "billing_address", "shipping_address"):
            if not order.get(field):
                raise ValidationError(f"Missing shipment field: {field}")
        if not _EMAIL_RE.match(order["email"]):
            raise ValidationError("Invalid email format")
        for kind in ("billing", "shipping"):
            address = order[f"{kind}_address"]
            if not _PHONE_RE.match(str(address.get("phone", ""))):
                raise ValidationError(f"Invalid {kind} phone number. Must be 10 digits")
            if not _PINCODE_RE.match(str(address.get("pincode", ""))):
                raise ValidationError(f"Invalid {kind} pincode. Must be 6 digits")
        if not order.get("items"):
            raise ValidationError("Order must have at least one item")

    async def create_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Create an adhoc order; returns carrier order id, shipment id and status"""
        self._validate_order(order)
        billing = order["billing_address"]
        shipping = order["shipping_address"]
        dimensions = order.get("dimensions") or {}

        payload = {
            "order_id": sanitize(order["order_id"]),
            "order_date": order["order_date"],
            "pickup_location": Config.SHIPROCKET_PICKUP_LOCATION,
            "channel_id": Config.SHIPROCKET_CHANNEL_ID,
            "comment": sanitize(order.get("comment")) or "Order from XRoboFly",
            "billing_customer_name": sanitize(billing["full_name"]),
            "billing_last_name": "",
            "billing_address": sanitize(billing["address_line1"]),
            "billing_address_2": sanitize(billing.get("address_line2") or ""),
            "billing_city": sanitize(billing["city"]),
            "billing_pincode": billing["pincode"],
            "billing_state": sanitize(billing["state"]),
            "billing_country": sanitize(billing["country"]),
            "billing_email": order["email"].lower(),
            "billing_phone": billing["phone"],
            "shipping_is_billing": order.get("shipping_is_billing", False),
            "shipping_customer_name": sanitize(shipping["full_name"]),
            "shipping_last_name": "",
            "shipping_address": sanitize(shipping["address_line1"]),
            "shipping_address_2": sanitize(shipping.get("address_line2") or ""),
            "shipping_city": sanitize(shipping["city"]),
            "shipping_pincode": shipping["pincode"],
            "shipping_country": sanitize(shipping["country"]),
            "shipping_state": sanitize(shipping["state"]),
            "shipping_email": order["email"].lower(),
            "shipping_phone": shipping["phone"],
            "order_items": [
                {
                    "name": sanitize(item["name"]),
                    "sku": sanitize(item.get("sku") or str(item["product_id"])),
                    "units": max(1, int(item["quantity"])),
                    "selling_price": max(0.0, float(item["price"])),
                    "discount": 0,
                    "tax": 0,
                    "hsn": int(item.get("hsn") or 0),
                }
                for item in order["items"]
            ],
            "payment_method": order.get("payment_method", "Prepaid"),
            "shipping_charges": max(0.0, float(order.get("shipping_charges") or 0)),
            "giftwrap_charges": 0,
            "transaction_charges": 0,
            "total_discount": max(0.0, float(order.get("discount") or 0)),
            "sub_total": max(0.0, float(order.get("sub_total") or 0)),
            "length": max(1.0, float(dimensions.get("length") or 10)),
            "breadth": max(1.0, float(dimensions.get("breadth") or 10)),
            "height": max(1.0, float(dimensions.get("height") or 10)),
            "weight": max(0.1, float(order.get("weight") or Decimal("0.5"))),
        }

        data = await self._request("POST", "/orders/create/adhoc", payload)
        return {
            "carrier_order_id": str(data.get("order_id")) if data.get("order_id") else None,
            "shipment_id": str(data.get("shipment_id")) if data.get("shipment_id") else None,
            "status": data.get("status"),
            "status_code": data.get("status_code"),
        }

    async def assign_awb(self, shipment_id: str, courier_id: int) -> Dict[str, Any]:
        data = await self._request("POST", "/courier/assign/awb", {
            "shipment_id": int(shipment_id),
            "courier_id": int(courier_id),
        })
        response = (data.get("response") or {}).get("data") or {}
        return {
            "awb_code": response.get("awb_code") or data.get("awb_code"),
            "courier_name": response.get("courier_name"),
        }

    async def check_serviceability(self, pickup_pincode: str, delivery_pincode: str,
                                   weight: Decimal = Decimal("0.5"), cod: int = 0) -> List[Dict[str, Any]]:
        """Available courier companies for a lane, cheapest first as returned by the API"""
        data = await self._request("GET", "/courier/serviceability/", params={
            "pickup_postcode": pickup_pincode,
            "delivery_postcode": delivery_pincode,
            "weight": str(weight),
            "cod": cod,
        })
        return ((data or {}).get("data") or {}).get("available_courier_companies") or []

    async def request_pickup(self, shipment_id: str) -> Dict[str, Any]:
        data = await self._request("POST", "/courier/generate/pickup", {
            "shipment_id": [int(shipment_id)],
        })
        return {"pickup_status": data.get("pickup_status"), "data": data}

    async def track_shipment(self, shipment_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"/courier/track/shipment/{shipment_id}")
        return data.get("tracking_data") or {}

    async def cancel_shipment(self, awb_code: str) -> Dict[str, Any]:
        return await self._request("POST", "/orders/cancel/shipment/awbs", {
            "awbs": [awb_code],
        })
