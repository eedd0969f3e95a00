# storefront/clients/cashfree.py
import asyncio
import base64
import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
import aiohttp
from ..config import Config
from ..errors import ExternalServiceError

SANDBOX_URL = "https://sandbox.cashfree.com/pg"
PRODUCTION_URL = "https://api.cashfree.com/pg"

class CashfreeClient:
    """Thin async client for the Cashfree PG orders API"""

    service = "cashfree"

    def __init__(self, app_id: Optional[str] = None, secret_key: Optional[str] = None,
                 environment: Optional[str] = None, timeout: Optional[float] = None):
        self.app_id = app_id if app_id is not None else Config.CASHFREE_APP_ID
        self.secret_key = secret_key if secret_key is not None else Config.CASHFREE_SECRET_KEY
        environment = (environment or Config.CASHFREE_ENVIRONMENT).lower()
        self.base_url = PRODUCTION_URL if environment == "production" else SANDBOX_URL
        self.timeout = aiohttp.ClientTimeout(total=timeout or Config.EXTERNAL_TIMEOUT_SECONDS)
        self.logger = logging.getLogger(__name__)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-version": Config.CASHFREE_API_VERSION,
            "x-client-id": self.app_id,
            "x-client-secret": self.secret_key,
        }

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        if not self.app_id or not self.secret_key:
            raise ExternalServiceError(self.service, "credentials not configured", retryable=False)

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method,
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=self._headers()
                ) as response:
                    data = await response.json(content_type=None)
                    if response.status >= 400:
                        message = (data or {}).get("message") if isinstance(data, dict) else None
                        self.logger.error(f"Cashfree {method} {path} failed: {response.status} {data}")
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

    async def create_order(self, order_id: str, amount: Decimal, currency: str,
                           customer: Dict[str, str], return_url: str, notify_url: str,
                           note: Optional[str] = None) -> Dict[str, str]:
        """Open a payment session; returns ``payment_session_id`` and ``order_id``"""
        data = await self._request("POST", "/orders", {
            "order_id": order_id,
            "order_amount": float(amount),
            "order_currency": currency,
            "customer_details": customer,
            "order_meta": {
                "return_url": return_url,
                "notify_url": notify_url,
            },
            "order_note": note or "",
        })
        session_id = data.get("payment_session_id") if isinstance(data, dict) else None
        if not session_id:
            raise ExternalServiceError(self.service, "no payment_session_id in response")
        return {
            "payment_session_id": session_id,
            "order_id": data.get("order_id") or order_id,
        }

    async def fetch_payments(self, order_id: str) -> List[Dict[str, Any]]:
        """Payments for an order, newest first"""
        data = await self._request("GET", f"/orders/{order_id}/payments")
        payments = data if isinstance(data, list) else (data or {}).get("data") or []
        return sorted(
            payments,
            key=lambda p: p.get("payment_completion_time") or p.get("payment_time") or "",
            reverse=True
        )

def verify_webhook_signature(secret: str, timestamp: Optional[str], raw_body: bytes,
                             signature: Optional[str]) -> bool:
    """Check ``x-webhook-signature`` = base64(HMAC-SHA256(timestamp + body))"""
    if not timestamp or not signature:
        return False
    message = timestamp.encode() + raw_body
    expected = base64.b64encode(
        hmac.new(secret.encode(), message, hashlib.sha256).digest()
    ).decode()
    return hmac.compare_digest(expected, signature)
