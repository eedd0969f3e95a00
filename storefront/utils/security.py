# storefront/utils/security.py
import hmac
import secrets
import string
import time
from typing import Optional
from ..config import Config

_ALPHABET = string.ascii_uppercase + string.digits

def random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))

def generate_order_id(prefix: Optional[str] = None) -> str:
    """Checkout reference such as ``XRF_1718000000000_K3J9QZ0AB``"""
    return f"{prefix or Config.ORDER_ID_PREFIX}_{int(time.time() * 1000)}_{random_suffix(9)}"

def generate_coupon_code(prefix: str = "GIFT") -> str:
    return f"{prefix}{random_suffix(6)}"

def keys_match(expected: str, received: Optional[str]) -> bool:
    """Constant-time comparison for shared-secret headers"""
    if not received:
        return False
    return hmac.compare_digest(expected.encode(), received.encode())
