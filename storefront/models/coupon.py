# storefront/models/coupon.py
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, field_validator
from .base import TimeStampedModel

class CouponSource(str, Enum):
    ADMIN = "admin"
    REWARD = "reward"

class Coupon(TimeStampedModel):
    """Percentage discount coupon"""
    coupon_id: int
    code: str
    discount_percentage: int
    expires_at: datetime
    user_id: Optional[str] = None  # None = usable by anyone
    is_active: bool = True
    usage_count: int = 0
    usage_limit: Optional[int] = None
    source: CouponSource = CouponSource.ADMIN
    source_order_id: Optional[int] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    @property
    def is_exhausted(self) -> bool:
        return self.usage_limit is not None and self.usage_count >= self.usage_limit

class AppliedCoupon(BaseModel):
    """Coupon snapshot frozen into a pending checkout"""
    code: str
    discount_percentage: int
    discount_amount: Decimal

class CouponCreate(BaseModel):
    code: str
    discount_percentage: int
    expires_at: datetime
    user_id: Optional[str] = None
    usage_limit: Optional[int] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("code must not be empty")
        return value

    @field_validator("discount_percentage")
    @classmethod
    def check_percentage(cls, value: int) -> int:
        if not 1 <= value <= 100:
            raise ValueError("discount_percentage must be between 1 and 100")
        return value

class CouponUpdate(BaseModel):
    discount_percentage: Optional[int] = None
    expires_at: Optional[datetime] = None
    is_active: Optional[bool] = None
    usage_limit: Optional[int] = None

    @field_validator("discount_percentage")
    @classmethod
    def check_percentage(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and not 1 <= value <= 100:
            raise ValueError("discount_percentage must be between 1 and 100")
        return value
