# storefront/services/coupon_service.py
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
from ..config import Config
from ..database.coupon_store import CouponStore
from ..errors import (
    CouponConflict, CouponExpired, CouponLimitExceeded, CouponNotFound, CouponNotOwned
)
from ..models.coupon import Coupon, CouponCreate, CouponUpdate
from ..utils.formatters import now_utc, round_amount
from ..utils.security import generate_coupon_code

# Attempts at finding an unused reward code before giving up
REWARD_CODE_ATTEMPTS = 5

class CouponService:
    """Coupon validation, redemption, reward issuance and admin management"""

    def __init__(self, db, store: Optional[CouponStore] = None,
                 clock: Callable = now_utc):
        self.store = store or CouponStore(db)
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def normalize_code(code: str) -> str:
        return (code or "").strip().upper()

    async def validate(self, code: str, user_id: Optional[str]) -> Coupon:
        """Return the coupon if ``user_id`` may use it right now.

        An expired coupon still flagged active is deactivated on the spot.
        """
        code = self.normalize_code(code)
        coupon = await self.store.get_by_code(code) if code else None
        if not coupon or not coupon.is_active:
            raise CouponNotFound(code)

        if coupon.is_expired(self.clock()):
            await self.store.deactivate(coupon.coupon_id)
            self.logger.info(f"Coupon {code} expired, deactivated")
            raise CouponExpired(code)

        if coupon.user_id and coupon.user_id != user_id:
            raise CouponNotOwned(code)

        if coupon.is_exhausted:
            raise CouponLimitExceeded(code)

        return coupon

    @staticmethod
    def apply_to_total(coupon: Coupon, subtotal: Decimal) -> Decimal:
        return round_amount(Decimal(subtotal) * coupon.discount_percentage / 100)

    async def redeem(self, code: str, user_id: Optional[str], checkout_id: str) -> Coupon:
        """Validate and count one use for ``checkout_id``; repeating the call counts nothing"""
        coupon = await self.validate(code, user_id)
        redeemed, counted = await self.store.redeem(coupon.code, checkout_id, user_id)
        if redeemed is None:
            # Lost the race for the last use, or expired in between
            await self.validate(coupon.code, user_id)
            raise CouponLimitExceeded(coupon.code)

        if counted:
            self.logger.info(
                f"Coupon {coupon.code} redeemed for checkout {checkout_id} "
                f"({redeemed.usage_count}/{redeemed.usage_limit or 'unlimited'})"
            )
        return redeemed

    async def release(self, code: str, checkout_id: str) -> bool:
        """Give back a use counted for a checkout that will never complete"""
        released = await self.store.release(self.normalize_code(code), checkout_id)
        if released:
            self.logger.info(f"Coupon {code} usage released for checkout {checkout_id}")
        return released

    async def finalize(self, code: str) -> None:
        """Called once the redeeming order is paid; retires coupons that hit their limit"""
        if await self.store.deactivate_if_exhausted(self.normalize_code(code)):
            self.logger.info(f"Coupon {code} reached its usage limit, deactivated")

    async def issue_reward_coupon(self, user_id: Optional[str],
                                  trigger_order_id: int) -> Optional[Coupon]:
        """Issue the high-value-order reward, superseding any active coupon the user holds"""
        if not user_id:
            return None

        expires_at = self.clock() + timedelta(days=Config.REWARD_VALIDITY_DAYS)
        for _ in range(REWARD_CODE_ATTEMPTS):
            data = CouponCreate(
                code=generate_coupon_code(),
                discount_percentage=Config.REWARD_DISCOUNT_PERCENTAGE,
                expires_at=expires_at,
                user_id=user_id,
                usage_limit=1,
            )
            try:
                coupon = await self.store.replace_active_for_user(user_id, data, trigger_order_id)
            except CouponConflict as e:
                self.logger.warning(f"Reward coupon insert conflicted ({e.message}), retrying")
                continue
            self.logger.info(f"Reward coupon {coupon.code} issued to {user_id} for order {trigger_order_id}")
            return coupon

        raise CouponConflict("Could not generate a unique coupon code")

    async def get_active_coupon(self, user_id: str) -> Optional[Coupon]:
        coupon = await self.store.get_active_for_user(user_id)
        if coupon and coupon.is_expired(self.clock()):
            await self.store.deactivate(coupon.coupon_id)
            return None
        return coupon

    async def create_coupon(self, data: CouponCreate) -> Coupon:
        if await self.store.get_by_code(data.code):
            raise CouponConflict("Coupon code already exists")
        if data.user_id and data.is_active and await self.store.get_active_for_user(data.user_id):
            raise CouponConflict("User already has an active coupon")
        return await self.store.insert(data)

    async def update_coupon(self, coupon_id: int, data: CouponUpdate) -> Coupon:
        coupon = await self.store.update(coupon_id, data.model_dump(exclude_unset=True))
        if not coupon:
            raise CouponNotFound(str(coupon_id), f"Coupon not found: {coupon_id}")
        return coupon

    async def deactivate_coupon(self, coupon_id: int) -> None:
        if not await self.store.deactivate(coupon_id):
            raise CouponNotFound(str(coupon_id), f"Coupon not found: {coupon_id}")

    async def list_coupons(self, active: Optional[bool] = None, user_id: Optional[str] = None,
                           page: int = 1, limit: int = 20) -> Dict[str, Any]:
        limit = min(max(limit, 1), 100)
        page = max(page, 1)
        coupons, total = await self.store.list_coupons(active, user_id, limit, (page - 1) * limit)
        return {
            "coupons": coupons,
            "total": total,
            "current_page": page,
            "total_pages": (total + limit - 1) // limit,
        }
