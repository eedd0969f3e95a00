# storefront/handlers/coupon_handlers.py
from aiohttp import web
from ..errors import ValidationError
from .base_handler import BaseHandler

class CouponHandler(BaseHandler):
    """Customer coupon lookups"""

    async def my_coupon(self, request: web.Request) -> web.Response:
        user_id = self.require_user(request)
        coupon = await self.services.coupons.get_active_coupon(user_id)
        return self.ok(coupon=coupon)

    async def validate(self, request: web.Request) -> web.Response:
        """Read-only check; no usage is counted until checkout"""
        data = await self.read_json(request)
        code = data.get("code")
        if not code or not isinstance(code, str):
            raise ValidationError("Coupon code is required")

        coupon = await self.services.coupons.validate(code, self.user_id(request))
        return self.ok(
            message="Coupon is valid",
            code=coupon.code,
            discountPercentage=coupon.discount_percentage,
        )
