# storefront/handlers/admin_handlers.py
from aiohttp import web
from ..errors import ValidationError
from ..models.coupon import CouponCreate, CouponUpdate
from ..models.order import OrderStatus
from .base_handler import BaseHandler

class AdminHandler(BaseHandler):
    """Admin-only order, stock and coupon management"""

    async def list_orders(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        status = request.query.get("status")
        try:
            status = OrderStatus(status) if status else None
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")

        result = await self.services.orders.list_orders(
            status,
            page=self.query_int(request, "page", 1),
            limit=self.query_int(request, "limit", 20)
        )
        return self.ok(**result)

    async def update_order_status(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        order_id = self.int_param(request, "order_id")
        data = await self.read_json(request)
        try:
            status = OrderStatus(data.get("status"))
        except ValueError:
            raise ValidationError(f"Invalid status: {data.get('status')}")

        order = await self.services.orders.update_status(order_id, status)
        return self.ok(message="Order status updated", order=order)

    async def restock(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        product_id = self.int_param(request, "product_id")
        data = await self.read_json(request)
        quantity = data.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise ValidationError("quantity must be an integer")

        product = await self.services.inventory.restock(product_id, quantity)
        return self.ok(product=product)

    async def set_availability(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        product_id = self.int_param(request, "product_id")
        data = await self.read_json(request)
        available = data.get("is_available")
        if not isinstance(available, bool):
            raise ValidationError("is_available must be true or false")

        product = await self.services.inventory.set_availability(product_id, available)
        return self.ok(product=product)

    async def create_coupon(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        data = self.parse(CouponCreate, await self.read_json(request))
        coupon = await self.services.coupons.create_coupon(data)
        return self.ok(status=201, message="Coupon created successfully", coupon=coupon)

    async def list_coupons(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        active = request.query.get("active")
        if active is not None:
            active = active.lower() in ("1", "true", "yes")

        result = await self.services.coupons.list_coupons(
            active=active,
            user_id=request.query.get("user_id") or None,
            page=self.query_int(request, "page", 1),
            limit=self.query_int(request, "limit", 20)
        )
        return self.ok(**result)

    async def update_coupon(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        coupon_id = self.int_param(request, "coupon_id")
        data = self.parse(CouponUpdate, await self.read_json(request))
        coupon = await self.services.coupons.update_coupon(coupon_id, data)
        return self.ok(message="Coupon updated successfully", coupon=coupon)

    async def deactivate_coupon(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        await self.services.coupons.deactivate_coupon(self.int_param(request, "coupon_id"))
        return self.ok(message="Coupon deactivated")
