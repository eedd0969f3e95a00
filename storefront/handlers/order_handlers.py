# storefront/handlers/order_handlers.py
from aiohttp import web
from ..errors import AccessDenied
from .base_handler import BaseHandler

class OrderHandler(BaseHandler):
    """Customer-facing order views"""

    async def list_my_orders(self, request: web.Request) -> web.Response:
        user_id = self.require_user(request)
        limit = min(max(self.query_int(request, "limit", 10), 1), 100)
        orders = await self.services.orders.get_user_orders(user_id, limit)
        return self.ok(orders=orders)

    async def get_order(self, request: web.Request) -> web.Response:
        order = await self.services.orders.get_order(self.int_param(request, "order_id"))
        if not self.is_admin(request) and (not order.user_id or order.user_id != self.user_id(request)):
            raise AccessDenied("Access denied. You can only view your own orders")
        return self.ok(order=order)
