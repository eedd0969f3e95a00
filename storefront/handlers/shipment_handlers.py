# storefront/handlers/shipment_handlers.py
from aiohttp import web
from ..config import Config
from ..errors import ValidationError, WebhookAuthError
from ..utils.security import keys_match
from .base_handler import BaseHandler

class ShipmentHandler(BaseHandler):
    """Admin shipment operations, tracking and the carrier webhook"""

    async def _order_id_from_body(self, request: web.Request):
        data = await self.read_json(request)
        try:
            return int(data.get("orderId") or data.get("order_id")), data
        except (TypeError, ValueError):
            raise ValidationError("Order ID is required")

    async def create(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        order_id, _ = await self._order_id_from_body(request)
        result = await self.services.shipments.create_shipment(order_id)
        message = "Shipment already exists" if result["already_exists"] else "Shipment created successfully"
        return self.ok(message=message, data=result)

    async def assign_courier(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        order_id, data = await self._order_id_from_body(request)
        courier_id = data.get("courierId") or data.get("courier_id")
        if courier_id is not None:
            try:
                courier_id = int(courier_id)
            except (TypeError, ValueError):
                raise ValidationError("Invalid courier ID")

        order = await self.services.shipments.assign_courier(order_id, courier_id)
        return self.ok(
            message="Courier assigned successfully",
            data={
                "awb_code": order.shipment.awb_code,
                "courier_name": order.shipment.courier_name,
            }
        )

    async def schedule_pickup(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        order_id, _ = await self._order_id_from_body(request)
        order = await self.services.shipments.schedule_pickup(order_id)
        return self.ok(message="Pickup scheduled successfully", order=order)

    async def cancel(self, request: web.Request) -> web.Response:
        self.require_admin(request)
        order_id, _ = await self._order_id_from_body(request)
        order = await self.services.shipments.cancel_shipment(order_id)
        return self.ok(message="Shipment cancelled successfully", order=order)

    async def track(self, request: web.Request) -> web.Response:
        tracking = await self.services.shipments.track_shipment(
            self.int_param(request, "order_id"),
            user_id=self.user_id(request),
            is_admin=self.is_admin(request)
        )
        return self.ok(tracking=tracking)

    async def webhook(self, request: web.Request) -> web.Response:
        """Carrier push; acknowledged first, processed in the background"""
        secret = Config.SHIPROCKET_WEBHOOK_SECRET
        if secret and not keys_match(secret, request.headers.get("x-api-key")):
            self.logger.warning("Shipment webhook rejected: bad or missing x-api-key")
            raise WebhookAuthError("Invalid webhook key")

        raw_body = await request.read()
        payload = self.webhook_payload(raw_body, "Shipment")
        if payload is None:
            return self.ok(message="Webhook acknowledged")

        self.services.background.spawn(
            self.services.shipments.handle_shipment_webhook(payload),
            name="shipment-webhook"
        )
        return self.ok(message="Webhook received")
