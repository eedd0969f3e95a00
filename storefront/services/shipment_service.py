# storefront/services/shipment_service.py
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
from ..clients.shiprocket import ShiprocketClient
from ..config import Config
from ..errors import AccessDenied, ShipmentCreationInProgress, ShipmentError
from ..models.events import ShipmentEvent, decode_shipment_event
from ..models.order import Order, OrderStatus, can_transition
from ..utils.formatters import now_utc
from .order_service import OrderService

def total_weight(order: Order) -> Decimal:
    """Shipment weight in kg; items without a weight count as the default"""
    return sum(
        ((item.weight or Config.DEFAULT_ITEM_WEIGHT) * item.quantity for item in order.items),
        Decimal(0)
    )

def build_shipment_request(order: Order) -> Dict[str, Any]:
    """Carrier-agnostic shipment request for a paid order"""
    shipping = order.shipping_address.model_dump()
    billing = order.billing_address.model_dump()
    return {
        "order_id": order.gateway_order_id,
        "order_date": order.created_at.strftime("%Y-%m-%d"),
        "email": order.customer.email,
        "billing_address": billing,
        "shipping_address": shipping,
        "shipping_is_billing": billing == shipping,
        "items": [
            {
                "name": item.name,
                "product_id": item.product_id,
                "sku": item.sku,
                "quantity": item.quantity,
                "price": item.price_per_unit,
            }
            for item in order.items
        ],
        "payment_method": "Prepaid",
        "shipping_charges": 0,
        "discount": 0,
        "sub_total": order.total_amount,
        "weight": total_weight(order),
        "dimensions": {"length": 10, "breadth": 10, "height": 10},
    }

class ShipmentService:
    """Pushes paid orders to the shipping carrier and folds carrier updates back"""

    def __init__(self, db, orders: Optional[OrderService] = None,
                 carrier: Optional[ShiprocketClient] = None,
                 clock: Callable = now_utc):
        self.orders = orders or OrderService(db)
        self.carrier = carrier or ShiprocketClient()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _summary(order: Order, already_exists: bool) -> Dict[str, Any]:
        return {
            "already_exists": already_exists,
            "order_id": order.order_id,
            "carrier_order_id": order.shipment.carrier_order_id,
            "shipment_id": order.shipment.shipment_id,
            "status": order.shipment.status,
        }

    async def create_shipment(self, order_id: int) -> Dict[str, Any]:
        """Create the carrier shipment once; later calls return the stored identifiers.

        The order is claimed before the carrier is called, so two callers
        cannot both create a carrier shipment. A claim older than
        ``SHIPMENT_CLAIM_SECONDS`` is treated as abandoned.
        """
        order = await self.orders.get_order(order_id)
        if order.has_shipment:
            return self._summary(order, already_exists=True)
        if order.status == OrderStatus.CANCELLED:
            raise ShipmentError("Cannot ship a cancelled order")

        now = self.clock()
        stale_before = now - timedelta(seconds=Config.SHIPMENT_CLAIM_SECONDS)
        if not await self.orders.store.claim_shipment(order_id, now, stale_before):
            order = await self.orders.get_order(order_id)
            if order.has_shipment:
                return self._summary(order, already_exists=True)
            raise ShipmentCreationInProgress(order_id)

        try:
            result = await self.carrier.create_order(build_shipment_request(order))
        except Exception:
            await self.orders.store.release_shipment_claim(order_id)
            raise

        shipment = order.shipment.model_copy(update={
            "carrier_order_id": result.get("carrier_order_id"),
            "shipment_id": result.get("shipment_id"),
            "status": result.get("status"),
            "status_code": result.get("status_code"),
            "created_at": self.clock(),
        })
        updated = await self.orders.save_shipment(order, shipment, only_if_absent=True)
        if not updated:
            self.logger.warning(
                f"Order {order_id} already had a shipment when storing carrier shipment "
                f"{shipment.shipment_id}; keeping the stored one"
            )
            return self._summary(await self.orders.get_order(order_id), already_exists=True)

        self.logger.info(f"Shipment {shipment.shipment_id} created for order {order_id}")
        return self._summary(updated, already_exists=False)

    async def assign_courier(self, order_id: int, courier_id: Optional[int] = None) -> Order:
        order = await self.orders.get_order(order_id)
        if not order.has_shipment:
            raise ShipmentError("Order has no shipment yet")

        if courier_id is None:
            couriers = await self.carrier.check_serviceability(
                Config.SHIPROCKET_PICKUP_PINCODE,
                order.shipping_address.pincode,
                total_weight(order)
            )
            if not couriers:
                raise ShipmentError("No courier service available for this location")
            courier_id = couriers[0]["courier_company_id"]

        result = await self.carrier.assign_awb(order.shipment.shipment_id, courier_id)
        shipment = order.shipment.model_copy(update={
            "awb_code": result.get("awb_code"),
            "courier_id": courier_id,
            "courier_name": result.get("courier_name"),
            "awb_assigned_at": self.clock(),
        })
        self.logger.info(f"Courier {courier_id} assigned to order {order_id}, AWB {shipment.awb_code}")
        return await self.orders.save_shipment(order, shipment) or order

    async def schedule_pickup(self, order_id: int) -> Order:
        order = await self.orders.get_order(order_id)
        if not order.has_shipment:
            raise ShipmentError("Order has no shipment yet")
        if not order.shipment.awb_code:
            raise ShipmentError("AWB not assigned. Please assign courier first.")

        await self.carrier.request_pickup(order.shipment.shipment_id)
        shipment = order.shipment.model_copy(update={
            "pickup_scheduled": True,
            "pickup_scheduled_at": self.clock(),
        })
        status = OrderStatus.PROCESSING if can_transition(order.status, OrderStatus.PROCESSING) else None
        self.logger.info(f"Pickup scheduled for order {order_id}")
        return await self.orders.save_shipment(order, shipment, status) or order

    async def track_shipment(self, order_id: int, user_id: Optional[str] = None,
                             is_admin: bool = False) -> Dict[str, Any]:
        order = await self.orders.get_order(order_id)
        if not is_admin and order.user_id != user_id:
            raise AccessDenied("Access denied. You can only track your own orders")
        if not order.has_shipment:
            raise ShipmentError("Shipment not found for this order")
        return await self.carrier.track_shipment(order.shipment.shipment_id)

    async def cancel_shipment(self, order_id: int) -> Order:
        order = await self.orders.get_order(order_id)
        if not order.shipment.awb_code:
            raise ShipmentError("Order or AWB not found")
        if not can_transition(order.status, OrderStatus.CANCELLED):
            raise ShipmentError(f"Cannot cancel a {order.status.value} order")

        await self.carrier.cancel_shipment(order.shipment.awb_code)
        shipment = order.shipment.model_copy(update={
            "cancelled": True,
            "cancelled_at": self.clock(),
        })
        self.logger.info(f"Shipment for order {order_id} cancelled")
        return await self.orders.save_shipment(order, shipment, OrderStatus.CANCELLED) or order

    async def resolve_order(self, event: ShipmentEvent) -> Optional[Order]:
        """Find the order a carrier event is about: shipment id, then order id, then AWB"""
        store = self.orders.store
        if event.shipment_id:
            order = await store.get_by_shipment_field("shipment_id", event.shipment_id)
            if order:
                return order
        if event.order_id:
            order = await store.get_by_shipment_field("carrier_order_id", event.order_id)
            if order:
                return order
            order = await store.get_by_gateway_order_id(event.order_id)
            if order:
                return order
        if event.awb:
            return await store.get_by_shipment_field("awb_code", event.awb)
        return None

    async def handle_shipment_webhook(self, payload: Any) -> Optional[Order]:
        """Apply a carrier webhook; never raises"""
        try:
            event = decode_shipment_event(payload)
            if not event:
                self.logger.warning(f"Shipment webhook ignored, unrecognized payload: {payload!r}")
                return None

            order = await self.resolve_order(event)
            if not order:
                self.logger.warning(
                    f"Order not found for shipment webhook: shipment_id={event.shipment_id} "
                    f"order_id={event.order_id} awb={event.awb}"
                )
                return None

            updated = await self.orders.apply_shipment_status(order, event.status, event.awb)
            self.logger.info(f"Order {order.order_id} shipment status: {event.status}")
            return updated
        except Exception as e:
            self.logger.error(f"Shipment webhook processing error: {e}", exc_info=True)
            return None
