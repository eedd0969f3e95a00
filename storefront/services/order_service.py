# storefront/services/order_service.py
import logging
from typing import Any, Dict, List, Optional
from ..database.order_store import OrderStore
from ..errors import InvalidTransition, OrderNotFound
from ..models.order import (
    Order, OrderStatus, PaymentMethod, PaymentStatus, ShipmentInfo,
    can_transition, map_shipment_status
)
from ..utils.formatters import now_utc

class OrderService:
    """Order lookups and the order status state machine"""

    def __init__(self, db, store: Optional[OrderStore] = None):
        self.store = store or OrderStore(db)
        self.logger = logging.getLogger(__name__)

    async def get_order(self, order_id: int) -> Order:
        order = await self.store.get(order_id)
        if not order:
            raise OrderNotFound(order_id)
        return order

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        return await self.store.get_by_gateway_order_id(gateway_order_id)

    async def get_user_orders(self, user_id: str, limit: int = 10) -> List[Order]:
        return await self.store.list_for_user(user_id, limit)

    async def list_orders(self, status: Optional[OrderStatus] = None,
                          page: int = 1, limit: int = 20) -> Dict[str, Any]:
        limit = min(max(limit, 1), 100)
        page = max(page, 1)
        orders, total = await self.store.list_orders(status, limit, (page - 1) * limit)
        return {
            "orders": orders,
            "total": total,
            "current_page": page,
            "total_pages": (total + limit - 1) // limit,
        }

    async def update_status(self, order_id: int, status: OrderStatus) -> Order:
        """Admin transition: any forward move, or cancellation before delivery"""
        order = await self.get_order(order_id)
        if order.status == status:
            return order
        if not can_transition(order.status, status):
            raise InvalidTransition(order.status.value, status.value)

        updated = await self.store.update_status(order_id, status, expected=order.status)
        if not updated:
            # Someone moved the order between our read and write
            current = await self.get_order(order_id)
            raise InvalidTransition(current.status.value, status.value)

        self.logger.info(f"Order {order_id} status {order.status.value} -> {status.value}")
        return updated

    async def mark_paid(self, order: Order, payment_method: Optional[PaymentMethod] = None,
                        gateway_payment_id: Optional[str] = None) -> Order:
        if order.payment_status == PaymentStatus.PAID:
            return order
        updated = await self.store.update_payment(
            order.order_id, PaymentStatus.PAID,
            payment_method=payment_method,
            gateway_payment_id=gateway_payment_id
        )
        self.logger.info(f"Order {order.order_id} marked paid")
        return updated or order

    async def mark_payment_failed(self, order: Order) -> Order:
        """A failed or dropped payment cancels the order"""
        updated = await self.store.update_payment(
            order.order_id, PaymentStatus.FAILED, status=OrderStatus.CANCELLED
        )
        self.logger.info(f"Order {order.order_id} payment failed, order cancelled")
        return updated or order

    async def save_shipment(self, order: Order, shipment: ShipmentInfo,
                            status: Optional[OrderStatus] = None,
                            only_if_absent: bool = False) -> Optional[Order]:
        return await self.store.update_shipment(order.order_id, shipment, status, only_if_absent)

    async def apply_shipment_status(self, order: Order, carrier_status: Optional[str],
                                    awb: Optional[str] = None) -> Order:
        """Fold a carrier status update onto the order.

        The raw carrier string is always stored. The order status only moves
        when the string maps to a status that is a legal transition from the
        current one; anything else is informational.
        """
        shipment = order.shipment.model_copy()
        if carrier_status:
            shipment.current_status = carrier_status
        if awb and not shipment.awb_code:
            shipment.awb_code = awb
        shipment.last_updated_at = now_utc()

        target = map_shipment_status(carrier_status)
        new_status = None
        if target and can_transition(order.status, target):
            new_status = target
        elif target and target != order.status:
            self.logger.info(
                f"Order {order.order_id}: carrier status '{carrier_status}' ignored "
                f"for order in {order.status.value}"
            )

        updated = await self.store.update_shipment(order.order_id, shipment, new_status)
        if new_status:
            self.logger.info(
                f"Order {order.order_id} status {order.status.value} -> {new_status.value} "
                f"(carrier: {carrier_status})"
            )
        return updated or order
