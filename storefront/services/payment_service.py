# storefront/services/payment_service.py
import logging
from typing import Any, Dict, Optional
from ..clients.cashfree import CashfreeClient
from ..clients.mailer import Mailer
from ..config import Config
from ..errors import SessionExpired
from ..models.checkout import ConfirmationResult, ConfirmationStatus, PendingCheckout
from ..models.coupon import Coupon
from ..models.events import PaymentEvent, PaymentEventType
from ..models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from ..utils.background import BackgroundTasks
from ..utils.formatters import format_date, format_datetime, format_price
from .checkout_service import CheckoutService
from .coupon_service import CouponService
from .inventory_service import InventoryService
from .order_service import OrderService
from .shipment_service import ShipmentService

PAYMENT_SUCCESS = "SUCCESS"

class PaymentService:
    """Turns a successful gateway payment into exactly one order"""

    def __init__(self, db, checkout: Optional[CheckoutService] = None,
                 orders: Optional[OrderService] = None,
                 inventory: Optional[InventoryService] = None,
                 coupons: Optional[CouponService] = None,
                 shipments: Optional[ShipmentService] = None,
                 gateway: Optional[CashfreeClient] = None,
                 mailer: Optional[Mailer] = None,
                 scheduler: Optional[BackgroundTasks] = None):
        self.inventory = inventory or InventoryService(db)
        self.coupons = coupons or CouponService(db)
        self.gateway = gateway or CashfreeClient()
        self.orders = orders or OrderService(db)
        self.checkout = checkout or CheckoutService(
            db, inventory=self.inventory, coupons=self.coupons,
            orders=self.orders, gateway=self.gateway
        )
        self.shipments = shipments or ShipmentService(db, orders=self.orders)
        self.mailer = mailer or Mailer()
        self.scheduler = scheduler
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _order_data(pending: PendingCheckout, payment: Dict[str, Any]) -> Dict[str, Any]:
        items = [
            OrderItem(
                product_id=line.product_id,
                name=line.name,
                quantity=line.quantity,
                price_per_unit=line.unit_price,
                sku=line.sku,
                weight=line.weight,
            ).model_dump(mode="json")
            for line in pending.items
        ]
        payment_id = payment.get("cf_payment_id")
        return {
            "user_id": pending.user_id,
            "customer": pending.customer.model_dump(mode="json"),
            "items": items,
            "subtotal": pending.subtotal,
            "shipping": pending.shipping,
            "tax": pending.tax,
            "discount": pending.discount,
            "total_amount": pending.total,
            "shipping_address": pending.shipping_address.model_dump(mode="json"),
            "billing_address": pending.billing_address.model_dump(mode="json"),
            "status": OrderStatus.PENDING.value,
            "payment_status": PaymentStatus.PAID.value,
            "payment_method": PaymentMethod.from_gateway(payment.get("payment_group")).value,
            "gateway_order_id": pending.gateway_order_id,
            "gateway_payment_id": str(payment_id) if payment_id is not None else None,
            "coupon_code": pending.applied_coupon.code if pending.applied_coupon else None,
        }

    async def confirm_payment(self, gateway_order_id: str) -> ConfirmationResult:
        """Create the order for a paid checkout, at most once per gateway order id.

        Safe to call from the client verify path and the webhook path at the
        same time: the unique gateway order id decides which call creates the
        order. A confirmation that failed after the order was stored is
        finished by the next call for the same gateway order id.
        """
        payments = await self.gateway.fetch_payments(gateway_order_id)
        latest = payments[0] if payments else None
        payment_status = latest.get("payment_status") if latest else None
        if payment_status != PAYMENT_SUCCESS:
            self.logger.info(f"Payment for {gateway_order_id} not successful: {payment_status}")
            return ConfirmationResult(
                status=ConfirmationStatus.NOT_PAID,
                payment_status=payment_status or "NO_PAYMENT"
            )

        existing = await self.orders.get_by_gateway_order_id(gateway_order_id)
        if existing:
            order = await self._resume(existing)
            return ConfirmationResult(status=ConfirmationStatus.ALREADY_CONFIRMED, order=order)

        pending = await self.checkout.get_pending(gateway_order_id)
        if not pending:
            self.logger.error(f"Paid checkout {gateway_order_id} has no pending snapshot")
            raise SessionExpired(gateway_order_id)

        order, created = await self.orders.store.create_if_absent(self._order_data(pending, latest))
        if not created:
            self.logger.info(f"Order for {gateway_order_id} created concurrently")
            order = await self._resume(order)
            return ConfirmationResult(status=ConfirmationStatus.ALREADY_CONFIRMED, order=order)

        self.logger.info(f"Order {order.order_id} created for {gateway_order_id}, total {order.total_amount}")
        order = await self._complete(order)
        return ConfirmationResult(status=ConfirmationStatus.CONFIRMED, order=order)

    async def _resume(self, order: Order) -> Order:
        if order.confirmation_completed:
            return order
        self.logger.warning(f"Order {order.order_id} confirmation incomplete, finishing it")
        return await self._complete(order)

    async def _complete(self, order: Order) -> Order:
        """Take stock, settle the coupon and drop the snapshot; every step may run again.

        Mail, reward coupon and shipment run only for the call that marks the
        confirmation completed.
        """
        await self.inventory.commit_decrement(order.items, order_id=order.order_id)

        if order.coupon_code:
            await self.coupons.finalize(order.coupon_code)

        await self.checkout.discard(order.gateway_order_id)

        if not await self.orders.store.mark_confirmation_completed(order.order_id):
            return order
        order = order.model_copy(update={"confirmation_completed": True})

        if order.total_amount >= Config.REWARD_THRESHOLD:
            await self._issue_reward(order)

        await self._send_confirmation(order)
        self._schedule_shipment(order)
        return order

    async def _issue_reward(self, order: Order) -> Optional[Coupon]:
        try:
            coupon = await self.coupons.issue_reward_coupon(order.user_id, order.order_id)
        except Exception as e:
            self.logger.error(f"Reward coupon for order {order.order_id} failed: {e}", exc_info=True)
            return None
        if not coupon:
            return None

        try:
            await self.mailer.send(
                to=order.customer.email,
                subject="You've Earned a Discount Coupon! - XRoboFly",
                template="coupon",
                context={
                    "couponCode": coupon.code,
                    "discountPercentage": coupon.discount_percentage,
                    "expiryDate": format_date(coupon.expires_at),
                    "orderId": order.order_id,
                }
            )
        except Exception as e:
            self.logger.error(f"Coupon email for order {order.order_id} failed: {e}", exc_info=True)
        return coupon

    async def _send_confirmation(self, order: Order):
        try:
            await self.mailer.send(
                to=order.customer.email,
                subject="Order Confirmation - XRoboFly",
                template="orderConfirmation",
                context={
                    "customerName": order.customer.name,
                    "orderId": order.order_id,
                    "orderDate": format_datetime(order.created_at),
                    "products": [
                        {
                            "name": item.name,
                            "quantity": item.quantity,
                            "price": format_price(item.price_per_unit),
                        }
                        for item in order.items
                    ],
                    "subtotal": format_price(order.subtotal),
                    "shipping": format_price(order.shipping),
                    "tax": format_price(order.tax),
                    "discount": format_price(order.discount),
                    "totalAmount": format_price(order.total_amount),
                    "shippingAddress": order.shipping_address.model_dump(),
                }
            )
        except Exception as e:
            self.logger.error(f"Confirmation email for order {order.order_id} failed: {e}", exc_info=True)

    async def _create_shipment(self, order_id: int):
        try:
            await self.shipments.create_shipment(order_id)
        except Exception as e:
            self.logger.error(f"Shipment creation for order {order_id} failed: {e}", exc_info=True)

    def _schedule_shipment(self, order: Order):
        """Shipment creation runs after the confirmation returns"""
        if self.scheduler is None:
            self.logger.warning(f"No background scheduler, shipment for order {order.order_id} not created")
            return
        self.scheduler.spawn(self._create_shipment(order.order_id), name=f"shipment-{order.order_id}")

    async def handle_payment_webhook(self, event: PaymentEvent) -> Optional[Order]:
        """Apply a decoded gateway webhook; never raises"""
        try:
            if event.type == PaymentEventType.SUCCESS:
                result = await self.confirm_payment(event.order_id)
                order = result.order
                if order and order.payment_status != PaymentStatus.PAID:
                    order = await self.orders.mark_paid(
                        order,
                        PaymentMethod.from_gateway(event.payment_group),
                        event.payment_id
                    )
                self.logger.info(f"Payment webhook for {event.order_id}: {result.status.value}")
                return order

            if event.type in (PaymentEventType.FAILED, PaymentEventType.USER_DROPPED):
                order = await self.orders.get_by_gateway_order_id(event.order_id)
                if order and order.payment_status != PaymentStatus.PAID:
                    return await self.orders.mark_payment_failed(order)
                self.logger.info(f"Payment {event.type.value} for {event.order_id}, no unpaid order")
                return order

            self.logger.info(f"Unhandled payment webhook type {event.type} for {event.order_id}")
            return None
        except Exception as e:
            self.logger.error(f"Payment webhook processing error for {event.order_id}: {e}", exc_info=True)
            return None
