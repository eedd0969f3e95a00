# storefront/services/checkout_service.py
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Callable, List, Optional
from ..clients.cashfree import CashfreeClient
from ..config import Config
from ..database.checkout_store import CheckoutStore
from ..errors import ValidationError
from ..models.checkout import CheckoutSession, CheckoutTotals, PendingCheckout
from ..models.coupon import AppliedCoupon
from ..models.order import Address, Customer
from ..models.product import CartLine, PricedLine
from ..utils.formatters import now_utc, round_amount
from ..utils.security import generate_order_id
from .coupon_service import CouponService
from .inventory_service import InventoryService
from .order_service import OrderService

def compute_totals(lines: List[PricedLine], discount: Decimal = Decimal(0)) -> CheckoutTotals:
    """Subtotal, shipping and tax from server-priced lines"""
    subtotal = sum((line.total_price for line in lines), Decimal(0))
    shipping = Decimal(0) if subtotal > Config.FREE_SHIPPING_THRESHOLD else Config.FLAT_SHIPPING_FEE
    tax = round_amount(subtotal * Config.TAX_RATE)
    return CheckoutTotals(subtotal=subtotal, shipping=shipping, tax=tax, discount=discount)

class CheckoutService:
    """Builds priced cart snapshots and opens payment sessions for them"""

    def __init__(self, db, inventory: Optional[InventoryService] = None,
                 coupons: Optional[CouponService] = None,
                 store: Optional[CheckoutStore] = None,
                 orders: Optional[OrderService] = None,
                 gateway: Optional[CashfreeClient] = None,
                 clock: Callable = now_utc):
        self.inventory = inventory or InventoryService(db)
        self.coupons = coupons or CouponService(db)
        self.store = store or CheckoutStore(db)
        self.orders = orders or OrderService(db)
        self.gateway = gateway or CashfreeClient()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _validate_request(items: List[CartLine], customer: Optional[Customer],
                          shipping_address: Optional[Address]) -> None:
        if not items:
            raise ValidationError("Cart is empty")
        for item in items:
            if not 1 <= item.quantity <= Config.MAX_LINE_QUANTITY:
                raise ValidationError(
                    f"Quantity for product {item.product_id} must be between 1 and {Config.MAX_LINE_QUANTITY}"
                )
        if not customer or not (customer.name and customer.email and customer.phone):
            raise ValidationError("Customer name, email and phone are required")
        if not shipping_address:
            raise ValidationError("Shipping address is required")

    async def create_session(self, user_id: Optional[str], items: List[CartLine],
                             customer: Customer, shipping_address: Address,
                             billing_address: Optional[Address] = None,
                             coupon_code: Optional[str] = None) -> CheckoutSession:
        """Price the cart server-side, open a gateway payment session and keep the snapshot.

        Client-supplied prices and totals are never read. A coupon use
        counted here is given back if a later step fails.
        """
        self._validate_request(items, customer, shipping_address)

        lines = await self.inventory.reserve_and_price_all(items)
        totals = compute_totals(lines)

        # Checkout reference; also keys the coupon redemption
        gateway_order_id = generate_order_id()

        applied_coupon = None
        if coupon_code:
            coupon = await self.coupons.redeem(coupon_code, user_id, gateway_order_id)
            totals.discount = self.coupons.apply_to_total(coupon, totals.subtotal)
            applied_coupon = AppliedCoupon(
                code=coupon.code,
                discount_percentage=coupon.discount_percentage,
                discount_amount=totals.discount,
            )

        try:
            if totals.total <= 0:
                raise ValidationError("Order total must be greater than zero")

            session = await self.gateway.create_order(
                order_id=gateway_order_id,
                amount=totals.total,
                currency=Config.CURRENCY,
                customer={
                    "customer_id": user_id or f"guest_{int(self.clock().timestamp() * 1000)}",
                    "customer_name": customer.name,
                    "customer_email": customer.email,
                    "customer_phone": customer.phone,
                },
                return_url=f"{Config.FRONTEND_URL}/payment-success?order_id={{order_id}}",
                notify_url=f"{Config.BACKEND_URL}/api/payment/webhook",
                note=f"XRoboFly Order - {len(lines)} items",
            )

            created_at = self.clock()
            pending = PendingCheckout(
                gateway_order_id=gateway_order_id,
                user_id=user_id,
                customer=customer,
                shipping_address=shipping_address,
                billing_address=billing_address or shipping_address,
                items=lines,
                subtotal=totals.subtotal,
                shipping=totals.shipping,
                tax=totals.tax,
                discount=totals.discount,
                total=totals.total,
                applied_coupon=applied_coupon,
                payment_session_id=session["payment_session_id"],
                created_at=created_at,
                expires_at=created_at + timedelta(seconds=Config.CHECKOUT_RETENTION_SECONDS),
            )
            await self.store.save(pending)
        except Exception:
            if applied_coupon:
                await self.coupons.release(applied_coupon.code, gateway_order_id)
            raise

        self.logger.info(f"Checkout session {gateway_order_id} created, total {totals.total}")
        return CheckoutSession(
            payment_session_id=session["payment_session_id"],
            order_id=gateway_order_id,
            order_amount=totals.total,
        )

    async def get_pending(self, gateway_order_id: str) -> Optional[PendingCheckout]:
        pending = await self.store.get(gateway_order_id)
        if pending and pending.is_expired(self.clock()):
            return None
        return pending

    async def discard(self, gateway_order_id: str) -> None:
        await self.store.delete(gateway_order_id)

    async def sweep_expired(self) -> int:
        """Drop snapshots past retention and give back their coupon uses.

        A snapshot whose payment already produced an order keeps its coupon
        use; the order owns it.
        """
        expired = await self.store.pop_expired()
        for pending in expired:
            if not pending.applied_coupon:
                continue
            if await self.orders.get_by_gateway_order_id(pending.gateway_order_id):
                self.logger.info(
                    f"Expired checkout {pending.gateway_order_id} has an order, keeping its coupon use"
                )
                continue
            await self.coupons.release(pending.applied_coupon.code, pending.gateway_order_id)
        if expired:
            self.logger.info(f"Swept {len(expired)} expired checkout session(s)")
        return len(expired)
