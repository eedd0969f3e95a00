"""Pytest fixtures for storefront tests.

The stores below keep rows in memory and honour the same contracts as the
PostgreSQL stores: clamped stock decrements taken once per order line, a
unique gateway order id, one redemption per (coupon, checkout) and one active
coupon per user. Calls that stand for a database or carrier round trip yield
to the event loop first, so concurrent callers interleave there.
"""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from storefront.app import Services, create_app
from storefront.config import Config
from storefront.errors import CouponConflict, ExternalServiceError
from storefront.models.checkout import PendingCheckout
from storefront.models.coupon import Coupon, CouponCreate, CouponSource
from storefront.models.order import Address, Customer, Order, ShipmentInfo
from storefront.models.product import CartLine, Product


class Clock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeProductStore:
    def __init__(self, clock: Clock):
        self.clock = clock
        self.rows: Dict[int, Product] = {}
        self.commits: set = set()

    def add(self, product_id: int, name: str, price, stock: int,
            is_available: bool = True, sku: Optional[str] = None, weight=None) -> Product:
        product = Product(
            product_id=product_id,
            name=name,
            price=Decimal(price),
            stock=stock,
            is_available=is_available,
            sku=sku,
            weight=Decimal(weight) if weight is not None else None,
            created_at=self.clock(),
        )
        self.rows[product_id] = product
        return product

    async def get_product(self, product_id):
        product = self.rows.get(product_id)
        return product.model_copy() if product else None

    async def get_products(self, product_ids):
        return {pid: self.rows[pid].model_copy() for pid in product_ids if pid in self.rows}

    async def decrement_stock(self, product_id, quantity, order_id=None, line_no=0):
        await asyncio.sleep(0)
        if order_id is not None:
            if (order_id, line_no) in self.commits:
                product = self.rows.get(product_id)
                return (product.model_copy(), None) if product else None
            self.commits.add((order_id, line_no))
        product = self.rows.get(product_id)
        if not product:
            return None
        previous = product.stock
        product.stock = max(previous - quantity, 0)
        product.sold_count += quantity
        if product.stock == 0:
            product.is_available = False
        return product.model_copy(), previous

    async def increase_stock(self, product_id, delta):
        product = self.rows.get(product_id)
        if not product:
            return None
        product.stock += delta
        if product.stock > 0:
            product.is_available = True
        return product.model_copy()

    async def set_availability(self, product_id, available):
        product = self.rows.get(product_id)
        if not product:
            return None
        product.is_available = available and product.stock > 0
        return product.model_copy()


class FakeCouponStore:
    def __init__(self, clock: Clock):
        self.clock = clock
        self.rows: Dict[int, Coupon] = {}
        self.redemptions: Dict[tuple, Optional[str]] = {}
        self._ids = itertools.count(1)

    def _by_code(self, code) -> Optional[Coupon]:
        return next((c for c in self.rows.values() if c.code == code), None)

    def _check_unique(self, code, user_id, is_active, ignore_id=None):
        for coupon in self.rows.values():
            if coupon.coupon_id == ignore_id:
                continue
            if coupon.code == code:
                raise CouponConflict("Coupon code already exists")
            if user_id and is_active and coupon.is_active and coupon.user_id == user_id:
                raise CouponConflict("User already has an active coupon")

    def _insert(self, data: CouponCreate, source, source_order_id):
        self._check_unique(data.code, data.user_id, data.is_active)
        coupon = Coupon(
            coupon_id=next(self._ids),
            code=data.code,
            discount_percentage=data.discount_percentage,
            expires_at=data.expires_at,
            user_id=data.user_id,
            is_active=data.is_active,
            usage_limit=data.usage_limit,
            source=source,
            source_order_id=source_order_id,
            created_at=self.clock(),
        )
        self.rows[coupon.coupon_id] = coupon
        return coupon.model_copy()

    async def get_by_code(self, code):
        coupon = self._by_code(code)
        return coupon.model_copy() if coupon else None

    async def get_by_id(self, coupon_id):
        coupon = self.rows.get(coupon_id)
        return coupon.model_copy() if coupon else None

    async def get_active_for_user(self, user_id):
        coupon = next(
            (c for c in self.rows.values() if c.user_id == user_id and c.is_active), None
        )
        return coupon.model_copy() if coupon else None

    async def insert(self, data, source=CouponSource.ADMIN, source_order_id=None):
        return self._insert(data, source, source_order_id)

    async def replace_active_for_user(self, user_id, data, source_order_id=None):
        previous = [c for c in self.rows.values() if c.user_id == user_id and c.is_active]
        for coupon in previous:
            coupon.is_active = False
        try:
            return self._insert(data, CouponSource.REWARD, source_order_id)
        except CouponConflict:
            for coupon in previous:
                coupon.is_active = True
            raise

    async def update(self, coupon_id, fields):
        coupon = self.rows.get(coupon_id)
        if not coupon:
            return None
        if fields.get("usage_limit") is not None and fields["usage_limit"] < coupon.usage_count:
            raise CouponConflict("usage_limit cannot be lower than the current usage count")
        if fields.get("is_active"):
            self._check_unique(None, coupon.user_id, True, ignore_id=coupon_id)
        for key, value in fields.items():
            setattr(coupon, key, value)
        return coupon.model_copy()

    async def deactivate(self, coupon_id):
        coupon = self.rows.get(coupon_id)
        if not coupon:
            return False
        coupon.is_active = False
        return True

    async def list_coupons(self, active=None, user_id=None, limit=20, offset=0):
        rows = [
            c for c in sorted(self.rows.values(), key=lambda c: c.coupon_id, reverse=True)
            if (active is None or c.is_active == active) and (not user_id or c.user_id == user_id)
        ]
        return [c.model_copy() for c in rows[offset:offset + limit]], len(rows)

    async def redeem(self, code, checkout_id, user_id):
        await asyncio.sleep(0)
        coupon = self._by_code(code)
        if (code, checkout_id) in self.redemptions:
            return coupon.model_copy(), False
        if (
            not coupon
            or not coupon.is_active
            or coupon.expires_at <= self.clock()
            or coupon.is_exhausted
        ):
            return None, False
        self.redemptions[(code, checkout_id)] = user_id
        coupon.usage_count += 1
        return coupon.model_copy(), True

    async def release(self, code, checkout_id):
        if (code, checkout_id) not in self.redemptions:
            return False
        del self.redemptions[(code, checkout_id)]
        coupon = self._by_code(code)
        coupon.usage_count = max(coupon.usage_count - 1, 0)
        return True

    async def deactivate_if_exhausted(self, code):
        coupon = self._by_code(code)
        if coupon and coupon.is_active and coupon.is_exhausted:
            coupon.is_active = False
            return True
        return False


class FakeCheckoutStore:
    def __init__(self, clock: Clock):
        self.clock = clock
        self.rows: Dict[str, Dict[str, Any]] = {}

    async def save(self, pending):
        self.rows[pending.gateway_order_id] = pending.model_dump(mode="json")

    async def get(self, gateway_order_id):
        payload = self.rows.get(gateway_order_id)
        if not payload:
            return None
        pending = PendingCheckout.model_validate(payload)
        return None if pending.is_expired(self.clock()) else pending

    async def delete(self, gateway_order_id):
        return self.rows.pop(gateway_order_id, None) is not None

    async def pop_expired(self):
        expired = []
        for key, payload in list(self.rows.items()):
            pending = PendingCheckout.model_validate(payload)
            if pending.is_expired(self.clock()):
                del self.rows[key]
                expired.append(pending)
        return expired


class FakeOrderStore:
    def __init__(self, clock: Clock):
        self.clock = clock
        self.rows: Dict[int, Order] = {}
        self._ids = itertools.count(1001)

    async def get(self, order_id):
        order = self.rows.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def get_by_gateway_order_id(self, gateway_order_id):
        order = next((o for o in self.rows.values() if o.gateway_order_id == gateway_order_id), None)
        return order.model_copy(deep=True) if order else None

    async def get_by_shipment_field(self, key, value):
        order = next(
            (o for o in self.rows.values() if getattr(o.shipment, key) == value), None
        )
        return order.model_copy(deep=True) if order else None

    async def create_if_absent(self, data):
        await asyncio.sleep(0)
        existing = await self.get_by_gateway_order_id(data["gateway_order_id"])
        if existing:
            return existing, False
        order = Order.model_validate({
            **data,
            "order_id": next(self._ids),
            "created_at": self.clock(),
        })
        self.rows[order.order_id] = order
        return order.model_copy(deep=True), True

    async def update_status(self, order_id, status, expected=None):
        order = self.rows.get(order_id)
        if not order or (expected is not None and order.status != expected):
            return None
        order.status = status
        return order.model_copy(deep=True)

    async def update_payment(self, order_id, payment_status, status=None,
                             payment_method=None, gateway_payment_id=None):
        order = self.rows.get(order_id)
        if not order:
            return None
        order.payment_status = payment_status
        order.status = status or order.status
        order.payment_method = payment_method or order.payment_method
        order.gateway_payment_id = gateway_payment_id or order.gateway_payment_id
        return order.model_copy(deep=True)

    async def update_shipment(self, order_id, shipment, status=None, only_if_absent=False):
        order = self.rows.get(order_id)
        if not order or (only_if_absent and order.shipment.shipment_id):
            return None
        order.shipment = ShipmentInfo.model_validate(shipment.model_dump())
        order.status = status or order.status
        return order.model_copy(deep=True)

    async def mark_confirmation_completed(self, order_id):
        order = self.rows.get(order_id)
        if not order or order.confirmation_completed:
            return False
        order.confirmation_completed = True
        return True

    async def claim_shipment(self, order_id, claimed_at, stale_before):
        order = self.rows.get(order_id)
        if not order or order.shipment.shipment_id:
            return False
        if order.shipment_claimed_at and order.shipment_claimed_at >= stale_before:
            return False
        order.shipment_claimed_at = claimed_at
        return True

    async def release_shipment_claim(self, order_id):
        order = self.rows.get(order_id)
        if order:
            order.shipment_claimed_at = None

    async def list_for_user(self, user_id, limit=10):
        rows = [o for o in self.rows.values() if o.user_id == user_id]
        return [o.model_copy(deep=True) for o in reversed(rows)][:limit]

    async def list_orders(self, status=None, limit=20, offset=0):
        rows = [o for o in reversed(list(self.rows.values())) if status is None or o.status == status]
        return [o.model_copy(deep=True) for o in rows[offset:offset + limit]], len(rows)


class FakeCashfree:
    """Payment gateway double; ``payments`` maps gateway order ids to payment lists"""

    def __init__(self):
        self.orders: List[Dict[str, Any]] = []
        self.payments: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_create = False

    async def create_order(self, order_id, amount, currency, customer, return_url,
                           notify_url, note=None):
        if self.fail_create:
            raise ExternalServiceError("cashfree", "request timed out")
        self.orders.append({"order_id": order_id, "amount": amount, "customer": customer})
        return {"payment_session_id": f"session_{order_id}", "order_id": order_id}

    async def fetch_payments(self, order_id):
        return self.payments.get(order_id, [])

    def pay(self, order_id, status="SUCCESS", payment_group="upi", payment_id="cf_1"):
        self.payments[order_id] = [{
            "cf_payment_id": payment_id,
            "payment_status": status,
            "payment_group": payment_group,
        }]


class FakeShiprocket:
    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.cancelled: List[str] = []
        self.pickups: List[str] = []
        self.fail = False
        self._ids = itertools.count(500)

    async def create_order(self, order):
        await asyncio.sleep(0)
        if self.fail:
            raise ExternalServiceError("shiprocket", "HTTP 503")
        self.requests.append(order)
        number = next(self._ids)
        return {
            "carrier_order_id": f"SR{number}",
            "shipment_id": f"SH{number}",
            "status": "NEW",
            "status_code": 1,
        }

    async def check_serviceability(self, pickup_pincode, delivery_pincode, weight, cod=False):
        return [{"courier_company_id": 12, "courier_name": "Delhivery"}]

    async def assign_awb(self, shipment_id, courier_id):
        return {"awb_code": f"AWB{shipment_id}", "courier_name": "Delhivery"}

    async def request_pickup(self, shipment_id):
        self.pickups.append(shipment_id)
        return {"pickup_status": 1}

    async def track_shipment(self, shipment_id):
        return {"shipment_id": shipment_id, "current_status": "IN TRANSIT"}

    async def cancel_shipment(self, awb_code):
        self.cancelled.append(awb_code)
        return {"status": "cancelled"}


class FakeMailer:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.fail = False

    async def send(self, to, subject, template, context):
        if self.fail:
            raise ExternalServiceError("mail", "HTTP 500")
        self.sent.append({"to": to, "subject": subject, "template": template, "context": context})
        return {"message_id": str(len(self.sent))}

    def templates(self):
        return [m["template"] for m in self.sent]


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def gateway():
    return FakeCashfree()


@pytest.fixture
def carrier():
    return FakeShiprocket()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
async def services(clock, gateway, carrier, mailer):
    """Full service graph over in-memory stores"""
    services = Services(
        db=None,
        gateway=gateway,
        carrier=carrier,
        mailer=mailer,
        product_store=FakeProductStore(clock),
        coupon_store=FakeCouponStore(clock),
        checkout_store=FakeCheckoutStore(clock),
        order_store=FakeOrderStore(clock),
        clock=clock,
    )
    yield services
    await services.background.drain()


@pytest.fixture
def products(services):
    store = services.inventory.store
    store.add(1, "Quadcopter Frame", "1000", stock=10, sku="QF-1", weight="0.8")
    store.add(2, "Flight Controller", "12500", stock=5, sku="FC-2", weight="0.2")
    store.add(3, "Propeller Set", "250", stock=1, sku="PS-3")
    return store


@pytest.fixture
def customer():
    return Customer(name="Asha Rao", email="asha@example.com", phone="9876543210")


@pytest.fixture
def address():
    return Address(
        full_name="Asha Rao",
        phone="9876543210",
        address_line1="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
    )


@pytest.fixture
def make_coupon(services, clock):
    """Insert a coupon straight into the store"""
    async def _make(code="SAVE10", percentage=10, user_id=None, usage_limit=None,
                    days=10, is_active=True):
        return await services.coupons.store.insert(CouponCreate(
            code=code,
            discount_percentage=percentage,
            expires_at=clock() + timedelta(days=days),
            user_id=user_id,
            usage_limit=usage_limit,
            is_active=is_active,
        ))
    return _make


@pytest.fixture
def checkout(services, customer, address):
    """Open a checkout session for ``lines`` given as (product_id, quantity) pairs"""
    async def _checkout(lines, user_id="user-1", coupon_code=None):
        return await services.checkout.create_session(
            user_id=user_id,
            items=[CartLine(product_id=pid, quantity=qty) for pid, qty in lines],
            customer=customer,
            shipping_address=address,
            coupon_code=coupon_code,
        )
    return _checkout


@pytest.fixture
def admin_key(monkeypatch):
    monkeypatch.setattr(Config, "ADMIN_API_KEY", "test-admin-key")
    return "test-admin-key"


@pytest.fixture
def no_webhook_secrets(monkeypatch):
    monkeypatch.setattr(Config, "CASHFREE_WEBHOOK_SECRET", "")
    monkeypatch.setattr(Config, "SHIPROCKET_WEBHOOK_SECRET", "")


@pytest.fixture
async def client(aiohttp_client, services, admin_key, no_webhook_secrets):
    return await aiohttp_client(create_app(services))
