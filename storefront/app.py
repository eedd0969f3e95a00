# storefront/app.py
import asyncio
import logging
from typing import Callable, Optional
from aiohttp import web
from .clients.cashfree import CashfreeClient
from .clients.mailer import Mailer
from .clients.shiprocket import ShiprocketClient
from .config import Config
from .database.database import Database
from .handlers import (
    AdminHandler, CouponHandler, OrderHandler, PaymentHandler, ShipmentHandler, error_middleware
)
from .services.checkout_service import CheckoutService
from .services.coupon_service import CouponService
from .services.inventory_service import InventoryService
from .services.order_service import OrderService
from .services.payment_service import PaymentService
from .services.shipment_service import ShipmentService
from .utils.background import BackgroundTasks, run_periodic
from .utils.formatters import now_utc

logger = logging.getLogger(__name__)

class Services:
    """The service graph shared by every handler.

    Stores and collaborators default to the PostgreSQL and HTTP
    implementations; any of them can be passed in instead.
    """

    def __init__(self, db: Optional[Database] = None,
                 gateway=None, carrier=None, mailer=None,
                 product_store=None, coupon_store=None,
                 checkout_store=None, order_store=None,
                 clock: Callable = now_utc):
        self.db = db
        self.background = BackgroundTasks()
        self.gateway = gateway or CashfreeClient()
        self.carrier = carrier or ShiprocketClient()
        self.mailer = mailer or Mailer()

        self.inventory = InventoryService(db, store=product_store)
        self.coupons = CouponService(db, store=coupon_store, clock=clock)
        self.orders = OrderService(db, store=order_store)
        self.checkout = CheckoutService(
            db,
            inventory=self.inventory,
            coupons=self.coupons,
            store=checkout_store,
            orders=self.orders,
            gateway=self.gateway,
            clock=clock
        )
        self.shipments = ShipmentService(db, orders=self.orders, carrier=self.carrier, clock=clock)
        self.payments = PaymentService(
            db,
            checkout=self.checkout,
            orders=self.orders,
            inventory=self.inventory,
            coupons=self.coupons,
            shipments=self.shipments,
            gateway=self.gateway,
            mailer=self.mailer,
            scheduler=self.background
        )

SERVICES = web.AppKey("services", Services)

async def health(request: web.Request) -> web.Response:
    return web.json_response({"success": True, "status": "ok"})

def setup_routes(app: web.Application, services: Services):
    payments = PaymentHandler(services)
    orders = OrderHandler(services)
    coupons = CouponHandler(services)
    shipments = ShipmentHandler(services)
    admin = AdminHandler(services)

    app.router.add_get("/api/health", health)

    # Payment
    app.router.add_post("/api/payment/create-checkout-session", payments.create_checkout_session)
    app.router.add_post("/api/payment/checkout-success", payments.checkout_success)
    app.router.add_post("/api/payment/webhook", payments.webhook)

    # Orders
    app.router.add_get("/api/orders", orders.list_my_orders)
    app.router.add_get("/api/orders/{order_id}", orders.get_order)

    # Coupons
    app.router.add_get("/api/coupons/mine", coupons.my_coupon)
    app.router.add_post("/api/coupons/validate", coupons.validate)

    # Shipments
    app.router.add_post("/api/shipments/create", shipments.create)
    app.router.add_post("/api/shipments/assign-courier", shipments.assign_courier)
    app.router.add_post("/api/shipments/schedule-pickup", shipments.schedule_pickup)
    app.router.add_post("/api/shipments/cancel", shipments.cancel)
    app.router.add_get("/api/shipments/track/{order_id}", shipments.track)
    app.router.add_post("/api/shipments/webhook", shipments.webhook)

    # Admin
    app.router.add_get("/api/admin/orders", admin.list_orders)
    app.router.add_patch("/api/admin/orders/{order_id}/status", admin.update_order_status)
    app.router.add_post("/api/admin/products/{product_id}/restock", admin.restock)
    app.router.add_patch("/api/admin/products/{product_id}/availability", admin.set_availability)
    app.router.add_post("/api/admin/coupons", admin.create_coupon)
    app.router.add_get("/api/admin/coupons", admin.list_coupons)
    app.router.add_patch("/api/admin/coupons/{coupon_id}", admin.update_coupon)
    app.router.add_delete("/api/admin/coupons/{coupon_id}", admin.deactivate_coupon)

async def _lifecycle(app: web.Application):
    services = app[SERVICES]
    if services.db is not None:
        await services.db.connect()

    sweeper = asyncio.ensure_future(run_periodic(
        Config.SWEEP_INTERVAL_SECONDS,
        services.checkout.sweep_expired,
        name="checkout sweep"
    ))
    logger.info("Storefront started")

    yield

    sweeper.cancel()
    await asyncio.gather(sweeper, return_exceptions=True)
    await services.background.drain(timeout=Config.EXTERNAL_TIMEOUT_SECONDS)
    if services.db is not None:
        await services.db.close()
    logger.info("Storefront stopped")

def create_app(services: Optional[Services] = None) -> web.Application:
    """Build the web application; without ``services`` it runs against PostgreSQL"""
    if services is None:
        services = Services(Database())

    app = web.Application(middlewares=[error_middleware])
    app[SERVICES] = services
    setup_routes(app, services)
    app.cleanup_ctx.append(_lifecycle)
    return app
