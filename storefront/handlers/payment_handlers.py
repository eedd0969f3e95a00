# storefront/handlers/payment_handlers.py
from aiohttp import web
from ..clients.cashfree import verify_webhook_signature
from ..config import Config
from ..errors import ValidationError, WebhookAuthError
from ..models.checkout import CheckoutRequest, ConfirmationStatus
from ..models.events import decode_payment_event
from .base_handler import BaseHandler, json_response

class PaymentHandler(BaseHandler):
    """Checkout session creation and the two payment confirmation triggers"""

    async def create_checkout_session(self, request: web.Request) -> web.Response:
        body = self.parse(CheckoutRequest, await self.read_json(request))
        session = await self.services.checkout.create_session(
            user_id=self.user_id(request),
            items=body.items,
            customer=body.customer,
            shipping_address=body.shipping_address,
            billing_address=body.billing_address,
            coupon_code=body.coupon_code,
        )
        return self.ok(
            message="Checkout session created",
            paymentSessionId=session.payment_session_id,
            orderId=session.order_id,
            orderAmount=session.order_amount,
        )

    async def checkout_success(self, request: web.Request) -> web.Response:
        """Client-side verification after the gateway redirects back"""
        data = await self.read_json(request)
        gateway_order_id = data.get("orderId") or data.get("order_id")
        if not gateway_order_id:
            raise ValidationError("Order ID is required")

        result = await self.services.payments.confirm_payment(str(gateway_order_id))
        if result.status == ConfirmationStatus.NOT_PAID:
            return json_response({
                "success": False,
                "error": "Payment not completed",
                "status": result.payment_status,
            }, status=400)

        already = result.status == ConfirmationStatus.ALREADY_CONFIRMED
        return self.ok(
            message="Order already processed" if already else "Payment verified and order created",
            already_confirmed=already,
            order=result.order,
        )

    async def webhook(self, request: web.Request) -> web.Response:
        """Gateway push; acknowledged first, processed in the background"""
        raw_body = await request.read()

        secret = Config.CASHFREE_WEBHOOK_SECRET
        if secret and not verify_webhook_signature(
            secret,
            request.headers.get("x-webhook-timestamp"),
            raw_body,
            request.headers.get("x-webhook-signature")
        ):
            self.logger.warning("Payment webhook rejected: bad or missing signature")
            raise WebhookAuthError("Invalid webhook signature")

        payload = self.webhook_payload(raw_body, "Payment")
        if payload is None:
            return self.ok(message="Webhook acknowledged")

        event = decode_payment_event(payload)
        if not event:
            self.logger.info(f"Payment webhook acknowledged without action: type={payload.get('type')}")
            return self.ok(message="Webhook acknowledged")

        self.services.background.spawn(
            self.services.payments.handle_payment_webhook(event),
            name=f"payment-webhook-{event.order_id}"
        )
        return self.ok(message="Webhook received")
