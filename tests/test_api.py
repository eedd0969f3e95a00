"""Tests for the HTTP API."""

import base64
import hashlib
import hmac
import json

import pytest

from storefront.config import Config


ADMIN = {"X-Admin-Key": "test-admin-key"}
USER = {"X-User-Id": "user-1"}


def _checkout_body(products, coupon=None):
    address = {
        "full_name": "Asha Rao",
        "phone": "9876543210",
        "address_line1": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
    }
    body = {
        "customerDetails": {"name": "Asha Rao", "email": "asha@example.com", "phone": "9876543210"},
        "shippingAddress": address,
        "products": [{"product_id": pid, "quantity": qty, "price": 1} for pid, qty in products],
    }
    if coupon:
        body["couponCode"] = coupon
    return body


async def _paid_order(client, gateway, products=((1, 2),)):
    resp = await client.post(
        "/api/payment/create-checkout-session", json=_checkout_body(products), headers=USER
    )
    data = await resp.json()
    gateway.pay(data["orderId"])
    resp = await client.post("/api/payment/checkout-success", json={"orderId": data["orderId"]})
    return (await resp.json())["order"]


class TestHealthCheck:
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status == 200
        assert (await resp.json())["status"] == "ok"


class TestCheckoutSession:
    async def test_create_session(self, client, products):
        resp = await client.post(
            "/api/payment/create-checkout-session", json=_checkout_body([(1, 2)]), headers=USER
        )
        assert resp.status == 200
        data = await resp.json()
        assert data["success"] is True
        assert data["orderAmount"] == 2459
        assert data["paymentSessionId"] == f"session_{data['orderId']}"

    async def test_out_of_stock(self, client, products):
        resp = await client.post(
            "/api/payment/create-checkout-session", json=_checkout_body([(2, 9)])
        )
        assert resp.status == 409
        data = await resp.json()
        assert data["success"] is False
        assert data["product_id"] == 2
        assert data["available"] == 5

    async def test_missing_fields(self, client, products):
        resp = await client.post("/api/payment/create-checkout-session", json={"products": []})
        assert resp.status == 400
        assert (await resp.json())["success"] is False

    async def test_not_json(self, client):
        resp = await client.post("/api/payment/create-checkout-session", data="nope")
        assert resp.status == 400


class TestCheckoutSuccess:
    async def test_confirms_once(self, client, products, gateway, services):
        resp = await client.post(
            "/api/payment/create-checkout-session", json=_checkout_body([(1, 2)]), headers=USER
        )
        order_id = (await resp.json())["orderId"]
        gateway.pay(order_id)

        first = await client.post("/api/payment/checkout-success", json={"orderId": order_id})
        second = await client.post("/api/payment/checkout-success", json={"orderId": order_id})

        assert first.status == 200
        first_data = await first.json()
        assert first_data["already_confirmed"] is False
        assert first_data["order"]["total_amount"] == 2459
        assert first_data["order"]["payment_status"] == "paid"

        second_data = await second.json()
        assert second_data["already_confirmed"] is True
        assert second_data["order"]["order_id"] == first_data["order"]["order_id"]
        assert products.rows[1].stock == 8

    async def test_unpaid(self, client, products, gateway):
        resp = await client.post(
            "/api/payment/create-checkout-session", json=_checkout_body([(1, 1)])
        )
        order_id = (await resp.json())["orderId"]
        gateway.pay(order_id, status="FAILED")

        resp = await client.post("/api/payment/checkout-success", json={"orderId": order_id})
        assert resp.status == 400
        assert (await resp.json())["status"] == "FAILED"

    async def test_expired_session(self, client, products, gateway, clock):
        resp = await client.post(
            "/api/payment/create-checkout-session", json=_checkout_body([(1, 1)])
        )
        order_id = (await resp.json())["orderId"]
        gateway.pay(order_id)
        clock.advance(hours=2)

        resp = await client.post("/api/payment/checkout-success", json={"orderId": order_id})
        assert resp.status == 410
        assert order_id in (await resp.json())["error"]

    async def test_order_id_required(self, client):
        resp = await client.post("/api/payment/checkout-success", json={})
        assert resp.status == 400


class TestPaymentWebhook:
    @pytest.fixture
    def secret(self, monkeypatch):
        monkeypatch.setattr(Config, "CASHFREE_WEBHOOK_SECRET", "whsec")
        return "whsec"

    @staticmethod
    def _signed(secret, body):
        raw = json.dumps(body).encode()
        timestamp = "1718000000"
        signature = base64.b64encode(
            hmac.new(secret.encode(), timestamp.encode() + raw, hashlib.sha256).digest()
        ).decode()
        return raw, {
            "x-webhook-timestamp": timestamp,
            "x-webhook-signature": signature,
            "Content-Type": "application/json",
        }

    async def test_signed_success_creates_order(self, client, products, gateway, services, secret):
        resp = await client.post(
            "/api/payment/create-checkout-session", json=_checkout_body([(1, 1)])
        )
        order_id = (await resp.json())["orderId"]
        gateway.pay(order_id)

        raw, headers = self._signed(secret, {
            "type": "PAYMENT_SUCCESS_WEBHOOK",
            "data": {"order": {"order_id": order_id}, "payment": {"cf_payment_id": 1}},
        })
        resp = await client.post("/api/payment/webhook", data=raw, headers=headers)
        assert resp.status == 200

        await services.background.drain()
        assert await services.orders.get_by_gateway_order_id(order_id) is not None

    async def test_unsigned_rejected(self, client, secret):
        resp = await client.post("/api/payment/webhook", json={"type": "PAYMENT_SUCCESS_WEBHOOK"})
        assert resp.status == 401

    async def test_bad_signature_rejected(self, client, secret):
        raw, headers = self._signed("wrong", {"type": "PAYMENT_SUCCESS_WEBHOOK"})
        resp = await client.post("/api/payment/webhook", data=raw, headers=headers)
        assert resp.status == 401

    async def test_unknown_event_acknowledged(self, client, secret):
        raw, headers = self._signed(secret, {"type": "WEBHOOK_TEST", "data": {}})
        resp = await client.post("/api/payment/webhook", data=raw, headers=headers)
        assert resp.status == 200

    async def test_non_object_body_acknowledged(self, client, services):
        resp = await client.post("/api/payment/webhook", json=[1, 2])
        assert resp.status == 200
        assert (await resp.json())["message"] == "Webhook acknowledged"
        assert len(services.background) == 0

    async def test_malformed_body_acknowledged(self, client, caplog):
        resp = await client.post(
            "/api/payment/webhook", data=b"{not json",
            headers={"Content-Type": "application/json"}
        )
        assert resp.status == 200
        assert "not a JSON object" in caplog.text

    async def test_signed_malformed_body_acknowledged(self, client, secret):
        raw = b"{not json"
        timestamp = "1718000000"
        signature = base64.b64encode(
            hmac.new(secret.encode(), timestamp.encode() + raw, hashlib.sha256).digest()
        ).decode()
        resp = await client.post("/api/payment/webhook", data=raw, headers={
            "x-webhook-timestamp": timestamp, "x-webhook-signature": signature
        })
        assert resp.status == 200


class TestOrders:
    async def test_my_orders_requires_identity(self, client):
        resp = await client.get("/api/orders")
        assert resp.status == 401

    async def test_my_orders(self, client, products, gateway):
        order = await _paid_order(client, gateway)
        resp = await client.get("/api/orders", headers=USER)
        data = await resp.json()
        assert [o["order_id"] for o in data["orders"]] == [order["order_id"]]

    async def test_order_visible_to_owner_and_admin_only(self, client, products, gateway):
        order = await _paid_order(client, gateway)
        path = f"/api/orders/{order['order_id']}"

        assert (await client.get(path, headers=USER)).status == 200
        assert (await client.get(path, headers=ADMIN)).status == 200
        assert (await client.get(path, headers={"X-User-Id": "user-2"})).status == 403

    async def test_unknown_order(self, client):
        resp = await client.get("/api/orders/424242", headers=ADMIN)
        assert resp.status == 404


class TestAdmin:
    async def test_requires_key(self, client):
        assert (await client.get("/api/admin/orders")).status == 401
        resp = await client.get("/api/admin/orders", headers={"X-Admin-Key": "wrong"})
        assert resp.status == 401

    async def test_status_transitions(self, client, products, gateway):
        order = await _paid_order(client, gateway)
        path = f"/api/admin/orders/{order['order_id']}/status"

        resp = await client.patch(path, json={"status": "delivered"}, headers=ADMIN)
        assert resp.status == 200
        assert (await resp.json())["order"]["status"] == "delivered"

        resp = await client.patch(path, json={"status": "cancelled"}, headers=ADMIN)
        assert resp.status == 409

        resp = await client.patch(path, json={"status": "teleported"}, headers=ADMIN)
        assert resp.status == 400

    async def test_list_orders(self, client, products, gateway):
        await _paid_order(client, gateway)
        resp = await client.get("/api/admin/orders?status=pending", headers=ADMIN)
        data = await resp.json()
        assert data["total"] == 1
        assert data["current_page"] == 1

    async def test_restock(self, client, products):
        resp = await client.post(
            "/api/admin/products/3/restock", json={"quantity": 4}, headers=ADMIN
        )
        assert resp.status == 200
        assert (await resp.json())["product"]["stock"] == 5

        resp = await client.post(
            "/api/admin/products/3/restock", json={"quantity": -1}, headers=ADMIN
        )
        assert resp.status == 400

    async def test_availability(self, client, products):
        resp = await client.patch(
            "/api/admin/products/1/availability", json={"is_available": False}, headers=ADMIN
        )
        assert (await resp.json())["product"]["is_available"] is False

    async def test_coupon_lifecycle(self, client):
        body = {
            "code": "launch20",
            "discount_percentage": 20,
            "expires_at": "2026-12-31T00:00:00+00:00",
            "usage_limit": 100,
        }
        resp = await client.post("/api/admin/coupons", json=body, headers=ADMIN)
        assert resp.status == 201
        coupon = (await resp.json())["coupon"]
        assert coupon["code"] == "LAUNCH20"

        resp = await client.post("/api/admin/coupons", json=body, headers=ADMIN)
        assert resp.status == 409

        resp = await client.patch(
            f"/api/admin/coupons/{coupon['coupon_id']}",
            json={"discount_percentage": 25}, headers=ADMIN
        )
        assert (await resp.json())["coupon"]["discount_percentage"] == 25

        resp = await client.get("/api/admin/coupons?active=true", headers=ADMIN)
        assert (await resp.json())["total"] == 1

        resp = await client.delete(f"/api/admin/coupons/{coupon['coupon_id']}", headers=ADMIN)
        assert resp.status == 200

        resp = await client.post("/api/coupons/validate", json={"code": "LAUNCH20"})
        assert resp.status == 400

    async def test_invalid_coupon_body(self, client):
        resp = await client.post(
            "/api/admin/coupons",
            json={"code": "X", "discount_percentage": 0, "expires_at": "2026-12-31T00:00:00Z"},
            headers=ADMIN
        )
        assert resp.status == 400


class TestCoupons:
    async def test_validate(self, client, make_coupon):
        await make_coupon("SAVE10", percentage=10)
        resp = await client.post("/api/coupons/validate", json={"code": "save10"}, headers=USER)
        data = await resp.json()
        assert resp.status == 200
        assert data["discountPercentage"] == 10

    async def test_mine(self, client, make_coupon):
        await make_coupon("MINE", user_id="user-1")
        resp = await client.get("/api/coupons/mine", headers=USER)
        assert (await resp.json())["coupon"]["code"] == "MINE"

        resp = await client.get("/api/coupons/mine", headers={"X-User-Id": "user-2"})
        assert (await resp.json())["coupon"] is None


class TestShipments:
    async def test_create_is_idempotent(self, client, products, gateway, services, carrier):
        order = await _paid_order(client, gateway)
        await services.background.drain()

        resp = await client.post(
            "/api/shipments/create", json={"orderId": order["order_id"]}, headers=ADMIN
        )
        data = await resp.json()
        assert data["data"]["already_exists"] is True
        assert len(carrier.requests) == 1

    async def test_tracking(self, client, products, gateway, services):
        order = await _paid_order(client, gateway)
        await services.background.drain()

        resp = await client.get(f"/api/shipments/track/{order['order_id']}", headers=USER)
        assert resp.status == 200
        resp = await client.get(
            f"/api/shipments/track/{order['order_id']}", headers={"X-User-Id": "user-2"}
        )
        assert resp.status == 403

    async def test_webhook_updates_status(self, client, products, gateway, services, monkeypatch):
        monkeypatch.setattr(Config, "SHIPROCKET_WEBHOOK_SECRET", "srkey")
        order = await _paid_order(client, gateway)
        await services.background.drain()
        stored = await services.orders.get_order(order["order_id"])

        payload = {"shipment_id": stored.shipment.shipment_id, "current_status": "IN TRANSIT"}
        resp = await client.post("/api/shipments/webhook", json=payload)
        assert resp.status == 401

        resp = await client.post(
            "/api/shipments/webhook", json=payload, headers={"x-api-key": "srkey"}
        )
        assert resp.status == 200
        await services.background.drain()
        assert (await services.orders.get_order(order["order_id"])).status.value == "shipped"

    async def test_webhook_non_object_acknowledged(self, client, services):
        resp = await client.post("/api/shipments/webhook", json="hello")
        assert resp.status == 200
        assert len(services.background) == 0

        resp = await client.post("/api/shipments/webhook", data=b"<xml/>")
        assert resp.status == 200
