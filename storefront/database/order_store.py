# storefront/database/order_store.py
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from ..models.order import (
    Order, OrderStatus, PaymentMethod, PaymentStatus, ShipmentInfo
)

_SHIPMENT_KEYS = ("shipment_id", "carrier_order_id", "awb_code")

class OrderStore:
    """Order rows; ``gateway_order_id`` is unique at the schema level"""

    def __init__(self, db):
        self.db = db

    async def get(self, order_id: int) -> Optional[Order]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM orders WHERE order_id = $1
            """, order_id)
            return Order.model_validate(dict(row)) if row else None

    async def get_by_gateway_order_id(self, gateway_order_id: str) -> Optional[Order]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM orders WHERE gateway_order_id = $1
            """, gateway_order_id)
            return Order.model_validate(dict(row)) if row else None

    async def get_by_shipment_field(self, key: str, value: str) -> Optional[Order]:
        """Look an order up by ``shipment_id``, ``carrier_order_id`` or ``awb_code``"""
        if key not in _SHIPMENT_KEYS:
            raise ValueError(f"Unsupported shipment lookup key: {key}")
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT * FROM orders WHERE shipment ->> '{key}' = $1
            """, value)
            return Order.model_validate(dict(row)) if row else None

    async def create_if_absent(self, data: Dict[str, Any]) -> Tuple[Order, bool]:
        """Insert an order unless one exists for the same gateway order id.

        Returns the stored order and whether this call created it.
        """
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO orders (
                    user_id, customer, items, subtotal, shipping, tax, discount,
                    total_amount, shipping_address, billing_address, status,
                    payment_status, payment_method, gateway_order_id,
                    gateway_payment_id, coupon_code
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                ON CONFLICT (gateway_order_id) DO NOTHING
                RETURNING *
            """,
                data['user_id'],
                data['customer'],
                data['items'],
                data['subtotal'],
                data['shipping'],
                data['tax'],
                data['discount'],
                data['total_amount'],
                data['shipping_address'],
                data['billing_address'],
                data['status'],
                data['payment_status'],
                data.get('payment_method'),
                data['gateway_order_id'],
                data.get('gateway_payment_id'),
                data.get('coupon_code')
            )
            if row:
                return Order.model_validate(dict(row)), True

            row = await conn.fetchrow("""
                SELECT * FROM orders WHERE gateway_order_id = $1
            """, data['gateway_order_id'])
            return Order.model_validate(dict(row)), False

    async def update_status(self, order_id: int, status: OrderStatus,
                            expected: Optional[OrderStatus] = None) -> Optional[Order]:
        """Set the status; with ``expected`` the update only applies if nobody moved the order meanwhile"""
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE orders
                SET status = $2, updated_at = CURRENT_TIMESTAMP
                WHERE order_id = $1 AND ($3::text IS NULL OR status = $3::text)
                RETURNING *
            """, order_id, status.value, expected.value if expected else None)
            return Order.model_validate(dict(row)) if row else None

    async def update_payment(self, order_id: int, payment_status: PaymentStatus,
                             status: Optional[OrderStatus] = None,
                             payment_method: Optional[PaymentMethod] = None,
                             gateway_payment_id: Optional[str] = None) -> Optional[Order]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE orders
                SET payment_status = $2,
                    status = COALESCE($3, status),
                    payment_method = COALESCE($4, payment_method),
                    gateway_payment_id = COALESCE($5, gateway_payment_id),
                    updated_at = CURRENT_TIMESTAMP
                WHERE order_id = $1
                RETURNING *
            """,
                order_id,
                payment_status.value,
                status.value if status else None,
                payment_method.value if payment_method else None,
                gateway_payment_id
            )
            return Order.model_validate(dict(row)) if row else None

    async def update_shipment(self, order_id: int, shipment: ShipmentInfo,
                              status: Optional[OrderStatus] = None,
                              only_if_absent: bool = False) -> Optional[Order]:
        """Replace the shipment sub-record (and optionally the status).

        With ``only_if_absent`` the write is skipped when a shipment id is
        already stored, and ``None`` is returned.
        """
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE orders
                SET shipment = $2,
                    status = COALESCE($3, status),
                    updated_at = CURRENT_TIMESTAMP
                WHERE order_id = $1
                  AND (NOT $4 OR shipment ->> 'shipment_id' IS NULL)
                RETURNING *
            """,
                order_id,
                shipment.model_dump(mode="json"),
                status.value if status else None,
                only_if_absent
            )
            return Order.model_validate(dict(row)) if row else None

    async def mark_confirmation_completed(self, order_id: int) -> bool:
        """Flip ``confirmation_completed``; True only for the caller that flipped it"""
        async with self.db.pool.acquire() as conn:
            flipped = await conn.fetchval("""
                UPDATE orders
                SET confirmation_completed = TRUE, updated_at = CURRENT_TIMESTAMP
                WHERE order_id = $1 AND NOT confirmation_completed
                RETURNING order_id
            """, order_id)
            return flipped is not None

    async def claim_shipment(self, order_id: int, claimed_at: datetime,
                             stale_before: datetime) -> bool:
        """Reserve shipment creation for one caller.

        Fails while a shipment is stored or another claim newer than
        ``stale_before`` is held.
        """
        async with self.db.pool.acquire() as conn:
            claimed = await conn.fetchval("""
                UPDATE orders
                SET shipment_claimed_at = $2
                WHERE order_id = $1
                  AND shipment ->> 'shipment_id' IS NULL
                  AND (shipment_claimed_at IS NULL OR shipment_claimed_at < $3)
                RETURNING order_id
            """, order_id, claimed_at, stale_before)
            return claimed is not None

    async def release_shipment_claim(self, order_id: int) -> None:
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                UPDATE orders SET shipment_claimed_at = NULL WHERE order_id = $1
            """, order_id)

    async def list_for_user(self, user_id: str, limit: int = 10) -> List[Order]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM orders
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2
            """, user_id, limit)
            return [Order.model_validate(dict(r)) for r in rows]

    async def list_orders(self, status: Optional[OrderStatus] = None,
                          limit: int = 20, offset: int = 0) -> Tuple[List[Order], int]:
        async with self.db.pool.acquire() as conn:
            status_value = status.value if status else None
            total = await conn.fetchval("""
                SELECT COUNT(*) FROM orders
                WHERE ($1::text IS NULL OR status = $1::text)
            """, status_value)
            rows = await conn.fetch("""
                SELECT * FROM orders
                WHERE ($1::text IS NULL OR status = $1::text)
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
            """, status_value, limit, offset)
            return [Order.model_validate(dict(r)) for r in rows], total
