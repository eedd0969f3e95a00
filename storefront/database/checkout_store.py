# storefront/database/checkout_store.py
from typing import List, Optional
from ..models.checkout import PendingCheckout

class CheckoutStore:
    """Pending checkout snapshots with an explicit expiry timestamp"""

    def __init__(self, db):
        self.db = db

    async def save(self, pending: PendingCheckout) -> None:
        async with self.db.pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO pending_checkouts (
                    gateway_order_id, user_id, payload, created_at, expires_at
                ) VALUES ($1, $2, $3, $4, $5)
            """,
                pending.gateway_order_id,
                pending.user_id,
                pending.model_dump(mode="json"),
                pending.created_at,
                pending.expires_at
            )

    async def get(self, gateway_order_id: str) -> Optional[PendingCheckout]:
        """Snapshot for ``gateway_order_id``; expired rows count as missing"""
        async with self.db.pool.acquire() as conn:
            payload = await conn.fetchval("""
                SELECT payload FROM pending_checkouts
                WHERE gateway_order_id = $1 AND expires_at > CURRENT_TIMESTAMP
            """, gateway_order_id)
            return PendingCheckout.model_validate(payload) if payload else None

    async def delete(self, gateway_order_id: str) -> bool:
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                DELETE FROM pending_checkouts WHERE gateway_order_id = $1
            """, gateway_order_id)
            return result == "DELETE 1"

    async def pop_expired(self) -> List[PendingCheckout]:
        """Delete and return every snapshot past its expiry"""
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                DELETE FROM pending_checkouts
                WHERE expires_at <= CURRENT_TIMESTAMP
                RETURNING payload
            """)
            return [PendingCheckout.model_validate(r['payload']) for r in rows]
