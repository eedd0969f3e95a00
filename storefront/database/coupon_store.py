# storefront/database/coupon_store.py
from typing import Any, Dict, List, Optional, Tuple
import asyncpg
from ..errors import CouponConflict
from ..models.coupon import Coupon, CouponCreate, CouponSource

class _RedemptionRejected(Exception):
    """Rolls back a redemption whose usage increment was refused"""

class CouponStore:
    """Coupon rows and usage counters"""

    def __init__(self, db):
        self.db = db

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM coupons WHERE code = $1
            """, code)
            return Coupon.model_validate(dict(row)) if row else None

    async def get_by_id(self, coupon_id: int) -> Optional[Coupon]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM coupons WHERE coupon_id = $1
            """, coupon_id)
            return Coupon.model_validate(dict(row)) if row else None

    async def get_active_for_user(self, user_id: str) -> Optional[Coupon]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM coupons
                WHERE user_id = $1 AND is_active = TRUE
            """, user_id)
            return Coupon.model_validate(dict(row)) if row else None

    async def insert(self, data: CouponCreate, source: CouponSource = CouponSource.ADMIN,
                     source_order_id: Optional[int] = None) -> Coupon:
        """Insert a coupon; unique code and one-active-per-user are enforced by the schema"""
        try:
            async with self.db.pool.acquire() as conn:
                row = await self._insert(conn, data, source, source_order_id)
                return Coupon.model_validate(dict(row))
        except asyncpg.UniqueViolationError as e:
            raise CouponConflict(self._conflict_message(e)) from e

    async def replace_active_for_user(self, user_id: str, data: CouponCreate,
                                      source_order_id: Optional[int] = None) -> Coupon:
        """Deactivate the user's active coupon (if any) and insert ``data`` in one transaction"""
        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("""
                        UPDATE coupons
                        SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
                        WHERE user_id = $1 AND is_active = TRUE
                    """, user_id)
                    row = await self._insert(conn, data, CouponSource.REWARD, source_order_id)
                    return Coupon.model_validate(dict(row))
        except asyncpg.UniqueViolationError as e:
            raise CouponConflict(self._conflict_message(e)) from e

    async def update(self, coupon_id: int, fields: Dict[str, Any]) -> Optional[Coupon]:
        if not fields:
            return await self.get_by_id(coupon_id)

        query_parts = []
        params = []
        for index, (key, value) in enumerate(fields.items(), start=1):
            query_parts.append(f"{key} = ${index}")
            params.append(value)
        params.append(coupon_id)

        query = f"""
            UPDATE coupons
            SET {', '.join(query_parts)}, updated_at = CURRENT_TIMESTAMP
            WHERE coupon_id = ${len(params)}
            RETURNING *
        """
        try:
            async with self.db.pool.acquire() as conn:
                row = await conn.fetchrow(query, *params)
                return Coupon.model_validate(dict(row)) if row else None
        except asyncpg.UniqueViolationError as e:
            raise CouponConflict(self._conflict_message(e)) from e
        except asyncpg.CheckViolationError as e:
            raise CouponConflict("usage_limit cannot be lower than the current usage count") from e

    async def deactivate(self, coupon_id: int) -> bool:
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE coupons
                SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
                WHERE coupon_id = $1
            """, coupon_id)
            return result == "UPDATE 1"

    async def list_coupons(self, active: Optional[bool] = None, user_id: Optional[str] = None,
                           limit: int = 20, offset: int = 0) -> Tuple[List[Coupon], int]:
        conditions = []
        params: List[Any] = []
        if active is not None:
            params.append(active)
            conditions.append(f"is_active = ${len(params)}")
        if user_id:
            params.append(user_id)
            conditions.append(f"user_id = ${len(params)}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        async with self.db.pool.acquire() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM coupons {where}", *params)
            rows = await conn.fetch(f"""
                SELECT * FROM coupons {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            """, *params, limit, offset)
            return [Coupon.model_validate(dict(r)) for r in rows], total

    async def redeem(self, code: str, checkout_id: str,
                     user_id: Optional[str]) -> Tuple[Optional[Coupon], bool]:
        """Count one use of ``code`` for ``checkout_id``.

        Returns ``(coupon, True)`` when a use was counted, ``(coupon, False)``
        when this checkout had already redeemed the code, and ``(None, False)``
        when the coupon refused the increment (inactive, expired or exhausted).
        """
        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    inserted = await conn.fetchval("""
                        INSERT INTO coupon_redemptions (coupon_code, checkout_id, user_id)
                        VALUES ($1, $2, $3)
                        ON CONFLICT (coupon_code, checkout_id) DO NOTHING
                        RETURNING checkout_id
                    """, code, checkout_id, user_id)

                    if inserted is None:
                        row = await conn.fetchrow("SELECT * FROM coupons WHERE code = $1", code)
                        return Coupon.model_validate(dict(row)), False

                    row = await conn.fetchrow("""
                        UPDATE coupons
                        SET usage_count = usage_count + 1,
                            updated_at = CURRENT_TIMESTAMP
                        WHERE code = $1
                          AND is_active = TRUE
                          AND expires_at > CURRENT_TIMESTAMP
                          AND (usage_limit IS NULL OR usage_count < usage_limit)
                        RETURNING *
                    """, code)
                    if not row:
                        raise _RedemptionRejected()
                    return Coupon.model_validate(dict(row)), True
        except _RedemptionRejected:
            return None, False

    async def release(self, code: str, checkout_id: str) -> bool:
        """Undo a redemption; returns False when there was nothing to undo"""
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                deleted = await conn.fetchval("""
                    DELETE FROM coupon_redemptions
                    WHERE coupon_code = $1 AND checkout_id = $2
                    RETURNING checkout_id
                """, code, checkout_id)
                if deleted is None:
                    return False

                await conn.execute("""
                    UPDATE coupons
                    SET usage_count = GREATEST(usage_count - 1, 0),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE code = $1
                """, code)
                return True

    async def deactivate_if_exhausted(self, code: str) -> bool:
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE coupons
                SET is_active = FALSE, updated_at = CURRENT_TIMESTAMP
                WHERE code = $1
                  AND is_active = TRUE
                  AND usage_limit IS NOT NULL
                  AND usage_count >= usage_limit
            """, code)
            return result == "UPDATE 1"

    @staticmethod
    async def _insert(conn, data: CouponCreate, source: CouponSource,
                      source_order_id: Optional[int]):
        return await conn.fetchrow("""
            INSERT INTO coupons (
                code, discount_percentage, expires_at, user_id,
                is_active, usage_limit, source, source_order_id
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
        """,
            data.code,
            data.discount_percentage,
            data.expires_at,
            data.user_id,
            data.is_active,
            data.usage_limit,
            source.value,
            source_order_id
        )

    @staticmethod
    def _conflict_message(error: asyncpg.UniqueViolationError) -> str:
        if getattr(error, "constraint_name", None) == "coupons_one_active_per_user":
            return "User already has an active coupon"
        return "Coupon code already exists"
