# storefront/database/product_store.py
from typing import Dict, List, Optional, Tuple
from ..models.product import Product

class ProductStore:
    """Stock and price rows; every stock mutation is a single atomic UPDATE"""

    def __init__(self, db):
        self.db = db

    async def get_product(self, product_id: int) -> Optional[Product]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT * FROM products WHERE product_id = $1
            """, product_id)
            return Product.model_validate(dict(row)) if row else None

    async def get_products(self, product_ids: List[int]) -> Dict[int, Product]:
        async with self.db.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT * FROM products WHERE product_id = ANY($1::int[])
            """, list(product_ids))
            return {row['product_id']: Product.model_validate(dict(row)) for row in rows}

    async def decrement_stock(self, product_id: int, quantity: int,
                              order_id: Optional[int] = None,
                              line_no: int = 0) -> Optional[Tuple[Product, Optional[int]]]:
        """Subtract ``quantity`` clamped at zero; returns the product and its stock before the update.

        With ``order_id`` the line is recorded in ``stock_commits`` in the same
        transaction. A line recorded earlier takes nothing and comes back with
        ``None`` as its previous stock.
        """
        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                if order_id is not None:
                    claimed = await conn.fetchval("""
                        INSERT INTO stock_commits (order_id, line_no, product_id, quantity)
                        VALUES ($1, $2, $3, $4)
                        ON CONFLICT (order_id, line_no) DO NOTHING
                        RETURNING order_id
                    """, order_id, line_no, product_id, quantity)
                    if claimed is None:
                        row = await conn.fetchrow("""
                            SELECT * FROM products WHERE product_id = $1
                        """, product_id)
                        return (Product.model_validate(dict(row)), None) if row else None

                row = await conn.fetchrow("""
                    UPDATE products p
                    SET stock = GREATEST(p.stock - $2, 0),
                        sold_count = p.sold_count + $2,
                        is_available = CASE
                            WHEN GREATEST(p.stock - $2, 0) = 0 THEN FALSE
                            ELSE p.is_available
                        END,
                        updated_at = CURRENT_TIMESTAMP
                    FROM (
                        SELECT product_id, stock AS previous_stock
                        FROM products
                        WHERE product_id = $1
                        FOR UPDATE
                    ) old
                    WHERE p.product_id = old.product_id
                    RETURNING p.*, old.previous_stock
                """, product_id, quantity)
                if not row:
                    return None
                data = dict(row)
                previous_stock = data.pop('previous_stock')
                return Product.model_validate(data), previous_stock

    async def increase_stock(self, product_id: int, delta: int) -> Optional[Product]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE products
                SET stock = stock + $2,
                    is_available = CASE WHEN stock + $2 > 0 THEN TRUE ELSE is_available END,
                    updated_at = CURRENT_TIMESTAMP
                WHERE product_id = $1
                RETURNING *
            """, product_id, delta)
            return Product.model_validate(dict(row)) if row else None

    async def set_availability(self, product_id: int, available: bool) -> Optional[Product]:
        async with self.db.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE products
                SET is_available = ($2 AND stock > 0),
                    updated_at = CURRENT_TIMESTAMP
                WHERE product_id = $1
                RETURNING *
            """, product_id, available)
            return Product.model_validate(dict(row)) if row else None
