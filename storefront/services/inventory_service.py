# storefront/services/inventory_service.py
import logging
from collections import OrderedDict
from typing import Iterable, List, Optional, Tuple
from ..database.product_store import ProductStore
from ..errors import OutOfStock, ProductNotFound, ProductUnavailable, ValidationError
from ..models.product import CartLine, PricedLine, Product

class InventoryService:
    """Stock ledger: the only code path that changes product stock"""

    def __init__(self, db, store: Optional[ProductStore] = None):
        self.store = store or ProductStore(db)
        self.logger = logging.getLogger(__name__)

    async def check_availability(self, product_id: int, quantity: int) -> Tuple[bool, int]:
        """Read-only check; returns (available, current stock)"""
        product = await self.store.get_product(product_id)
        if not product:
            return False, 0
        return product.is_available and product.stock >= quantity, product.stock

    async def reserve_and_price_all(self, items: List[CartLine]) -> List[PricedLine]:
        """Validate every line against the catalog, then price them from server-side data.

        All-or-nothing: the first violating line raises and nothing is priced.
        Lines naming the same product are checked against their combined quantity.
        """
        requested: "OrderedDict[int, int]" = OrderedDict()
        for item in items:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        products = await self.store.get_products(list(requested))

        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if not product:
                raise ProductNotFound(product_id)
            if not product.is_available:
                raise ProductUnavailable(product_id, product.name)
            if product.stock < quantity:
                raise OutOfStock(product_id, product.stock, product.name)

        return [
            PricedLine(
                product_id=item.product_id,
                name=products[item.product_id].name,
                quantity=item.quantity,
                unit_price=products[item.product_id].price,
                sku=products[item.product_id].sku,
                weight=products[item.product_id].weight,
            )
            for item in items
        ]

    async def commit_decrement(self, items: Iterable, order_id: Optional[int] = None) -> List[Product]:
        """Take stock for a confirmed order.

        Stock is clamped at zero and the product flagged unavailable when it
        hits zero. A line that asks for more than what is left (two checkouts
        raced for the last units) is logged as oversold rather than rejected:
        the money has already been taken. With ``order_id`` every line is taken
        at most once, so a confirmation that failed halfway can run this again.
        """
        updated = []
        for line_no, item in enumerate(items):
            result = await self.store.decrement_stock(
                item.product_id, item.quantity, order_id=order_id, line_no=line_no
            )
            if result is None:
                self.logger.error(
                    f"Stock decrement skipped, product {item.product_id} no longer exists"
                )
                continue

            product, previous_stock = result
            if previous_stock is None:
                self.logger.info(
                    f"Stock for order {order_id} line {line_no} already taken, skipping"
                )
                continue
            if previous_stock < item.quantity:
                self.logger.warning(
                    f"Product {product.product_id} oversold by {item.quantity - previous_stock} "
                    f"unit(s); stock clamped at 0"
                )
            updated.append(product)
        return updated

    async def restock(self, product_id: int, delta: int) -> Product:
        if delta <= 0:
            raise ValidationError("Restock quantity must be positive")
        product = await self.store.increase_stock(product_id, delta)
        if not product:
            raise ProductNotFound(product_id)
        self.logger.info(f"Product {product_id} restocked by {delta}, stock now {product.stock}")
        return product

    async def set_availability(self, product_id: int, available: bool) -> Product:
        """Administrative on/off switch; a product without stock stays unavailable"""
        product = await self.store.set_availability(product_id, available)
        if not product:
            raise ProductNotFound(product_id)
        return product
