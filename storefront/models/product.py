# storefront/models/product.py
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel
from .base import TimeStampedModel

class Product(TimeStampedModel):
    """Catalog product as seen by the inventory ledger"""
    product_id: int
    name: str
    price: Decimal
    stock: int = 0
    is_available: bool = True
    sold_count: int = 0
    sku: Optional[str] = None
    weight: Optional[Decimal] = None  # kg

    @property
    def in_stock(self) -> bool:
        return self.stock > 0

class CartLine(BaseModel):
    """Line requested by the client; any price it carries is ignored"""
    product_id: int
    quantity: int

class PricedLine(BaseModel):
    """Cart line priced from the ledger at session-creation time"""
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    sku: Optional[str] = None
    weight: Optional[Decimal] = None

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity
