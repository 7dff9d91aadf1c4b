"""
Order pricing.

Turns requested (product, quantity) pairs into line items carrying a price
snapshot taken from the catalog at the moment of pricing, and sums them up.
"""
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from shared.utils import InvalidQuantityException, ProductNotFoundException

from blossomhub.models import OrderItemDB, ProductDB
from blossomhub.repositories import str_to_oid


class CatalogLookup(Protocol):
    async def get(self, product_id: str) -> Optional[ProductDB]:
        ...


class MongoCatalog:
    """Read-only view over the catalog collection owned by the catalog API."""

    def __init__(self, db: AsyncIOMotorDatabase, collection: str = "flowers"):
        self.collection = db[collection]

    async def get(self, product_id: str) -> Optional[ProductDB]:
        oid = str_to_oid(product_id)
        if oid is None:
            return None

        doc = await self.collection.find_one({"_id": oid}, {"name": 1, "price": 1})
        if not doc:
            return None
        return ProductDB(
            _id=str(doc["_id"]),
            name=doc.get("name"),
            # Restore decimal from float, int or Decimal128
            price=Decimal(str(doc["price"])),
        )


class ItemRequest(Protocol):
    product_id: str
    quantity: int


class PricedOrder(BaseModel):
    line_items: List[OrderItemDB]
    total_amount: Decimal


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


async def price_order(items: Sequence[ItemRequest], catalog: CatalogLookup) -> PricedOrder:
    if not items:
        raise InvalidQuantityException("An order needs at least one item")

    # Reject bad quantities before touching the catalog
    for item in items:
        if not _is_positive_int(item.quantity):
            raise InvalidQuantityException(
                f"Quantity for product {item.product_id} must be a positive integer"
            )

    line_items = []
    total_amount = Decimal(0)
    for item in items:
        product = await catalog.get(item.product_id)
        if product is None:
            raise ProductNotFoundException(item.product_id)

        price_at_purchase = product.price
        total_amount += price_at_purchase * item.quantity
        line_items.append(OrderItemDB(
            product_id=item.product_id,
            quantity=item.quantity,
            price_at_purchase=price_at_purchase,
        ))

    return PricedOrder(line_items=line_items, total_amount=total_amount)
