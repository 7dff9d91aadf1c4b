import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from shared.utils import NotFoundException, ForbiddenException, core_operation

from blossomhub.lifecycle import INITIAL_STATUS, set_status
from blossomhub.models import OrderDB, Principal
from blossomhub.policy import Action, enforce, require_principal
from blossomhub.pricing import CatalogLookup, ItemRequest, price_order
from blossomhub.repositories import OrderRepository

logger = logging.getLogger(__name__)


class OrderService:
    def __init__(
        self,
        orders: OrderRepository,
        catalog: CatalogLookup,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.orders = orders
        self.catalog = catalog
        self.clock = clock

    async def _load(self, order_id: str) -> OrderDB:
        order = await self.orders.find_by_id(order_id)
        if order is None:
            raise NotFoundException(f"Order not found with ID {order_id}")
        return order

    @core_operation
    async def create_order(
        self,
        principal: Optional[Principal],
        items: Sequence[ItemRequest],
        shipping_address: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> OrderDB:
        # Admins may place an order on behalf of someone else
        if owner_id is None and principal is not None:
            owner_id = principal.id
        enforce(principal, owner_id, Action.ORDER_CREATE)

        # Nothing is written unless every item prices
        priced = await price_order(items, self.catalog)

        now = self.clock()
        order = OrderDB(
            owner_id=owner_id,
            items=priced.line_items,
            total_amount=priced.total_amount,
            status=INITIAL_STATUS,
            shipping_address=shipping_address,
            created_at=now,
            updated_at=now,
        )
        order_id = await self.orders.insert(order)
        order = order.model_copy(update={"id": order_id})

        logger.info(
            "Order created",
            extra={"order_id": order_id, "owner_id": owner_id, "user_id": principal.id},
        )
        return order

    @core_operation
    async def get_order(self, principal: Optional[Principal], order_id: str) -> OrderDB:
        require_principal(principal)
        order = await self._load(order_id)
        enforce(principal, order.owner_id, Action.ORDER_READ)
        return order

    @core_operation
    async def list_orders(self, principal: Optional[Principal], owner_id: Optional[str] = None) -> List[OrderDB]:
        if principal is not None and not principal.is_admin:
            if owner_id is not None and owner_id != principal.id:
                raise ForbiddenException("Not authorized to view orders of another user")
            owner_id = principal.id
        enforce(principal, owner_id, Action.ORDER_LIST)

        query = {}
        if owner_id is not None:
            query["owner_id"] = owner_id
        return await self.orders.find_by_query(query)

    @core_operation
    async def update_order_status(
        self,
        principal: Optional[Principal],
        order_id: str,
        new_status: str,
    ) -> OrderDB:
        enforce(principal, None, Action.ORDER_UPDATE_STATUS)
        order = await self._load(order_id)

        updated = set_status(order, new_status, self.clock())
        saved = await self.orders.update(order_id, {
            "status": updated.status,
            "updated_at": updated.updated_at,
        })
        if saved is None:
            raise NotFoundException(f"Order not found with ID {order_id}")

        logger.info(
            "Order status updated",
            extra={"order_id": order_id, "status": saved.status.value, "user_id": principal.id},
        )
        return saved

    @core_operation
    async def delete_order(self, principal: Optional[Principal], order_id: str) -> None:
        enforce(principal, None, Action.ORDER_DELETE)
        if not await self.orders.delete(order_id):
            raise NotFoundException(f"Order not found with ID {order_id}")
        logger.info("Order deleted", extra={"order_id": order_id, "user_id": principal.id})
