import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from shared.utils import NotFoundException, DuplicateItemException, core_operation

from blossomhub.models import Principal, ProductDB, WishlistDB
from blossomhub.policy import Action, enforce, require_principal
from blossomhub.pricing import CatalogLookup
from blossomhub.repositories import WishlistRepository

logger = logging.getLogger(__name__)


class WishlistService:
    """One wishlist per user, created lazily on first use."""

    def __init__(
        self,
        wishlists: WishlistRepository,
        catalog: CatalogLookup,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.wishlists = wishlists
        self.catalog = catalog
        self.clock = clock

    def _owner(self, principal: Optional[Principal], owner_id: Optional[str], action: Action) -> str:
        if owner_id is None:
            owner_id = require_principal(principal).id
        enforce(principal, owner_id, action)
        return owner_id

    async def _load(self, owner_id: str) -> WishlistDB:
        wishlist = await self.wishlists.find_by_owner(owner_id)
        if wishlist is None:
            raise NotFoundException("Wishlist not found for this user")
        return wishlist

    async def _create(self, owner_id: str, product_ids: List[str]) -> WishlistDB:
        now = self.clock()
        wishlist = WishlistDB(owner_id=owner_id, product_ids=product_ids, created_at=now, updated_at=now)
        wishlist_id = await self.wishlists.insert(wishlist)
        logger.info("Wishlist created", extra={"wishlist_id": wishlist_id, "owner_id": owner_id})
        return wishlist.model_copy(update={"id": wishlist_id})

    async def _save(self, wishlist: WishlistDB, product_ids: List[str]) -> WishlistDB:
        saved = await self.wishlists.update(wishlist.id, {
            "product_ids": product_ids,
            "updated_at": self.clock(),
        })
        if saved is None:
            raise NotFoundException("Wishlist not found for this user")
        return saved

    @core_operation
    async def get_wishlist(
        self, principal: Optional[Principal], owner_id: Optional[str] = None
    ) -> Tuple[WishlistDB, bool]:
        """Return the owner's wishlist and whether it had to be created."""
        owner_id = self._owner(principal, owner_id, Action.WISHLIST_READ)
        wishlist = await self.wishlists.find_by_owner(owner_id)
        if wishlist is not None:
            return wishlist, False
        return await self._create(owner_id, []), True

    @core_operation
    async def add_item(
        self, principal: Optional[Principal], product_id: str, owner_id: Optional[str] = None
    ) -> WishlistDB:
        owner_id = self._owner(principal, owner_id, Action.WISHLIST_UPDATE)
        if await self.catalog.get(product_id) is None:
            raise NotFoundException(f"Product not found with ID {product_id}")

        wishlist = await self.wishlists.find_by_owner(owner_id)
        if wishlist is None:
            return await self._create(owner_id, [product_id])
        if product_id in wishlist.product_ids:
            raise DuplicateItemException("Product already in wishlist")
        return await self._save(wishlist, wishlist.product_ids + [product_id])

    @core_operation
    async def remove_item(
        self, principal: Optional[Principal], product_id: str, owner_id: Optional[str] = None
    ) -> WishlistDB:
        owner_id = self._owner(principal, owner_id, Action.WISHLIST_UPDATE)
        wishlist = await self._load(owner_id)
        if product_id not in wishlist.product_ids:
            raise NotFoundException("Product not found in wishlist")
        remaining = [pid for pid in wishlist.product_ids if pid != product_id]
        return await self._save(wishlist, remaining)

    @core_operation
    async def clear(self, principal: Optional[Principal], owner_id: Optional[str] = None) -> WishlistDB:
        owner_id = self._owner(principal, owner_id, Action.WISHLIST_UPDATE)
        wishlist = await self._load(owner_id)
        return await self._save(wishlist, [])

    @core_operation
    async def products(self, wishlist: WishlistDB) -> List[ProductDB]:
        # Products since removed from the catalog are left out
        found = []
        for product_id in wishlist.product_ids:
            product = await self.catalog.get(product_id)
            if product is not None:
                found.append(product)
        return found
