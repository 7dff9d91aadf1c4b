from decimal import Decimal
from enum import Enum
from typing import List, Optional

from bson import ObjectId, Decimal128
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING, ReturnDocument

from blossomhub.models import OrderDB, Role, UserDB, WishlistDB


# --- Helpers ---
def str_to_oid(id: str) -> Optional[ObjectId]:
    # ObjectId(None) generates a fresh id instead of failing
    if not isinstance(id, str):
        return None
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        return None

def to_mongo(value):
    """Make a model dump storable: decimals become Decimal128, enums their value."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_mongo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_mongo(v) for v in value]
    return value

def from_mongo(value):
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: from_mongo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_mongo(v) for v in value]
    return value


class OrderRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.orders

    async def insert(self, order: OrderDB) -> str:
        doc = to_mongo(order.model_dump(exclude={"id"}))
        result = await self.collection.insert_one(doc)
        return str(result.inserted_id)

    async def find_by_id(self, id: str) -> Optional[OrderDB]:
        oid = str_to_oid(id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return OrderDB(**from_mongo(doc)) if doc else None

    async def find_by_query(self, filter: dict) -> List[OrderDB]:
        cursor = self.collection.find(to_mongo(filter)).sort("created_at", DESCENDING)
        return [OrderDB(**from_mongo(doc)) async for doc in cursor]

    async def update(self, id: str, patch: dict) -> Optional[OrderDB]:
        oid = str_to_oid(id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": to_mongo(patch)},
            return_document=ReturnDocument.AFTER,
        )
        return OrderDB(**from_mongo(doc)) if doc else None

    async def delete(self, id: str) -> bool:
        oid = str_to_oid(id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid})
        return result.deleted_count == 1


class AccountRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.users

    async def find_by_email(self, email: str) -> Optional[UserDB]:
        doc = await self.collection.find_one({"email": email})
        return UserDB(**from_mongo(doc)) if doc else None

    async def find_by_id(self, id: str) -> Optional[UserDB]:
        oid = str_to_oid(id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return UserDB(**from_mongo(doc)) if doc else None

    async def find_all(self) -> List[UserDB]:
        cursor = self.collection.find({}).sort("created_at", DESCENDING)
        return [UserDB(**from_mongo(doc)) async for doc in cursor]

    async def insert(self, account: UserDB) -> str:
        doc = to_mongo(account.model_dump(exclude={"id"}))
        result = await self.collection.insert_one(doc)
        return str(result.inserted_id)

    async def update(self, id: str, patch: dict) -> Optional[UserDB]:
        oid = str_to_oid(id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": to_mongo(patch)},
            return_document=ReturnDocument.AFTER,
        )
        return UserDB(**from_mongo(doc)) if doc else None

    async def delete(self, id: str) -> bool:
        oid = str_to_oid(id)
        if oid is None:
            return False
        result = await self.collection.delete_one({"_id": oid})
        return result.deleted_count == 1

    async def count_by_role(self, role: Role) -> int:
        return await self.collection.count_documents({"role": role.value})


class WishlistRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.wishlists

    async def find_by_owner(self, owner_id: str) -> Optional[WishlistDB]:
        doc = await self.collection.find_one({"owner_id": owner_id})
        return WishlistDB(**from_mongo(doc)) if doc else None

    async def insert(self, wishlist: WishlistDB) -> str:
        doc = to_mongo(wishlist.model_dump(exclude={"id"}))
        result = await self.collection.insert_one(doc)
        return str(result.inserted_id)

    async def update(self, id: str, patch: dict) -> Optional[WishlistDB]:
        oid = str_to_oid(id)
        if oid is None:
            return None
        doc = await self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": to_mongo(patch)},
            return_document=ReturnDocument.AFTER,
        )
        return WishlistDB(**from_mongo(doc)) if doc else None
