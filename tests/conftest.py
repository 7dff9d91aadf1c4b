from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from bson import ObjectId

from blossomhub.models import OrderDB, Principal, ProductDB, Role, UserDB, WishlistDB
from blossomhub.orders import OrderService
from blossomhub.users import UserService
from blossomhub.wishlists import WishlistService


class InMemoryCatalog:
    def __init__(self):
        self.products: Dict[str, ProductDB] = {}
        self.lookups: List[str] = []

    def add(self, product_id: str, price: str, name: Optional[str] = None) -> None:
        self.products[product_id] = ProductDB(_id=product_id, name=name, price=Decimal(price))

    async def get(self, product_id: str) -> Optional[ProductDB]:
        self.lookups.append(product_id)
        return self.products.get(product_id)


class InMemoryOrderRepository:
    def __init__(self):
        self.docs: Dict[str, OrderDB] = {}

    async def insert(self, order: OrderDB) -> str:
        order_id = str(ObjectId())
        self.docs[order_id] = order.model_copy(update={"id": order_id}, deep=True)
        return order_id

    async def find_by_id(self, id: str) -> Optional[OrderDB]:
        order = self.docs.get(id)
        return order.model_copy(deep=True) if order else None

    async def find_by_query(self, filter: dict) -> List[OrderDB]:
        found = [
            o for o in self.docs.values()
            if all(getattr(o, key) == value for key, value in filter.items())
        ]
        return sorted(found, key=lambda o: o.created_at, reverse=True)

    async def update(self, id: str, patch: dict) -> Optional[OrderDB]:
        if id not in self.docs:
            return None
        self.docs[id] = self.docs[id].model_copy(update=patch)
        return self.docs[id].model_copy(deep=True)

    async def delete(self, id: str) -> bool:
        return self.docs.pop(id, None) is not None


class InMemoryAccountRepository:
    def __init__(self):
        self.docs: Dict[str, UserDB] = {}
        self.writes = 0

    def seed(self, email: str, role: Role = Role.CUSTOMER, **fields) -> UserDB:
        account_id = str(ObjectId())
        account = UserDB(_id=account_id, email=email, role=role, **fields)
        self.docs[account_id] = account
        return account

    async def find_by_email(self, email: str) -> Optional[UserDB]:
        for account in self.docs.values():
            if account.email == email:
                return account.model_copy(deep=True)
        return None

    async def find_by_id(self, id: str) -> Optional[UserDB]:
        account = self.docs.get(id)
        return account.model_copy(deep=True) if account else None

    async def find_all(self) -> List[UserDB]:
        return [a.model_copy(deep=True) for a in self.docs.values()]

    async def insert(self, account: UserDB) -> str:
        self.writes += 1
        account_id = str(ObjectId())
        self.docs[account_id] = account.model_copy(update={"id": account_id}, deep=True)
        return account_id

    async def update(self, id: str, patch: dict) -> Optional[UserDB]:
        if id not in self.docs:
            return None
        self.writes += 1
        self.docs[id] = self.docs[id].model_copy(update=patch)
        return self.docs[id].model_copy(deep=True)

    async def delete(self, id: str) -> bool:
        if self.docs.pop(id, None) is None:
            return False
        self.writes += 1
        return True

    async def count_by_role(self, role: Role) -> int:
        return sum(1 for a in self.docs.values() if a.role == role)


class InMemoryWishlistRepository:
    def __init__(self):
        self.docs: Dict[str, WishlistDB] = {}

    async def find_by_owner(self, owner_id: str) -> Optional[WishlistDB]:
        for wishlist in self.docs.values():
            if wishlist.owner_id == owner_id:
                return wishlist.model_copy(deep=True)
        return None

    async def insert(self, wishlist: WishlistDB) -> str:
        wishlist_id = str(ObjectId())
        self.docs[wishlist_id] = wishlist.model_copy(update={"id": wishlist_id}, deep=True)
        return wishlist_id

    async def update(self, id: str, patch: dict) -> Optional[WishlistDB]:
        if id not in self.docs:
            return None
        self.docs[id] = self.docs[id].model_copy(update=patch)
        return self.docs[id].model_copy(deep=True)


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def catalog():
    catalog = InMemoryCatalog()
    catalog.add("p1", "10.00", name="Red Rose")
    catalog.add("p2", "4.25", name="Tulip")
    catalog.add("p3", "0.10", name="Daisy")
    return catalog


@pytest.fixture
def order_repo():
    return InMemoryOrderRepository()


@pytest.fixture
def account_repo():
    return InMemoryAccountRepository()


@pytest.fixture
def wishlist_repo():
    return InMemoryWishlistRepository()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def order_service(order_repo, catalog, clock):
    return OrderService(orders=order_repo, catalog=catalog, clock=clock)


@pytest.fixture
def user_service(account_repo, clock):
    return UserService(accounts=account_repo, admin_emails=["Boss@Blossomhub.io"], clock=clock)


@pytest.fixture
def wishlist_service(wishlist_repo, catalog, clock):
    return WishlistService(wishlists=wishlist_repo, catalog=catalog, clock=clock)


@pytest.fixture
def admin(account_repo):
    return account_repo.seed("admin@blossomhub.io", role=Role.ADMIN, display_name="Admin")


@pytest.fixture
def customer(account_repo):
    return account_repo.seed(
        "alice@petals.io",
        display_name="Alice",
        phone_number="555-0100",
        address="1 Petal Lane",
    )


@pytest.fixture
def other_customer(account_repo):
    return account_repo.seed("bob@petals.io", display_name="Bob")


@pytest.fixture
def admin_principal(admin):
    return Principal(id=admin.id, role=admin.role)


@pytest.fixture
def customer_principal(customer):
    return Principal(id=customer.id, role=customer.role)


@pytest.fixture
def other_principal(other_customer):
    return Principal(id=other_customer.id, role=other_customer.role)
