from datetime import datetime
from enum import Enum
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, EmailStr, Field

class Role(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class Principal(BaseModel):
    """The authenticated actor of one request."""
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: Optional[str] = None
    price: Decimal

    class Config:
        populate_by_name = True

class OrderItemDB(BaseModel):
    product_id: str
    quantity: int
    price_at_purchase: Decimal # Snapshot

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    owner_id: str
    items: List[OrderItemDB]
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class UserDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    github_id: Optional[str] = None
    email: EmailStr
    display_name: Optional[str] = None
    profile_picture: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    role: Role = Role.CUSTOMER
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class WishlistDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    owner_id: str
    product_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class ExternalIdentity(BaseModel):
    """What the login provider tells us about a user."""
    github_id: str
    email: EmailStr
    display_name: Optional[str] = None
    profile_picture: Optional[str] = None
