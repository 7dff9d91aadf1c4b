from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input

from blossomhub.models import OrderStatus, Role

# --- Orders ---
class OrderItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)

class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)
    shipping_address: Optional[str] = None
    # Only admins may order on behalf of another user
    user_id: Optional[str] = None

    @field_validator('shipping_address')
    def sanitize_address(cls, v):
        return sanitize_input(v)

class OrderStatusUpdate(BaseModel):
    # Kept as a plain string so unknown values reach the lifecycle check
    status: str

    @field_validator('status')
    def sanitize_status(cls, v):
        return sanitize_input(v)

class OrderItemResponse(BaseModel):
    product_id: str
    quantity: int
    price_at_purchase: Decimal

class OrderResponse(BaseModel):
    id: str
    user_id: str
    items: List[OrderItemResponse]
    total_amount: Decimal
    status: OrderStatus
    shipping_address: Optional[str] = None
    created_at: datetime
    updated_at: datetime

# --- Wishlists ---
class WishlistItemResponse(BaseModel):
    product_id: str
    name: Optional[str] = None
    price: Decimal

class WishlistResponse(BaseModel):
    id: str
    user_id: str
    items: List[WishlistItemResponse]
    created_at: datetime
    updated_at: datetime

# --- Users ---
class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    profile_picture: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    # Admin-only fields; dropped or refused for everyone else
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    github_id: Optional[str] = None

    @field_validator('display_name', 'address', 'phone_number')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserResponse(BaseModel):
    id: str
    email: EmailStr
    display_name: Optional[str] = None
    profile_picture: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    role: Role
    created_at: datetime
    updated_at: datetime

# --- Auth ---
class GitHubLogin(BaseModel):
    access_token: str = Field(..., min_length=1)

class Token(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse
    created: bool
