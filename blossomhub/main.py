from fastapi import FastAPI, Depends, HTTPException, status, Query, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Optional, List

from shared.utils import (
    get_db_client, settings, create_access_token, verify_token,
    SuccessResponse, ErrorResponse, HealthResponse,
    AppException, UnauthenticatedException, UnexpectedException
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from blossomhub.github import fetch_github_identity
from blossomhub.models import OrderDB, Principal, UserDB, WishlistDB
from blossomhub.orders import OrderService
from blossomhub.pricing import MongoCatalog
from blossomhub.repositories import AccountRepository, OrderRepository, WishlistRepository
from blossomhub.schemas import (
    OrderCreate, OrderResponse, OrderStatusUpdate,
    ProfileUpdate, UserResponse, GitHubLogin, Token,
    WishlistItemResponse, WishlistResponse
)
from blossomhub.users import UserService
from blossomhub.wishlists import WishlistService

SERVICE_NAME = "blossomhub"

# Setup Logging
logger = setup_logging(SERVICE_NAME)

app = FastAPI(title="BlossomHub API")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.DATABASE_NAME]
    # Indexes
    await app.mongodb.users.create_index("email", unique=True)
    await app.mongodb.orders.create_index("owner_id")
    await app.mongodb.wishlists.create_index("owner_id", unique=True)

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    headers = None
    if isinstance(exc, UnauthenticatedException):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.kind, details=exc.detail).model_dump(),
        headers=headers,
    )

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=UnexpectedException.kind, details=UnexpectedException.default_detail).model_dump(),
    )

# --- Dependencies ---
def get_order_service() -> OrderService:
    return OrderService(
        orders=OrderRepository(app.mongodb),
        catalog=MongoCatalog(app.mongodb),
    )

def get_user_service() -> UserService:
    return UserService(
        accounts=AccountRepository(app.mongodb),
        admin_emails=settings.ADMIN_EMAILS,
    )

def get_wishlist_service() -> WishlistService:
    return WishlistService(
        wishlists=WishlistRepository(app.mongodb),
        catalog=MongoCatalog(app.mongodb),
    )

async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
    users: UserService = Depends(get_user_service),
) -> Optional[Principal]:
    """Principal from the bearer token; None when the request carries no token."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise UnauthenticatedException("Invalid authentication credentials")

    payload = verify_token(token)
    try:
        claimed = Principal(id=payload["sub"], role=payload["role"])
    except ValueError:
        raise UnauthenticatedException("Token carries an unknown role")

    # The stored role wins over the claim so demotions apply immediately
    principal = await users.session_principal(claimed.id)
    if principal is None:
        raise UnauthenticatedException("Account no longer exists")
    request.state.user_id = principal.id
    return principal

# --- Helpers ---
def order_response(order: OrderDB) -> OrderResponse:
    data = order.model_dump()
    data["user_id"] = data.pop("owner_id")
    return OrderResponse(**data)

def user_response(account: UserDB) -> UserResponse:
    return UserResponse(**account.model_dump())

async def wishlist_response(wishlist: WishlistDB, wishlists: WishlistService) -> WishlistResponse:
    products = await wishlists.products(wishlist)
    return WishlistResponse(
        id=wishlist.id,
        user_id=wishlist.owner_id,
        items=[WishlistItemResponse(product_id=p.id, name=p.name, price=p.price) for p in products],
        created_at=wishlist.created_at,
        updated_at=wishlist.updated_at,
    )

# --- Endpoints ---

# Auth
@app.post("/auth/github", response_model=SuccessResponse[Token])
@limiter.limit("5/minute")
async def github_login(
    login: GitHubLogin,
    request: Request,
    users: UserService = Depends(get_user_service),
):
    identity = await fetch_github_identity(
        login.access_token, request_id=getattr(request.state, "request_id", None)
    )
    account, created = await users.create_or_get(identity)
    access_token = create_access_token(data={"sub": account.id, "role": account.role.value})
    return SuccessResponse(
        data=Token(
            access_token=access_token,
            token_type="bearer",
            user=user_response(account),
            created=created,
        ),
        message="User created" if created else "User already exists",
    )

# Users
@app.get("/users", response_model=SuccessResponse[List[UserResponse]])
async def list_users(
    principal: Optional[Principal] = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    accounts = await users.list_accounts(principal)
    return SuccessResponse(data=[user_response(a) for a in accounts])

@app.get("/users/{user_id}", response_model=SuccessResponse[UserResponse])
async def get_user(
    user_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    account = await users.get_profile(principal, user_id)
    return SuccessResponse(data=user_response(account))

@app.put("/users/{user_id}", response_model=SuccessResponse[UserResponse])
async def update_user(
    user_id: str,
    profile_update: ProfileUpdate,
    principal: Optional[Principal] = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    # An explicit null clears the field
    patch = profile_update.model_dump(exclude_unset=True)
    account = await users.update_profile(principal, user_id, patch)
    return SuccessResponse(data=user_response(account), message="Profile updated successfully")

@app.delete("/users/{user_id}", response_model=SuccessResponse[dict])
async def delete_user(
    user_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    users: UserService = Depends(get_user_service),
):
    await users.delete_account(principal, user_id)
    return SuccessResponse(message="User deleted successfully")

# Orders
@app.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    user_id: Optional[str] = Query(None),
    principal: Optional[Principal] = Depends(get_principal),
    orders: OrderService = Depends(get_order_service),
):
    found = await orders.list_orders(principal, owner_id=user_id)
    return SuccessResponse(data=[order_response(o) for o in found])

@app.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(
    order_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    orders: OrderService = Depends(get_order_service),
):
    order = await orders.get_order(principal, order_id)
    return SuccessResponse(data=order_response(order))

@app.post("/orders", response_model=SuccessResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT)
async def create_order(
    order_in: OrderCreate,
    request: Request,
    principal: Optional[Principal] = Depends(get_principal),
    orders: OrderService = Depends(get_order_service),
):
    order = await orders.create_order(
        principal,
        order_in.items,
        shipping_address=order_in.shipping_address,
        owner_id=order_in.user_id,
    )
    return SuccessResponse(data=order_response(order), message="Order created successfully")

@app.put("/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    status_update: OrderStatusUpdate,
    principal: Optional[Principal] = Depends(get_principal),
    orders: OrderService = Depends(get_order_service),
):
    order = await orders.update_order_status(principal, order_id, status_update.status)
    return SuccessResponse(data=order_response(order))

@app.delete("/orders/{order_id}", response_model=SuccessResponse[dict])
async def delete_order(
    order_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    orders: OrderService = Depends(get_order_service),
):
    await orders.delete_order(principal, order_id)
    return SuccessResponse(message="Order deleted")

# Wishlist
@app.get("/wishlist", response_model=SuccessResponse[WishlistResponse])
async def get_wishlist(
    response: Response,
    principal: Optional[Principal] = Depends(get_principal),
    wishlists: WishlistService = Depends(get_wishlist_service),
):
    wishlist, created = await wishlists.get_wishlist(principal)
    if created:
        response.status_code = status.HTTP_201_CREATED
    return SuccessResponse(
        data=await wishlist_response(wishlist, wishlists),
        message="New wishlist created for user" if created else None,
    )

@app.delete("/wishlist/clear", response_model=SuccessResponse[WishlistResponse])
async def clear_wishlist(
    principal: Optional[Principal] = Depends(get_principal),
    wishlists: WishlistService = Depends(get_wishlist_service),
):
    wishlist = await wishlists.clear(principal)
    return SuccessResponse(data=await wishlist_response(wishlist, wishlists), message="Wishlist cleared successfully")

@app.post("/wishlist/{product_id}", response_model=SuccessResponse[WishlistResponse])
async def add_to_wishlist(
    product_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    wishlists: WishlistService = Depends(get_wishlist_service),
):
    wishlist = await wishlists.add_item(principal, product_id)
    return SuccessResponse(data=await wishlist_response(wishlist, wishlists), message="Product added to wishlist")

@app.delete("/wishlist/{product_id}", response_model=SuccessResponse[WishlistResponse])
async def remove_from_wishlist(
    product_id: str,
    principal: Optional[Principal] = Depends(get_principal),
    wishlists: WishlistService = Depends(get_wishlist_service),
):
    wishlist = await wishlists.remove_item(principal, product_id)
    return SuccessResponse(data=await wishlist_response(wishlist, wishlists), message="Product removed from wishlist")

@app.get("/health", response_model=HealthResponse)
async def health_check():
    db_status = "unhealthy"
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    status_code = "healthy" if db_status == "connected" else "unhealthy"

    if status_code == "unhealthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=SERVICE_NAME,
        status=status_code,
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status
    )
