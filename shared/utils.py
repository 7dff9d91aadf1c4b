from datetime import datetime, timedelta
from typing import Optional, Generic, TypeVar, Any, List
from fastapi import status
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt
import functools
import logging
import uuid

logger = logging.getLogger(__name__)

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    DATABASE_NAME: str = "blossomhub"
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TIMEOUT_SECONDS: float = 5.0
    # Accounts created with one of these emails start out as admins
    ADMIN_EMAILS: List[str] = []
    RATE_LIMIT: str = "60/minute"
    RATE_LIMIT_ENABLED: bool = True

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

# --- Authentication ---
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    if "jti" not in to_encode:
        to_encode.update({"jti": str(uuid.uuid4())})

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise UnauthenticatedException("Could not validate credentials")
    if not payload.get("sub") or not payload.get("role"):
        raise UnauthenticatedException("Token is missing identity claims")
    return payload

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[Any] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None
    dependencies: Optional[dict] = None


# --- Exceptions ---
class AppException(Exception):
    """
    Base of every error a core operation can raise.

    `kind` names the error for API clients; `status_code` is the HTTP status
    the routing layer answers with.
    """
    kind = "Unexpected"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "An error occurred"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

class UnauthenticatedException(AppException):
    kind = "Unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Not authenticated"

class ForbiddenException(AppException):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Not authorized to perform this action"

class NotFoundException(AppException):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"

class ProductNotFoundException(AppException):
    kind = "ProductNotFound"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found with ID {product_id}")

class InvalidQuantityException(AppException):
    kind = "InvalidQuantity"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Quantity must be a positive integer"

class InvalidStatusException(AppException):
    kind = "InvalidStatus"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid status"

class LastAdminProtectedException(AppException):
    kind = "LastAdminProtected"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Cannot delete the last admin user."

class DuplicateItemException(AppException):
    kind = "DuplicateItem"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Item already present"

class UnexpectedException(AppException):
    pass

def core_operation(func):
    """
    Let typed errors through and wrap anything else a collaborator raises in
    UnexpectedException, keeping the original as __cause__.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AppException:
            raise
        except Exception as exc:
            logger.exception("Unexpected failure in %s", func.__qualname__)
            raise UnexpectedException(f"{func.__name__} failed") from exc
    return wrapper
