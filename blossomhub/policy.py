"""
Access rules for user, order and wishlist resources.

`authorize` decides whether a principal may act on a resource owned by
someone; `filter_patch` decides which profile fields a role may write.
Both are pure.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel

from shared.utils import ForbiddenException, UnauthenticatedException

from blossomhub.models import Principal, Role


class Action(str, Enum):
    USER_READ = "user:read"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    USER_LIST = "user:list"
    ORDER_CREATE = "order:create"
    ORDER_READ = "order:read"
    ORDER_LIST = "order:list"
    ORDER_UPDATE_STATUS = "order:update_status"
    ORDER_DELETE = "order:delete"
    WISHLIST_READ = "wishlist:read"
    WISHLIST_UPDATE = "wishlist:update"


# Actions a non-admin may perform on resources they own. Anything else is
# reserved for admins.
OWNER_ACTIONS: FrozenSet[Action] = frozenset({
    Action.USER_READ,
    Action.USER_UPDATE,
    Action.ORDER_CREATE,
    Action.ORDER_READ,
    Action.ORDER_LIST,
    Action.WISHLIST_READ,
    Action.WISHLIST_UPDATE,
})


class DenyReason(str, Enum):
    UNAUTHENTICATED = "Unauthenticated"
    FORBIDDEN = "Forbidden"


class Decision(BaseModel):
    allowed: bool
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(allowed=True)


def deny(reason: DenyReason) -> Decision:
    return Decision(allowed=False, reason=reason)


def authorize(principal: Optional[Principal], resource_owner_id: Optional[str], action: Action) -> Decision:
    if principal is None:
        return deny(DenyReason.UNAUTHENTICATED)
    if principal.is_admin:
        return ALLOW
    if action in OWNER_ACTIONS and resource_owner_id is not None and principal.id == resource_owner_id:
        return ALLOW
    return deny(DenyReason.FORBIDDEN)


def require_principal(principal: Optional[Principal]) -> Principal:
    if principal is None:
        raise UnauthenticatedException("Not authorized, no user session found.")
    return principal


def enforce(principal: Optional[Principal], resource_owner_id: Optional[str], action: Action) -> Principal:
    """Raise the typed error matching a denial; return the principal otherwise."""
    decision = authorize(principal, resource_owner_id, action)
    if decision.reason == DenyReason.UNAUTHENTICATED:
        require_principal(None)
    if not decision:
        raise ForbiddenException(f"Not authorized to perform {action.value}")
    return principal


# --- Profile fields ---

# Never client-writable, whatever the role
PROTECTED_FIELDS: FrozenSet[str] = frozenset({"id", "_id", "github_id", "created_at", "updated_at"})

# None means every field that is not protected
FIELD_PERMISSIONS: Dict[Role, Optional[FrozenSet[str]]] = {
    Role.CUSTOMER: frozenset({"display_name", "profile_picture", "phone_number", "address"}),
    Role.ADMIN: None,
}


def writable_fields(role: Role) -> Optional[FrozenSet[str]]:
    return FIELD_PERMISSIONS.get(role, frozenset())


def filter_patch(role: Role, patch: dict) -> dict:
    allowed = writable_fields(role)
    return {
        key: value for key, value in patch.items()
        if key not in PROTECTED_FIELDS and (allowed is None or key in allowed)
    }
