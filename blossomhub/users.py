import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from shared.utils import (
    NotFoundException, ForbiddenException, LastAdminProtectedException,
    core_operation
)

from blossomhub.models import ExternalIdentity, Principal, Role, UserDB
from blossomhub.policy import Action, enforce, filter_patch, require_principal
from blossomhub.repositories import AccountRepository

logger = logging.getLogger(__name__)

ME = "me"

REQUIRED_FIELDS = frozenset({"email", "role"})


class UserService:
    def __init__(
        self,
        accounts: AccountRepository,
        admin_emails: Iterable[str] = (),
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.accounts = accounts
        self.admin_emails = {email.lower() for email in admin_emails}
        self.clock = clock

    def _resolve_target(self, principal: Optional[Principal], target_id: str) -> str:
        if target_id == ME:
            return require_principal(principal).id
        return target_id

    async def _load(self, account_id: str) -> UserDB:
        account = await self.accounts.find_by_id(account_id)
        if account is None:
            raise NotFoundException("User not found")
        return account

    @core_operation
    async def create_or_get(self, identity: ExternalIdentity) -> Tuple[UserDB, bool]:
        """
        Return the account for a freshly logged-in identity, creating it on
        first login. A repeat login performs no write.
        """
        email = identity.email.lower()
        existing = await self.accounts.find_by_email(email)
        if existing is not None:
            return existing, False

        now = self.clock()
        account = UserDB(
            github_id=identity.github_id,
            email=email,
            display_name=identity.display_name,
            profile_picture=identity.profile_picture,
            role=Role.ADMIN if email in self.admin_emails else Role.CUSTOMER,
            created_at=now,
            updated_at=now,
        )
        account_id = await self.accounts.insert(account)
        account = account.model_copy(update={"id": account_id})
        logger.info("Account created", extra={"account_id": account_id})
        return account, True

    @core_operation
    async def list_accounts(self, principal: Optional[Principal]) -> List[UserDB]:
        enforce(principal, None, Action.USER_LIST)
        return await self.accounts.find_all()

    @core_operation
    async def get_profile(self, principal: Optional[Principal], target_id: str) -> UserDB:
        account = await self._load(self._resolve_target(principal, target_id))
        enforce(principal, account.id, Action.USER_READ)
        return account

    @core_operation
    async def update_profile(self, principal: Optional[Principal], target_id: str, patch: dict) -> UserDB:
        require_principal(principal)
        account = await self._load(self._resolve_target(principal, target_id))
        enforce(principal, account.id, Action.USER_UPDATE)

        requested_role = patch.get("role")
        if (
            not principal.is_admin
            and requested_role is not None
            and requested_role != account.role
        ):
            logger.warning(
                "Role change refused",
                extra={"account_id": account.id, "user_id": principal.id},
            )
            raise ForbiddenException("Not authorized to change user role")

        updates = filter_patch(principal.role, patch)
        # A null clears optional fields only
        updates = {k: v for k, v in updates.items() if v is not None or k not in REQUIRED_FIELDS}
        if "email" in updates:
            updates["email"] = updates["email"].lower()
        updates["updated_at"] = self.clock()

        updated = await self.accounts.update(account.id, updates)
        if updated is None:
            raise NotFoundException("User not found")
        return updated

    @core_operation
    async def delete_account(self, principal: Optional[Principal], target_id: str) -> None:
        enforce(principal, None, Action.USER_DELETE)
        account = await self._load(self._resolve_target(principal, target_id))

        if account.id == principal.id and account.role == Role.ADMIN:
            admin_count = await self.accounts.count_by_role(Role.ADMIN)
            if admin_count <= 1:
                logger.warning(
                    "Refused to delete the last admin",
                    extra={"account_id": account.id, "user_id": principal.id},
                )
                raise LastAdminProtectedException()

        if not await self.accounts.delete(account.id):
            raise NotFoundException("User not found")
        logger.info("Account deleted", extra={"account_id": account.id, "user_id": principal.id})

    @core_operation
    async def session_principal(self, account_id: str) -> Optional[Principal]:
        """Principal for a token subject, carrying the role as currently stored."""
        account = await self.accounts.find_by_id(account_id)
        if account is None:
            return None
        return Principal(id=account.id, role=account.role)
